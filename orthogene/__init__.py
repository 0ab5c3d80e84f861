"""
orthogene: filtering of gene-expression matrices and cross-species
ortholog mapping.

Drops genes that are uninformative about cell type (non-expressed,
lacking 1:1 orthologs, or not varying across cell types by a limma
ANOVA or DESeq2).
"""

__version__ = "0.1.0"

# --- Classes ---
from .classes import ExpressionSet, MArrayLM, DGEResult

# --- Input checking ---
from .check import check_expression, check_level2annot

# --- Species & orthologs ---
from .species import map_species
from .orthologs import (
    map_orthologs,
    filter_non121,
    convert_orthologs,
    aggregate_mapped_genes,
    report_orthologs,
)

# --- Expression summaries ---
from .expression import mean_by_group, row_vars

# --- limma ---
from .limma_port import lm_fit, squeeze_var, e_bayes, run_limma

# --- DESeq2 ---
from .deseq2 import run_deseq2

# --- Results ---
from .results import p_adjust, top_table_f

# --- Filtering ---
from .filtering import (
    drop_nonexpressed,
    drop_nonorthologs,
    filter_variance_quantiles,
    drop_uninformative_genes,
)

# --- I/O ---
from .io import read_expression, to_anndata

# --- Utilities ---
from .utils import assign_cores, model_matrix, messager
