"""
DESeq2 differential expression across cell types, backed by pydeseq2.
"""

import warnings

import numpy as np
import pandas as pd
import scipy.sparse as sp

from .classes import DGEResult
from .check import check_level2annot
from .results import p_adjust
from .utils import messager


def _integer_counts(exp):
    counts = exp.toarray() if sp.issparse(exp) else np.asarray(exp, dtype=np.float64)
    if np.min(counts) < 0:
        raise ValueError("DESeq2 requires non-negative counts")
    rounded = np.rint(counts)
    if not np.allclose(counts, rounded):
        warnings.warn("DESeq2 requires integer counts: rounding expression values",
                      stacklevel=3)
    return rounded.astype(np.int64)


def run_deseq2(exp, level2annot, genes=None, no_cores=1, adjust_method='BH',
               verbose=True, **kwargs):
    """Test each gene for differential expression across cell types.

    Fits ``~celltype`` with pydeseq2 and runs a Wald test of every
    cell type against the reference (first sorted) cell type. A gene's
    p-value is the Bonferroni-corrected minimum over those contrasts;
    ``padj`` adjusts it across genes.

    Parameters
    ----------
    exp : ndarray or scipy.sparse matrix
        Genes x cells counts.
    level2annot : array-like
        Cell type of each cell.
    genes : array-like, optional
        Gene names for the result table.
    no_cores : int
        Worker processes for pydeseq2's inference.
    adjust_method : str
        Adjustment across genes (see :func:`~orthogene.results.p_adjust`).
    verbose : bool
    **kwargs
        Passed to ``pydeseq2.dds.DeseqDataSet``.

    Returns
    -------
    DGEResult with a table of baseMean, pvalue, padj and one
    ``pvalue_<celltype>`` column per contrast.
    """
    from pydeseq2.dds import DeseqDataSet
    from pydeseq2.default_inference import DefaultInference
    from pydeseq2.ds import DeseqStats

    messager("DGE:: DESeq2...", v=verbose)
    level2annot = check_level2annot(level2annot, exp.shape[1])
    levels = np.unique(level2annot)
    if len(levels) < 2:
        raise ValueError("At least two cell types are required")
    if genes is None:
        genes = [f"Gene{i + 1}" for i in range(exp.shape[0])]
    genes = pd.Index(genes)

    # Positional names keep pydeseq2 clear of duplicated or odd labels
    codes = {lvl: f"ct{i}" for i, lvl in enumerate(levels)}
    sample_ids = [f"cell{i}" for i in range(exp.shape[1])]
    gene_ids = [f"gene{i}" for i in range(exp.shape[0])]
    counts = pd.DataFrame(_integer_counts(exp).T, index=sample_ids, columns=gene_ids)
    metadata = pd.DataFrame({'celltype': [codes[x] for x in level2annot]},
                            index=sample_ids)

    inference = DefaultInference(n_cpus=no_cores)
    dds = DeseqDataSet(counts=counts, metadata=metadata, design="~celltype",
                       inference=inference, quiet=not verbose, **kwargs)
    dds.deseq2()

    ref = codes[levels[0]]
    pvals = {}
    base_mean = None
    for lvl in levels[1:]:
        ds = DeseqStats(dds, contrast=['celltype', codes[lvl], ref],
                        inference=inference, quiet=not verbose)
        ds.summary()
        res = ds.results_df.reindex(gene_ids)
        pvals[lvl] = res['pvalue'].values.astype(np.float64)
        if base_mean is None:
            base_mean = res['baseMean'].values

    pmat = np.column_stack(list(pvals.values()))
    all_nan = np.all(np.isnan(pmat), axis=1)
    pmin = np.full(pmat.shape[0], np.nan)
    pmin[~all_nan] = np.nanmin(pmat[~all_nan], axis=1)
    pvalue = np.minimum(pmin * pmat.shape[1], 1.0)

    table = pd.DataFrame({'baseMean': base_mean, 'pvalue': pvalue,
                          'padj': p_adjust(pvalue, method=adjust_method)},
                         index=genes)
    for lvl, p in pvals.items():
        table[f"pvalue_{lvl}"] = p

    return DGEResult(table=table, method='deseq2', adjust_method=adjust_method,
                     reference=levels[0])
