"""
Gene filtering for orthogene.

Drops genes that are not expressed, lack 1:1 orthologs, have low
variance across cell types, or do not differ significantly between
cell types.
"""

import time
import warnings

import numpy as np
import pandas as pd

from .check import check_expression, check_level2annot
from .deseq2 import run_deseq2
from .expression import mean_by_group, row_vars, row_sums, col_sums
from .io import to_anndata
from .limma_port import run_limma
from .orthologs import convert_orthologs, map_orthologs, aggregate_mapped_genes
from .results import limma_result
from .utils import messager, assign_cores

DGE_METHODS = ('limma', 'deseq2')


def drop_nonexpressed(es, verbose=True):
    """Remove genes and cells whose expression sums to zero.

    Parameters
    ----------
    es : ExpressionSet
    verbose : bool

    Returns
    -------
    ExpressionSet
    """
    keep_genes = row_sums(es['exp']) > 0
    keep_cells = col_sums(es['exp']) > 0
    n_genes, n_cells = es.shape
    out = es[keep_genes, keep_cells]
    messager(n_genes - out.nrow, "/", n_genes, "non-expressed genes dropped", v=verbose)
    messager(n_cells - out.ncol, "/", n_cells, "cells dropped", v=verbose)
    return out


def drop_nonorthologs(es, input_species, output_species='human',
                      convert_nonhuman_genes=True, method='gprofiler',
                      non121_strategy='drop_both_species', ortholog_table=None,
                      verbose=True):
    """Keep only genes with orthologs in the output species.

    Parameters
    ----------
    es : ExpressionSet
        Duplicated gene names keep only their first row (with a warning).
    input_species, output_species : str
    convert_nonhuman_genes : bool
        Rename rows to the output-species orthologs.
    method : str
        ``'gprofiler'`` or ``'table'``.
    non121_strategy : str
        Any strategy of :func:`~orthogene.orthologs.filter_non121`, or
        ``'sum'``/``'mean'`` to aggregate genes that map to the same
        ortholog.
    ortholog_table : DataFrame, optional
    verbose : bool

    Returns
    -------
    ExpressionSet
    """
    genes = pd.Index(es['genes'])
    if not genes.is_unique:
        dup = genes[genes.duplicated()].unique()
        warnings.warn(f"{len(dup)} duplicated input gene(s), e.g. {list(dup[:5])}: "
                      "keeping the first occurrence of each", stacklevel=2)
        es = es[~genes.duplicated(), None]

    if non121_strategy in ('sum', 'mean'):
        gene_map = map_orthologs(es['genes'], input_species=input_species,
                                 output_species=output_species, method=method,
                                 ortholog_table=ortholog_table, verbose=verbose)
        return aggregate_mapped_genes(es, gene_map, method=non121_strategy,
                                      verbose=verbose)

    orths = convert_orthologs(pd.DataFrame({'gene': es['genes']}), gene_col='gene',
                              input_species=input_species,
                              output_species=output_species, method=method,
                              drop_nonorths=True, non121_strategy=non121_strategy,
                              ortholog_table=ortholog_table, verbose=verbose)

    # Rows may already carry output-species names
    try:
        out = es[orths['input_gene'].values, None]
    except KeyError:
        out = es[orths['ortholog_gene'].values, None]

    if convert_nonhuman_genes:
        if not orths['ortholog_gene'].is_unique:
            raise ValueError("Several genes map to the same ortholog; use a 1:1 "
                             "non121_strategy or non121_strategy='sum'")
        out = out.rename_genes(orths['ortholog_gene'].values)
    messager(out.nrow, "/", es.nrow, "genes kept after ortholog filtering", v=verbose)
    return out


def filter_variance_quantiles(exp, level2annot=None, n_quantiles=10,
                              min_variance_decile=None, verbose=True):
    """Keep genes whose mean expression varies most across cell types.

    The variance across cell types of each gene's per-cell-type mean is
    ranked into ``n_quantiles`` equal bins. Bin ``k`` (0-based) starts
    at ``k / n_quantiles`` on a 0-1 scale; genes in bins starting below
    ``min_variance_decile`` are dropped.

    Parameters
    ----------
    exp : ExpressionSet or DataFrame
        Genes x cells.
    level2annot : array-like, optional
        Cell type of each cell. Taken from the ExpressionSet if omitted.
    n_quantiles : int
    min_variance_decile : float or None
        In [0, 1]. ``None`` returns ``exp`` unchanged.
    verbose : bool

    Returns
    -------
    Same type as ``exp``.
    """
    if min_variance_decile is None:
        return exp
    if not 0 <= min_variance_decile <= 1:
        raise ValueError("min_variance_decile must be between 0 and 1")
    if n_quantiles < 1:
        raise ValueError("n_quantiles must be at least 1")

    es = check_expression(exp, level2annot=level2annot)
    labels = check_level2annot(es.get('level2annot'), es.ncol)
    if len(np.unique(labels)) < 2:
        raise ValueError("At least two cell types are required to compute variance")

    messager("+ Filtering by min_variance_decile =", min_variance_decile, v=verbose)
    variances = row_vars(mean_by_group(es['exp'], labels).values)
    n_genes = len(variances)
    ranks = pd.Series(variances).rank(method='first').values
    bins = np.floor((ranks - 1) * n_quantiles / max(n_genes, 1))
    keep = bins / n_quantiles >= min_variance_decile - 1e-12

    out = es[keep, None]
    messager(n_genes - out.nrow, "/", n_genes, "genes dropped @ min_variance_decile",
             v=verbose)
    if isinstance(exp, pd.DataFrame):
        return exp.loc[keep]
    return out


def drop_uninformative_genes(exp, level2annot=None, dge_method='limma',
                             min_variance_decile=None, adj_pval_thresh=1e-5,
                             drop_nonhuman_genes=False, convert_nonhuman_genes=True,
                             input_species=None, output_species='human',
                             non121_strategy='drop_both_species',
                             ortholog_method='gprofiler', ortholog_table=None,
                             as_sparse=True, return_anndata=False, annot_col=None,
                             layer=None, no_cores=1, verbose=True, **kwargs):
    """Drop genes that are uninformative about cell type.

    Removes non-expressed genes and empty cells, optionally genes
    without 1:1 orthologs in ``output_species``, optionally genes with
    low variance across cell types, and finally genes that do not vary
    significantly between cell types according to a limma ANOVA
    (moderated F-test) or DESeq2.

    Parameters
    ----------
    exp : DataFrame, ndarray, scipy.sparse matrix, AnnData or ExpressionSet
        Expression matrix with genes as rows (AnnData: genes as vars).
    level2annot : array-like, optional
        Cell type of each cell, in column order. May be omitted when
        ``annot_col`` names a column of the cell metadata.
    dge_method : str or None
        ``'limma'``, ``'deseq2'`` or None to skip the DGE step. The step is
        also skipped when no genes are left.
    min_variance_decile : float, optional
        Fast alternative/complement to DGE, see
        :func:`filter_variance_quantiles`.
    adj_pval_thresh : float
        Genes are kept when their adjusted p-value is below this value.
    drop_nonhuman_genes : bool
        Drop genes without 1:1 orthologs in ``output_species``.
    convert_nonhuman_genes : bool
        Rename rows to their ``output_species`` orthologs.
    input_species, output_species : str
    non121_strategy : str
        See :func:`drop_nonorthologs`.
    ortholog_method : str
        ``'gprofiler'`` or ``'table'``.
    ortholog_table : DataFrame, optional
    as_sparse : bool
        Work on (and return) a sparse matrix.
    return_anndata : bool
        Return an AnnData instead of a DataFrame.
    annot_col : str, optional
    layer : str, optional
        AnnData layer to read.
    no_cores : int, float or None
        Cores for the DGE backend (see :func:`~orthogene.utils.assign_cores`).
    verbose : bool
    **kwargs
        Passed to :func:`~orthogene.limma_port.run_limma` or
        :func:`~orthogene.deseq2.run_deseq2`.

    Returns
    -------
    DataFrame (genes x cells) or AnnData (cells x genes).
    """
    if dge_method is not None:
        dge_method = dge_method.lower()
        if dge_method not in DGE_METHODS:
            raise ValueError(f"Unknown dge_method '{dge_method}'. "
                             f"Choose one of {DGE_METHODS} or None")
    if drop_nonhuman_genes and input_species is None:
        raise ValueError("input_species must be provided when drop_nonhuman_genes=True")

    es = check_expression(exp, level2annot=level2annot, annot_col=annot_col, layer=layer)
    messager("Check", es.shape, v=verbose)
    core_allocation = assign_cores(worker_cores=no_cores, verbose=verbose)

    if as_sparse:
        messager("Converting to sparse matrix", v=verbose)
        es = es.to_sparse()
    else:
        es = es.to_dense()

    messager("+ Removing non-expressed genes...", v=verbose)
    es = drop_nonexpressed(es, verbose=verbose)

    if drop_nonhuman_genes:
        es = drop_nonorthologs(es, input_species=input_species,
                               output_species=output_species,
                               convert_nonhuman_genes=convert_nonhuman_genes,
                               method=ortholog_method,
                               non121_strategy=non121_strategy,
                               ortholog_table=ortholog_table, verbose=verbose)

    if min_variance_decile is not None:
        es = filter_variance_quantiles(es, n_quantiles=10,
                                       min_variance_decile=min_variance_decile,
                                       verbose=verbose)

    if dge_method is not None and es.nrow == 0:
        messager("No genes left before DGE: skipping", dge_method, v=verbose)
        dge_method = None

    start = time.perf_counter()
    if dge_method == 'limma':
        eb = run_limma(es['exp'], es.get('level2annot'), metadata=es.get('metadata'),
                       verbose=verbose, **kwargs)
        res = limma_result(eb, genes=es['genes'])
    elif dge_method == 'deseq2':
        res = run_deseq2(es['exp'], es.get('level2annot'), genes=es['genes'],
                         no_cores=core_allocation['worker_cores'], verbose=verbose,
                         **kwargs)
    if dge_method is not None:
        keep = res['table']['padj'].lt(adj_pval_thresh).values
        n_genes = es.nrow
        es = es[keep, None]
        messager(n_genes - es.nrow, "/", n_genes,
                 "genes dropped @ DGE adj_pval_thresh <", adj_pval_thresh, v=verbose)
        messager(f"DGE done in {time.perf_counter() - start:.2f} seconds.", v=verbose)

    if return_anndata:
        return to_anndata(es)
    return es.to_dataframe(sparse=as_sparse)
