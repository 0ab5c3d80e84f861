"""
Ortholog mapping for orthogene.

Retrieves gene-to-ortholog tables (g:Profiler or a user table), filters
non 1:1 mappings and converts gene tables and expression matrices onto
the output species.
"""

import warnings

import numpy as np
import pandas as pd
import scipy.sparse as sp

from .classes import ExpressionSet
from .species import map_species
from .utils import messager

NON121_STRATEGIES = ('drop_both_species', 'drop_input_species',
                     'drop_output_species', 'keep_both_species', 'keep_popular')

_UNMAPPED = {'', 'N/A', 'None', 'nan', 'NaN'}


def _clean_map(gene_map):
    """Drop unmapped rows and duplicate pairs from an ortholog table."""
    gm = gene_map[['input_gene', 'ortholog_gene']].dropna()
    gm = gm.astype(str)
    gm = gm[~gm['ortholog_gene'].isin(_UNMAPPED) & ~gm['input_gene'].isin(_UNMAPPED)]
    return gm.drop_duplicates().reset_index(drop=True)


def _gprofiler_orth(genes, organism, target):
    from gprofiler import GProfiler

    gp = GProfiler(return_dataframe=True)
    res = gp.orth(organism=organism, query=list(genes), target=target)
    if res is None or len(res) == 0:
        return pd.DataFrame(columns=['input_gene', 'ortholog_gene'])
    return pd.DataFrame({'input_gene': res['incoming'].values,
                         'ortholog_gene': res['name'].values})


def _table_orth(ortholog_table):
    if ortholog_table is None:
        raise ValueError("method='table' requires an ortholog_table")
    tab = pd.DataFrame(ortholog_table)
    if not {'input_gene', 'ortholog_gene'}.issubset(tab.columns):
        if tab.shape[1] < 2:
            raise ValueError("ortholog_table needs input_gene and ortholog_gene columns")
        tab = tab.iloc[:, :2]
        tab.columns = ['input_gene', 'ortholog_gene']
    return tab


def map_orthologs(genes, input_species, output_species='human', method='gprofiler',
                  ortholog_table=None, verbose=True):
    """Retrieve orthologs of a list of genes.

    Parameters
    ----------
    genes : array-like
        Gene symbols/ids in the input species.
    input_species, output_species : str
        Species names (see :func:`~orthogene.species.map_species`).
    method : str
        ``'gprofiler'`` queries g:Profiler's orth service.
        ``'table'`` uses ``ortholog_table``.
    ortholog_table : DataFrame, optional
        Precomputed table with input_gene and ortholog_gene columns
        (or two columns in that order).
    verbose : bool

    Returns
    -------
    DataFrame with columns input_gene, ortholog_gene. May contain
    one-to-many and many-to-one mappings; unmapped genes are absent.
    """
    genes = pd.unique(pd.Series(np.asarray(genes).astype(str)))
    organism = map_species(input_species)
    target = map_species(output_species)

    if organism == target:
        messager("input_species and output_species are the same:",
                 "returning an identity mapping.", v=verbose)
        return pd.DataFrame({'input_gene': genes, 'ortholog_gene': genes})

    method = method.lower()
    if method == 'gprofiler':
        messager(f"Retrieving {organism} -> {target} orthologs for",
                 len(genes), "genes with gprofiler...", v=verbose)
        gene_map = _gprofiler_orth(genes, organism, target)
    elif method == 'table':
        gene_map = _table_orth(ortholog_table)
        gene_map = gene_map[gene_map['input_gene'].astype(str).isin(genes)]
    else:
        raise ValueError(f"Unknown ortholog method '{method}'. "
                         "Use 'gprofiler' or 'table'.")

    return _clean_map(gene_map)


def filter_non121(gene_map, non121_strategy='drop_both_species'):
    """Resolve non 1:1 ortholog mappings.

    Parameters
    ----------
    gene_map : DataFrame
        Output of :func:`map_orthologs`.
    non121_strategy : str
        - ``'drop_both_species'``: keep strict 1:1 pairs only.
        - ``'drop_input_species'``: drop input genes with several orthologs.
        - ``'drop_output_species'``: drop orthologs hit by several input genes.
        - ``'keep_both_species'``: keep every mapping.
        - ``'keep_popular'``: for each input gene keep the ortholog mapped
          by the most input genes, then keep one input per ortholog.

    Returns
    -------
    DataFrame
    """
    if non121_strategy not in NON121_STRATEGIES:
        raise ValueError(f"Unknown non121_strategy '{non121_strategy}'. "
                         f"Choose one of {NON121_STRATEGIES}")
    gm = _clean_map(gene_map)
    n_in = gm.groupby('input_gene')['ortholog_gene'].transform('size')
    n_out = gm.groupby('ortholog_gene')['input_gene'].transform('size')

    if non121_strategy == 'drop_both_species':
        gm = gm[(n_in == 1) & (n_out == 1)]
    elif non121_strategy == 'drop_input_species':
        gm = gm[n_in == 1]
    elif non121_strategy == 'drop_output_species':
        gm = gm[n_out == 1]
    elif non121_strategy == 'keep_popular':
        gm = gm.assign(_popularity=n_out.values)
        gm = gm.sort_values('_popularity', ascending=False, kind='stable')
        gm = gm.drop_duplicates('input_gene').drop_duplicates('ortholog_gene')
        gm = gm.drop(columns='_popularity').sort_index()
    return gm.reset_index(drop=True)


def report_orthologs(gene_map, n_input=None, verbose=True):
    """Summarise an ortholog table.

    Returns
    -------
    dict with n_input_genes, n_mapped_input, n_orthologs, n_one2one.
    """
    gm = _clean_map(gene_map)
    n_in = gm.groupby('input_gene')['ortholog_gene'].transform('size')
    n_out = gm.groupby('ortholog_gene')['input_gene'].transform('size')
    report = {
        'n_input_genes': int(n_input) if n_input is not None else gm['input_gene'].nunique(),
        'n_mapped_input': int(gm['input_gene'].nunique()),
        'n_orthologs': int(gm['ortholog_gene'].nunique()),
        'n_one2one': int(((n_in == 1) & (n_out == 1)).sum()),
    }
    messager(report['n_mapped_input'], "/", report['n_input_genes'],
             "input genes mapped to", report['n_orthologs'], "orthologs",
             f"({report['n_one2one']} 1:1).", v=verbose)
    return report


def convert_orthologs(gene_df, gene_col='gene', input_species=None,
                      output_species='human', method='gprofiler',
                      drop_nonorths=True, non121_strategy='drop_both_species',
                      one_to_one_only=None, genes_as_rownames=False,
                      ortholog_table=None, verbose=True):
    """Convert the genes of a table to orthologs in another species.

    Parameters
    ----------
    gene_df : DataFrame or array-like
        Table holding gene names in ``gene_col`` (``'index'`` uses the
        index), or a plain list of gene names.
    gene_col : str
        Column of ``gene_df`` with input-species gene names.
    input_species, output_species : str
    method : str
        ``'gprofiler'`` or ``'table'``.
    drop_nonorths : bool
        Drop genes without an ortholog. Otherwise they are kept with a
        missing ortholog_gene.
    non121_strategy : str
        See :func:`filter_non121`.
    one_to_one_only : bool, optional
        If True, forces ``non121_strategy='drop_both_species'``.
    genes_as_rownames : bool
        Index the result by ortholog_gene.
    ortholog_table : DataFrame, optional
        Used with ``method='table'``.
    verbose : bool

    Returns
    -------
    DataFrame with the columns of ``gene_df`` plus input_gene and
    ortholog_gene.
    """
    if input_species is None:
        raise ValueError("input_species must be provided")
    if one_to_one_only:
        non121_strategy = 'drop_both_species'

    if isinstance(gene_df, pd.DataFrame):
        df = gene_df.copy()
        if gene_col == 'index':
            genes = df.index.astype(str)
        elif gene_col in df.columns:
            genes = df[gene_col].astype(str)
        else:
            raise KeyError(f"Column '{gene_col}' not found in gene_df")
    else:
        genes = pd.Index(np.asarray(gene_df).astype(str))
        df = pd.DataFrame({gene_col if gene_col != 'index' else 'gene': genes})
    df = df.reset_index(drop=True)
    df['input_gene'] = np.asarray(genes)

    gene_map = map_orthologs(df['input_gene'], input_species=input_species,
                             output_species=output_species, method=method,
                             ortholog_table=ortholog_table, verbose=verbose)
    report_orthologs(gene_map, n_input=df['input_gene'].nunique(), verbose=verbose)
    gene_map = filter_non121(gene_map, non121_strategy=non121_strategy)
    messager(len(gene_map), "mappings kept after non121_strategy =",
             non121_strategy, v=verbose)

    how = 'inner' if drop_nonorths else 'left'
    out = df.merge(gene_map, on='input_gene', how=how, sort=False)
    if drop_nonorths:
        n_drop = df['input_gene'].nunique() - out['input_gene'].nunique()
        messager(n_drop, "genes without orthologs dropped.", v=verbose)

    if genes_as_rownames:
        if out['ortholog_gene'].isna().any():
            raise ValueError("genes_as_rownames requires every gene to have an ortholog; "
                             "set drop_nonorths=True")
        if not out['ortholog_gene'].is_unique:
            raise ValueError("genes_as_rownames requires unique orthologs; "
                             "use a 1:1 non121_strategy")
        out.index = pd.Index(out['ortholog_gene'].values)
    return out


def aggregate_mapped_genes(exp, gene_map, method='sum', verbose=True):
    """Collapse expression rows onto orthologs.

    Rows mapping to the same ortholog (many-to-one) are summed or
    averaged; rows absent from ``gene_map`` are dropped.

    Parameters
    ----------
    exp : DataFrame or ExpressionSet
        Genes x cells, rows named by input_gene.
    gene_map : DataFrame
        input_gene / ortholog_gene table.
    method : str
        ``'sum'`` or ``'mean'``.

    Returns
    -------
    Same type as ``exp``, rows named by ortholog_gene.
    """
    if method not in ('sum', 'mean'):
        raise ValueError("method must be 'sum' or 'mean'")

    if isinstance(exp, ExpressionSet):
        mat, genes = exp['exp'], exp['genes']
    elif isinstance(exp, pd.DataFrame):
        mat, genes = exp.values, pd.Index(exp.index.astype(str))
    else:
        raise TypeError("exp must be a DataFrame or ExpressionSet")

    gm = _clean_map(gene_map)
    gm = gm[gm['input_gene'].isin(genes)]
    orths = pd.Index(pd.unique(gm['ortholog_gene']))

    first = pd.Series(np.arange(len(genes)), index=pd.Index(genes))
    if not first.index.is_unique:
        warnings.warn("Duplicated gene names: only the first occurrence is aggregated",
                      stacklevel=2)
        first = first[~first.index.duplicated()]
    gene_pos = first.loc[gm['input_gene']].values
    orth_pos = orths.get_indexer(gm['ortholog_gene'])
    M = sp.csr_matrix((np.ones(len(gm)), (orth_pos, gene_pos)),
                      shape=(len(orths), len(genes)))
    if method == 'mean':
        n_per = np.asarray(M.sum(axis=1)).ravel()
        M = sp.diags(1.0 / np.maximum(n_per, 1)) @ M

    agg = M @ mat
    messager(len(genes), "genes aggregated into", len(orths), "orthologs", f"({method}).",
             v=verbose)

    if isinstance(exp, ExpressionSet):
        out = exp[None, None]
        out['exp'] = sp.csr_matrix(agg) if sp.issparse(mat) else np.asarray(agg)
        out['genes'] = orths
        return out
    return pd.DataFrame(np.asarray(agg), index=orths, columns=exp.columns)
