"""
Results processing for orthogene.

Multiple-testing adjustment and per-gene DGE tables.
"""

import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests

from .classes import DGEResult

_METHOD_MAP = {
    'BH': 'fdr_bh', 'fdr': 'fdr_bh', 'BY': 'fdr_by',
    'holm': 'holm', 'hochberg': 'simes-hochberg',
    'hommel': 'hommel', 'bonferroni': 'bonferroni',
}


def p_adjust(p, method='BH'):
    """Adjust p-values for multiple testing.

    Port of R's p.adjust(). Missing p-values stay missing and are not
    counted as tests.

    Parameters
    ----------
    p : array-like
    method : str
        'BH', 'BY', 'holm', 'hochberg', 'hommel', 'bonferroni' or 'none'.
    """
    p = np.asarray(p, dtype=np.float64)
    if method == 'none':
        return p.copy()
    if method not in _METHOD_MAP:
        raise ValueError(f"Unknown adjust method '{method}'")
    out = np.full_like(p, np.nan)
    ok = ~np.isnan(p)
    if np.any(ok):
        _, adj, _, _ = multipletests(p[ok], method=_METHOD_MAP[method])
        out[ok] = adj
    return out


def top_table_f(fit, adjust_method='BH', sort_by='F', p_value=1.0, n=None):
    """Table of moderated F-tests for each gene.

    Port of limma's topTableF.

    Parameters
    ----------
    fit : MArrayLM
        Result of :func:`~orthogene.limma_port.e_bayes`.
    adjust_method : str
    sort_by : str
        'F' or 'none'.
    p_value : float
        Cutoff on adjusted p-value.
    n : int, optional
        Number of genes to return.

    Returns
    -------
    DataFrame with columns AveExpr, F, P.Value, adj.P.Val.
    """
    if fit.get('F') is None:
        raise ValueError("Need to run e_bayes first")
    index = fit.get('genes')
    tab = pd.DataFrame({
        'AveExpr': fit.get('Amean'),
        'F': fit['F'],
        'P.Value': fit['F_p_value'],
        'adj.P.Val': p_adjust(fit['F_p_value'], method=adjust_method),
    }, index=index)

    if p_value < 1:
        tab = tab[tab['adj.P.Val'] <= p_value]
    if sort_by == 'F':
        tab = tab.sort_values('F', ascending=False, kind='stable')
    elif sort_by != 'none':
        raise ValueError("sort_by must be 'F' or 'none'")
    if n is not None:
        tab = tab.head(n)
    return tab


def limma_result(fit, genes=None, adjust_method='BH'):
    """Wrap an e_bayes fit as a DGEResult with a padj column."""
    if genes is not None:
        fit = fit._copy()
        fit['genes'] = pd.Index(genes)
    tab = top_table_f(fit, adjust_method=adjust_method, sort_by='none')
    tab['padj'] = tab['adj.P.Val']
    return DGEResult(table=tab, method='limma', adjust_method=adjust_method)
