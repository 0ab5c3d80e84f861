"""
Per-group expression summaries for orthogene.
"""

import numpy as np
import pandas as pd
import scipy.sparse as sp


def mean_by_group(exp, group):
    """Mean expression of each gene within each group.

    Parameters
    ----------
    exp : ndarray or scipy.sparse matrix
        Genes x cells.
    group : array-like
        Group label for each cell.

    Returns
    -------
    DataFrame of genes x groups (positional row index), columns sorted
    by group label.
    """
    group = np.asarray(group)
    if len(group) != exp.shape[1]:
        raise ValueError("group must have one entry per column of exp")
    levels, codes = np.unique(group, return_inverse=True)
    n_per = np.bincount(codes, minlength=len(levels)).astype(np.float64)

    # cells x groups indicator scaled by group size
    membership = sp.csr_matrix(
        (1.0 / n_per[codes], (np.arange(len(codes)), codes)),
        shape=(len(codes), len(levels)))
    means = exp @ membership
    if sp.issparse(means):
        means = means.toarray()
    return pd.DataFrame(np.asarray(means), columns=levels)


def row_vars(x, ddof=1):
    """Per-row variance of a dense matrix or DataFrame."""
    x = np.asarray(x, dtype=np.float64)
    if x.shape[1] <= ddof:
        return np.full(x.shape[0], np.nan)
    return np.var(x, axis=1, ddof=ddof)


def row_sums(exp):
    """Row sums of a dense or sparse matrix as a flat array."""
    return np.asarray(exp.sum(axis=1)).ravel()


def col_sums(exp):
    """Column sums of a dense or sparse matrix as a flat array."""
    return np.asarray(exp.sum(axis=0)).ravel()
