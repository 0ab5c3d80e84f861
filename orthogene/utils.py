"""
Utility functions for orthogene.

Progress messages, core allocation and design-matrix construction.
"""

import math
import os

import numpy as np
import pandas as pd


def messager(*args, v=True):
    """Print a progress message when ``v`` is True."""
    if v:
        print(" ".join(str(a) for a in args))


def assign_cores(worker_cores=1, verbose=True):
    """Decide how many cores to hand to parallel DGE backends.

    Parameters
    ----------
    worker_cores : int, float or None
        ``None`` uses 90% of the available cores. Values below 1 are
        treated as a proportion of all cores; the remainder (rounded up)
        is reserved. Integers are capped at the number of cores.
    verbose : bool
        Print the allocation.

    Returns
    -------
    dict with keys worker_cores, reserved_cores, total_cores.
    """
    total_cores = os.cpu_count() or 1
    if worker_cores is None:
        worker_cores = 0.90
    if worker_cores <= 0:
        raise ValueError("worker_cores must be positive")

    if worker_cores < 1:
        reserved_cores = math.ceil(total_cores * (1 - worker_cores))
        workers = total_cores - reserved_cores
    else:
        workers = min(total_cores, int(worker_cores))
        reserved_cores = total_cores - workers
    workers = max(workers, 1)
    reserved_cores = total_cores - workers

    messager(workers, "core(s) assigned as workers", f"({reserved_cores} reserved).",
             v=verbose)
    return {'worker_cores': workers,
            'reserved_cores': reserved_cores,
            'total_cores': total_cores}


def model_matrix_group(group):
    """Create a model matrix from a group factor (``model.matrix(~group)``).

    Returns
    -------
    design : ndarray
        Intercept + treatment-coded dummy columns, levels sorted.
    levels : ndarray
        Sorted unique group levels; the first is the reference.
    """
    group = np.asarray(group)
    levels = np.unique(group)
    n = len(group)

    if len(levels) <= 1:
        return np.ones((n, 1)), levels

    design = np.zeros((n, len(levels)))
    design[:, 0] = 1.0
    for i in range(1, len(levels)):
        design[group == levels[i], i] = 1.0

    return design, levels


def model_matrix(formula, data=None):
    """Create a design matrix from an R-style formula.

    Uses patsy to parse the formula, matching R's
    ``model.matrix(formula, data)``.

    Parameters
    ----------
    formula : str
        R-style formula, e.g. ``'~ level2annot'`` or
        ``'~ level2annot + batch'``.
    data : DataFrame or dict
        Cell-level data. Column names are used as variables in the
        formula.

    Returns
    -------
    DataFrame
        Design matrix (cells x coefficients) with patsy column names.

    Examples
    --------
    >>> df = pd.DataFrame({'level2annot': ['a', 'a', 'b', 'b']})
    >>> model_matrix('~ level2annot', df).values
    array([[1., 0.],
           [1., 0.],
           [1., 1.],
           [1., 1.]])
    """
    import patsy

    if data is None:
        raise ValueError("data must be provided for formula-based design")
    if isinstance(data, dict):
        data = pd.DataFrame(data)

    design = patsy.dmatrix(formula, data=data, return_type='dataframe')
    return design.astype(np.float64)


def intercept_columns(design):
    """Return indices of constant columns of a design matrix."""
    design = np.asarray(design, dtype=np.float64)
    if design.shape[0] == 0:
        return np.array([], dtype=int)
    const = np.all(design == design[0:1, :], axis=0) & (design[0, :] != 0)
    return np.where(const)[0]
