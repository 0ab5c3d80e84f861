"""
Input checking for orthogene.

Coerces the supported matrix types into an ExpressionSet.
"""

import warnings

import numpy as np
import pandas as pd
import scipy.sparse as sp

from .classes import ExpressionSet


def _get_anndata_type():
    """Return anndata.AnnData class without hard import."""
    try:
        import anndata
        return anndata.AnnData
    except ImportError:
        return None


def _as_numeric_matrix(x):
    """Convert a dense or sparse matrix to float64, coercing strings."""
    if sp.issparse(x):
        return x.tocsr().astype(np.float64)
    x = np.asarray(x)
    if x.dtype.kind in ('U', 'S', 'O'):
        try:
            x = x.astype(np.float64)
        except ValueError:
            raise ValueError("Expression matrix contains non-numeric values")
    return np.asarray(x, dtype=np.float64)


def _frame_to_matrix(df):
    """Split a genes x cells DataFrame into (matrix, genes, cells)."""
    if len(df.columns) > 0 and all(isinstance(dt, pd.SparseDtype) for dt in df.dtypes):
        mat = df.sparse.to_coo().tocsr()
    else:
        mat = df.values
    return _as_numeric_matrix(mat), pd.Index(df.index.astype(str)), pd.Index(df.columns.astype(str))


def _anndata_to_matrix(adata, layer=None):
    """Extract a genes x cells matrix from AnnData (cells x genes)."""
    if layer is not None:
        if layer not in adata.layers:
            raise ValueError(f"Layer '{layer}' not found in AnnData. "
                             f"Available: {list(adata.layers.keys())}")
        X = adata.layers[layer]
    elif 'counts' in adata.layers:
        X = adata.layers['counts']
    else:
        X = adata.X
    if sp.issparse(X):
        X = X.T.tocsr()
    else:
        X = np.asarray(X).T
    return _as_numeric_matrix(X)


def _validate_values(mat):
    values = mat.data if sp.issparse(mat) else mat
    if values.size and not np.all(np.isfinite(values)):
        raise ValueError("NA/non-finite expression values not allowed")


def check_level2annot(level2annot, n_cells):
    """Return cell-type labels as a string array aligned with the cells.

    Parameters
    ----------
    level2annot : array-like
        One label per cell.
    n_cells : int
        Number of columns of the expression matrix.
    """
    if level2annot is None:
        raise ValueError("level2annot must be provided")
    labels = np.asarray(level2annot).astype(str)
    if labels.ndim != 1:
        raise ValueError("level2annot must be one-dimensional")
    if len(labels) != n_cells:
        raise ValueError(f"level2annot has {len(labels)} entries but the "
                         f"expression matrix has {n_cells} columns")
    return labels


def check_expression(exp, level2annot=None, annot_col=None, layer=None):
    """Coerce an expression object into an ExpressionSet.

    Parameters
    ----------
    exp : DataFrame, ndarray, scipy.sparse matrix, AnnData or ExpressionSet
        Expression data. Tables and matrices are genes x cells; AnnData
        is cells x genes and is transposed.
    level2annot : array-like, optional
        Cell-type label for each cell.
    annot_col : str, optional
        Column of ``AnnData.obs`` (or of the ExpressionSet metadata)
        holding the cell-type labels, used when ``level2annot`` is None.
    layer : str, optional
        AnnData layer to read. Defaults to ``'counts'`` when present,
        else ``X``.

    Returns
    -------
    ExpressionSet
    """
    metadata = None
    AnnData = _get_anndata_type()

    if isinstance(exp, ExpressionSet):
        es = exp._copy()
        mat, genes, cells = es['exp'], es['genes'], es['cells']
        metadata = es.get('metadata')
        if level2annot is None:
            level2annot = es.get('level2annot')
    elif AnnData is not None and isinstance(exp, AnnData):
        mat = _anndata_to_matrix(exp, layer=layer)
        genes = pd.Index(exp.var_names.astype(str))
        cells = pd.Index(exp.obs_names.astype(str))
        metadata = exp.obs.copy()
    elif isinstance(exp, pd.DataFrame):
        mat, genes, cells = _frame_to_matrix(exp)
    elif sp.issparse(exp) or isinstance(exp, np.ndarray):
        mat = _as_numeric_matrix(exp)
        if mat.ndim != 2:
            raise ValueError("Expression matrix must be 2D (genes x cells)")
        genes = pd.Index([f"Gene{i + 1}" for i in range(mat.shape[0])])
        cells = pd.Index([f"Cell{i + 1}" for i in range(mat.shape[1])])
    else:
        raise TypeError(f"Unsupported expression type: {type(exp).__name__}")

    _validate_values(mat)

    if level2annot is None and annot_col is not None:
        if metadata is None or annot_col not in metadata.columns:
            raise ValueError(f"Column '{annot_col}' not found in cell metadata")
        level2annot = metadata[annot_col].values
    if level2annot is not None:
        level2annot = check_level2annot(level2annot, mat.shape[1])

    if not genes.is_unique:
        n_dup = int(genes.duplicated().sum())
        warnings.warn(f"{n_dup} duplicated gene name(s) in expression matrix",
                      stacklevel=2)

    return ExpressionSet(exp=mat, genes=genes, cells=cells,
                         level2annot=level2annot, metadata=metadata)
