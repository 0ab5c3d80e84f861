"""
I/O for orthogene.

Reading expression tables and AnnData files, and exporting an
ExpressionSet to AnnData.
"""

import os

import numpy as np
import pandas as pd
import scipy.sparse as sp

from .check import check_expression
from .utils import messager


def read_expression(data, level2annot=None, annot_col=None, layer=None, sep=None,
                    verbose=True):
    """Read expression data into an ExpressionSet.

    Parameters
    ----------
    data : str or AnnData
        Path to a ``.h5ad`` file, or to a ``.csv``/``.tsv``/``.txt``
        table with genes as rows and cells as columns (first column
        holds gene names), or an AnnData object.
    level2annot : array-like, optional
    annot_col : str, optional
        ``obs`` column holding cell types (AnnData input).
    layer : str, optional
        AnnData layer to read.
    sep : str, optional
        Table delimiter; inferred from the extension when None.
    verbose : bool

    Returns
    -------
    ExpressionSet
    """
    if isinstance(data, str):
        if not os.path.exists(data):
            raise FileNotFoundError(data)
        messager(f"Reading {data}...", v=verbose)
        ext = os.path.splitext(data)[1].lower()
        if ext == '.h5ad':
            import anndata
            data = anndata.read_h5ad(data)
        else:
            if sep is None:
                sep = ',' if ext == '.csv' else '\t'
            data = pd.read_csv(data, sep=sep, index_col=0)
    return check_expression(data, level2annot=level2annot, annot_col=annot_col,
                            layer=layer)


def to_anndata(es):
    """Convert an ExpressionSet to AnnData.

    Schema
    ------
    .X : ndarray or scipy.sparse.csr_matrix
        Expression (cells x genes, transposed from orthogene layout).
    .layers['counts'] : copy of ``.X``.
    .obs : cell metadata plus a ``level2annot`` column.
    .var_names : genes.

    Parameters
    ----------
    es : ExpressionSet

    Returns
    -------
    AnnData
    """
    import anndata

    mat = es['exp']
    X = mat.T.tocsr() if sp.issparse(mat) else np.asarray(mat).T.copy()

    obs = es.get('metadata')
    if obs is not None:
        obs = obs.copy()
        obs.index = pd.Index(es['cells']).astype(str)
    else:
        obs = pd.DataFrame(index=pd.Index(es['cells']).astype(str))
    if es.get('level2annot') is not None:
        obs['level2annot'] = pd.Categorical(es['level2annot'])
    var = pd.DataFrame(index=pd.Index(es['genes']).astype(str))

    adata = anndata.AnnData(X=X, obs=obs, var=var)
    adata.layers['counts'] = X.copy()
    return adata
