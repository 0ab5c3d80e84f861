"""
Core data classes for orthogene.

Dict-backed containers for expression matrices and DGE results, with
attribute access, two-way subsetting and display.
"""

import numpy as np
import pandas as pd
import scipy.sparse as sp
from copy import deepcopy


class _OrthogeneBase(dict):
    """Base class providing dict-like access and display."""

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{name}'")

    def __setattr__(self, name, value):
        self[name] = value

    def __delattr__(self, name):
        try:
            del self[name]
        except KeyError:
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{name}'")

    @property
    def shape(self):
        return None

    def __repr__(self):
        cls = type(self).__name__
        components = list(self.keys())
        s = self.shape
        if s is not None:
            return f"{cls} with {s[0]} rows and {s[1]} columns\nComponents: {', '.join(components)}"
        return f"{cls}\nComponents: {', '.join(components)}"

    def _copy(self):
        """Deep copy of the object."""
        return deepcopy(self)


def _resolve_index(idx, names):
    """Resolve index to integer array. Supports bool, int, str, slice."""
    if idx is None:
        return None
    if isinstance(idx, slice):
        return np.arange(len(names))[idx]
    if isinstance(idx, (pd.Index, pd.Series)):
        idx = idx.values
    idx = np.atleast_1d(idx)
    if idx.dtype == bool:
        if len(idx) != len(names):
            raise IndexError(f"Boolean index of length {len(idx)} does not match "
                             f"dimension of length {len(names)}")
        return np.where(idx)[0]
    if idx.dtype.kind in ('U', 'S', 'O'):
        names = pd.Index(names)
        missing = ~pd.Index(idx).isin(names)
        if missing.any():
            shown = list(idx[missing][:5])
            raise KeyError(f"{int(missing.sum())} name(s) not found, e.g. {shown}")
        if names.is_unique:
            return names.get_indexer(idx)
        return np.array([np.where(names == name)[0][0] for name in idx])
    return idx.astype(int)


class ExpressionSet(_OrthogeneBase):
    """Gene x cell expression matrix with aligned labels.

    Attributes
    ----------
    exp : ndarray or scipy.sparse.csr_matrix
        Expression values (genes x cells).
    genes : Index
        Gene identifiers (row labels).
    cells : Index
        Cell identifiers (column labels).
    level2annot : ndarray or None
        Cell-type label for each cell.
    metadata : DataFrame or None
        Cell-level metadata indexed by cell.
    """

    _J = ('level2annot',)

    def __getitem__(self, key):
        if isinstance(key, str):
            return super().__getitem__(key)
        if not (isinstance(key, tuple) and len(key) == 2):
            raise IndexError("Two subscripts required")
        i, j = key

        i_idx = _resolve_index(i, self['genes'])
        j_idx = _resolve_index(j, self['cells'])

        exp = self['exp']
        out = type(self)({k: deepcopy(v) for k, v in self.items() if k != 'exp'})
        if i_idx is not None:
            exp = exp[i_idx, :]
            out['genes'] = out['genes'][i_idx]
        if j_idx is not None:
            exp = exp[:, j_idx]
            out['cells'] = out['cells'][j_idx]
            for k in self._J:
                if out.get(k) is not None:
                    out[k] = np.asarray(out[k])[j_idx]
            if out.get('metadata') is not None:
                out['metadata'] = out['metadata'].iloc[j_idx]
        out['exp'] = exp
        return out

    @property
    def shape(self):
        if 'exp' in self:
            return self['exp'].shape
        return None

    @property
    def nrow(self):
        return self['exp'].shape[0]

    @property
    def ncol(self):
        return self['exp'].shape[1]

    @property
    def is_sparse(self):
        return sp.issparse(self['exp'])

    def __len__(self):
        return self.nrow

    def rename_genes(self, new_names):
        """Return a copy with new row labels."""
        new_names = pd.Index(new_names)
        if len(new_names) != self.nrow:
            raise ValueError(f"Expected {self.nrow} gene names, got {len(new_names)}")
        out = self._copy()
        out['genes'] = new_names
        return out

    def to_sparse(self):
        """Return a copy holding a CSR matrix."""
        out = self._copy()
        if not sp.issparse(out['exp']):
            out['exp'] = sp.csr_matrix(out['exp'])
        else:
            out['exp'] = out['exp'].tocsr()
        return out

    def to_dense(self):
        out = self._copy()
        if sp.issparse(out['exp']):
            out['exp'] = np.asarray(out['exp'].toarray())
        return out

    def to_dataframe(self, sparse=None):
        """Convert to a genes x cells DataFrame.

        Parameters
        ----------
        sparse : bool or None
            Return a sparse-backed DataFrame. ``None`` keeps the
            current storage.
        """
        if sparse is None:
            sparse = self.is_sparse
        if sparse:
            mat = self['exp'] if self.is_sparse else sp.csr_matrix(self['exp'])
            return pd.DataFrame.sparse.from_spmatrix(
                mat, index=self['genes'], columns=self['cells'])
        mat = self['exp'].toarray() if self.is_sparse else self['exp']
        return pd.DataFrame(np.asarray(mat), index=self['genes'], columns=self['cells'])

    def head(self, n=5):
        """Show first n rows."""
        return self[slice(0, n), None].to_dataframe(sparse=False)


class MArrayLM(_OrthogeneBase):
    """Linear model fit for each gene (limma's MArrayLM).

    Attributes
    ----------
    coefficients : ndarray
        Genes x coefficients.
    stdev_unscaled : ndarray
        Genes x coefficients.
    sigma : ndarray
    df_residual : ndarray
    cov_coefficients : ndarray
        Unscaled covariance of the coefficients.
    design : ndarray
    genes : Index

    After :func:`~orthogene.limma_port.e_bayes`: s2_prior, df_prior,
    s2_post, df_total, t, p_value, F, F_p_value, F_coef.
    """

    @property
    def shape(self):
        if 'coefficients' in self:
            return self['coefficients'].shape
        return None

    def __len__(self):
        return self['coefficients'].shape[0]


class DGEResult(_OrthogeneBase):
    """Per-gene differential expression result with a ``table``."""

    @property
    def shape(self):
        if 'table' in self:
            return self['table'].shape
        return None

    def head(self, n=5):
        return self['table'].head(n)

    def significant(self, adj_pval_thresh):
        """Gene names whose adjusted p-value is below the threshold."""
        tab = self['table']
        return tab.index[tab['padj'].lt(adj_pval_thresh).values]
