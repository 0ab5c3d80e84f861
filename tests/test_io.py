"""Tests for I/O functions: read_expression, to_anndata, h5ad round-trip."""

import os

import numpy as np
import pandas as pd
import pytest
import scipy.sparse as sp

import orthogene as og


class TestReadExpression:

    def test_csv(self, expr, level2annot, tmp_path):
        path = os.path.join(tmp_path, "expr.csv")
        expr.to_csv(path)
        es = og.read_expression(path, level2annot=level2annot, verbose=False)
        assert es.shape == expr.shape
        assert list(es.genes) == list(expr.index)
        assert np.allclose(es.exp, expr.values)

    def test_tsv(self, expr, tmp_path):
        path = os.path.join(tmp_path, "expr.tsv")
        expr.to_csv(path, sep='\t')
        es = og.read_expression(path, verbose=False)
        assert list(es.cells) == list(expr.columns)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            og.read_expression(os.path.join(tmp_path, "nope.csv"))

    def test_verbose(self, expr, tmp_path, capsys):
        path = os.path.join(tmp_path, "expr.csv")
        expr.to_csv(path)
        og.read_expression(path)
        assert "Reading" in capsys.readouterr().out


class TestAnnData:

    @pytest.fixture(autouse=True)
    def _anndata(self):
        pytest.importorskip("anndata")

    @pytest.fixture
    def es(self, expr, level2annot):
        es = og.check_expression(expr, level2annot)
        es['metadata'] = pd.DataFrame({'batch': ['x'] * es.ncol}, index=es.cells)
        return es

    def test_to_anndata_layout(self, es):
        adata = og.to_anndata(es)
        assert adata.shape == (es.ncol, es.nrow)
        assert list(adata.var_names) == list(es.genes)
        assert list(adata.obs_names) == list(es.cells)
        assert list(adata.obs['level2annot']) == list(es.level2annot)
        assert 'batch' in adata.obs.columns
        assert np.allclose(adata.layers['counts'], es.exp.T)

    def test_sparse_kept(self, es):
        adata = og.to_anndata(es.to_sparse())
        assert sp.issparse(adata.X)

    def test_h5ad_roundtrip(self, es, tmp_path):
        path = os.path.join(tmp_path, "expr.h5ad")
        og.to_anndata(es.to_sparse()).write_h5ad(path)
        back = og.read_expression(path, annot_col='level2annot', verbose=False)
        assert back.shape == es.shape
        assert list(back.genes) == list(es.genes)
        assert list(back.level2annot) == list(es.level2annot)
        assert np.allclose(back.exp.toarray(), es.exp)

    def test_layer_selection(self, es):
        adata = og.to_anndata(es)
        adata.layers['scaled'] = adata.X * 2
        back = og.check_expression(adata, layer='scaled')
        assert np.allclose(back.exp, es.exp * 2)
        with pytest.raises(ValueError, match="Layer"):
            og.check_expression(adata, layer='missing')
