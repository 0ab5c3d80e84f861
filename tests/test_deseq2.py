"""Tests for the pydeseq2-backed cell-type DGE test."""

import numpy as np
import pytest
import scipy.sparse as sp

import orthogene as og
from orthogene.deseq2 import _integer_counts

pytest.importorskip("pydeseq2")


@pytest.fixture
def expressed(counts, level2annot, mouse_genes):
    return counts[:58, :-1], level2annot[:-1], mouse_genes[:58]


class TestIntegerCounts:

    def test_negative_raises(self):
        with pytest.raises(ValueError, match="non-negative"):
            _integer_counts(np.array([[1.0, -1.0]]))

    def test_non_integer_warns_and_rounds(self):
        with pytest.warns(UserWarning, match="integer"):
            out = _integer_counts(np.array([[1.4, 2.6]]))
        assert out.tolist() == [[1, 3]]

    def test_sparse(self):
        out = _integer_counts(sp.csr_matrix([[0.0, 3.0]]))
        assert out.dtype == np.int64
        assert out.tolist() == [[0, 3]]


class TestRunDeseq2:

    @pytest.fixture
    def result(self, expressed):
        exp, labels, genes = expressed
        return og.run_deseq2(exp, labels, genes=genes, verbose=False)

    def test_table_layout(self, result, expressed):
        _, _, genes = expressed
        tab = result.table
        assert list(tab.index) == genes
        assert list(tab.columns) == ['baseMean', 'pvalue', 'padj', 'pvalue_B', 'pvalue_C']
        assert result.method == 'deseq2'
        assert result.reference == 'A'

    def test_de_genes_significant(self, result, de_genes):
        padj = result.table['padj']
        assert np.all(padj.loc[de_genes] < 1e-5)
        # Poisson null genes are rarely called
        assert (padj.drop(de_genes) < 1e-5).sum() <= 2

    def test_pvalue_is_bonferroni_min(self, result):
        tab = result.table
        pmin = np.minimum(tab['pvalue_B'], tab['pvalue_C']) * 2
        ok = tab['pvalue'].notna()
        assert np.allclose(tab.loc[ok, 'pvalue'], np.minimum(pmin[ok], 1.0))

    def test_sparse_input(self, expressed):
        exp, labels, genes = expressed
        res = og.run_deseq2(sp.csr_matrix(exp), labels, genes=genes, verbose=False)
        assert res.table.shape[0] == len(genes)

    def test_single_celltype_raises(self, expressed):
        exp, labels, _ = expressed
        with pytest.raises(ValueError, match="two cell types"):
            og.run_deseq2(exp, ['A'] * len(labels), verbose=False)
