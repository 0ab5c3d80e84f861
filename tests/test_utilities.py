"""Tests for utility functions: assign_cores, model matrices, group means,
p-value adjustment.
"""

import numpy as np
import pandas as pd
import pytest
import scipy.sparse as sp

import orthogene as og
from orthogene.utils import model_matrix_group, intercept_columns


# ── assign_cores ─────────────────────────────────────────────────────

class TestAssignCores:

    @pytest.fixture(autouse=True)
    def eight_cores(self, monkeypatch):
        monkeypatch.setattr("os.cpu_count", lambda: 8)

    def test_integer(self):
        cores = og.assign_cores(4, verbose=False)
        assert cores == {'worker_cores': 4, 'reserved_cores': 4, 'total_cores': 8}

    def test_integer_capped(self):
        assert og.assign_cores(64, verbose=False)['worker_cores'] == 8

    def test_fraction(self):
        cores = og.assign_cores(0.5, verbose=False)
        assert cores['worker_cores'] == 4
        assert cores['reserved_cores'] == 4

    def test_none_uses_ninety_percent(self):
        # ceil(8 * 0.1) = 1 reserved
        assert og.assign_cores(None, verbose=False)['worker_cores'] == 7

    def test_at_least_one_worker(self):
        assert og.assign_cores(0.01, verbose=False)['worker_cores'] == 1

    def test_non_positive(self):
        with pytest.raises(ValueError):
            og.assign_cores(0, verbose=False)

    def test_verbose_prints(self, capsys):
        og.assign_cores(2)
        assert "core(s) assigned" in capsys.readouterr().out


# ── Design matrices ──────────────────────────────────────────────────

class TestModelMatrix:

    def test_group_design(self):
        design, levels = model_matrix_group(['b', 'a', 'c', 'a'])
        assert list(levels) == ['a', 'b', 'c']
        assert np.array_equal(design, [[1, 1, 0], [1, 0, 0], [1, 0, 1], [1, 0, 0]])
        assert list(intercept_columns(design)) == [0]

    def test_single_group(self):
        design, levels = model_matrix_group(['a', 'a'])
        assert design.shape == (2, 1)

    def test_formula(self):
        df = pd.DataFrame({'level2annot': ['a', 'a', 'b', 'b'], 'batch': [1, 2, 1, 2]})
        X = og.model_matrix('~ level2annot + batch', df)
        assert X.shape == (4, 3)
        assert X.columns[1].startswith('level2annot')

    def test_formula_needs_data(self):
        with pytest.raises(ValueError):
            og.model_matrix('~ x')


# ── Group means ──────────────────────────────────────────────────────

class TestMeanByGroup:

    def test_dense_and_sparse_agree(self):
        exp = np.array([[1.0, 3.0, 10.0], [0.0, 2.0, 4.0]])
        group = ['x', 'x', 'y']
        dense = og.mean_by_group(exp, group)
        sparse = og.mean_by_group(sp.csr_matrix(exp), group)
        assert list(dense.columns) == ['x', 'y']
        assert np.allclose(dense.values, [[2.0, 10.0], [1.0, 4.0]])
        assert np.allclose(sparse.values, dense.values)

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            og.mean_by_group(np.ones((2, 3)), ['a'])

    def test_row_vars(self):
        assert np.allclose(og.row_vars([[1, 2, 3], [2, 2, 2]]), [1.0, 0.0])
        assert np.all(np.isnan(og.row_vars([[1.0], [2.0]])))


# ── p_adjust ─────────────────────────────────────────────────────────

class TestPAdjust:

    def test_bh_matches_r(self):
        # R: p.adjust(c(0.01, 0.02, 0.03, 0.04, 0.05), "BH")
        p = [0.01, 0.02, 0.03, 0.04, 0.05]
        assert np.allclose(og.p_adjust(p), [0.05] * 5)

    def test_bh_ordering(self):
        # R: p.adjust(c(0.001, 0.04, 0.03, 0.5), "BH") = 0.004 0.05333 0.05333 0.5
        adj = og.p_adjust([0.001, 0.04, 0.03, 0.5])
        assert np.allclose(adj, [0.004, 0.0533333, 0.0533333, 0.5], atol=1e-6)

    def test_nan_kept_and_not_counted(self):
        adj = og.p_adjust([0.01, np.nan, 0.02])
        assert np.isnan(adj[1])
        assert np.allclose(adj[[0, 2]], [0.02, 0.02])

    def test_other_methods(self):
        assert np.allclose(og.p_adjust([0.01, 0.2], method='bonferroni'), [0.02, 0.4])
        assert np.allclose(og.p_adjust([0.01, 0.2], method='none'), [0.01, 0.2])
        with pytest.raises(ValueError):
            og.p_adjust([0.1], method='magic')
