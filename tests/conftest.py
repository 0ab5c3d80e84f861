"""Shared fixtures for orthogene tests."""

import numpy as np
import pandas as pd
import pytest


N_DE = 10
N_GENES = 60
CELLS_PER_TYPE = 6


@pytest.fixture
def rng():
    """Seeded random number generator for reproducibility."""
    return np.random.RandomState(42)


@pytest.fixture
def level2annot():
    """Three cell types of six cells, plus one extra (empty) cell of type C."""
    return np.array(['A'] * CELLS_PER_TYPE + ['B'] * CELLS_PER_TYPE
                    + ['C'] * CELLS_PER_TYPE + ['C'])


@pytest.fixture
def counts(rng, level2annot):
    """60 genes x 19 cells of Poisson(20) counts.

    Genes 0-9 differ strongly between cell types, genes 58-59 are all
    zero and the last cell is empty.
    """
    n_cells = len(level2annot)
    mat = rng.poisson(20, (N_GENES, n_cells)).astype(np.float64)
    is_b = level2annot == 'B'
    is_c = level2annot == 'C'
    mat[:N_DE][:, is_b] = rng.poisson(150, (N_DE, is_b.sum()))
    mat[:N_DE][:, is_c] = rng.poisson(2, (N_DE, is_c.sum()))
    mat[58:, :] = 0
    mat[:, -1] = 0
    return mat


@pytest.fixture
def mouse_genes():
    return [f"Mg{i}" for i in range(N_GENES)]


@pytest.fixture
def expr(counts, mouse_genes, level2annot):
    """Genes x cells DataFrame with mouse gene names."""
    cells = [f"cell{i}" for i in range(len(level2annot))]
    return pd.DataFrame(counts, index=mouse_genes, columns=cells)


@pytest.fixture
def de_genes(mouse_genes):
    return mouse_genes[:N_DE]


@pytest.fixture
def ortholog_table():
    """Mouse -> human table.

    Mg0-Mg49 and Mg58-Mg59 are 1:1, Mg50 is one-to-many, Mg51/Mg52 are
    many-to-one and Mg53-Mg57 have no ortholog.
    """
    rows = [(f"Mg{i}", f"HG{i}") for i in range(50)]
    rows += [("Mg50", "HG50A"), ("Mg50", "HG50B"),
             ("Mg51", "HG51"), ("Mg52", "HG51"),
             ("Mg58", "HG58"), ("Mg59", "HG59")]
    return pd.DataFrame(rows, columns=['input_gene', 'ortholog_gene'])


@pytest.fixture
def fake_gprofiler(monkeypatch, ortholog_table):
    """Replace gprofiler.GProfiler with an offline lookup on ortholog_table."""
    import gprofiler

    calls = []

    class FakeGProfiler:
        def __init__(self, return_dataframe=False, **kwargs):
            self.return_dataframe = return_dataframe

        def orth(self, organism, query, target, **kwargs):
            calls.append({'organism': organism, 'query': list(query), 'target': target})
            rows = []
            for gene in query:
                hits = ortholog_table[ortholog_table['input_gene'] == gene]
                if len(hits) == 0:
                    rows.append({'incoming': gene, 'converted': 'None',
                                 'ortholog_ensg': 'N/A', 'name': 'N/A'})
                for orth in hits['ortholog_gene']:
                    rows.append({'incoming': gene, 'converted': f"ENSMUSG_{gene}",
                                 'ortholog_ensg': f"ENSG_{orth}", 'name': orth})
            return pd.DataFrame(rows)

    monkeypatch.setattr(gprofiler, 'GProfiler', FakeGProfiler)
    return calls
