"""Tests for BFAResult and BinaryPCAResult output methods."""

import numpy as np
import pandas as pd
import pytest

from scbfa import fit_bfa, fit_binary_pca, simulate_detection_data
from scbfa._core.results import BFAResult


@pytest.fixture(scope='module')
def data():
    D, Z, A, offsets = simulate_detection_data(seed=42, num_cells=40, num_genes=12, num_factors=2)
    gene_names = [f"gene{i}" for i in range(12)]
    cell_ids = [f"cell{i}" for i in range(40)]
    return D, gene_names, cell_ids


@pytest.fixture(scope='module')
def bfa_result(data):
    D, gene_names, cell_ids = data
    return fit_bfa(D, num_factors=2, gene_names=gene_names, cell_ids=cell_ids, max_iter=30)


def test_get_top_genes_per_factor_basic(bfa_result):
    top_genes = bfa_result.get_top_genes_per_factor(n=5)

    assert set(top_genes) == {0, 1}
    for k, genes in top_genes.items():
        assert len(genes) == 5
        for gene, loading in genes:
            assert isinstance(gene, str)
            assert isinstance(loading, float)

        # Sorted by absolute loading
        magnitudes = [abs(value) for _, value in genes]
        assert magnitudes == sorted(magnitudes, reverse=True)


def test_get_top_genes_per_factor_indices(bfa_result):
    top_genes = bfa_result.get_top_genes_per_factor(n=20, use_names=False)

    # Capped at G
    for genes in top_genes.values():
        assert len(genes) == 12
        assert all(isinstance(gene, int) for gene, _ in genes)


def test_get_gene_loadings(bfa_result):
    by_name = bfa_result.get_gene_loadings(gene_name='gene3')
    by_index = bfa_result.get_gene_loadings(gene_idx=3)

    assert by_name.shape == (2,)
    np.testing.assert_array_equal(by_name, by_index)

    # Returned array is a copy
    by_name[0] = 1e6
    assert bfa_result.A[3, 0] != 1e6


def test_get_gene_loadings_errors(bfa_result):
    with pytest.raises(ValueError):
        bfa_result.get_gene_loadings()
    with pytest.raises(ValueError):
        bfa_result.get_gene_loadings(gene_name='gene1', gene_idx=1)
    with pytest.raises(ValueError, match="not found"):
        bfa_result.get_gene_loadings(gene_name='missing')
    with pytest.raises(ValueError, match="out of range"):
        bfa_result.get_gene_loadings(gene_idx=12)


def test_frames(bfa_result):
    embedding = bfa_result.embedding_frame()
    loadings = bfa_result.loadings_frame()

    assert isinstance(embedding, pd.DataFrame)
    assert embedding.shape == (40, 2)
    assert list(embedding.columns) == ['factor_0', 'factor_1']
    assert embedding.index[0] == 'cell0'
    assert loadings.shape == (12, 2)
    assert loadings.index[-1] == 'gene11'


def test_linear_predictor_matches_offsets(bfa_result):
    eta = bfa_result.linear_predictor()
    expected = bfa_result.A @ (bfa_result.Z + bfa_result.X @ bfa_result.beta).T
    expected = expected + (bfa_result.W * bfa_result.gamma).sum(axis=1)[:, None]

    np.testing.assert_allclose(eta, expected)
    np.testing.assert_allclose(bfa_result.detection_probabilities(), 1 / (1 + np.exp(-eta)))


def test_summary(bfa_result):
    summary = bfa_result.summary()

    assert "Binary Factor Analysis Results Summary" in summary
    assert "Number of genes: 12" in summary
    assert "Number of cells: 40" in summary
    assert "Converged:" in summary
    assert "BFAResult" in repr(bfa_result)


def test_to_dict(bfa_result):
    result_dict = bfa_result.to_dict()

    for key in ('Z', 'A', 'beta', 'gamma', 'loglik_trace', 'converged',
                'num_factors', 'num_genes', 'num_cells', 'gene_names',
                'cell_ids', 'convergence_info', 'metadata'):
        assert key in result_dict
    assert result_dict['num_factors'] == 2
    assert result_dict['metadata']['init'] == 'svd'
    assert 'run_time' in result_dict['convergence_info']


def test_result_shape_validation():
    with pytest.raises(ValueError, match="Inconsistent K"):
        BFAResult(
            Z=np.zeros((5, 2)), A=np.zeros((4, 3)), beta=np.zeros((1, 2)),
            gamma=np.zeros((4, 1)), loglik_trace=[-1.0], converged=False,
        )
    with pytest.raises(ValueError, match="gene_names"):
        BFAResult(
            Z=np.zeros((5, 2)), A=np.zeros((4, 2)), beta=np.zeros((1, 2)),
            gamma=np.zeros((4, 1)), loglik_trace=[-1.0], converged=False,
            gene_names=['a', 'b'],
        )


def test_binary_pca_outputs(data):
    D, gene_names, cell_ids = data
    result = fit_binary_pca(D, num_components=2, gene_names=gene_names, cell_ids=cell_ids)

    scores = result.scores_frame()
    assert list(scores.columns) == ['PC1', 'PC2']
    assert scores.index[1] == 'cell1'

    top_genes = result.get_top_genes_per_component(n=3)
    assert len(top_genes) == 2
    assert all(gene in gene_names for gene, _ in top_genes[0])

    summary = result.summary()
    assert "Binary PCA Results Summary" in summary
    assert "PC1" in summary

    result_dict = result.to_dict()
    assert result_dict['num_components'] == 2
    assert 'run_time' in result_dict['metadata']
