"""Tests for the closed-form Binary PCA embedding."""

import numpy as np
import pytest

import scbfa._core.inference as inference
from scbfa import (
    fit_binary_pca,
    simulate_detection_data,
    DegenerateInputError,
    DimensionError,
)
from scbfa._models.binary_pca import transform_detection_matrix


EXAMPLE_D = np.array([
    [1, 0, 1],
    [0, 1, 1],
    [1, 1, 0],
    [0, 0, 1],
])


def test_example_values():
    result = fit_binary_pca(EXAMPLE_D, num_components=1)

    assert result.x.shape == (3, 1)
    assert result.loadings.shape == (4, 1)
    np.testing.assert_allclose(result.explained_variance, [3.75])
    np.testing.assert_allclose(result.explained_variance_ratio, [0.625])
    np.testing.assert_allclose(result.singular_values, [np.sqrt(7.5)])

    # Leading direction separates the third cell from the first two
    direction = np.array([1.0, 1.0, -2.0]) / np.sqrt(6.0)
    cosine = result.x[:, 0] @ direction / np.linalg.norm(result.x[:, 0])
    assert abs(cosine) == pytest.approx(1.0)


def test_example_reconstruction_error():
    result = fit_binary_pca(EXAMPLE_D, num_components=1)
    T = transform_detection_matrix(EXAMPLE_D.astype(float), np.ones((3, 1)))['matrix']

    reconstruction = result.x @ result.loadings.T
    error = np.linalg.norm(T - reconstruction) / np.linalg.norm(T)
    assert error == pytest.approx(np.sqrt(9 / 24))


def test_transform_is_centered_and_scaled():
    surrogate = transform_detection_matrix(EXAMPLE_D.astype(float), np.ones((3, 1)))
    T = surrogate['matrix']

    np.testing.assert_allclose(surrogate['center'], [2 / 3, 2 / 3, 2 / 3, 1 / 3])
    np.testing.assert_allclose(surrogate['scale'], np.full(4, np.sqrt(2) / 3))
    np.testing.assert_allclose(T.mean(axis=0), 0.0, atol=1e-12)
    np.testing.assert_allclose(T[:, 0], np.array([1.0, -2.0, 1.0]) / np.sqrt(2))


def test_shapes_and_orthonormal_loadings():
    D, _, _, _ = simulate_detection_data(seed=4, num_cells=50, num_genes=30, num_factors=2)
    result = fit_binary_pca(D, num_components=3)

    assert result.x.shape == (50, 3)
    assert result.loadings.shape == (30, 3)
    np.testing.assert_allclose(result.loadings.T @ result.loadings, np.eye(3), atol=1e-10)
    assert np.all(np.diff(result.explained_variance) <= 0)
    assert 0 < result.explained_variance_ratio.sum() <= 1


def test_largest_loading_is_positive():
    D, _, _, _ = simulate_detection_data(seed=4, num_cells=50, num_genes=30, num_factors=2)
    result = fit_binary_pca(D, num_components=2)

    for k in range(2):
        column = result.loadings[:, k]
        assert column[np.argmax(np.abs(column))] > 0


def test_repeated_fits_are_identical():
    D, _, _, _ = simulate_detection_data(seed=5, num_cells=40, num_genes=25, num_factors=2)
    first = fit_binary_pca(D, num_components=2)
    second = fit_binary_pca(D, num_components=2)

    np.testing.assert_array_equal(first.x, second.x)
    np.testing.assert_array_equal(first.loadings, second.loadings)


def test_without_standardization():
    result = fit_binary_pca(EXAMPLE_D, num_components=1, standardize=False)

    np.testing.assert_array_equal(result.scale, np.ones(4))
    assert result.metadata['standardize'] is False


def test_covariates_are_regressed_out():
    D, _, _, _ = simulate_detection_data(seed=6, num_cells=60, num_genes=30, num_factors=2)
    batch = np.zeros((60, 1))
    batch[::2] = 1.0
    result = fit_binary_pca(D, num_components=2, X=batch)

    np.testing.assert_allclose(batch.T @ result.x, 0.0, atol=1e-10)
    np.testing.assert_allclose(result.x.sum(axis=0), 0.0, atol=1e-10)


def test_too_many_covariates():
    X = np.array([[0.0, 1.0], [1.0, 0.0], [2.0, 5.0]])
    with pytest.raises(DimensionError):
        fit_binary_pca(EXAMPLE_D, num_components=1, X=X)


def test_variance_floor_warns():
    with pytest.warns(UserWarning, match="clipped"):
        result = fit_binary_pca(EXAMPLE_D, num_components=1, min_variance=0.5)
    np.testing.assert_allclose(result.scale, np.full(4, np.sqrt(0.5)))


def test_degenerate_input_rejected_before_decomposition(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("decomposition must not run for degenerate input")

    monkeypatch.setattr(inference, 'binary_pca', fail)
    D = EXAMPLE_D.copy()
    D[0] = 1
    with pytest.raises(DegenerateInputError):
        fit_binary_pca(D, num_components=1)


@pytest.mark.parametrize('K', [0, 3])
def test_rank_out_of_range(K):
    with pytest.raises(DimensionError):
        fit_binary_pca(EXAMPLE_D, num_components=K)


def test_non_binary_rejected():
    D = EXAMPLE_D.astype(float)
    D[0, 0] = 0.5
    with pytest.raises(ValueError):
        fit_binary_pca(D, num_components=1)


def test_transform_gives_every_gene_unit_variance():
    D, _, _, _ = simulate_detection_data(
        seed=7, num_cells=80, num_genes=20, num_factors=1, detection_rate=0.1
    )
    T = transform_detection_matrix(D.astype(float), np.ones((80, 1)))['matrix']

    # Rare and common genes end up on the same scale
    np.testing.assert_allclose((T ** 2).mean(axis=0), 1.0)
