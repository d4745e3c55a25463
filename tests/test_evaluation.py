"""Tests for the evaluation API."""

import warnings

import numpy as np
import pandas as pd
import pytest

from scbfa import fit_bfa, fit_binary_pca, simulate_detection_data
from scbfa.evaluation import evaluate_result, compare_models


@pytest.fixture(scope='module')
def truth():
    return simulate_detection_data(seed=42, num_cells=150, num_genes=60, num_factors=2)


def test_evaluate_bfa(truth):
    D, Z, A, _ = truth
    with warnings.catch_warnings():
        warnings.simplefilter('ignore')
        result = fit_bfa(D, num_factors=2, max_iter=100, tol=1e-5)

    metrics = evaluate_result(result, Z, A)

    for key in ('embedding_max_angle_deg', 'embedding_mean_canonical_corr',
                'embedding_min_canonical_corr', 'loadings_mean_canonical_corr',
                'converged', 'num_iterations', 'final_loglik'):
        assert key in metrics
    assert metrics['embedding_mean_canonical_corr'] > 0.7
    assert 0 <= metrics['embedding_max_angle_deg'] <= 90
    assert metrics['num_iterations'] > 0


def test_evaluate_binary_pca(truth):
    D, Z, _, _ = truth
    result = fit_binary_pca(D, num_components=2)

    metrics = evaluate_result(result, Z)

    assert metrics['embedding_mean_canonical_corr'] > 0.6
    assert 'total_explained_variance_ratio' in metrics
    assert 'loadings_mean_canonical_corr' not in metrics


def test_evaluate_invalid_inputs(truth):
    D, Z, _, _ = truth
    result = fit_binary_pca(D, num_components=2)

    with pytest.raises(ValueError):
        evaluate_result(result, Z[:10])
    with pytest.raises(TypeError):
        evaluate_result({'x': Z}, Z)


def test_compare_models(truth):
    D, Z, A, _ = truth
    with warnings.catch_warnings():
        warnings.simplefilter('ignore')
        comparison = compare_models(D, 2, true_Z=Z, true_A=A, bfa_max_iter=30)

    assert isinstance(comparison, pd.DataFrame)
    assert list(comparison['model']) == ['bfa', 'binary_pca']
    assert np.all(comparison['runtime'] >= 0)
    assert 'embedding_mean_canonical_corr' in comparison.columns


def test_compare_models_unknown_model(truth):
    D, Z, _, _ = truth
    with pytest.raises(ValueError, match="Unknown model"):
        compare_models(D, 2, true_Z=Z, models=('nmf',))
