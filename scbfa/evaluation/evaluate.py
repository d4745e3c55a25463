"""Core evaluation functions for comparing fitted results to ground truth.

Embeddings are only identified up to an invertible transform, so recovery
is measured by principal angles between the estimated and true subspaces.
"""

import time
import numpy as np
import pandas as pd
from scipy.linalg import subspace_angles
from typing import Dict, Optional, Sequence, Union

from scbfa._core.results import BFAResult, BinaryPCAResult


def _subspace_metrics(estimated: np.ndarray, truth: np.ndarray, prefix: str) -> Dict[str, float]:
    """Principal-angle agreement between two column spaces."""
    angles = subspace_angles(estimated, truth)
    correlations = np.cos(angles)
    return {
        f'{prefix}_max_angle_deg': float(np.degrees(angles.max())),
        f'{prefix}_mean_canonical_corr': float(correlations.mean()),
        f'{prefix}_min_canonical_corr': float(correlations.min()),
    }


def evaluate_result(
    result: Union[BFAResult, BinaryPCAResult],
    true_Z: np.ndarray,
    true_A: Optional[np.ndarray] = None
) -> Dict[str, float]:
    """
    Evaluate a fitted embedding against ground truth latent positions.

    Parameters
    ----------
    result : BFAResult or BinaryPCAResult
        Fitted model result
    true_Z : np.ndarray, shape (N, K_true)
        Ground truth latent positions
    true_A : np.ndarray, shape (G, K_true), optional
        Ground truth loadings

    Returns
    -------
    dict
        - embedding_max_angle_deg, embedding_mean_canonical_corr,
          embedding_min_canonical_corr: agreement of the centered embedding
          subspaces
        - loadings_* : the same for loadings (when true_A is given)
        - BFA: converged, num_iterations, final_loglik
        - Binary PCA: total_explained_variance_ratio

    Examples
    --------
    >>> from scbfa import fit_bfa, simulate_detection_data
    >>> from scbfa.evaluation import evaluate_result
    >>> D, Z, A, offsets = simulate_detection_data(seed=0, num_cells=200, num_genes=80, num_factors=2)
    >>> metrics = evaluate_result(fit_bfa(D, 2), Z, A)
    >>> metrics['embedding_mean_canonical_corr']
    """
    if isinstance(result, BFAResult):
        embedding, loadings = result.Z, result.A
    elif isinstance(result, BinaryPCAResult):
        embedding, loadings = result.x, result.loadings
    else:
        raise TypeError(f"Unsupported result type: {type(result).__name__}")

    true_Z = np.asarray(true_Z, dtype=float)
    if true_Z.ndim == 1:
        true_Z = true_Z.reshape(-1, 1)
    if true_Z.shape[0] != embedding.shape[0]:
        raise ValueError(f"true_Z has {true_Z.shape[0]} rows, result has {embedding.shape[0]} cells")

    metrics = _subspace_metrics(
        embedding - embedding.mean(axis=0),
        true_Z - true_Z.mean(axis=0),
        'embedding'
    )

    if true_A is not None:
        true_A = np.asarray(true_A, dtype=float)
        if true_A.ndim == 1:
            true_A = true_A.reshape(-1, 1)
        if true_A.shape[0] != loadings.shape[0]:
            raise ValueError(f"true_A has {true_A.shape[0]} rows, result has {loadings.shape[0]} genes")
        metrics.update(_subspace_metrics(loadings, true_A, 'loadings'))

    if isinstance(result, BFAResult):
        metrics['converged'] = result.converged
        metrics['num_iterations'] = result.convergence_info.get('num_iterations')
        metrics['final_loglik'] = float(result.convergence_info.get('final_loglik', result.loglik_trace[-1]))
    else:
        metrics['total_explained_variance_ratio'] = float(np.sum(result.explained_variance_ratio))

    return metrics


def compare_models(
    D: Union[np.ndarray, pd.DataFrame],
    num_factors: int,
    true_Z: np.ndarray,
    true_A: Optional[np.ndarray] = None,
    models: Sequence[str] = ('bfa', 'binary_pca'),
    **model_kwargs
) -> pd.DataFrame:
    """
    Fit several models and compare their recovery of the ground truth.

    Parameters
    ----------
    D : np.ndarray or pd.DataFrame, shape (G, N)
        Binary detection matrix
    num_factors : int
        Number of factors / components
    true_Z : np.ndarray, shape (N, K)
        Ground truth latent positions
    true_A : np.ndarray, shape (G, K), optional
        Ground truth loadings
    models : sequence of str, default=('bfa', 'binary_pca')
        Models to compare
    **model_kwargs
        Model-specific parameters, prefixed with the model name:
        ``bfa_max_iter``, ``bfa_tol``, ``binary_pca_standardize``, ...

    Returns
    -------
    pd.DataFrame
        One row per model with columns 'model', 'runtime' and the metrics
        of ``evaluate_result``.

    Examples
    --------
    >>> comparison = compare_models(D, 3, true_Z=Z, true_A=A, bfa_max_iter=100)
    >>> comparison[['model', 'runtime', 'embedding_mean_canonical_corr']]
    """
    # Import here to avoid circular dependency
    from scbfa import fit_bfa, fit_binary_pca

    fitters = {'bfa': fit_bfa, 'binary_pca': fit_binary_pca}

    rows = []
    for model in models:
        if model not in fitters:
            raise ValueError(f"Unknown model '{model}'; expected one of {sorted(fitters)}")

        kwargs = {}
        prefix = f"{model}_"
        for key, value in model_kwargs.items():
            if key.startswith(prefix):
                kwargs[key[len(prefix):]] = value

        start_time = time.time()
        result = fitters[model](D, num_factors, **kwargs)
        runtime = time.time() - start_time

        row = {'model': model, 'runtime': runtime}
        row.update(evaluate_result(result, true_Z, true_A))
        rows.append(row)

    return pd.DataFrame(rows)
