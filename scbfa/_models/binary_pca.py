"""Closed-form approximation to binary factor analysis.

The detection matrix is standardized gene by gene with its Bernoulli
moments, covariates are regressed out, and the result is decomposed with a
single thin SVD. No iterative optimization is involved.

The variance-stabilizing transform is the Bernoulli Pearson residual
``(d - p_g) / sqrt(p_g (1 - p_g))``: every gene gets unit variance, so rare
and common genes weigh equally in the decomposition. It is the first-order
expansion of the logistic model around the gene's detection rate, which is
what makes the SVD an approximation to BFA.
"""

import logging
import warnings
from typing import Dict

import numpy as np
from scipy import linalg

logger = logging.getLogger(__name__)


def transform_detection_matrix(
    D: np.ndarray,
    X: np.ndarray,
    standardize: bool = True,
    min_variance: float = 1e-8,
) -> Dict[str, np.ndarray]:
    """
    Build the continuous cells x genes surrogate of a detection matrix.

    Parameters
    ----------
    D : np.ndarray, shape (G, N)
        Binary detection matrix.
    X : np.ndarray, shape (N, P)
        Cell-level covariates regressed out of every gene (an intercept
        column is always included, so the surrogate is centered).
    standardize : bool
        Divide each gene by its Bernoulli standard deviation
        ``sqrt(p_g (1 - p_g))``.
    min_variance : float
        Floor applied to ``p_g (1 - p_g)``; genes below it are reported.

    Returns
    -------
    dict with 'matrix' (N x G), 'center' (p_g) and 'scale' (per-gene divisor).
    """
    T = D.T.astype(np.float64)
    detection_rate = T.mean(axis=0)
    scale = np.ones(T.shape[1])

    if standardize:
        variance = detection_rate * (1 - detection_rate)
        low = variance < min_variance
        if low.any():
            warnings.warn(
                f"{low.sum()} gene(s) have detection variance below {min_variance:g} "
                f"and were clipped: {np.flatnonzero(low)[:10].tolist()}",
                UserWarning,
                stacklevel=3,
            )
            variance = np.maximum(variance, min_variance)
        scale = np.sqrt(variance)

    T = (T - detection_rate) / scale

    design = np.hstack([np.ones((T.shape[0], 1)), X])
    coefficients = linalg.lstsq(design, T)[0]
    T = T - design @ coefficients

    return {'matrix': T, 'center': detection_rate, 'scale': scale}


def _flip_signs(U: np.ndarray, Vt: np.ndarray):
    """Make the largest-magnitude loading of every component positive."""
    rows = np.argmax(np.abs(Vt), axis=1)
    signs = np.sign(Vt[np.arange(Vt.shape[0]), rows])
    signs[signs == 0] = 1.0
    return U * signs, Vt * signs[:, None]


def binary_pca(
    D: np.ndarray,
    num_components: int,
    X: np.ndarray,
    standardize: bool = True,
    min_variance: float = 1e-8,
) -> Dict[str, np.ndarray]:
    """
    Truncated SVD of the transformed detection matrix.

    Returns
    -------
    dict with keys
        x : (N, K) cell scores, left singular vectors times singular values
        loadings : (G, K) right singular vectors
        singular_values : (K,)
        explained_variance : (K,) ``s**2 / (N - 1)``
        explained_variance_ratio : (K,) share of the total variance
        center, scale : (G,) per-gene transform parameters
    """
    surrogate = transform_detection_matrix(D, X, standardize=standardize,
                                           min_variance=min_variance)
    T = surrogate['matrix']
    N = T.shape[0]

    U, S, Vt = linalg.svd(T, full_matrices=False)
    U, Vt = _flip_signs(U[:, :num_components], Vt[:num_components])
    S_k = S[:num_components]

    total_variance = np.sum(S ** 2) / (N - 1)
    explained_variance = S_k ** 2 / (N - 1)
    logger.debug("Binary PCA: top %d components explain %.3f of variance",
                 num_components, explained_variance.sum() / total_variance)

    return {
        'x': U * S_k,
        'loadings': Vt.T,
        'singular_values': S_k,
        'explained_variance': explained_variance,
        'explained_variance_ratio': explained_variance / total_variance,
        'center': surrogate['center'],
        'scale': surrogate['scale'],
    }
