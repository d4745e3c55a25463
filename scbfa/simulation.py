"""Data simulation for binary factor analysis.

This module provides functions for generating synthetic detection matrices
from the logistic factor model, for testing and validation.
"""

import numpy as np
from scipy.special import expit, logit


def _repair_constant(D: np.ndarray, rng: np.random.Generator, max_passes: int = 100) -> np.ndarray:
    """Flip single entries until no gene or cell is constant."""
    G, N = D.shape
    for _ in range(max_passes):
        row_sums = D.sum(axis=1)
        bad_rows = np.flatnonzero((row_sums == 0) | (row_sums == N))
        col_sums = D.sum(axis=0)
        bad_cols = np.flatnonzero((col_sums == 0) | (col_sums == G))
        if bad_rows.size == 0 and bad_cols.size == 0:
            return D
        for g in bad_rows:
            n = rng.integers(N)
            D[g, n] = 1 - D[g, n]
        for n in bad_cols:
            g = rng.integers(G)
            D[g, n] = 1 - D[g, n]
    raise RuntimeError("Could not remove constant genes/cells from simulated data")


def simulate_detection_data(
    seed: int,
    num_cells: int,
    num_genes: int,
    num_factors: int,
    detection_rate: float = 0.5,
    loading_scale: float = 1.5,
    offset_sd: float = 0.5,
    X: np.ndarray = None,
    beta: np.ndarray = None,
) -> tuple:
    """
    Simulate a gene detection matrix from the logistic factor model.

    ``D[g, n] ~ Bernoulli(sigmoid(A[g] . (Z[n] + X[n] beta) + offset[g]))``

    Parameters
    ----------
    seed : int
        Random seed for reproducibility
    num_cells : int
        Number of cells (N)
    num_genes : int
        Number of genes (G)
    num_factors : int
        Number of latent factors (K)
    detection_rate : float, default=0.5
        Typical detection probability; sets the mean gene offset
    loading_scale : float, default=1.5
        Standard deviation of the loadings
    offset_sd : float, default=0.5
        Spread of gene offsets around ``logit(detection_rate)``
    X : np.ndarray, shape (N, P), optional
        Cell covariates shifting the latent positions
    beta : np.ndarray, shape (P, K), optional
        Latent-space covariate effects (required with X)

    Returns
    -------
    tuple: (D, Z, A, offsets)
        D : np.ndarray, shape (G, N)
            Binary detection matrix (int8) without constant genes or cells
        Z : np.ndarray, shape (N, K)
            True latent positions
        A : np.ndarray, shape (G, K)
            True loadings
        offsets : np.ndarray, shape (G,)
            True gene offsets

    Examples
    --------
    >>> from scbfa import simulate_detection_data, fit_bfa
    >>> D, Z, A, offsets = simulate_detection_data(
    ...     seed=42, num_cells=200, num_genes=100, num_factors=3
    ... )
    >>> result = fit_bfa(D, num_factors=3)
    """
    if not 0 < detection_rate < 1:
        raise ValueError(f"detection_rate must be in (0, 1), got {detection_rate}")
    if num_factors < 1:
        raise ValueError(f"num_factors must be >= 1, got {num_factors}")
    if (X is None) != (beta is None):
        raise ValueError("X and beta must be given together")

    rng = np.random.default_rng(seed)

    Z = rng.standard_normal((num_cells, num_factors))
    A = loading_scale * rng.standard_normal((num_genes, num_factors))
    offsets = logit(detection_rate) + offset_sd * rng.standard_normal(num_genes)

    latent = Z
    if X is not None:
        X = np.asarray(X, dtype=float)
        beta = np.asarray(beta, dtype=float)
        if X.shape[0] != num_cells or beta.shape != (X.shape[1], num_factors):
            raise ValueError(
                f"X must be ({num_cells}, P) and beta (P, {num_factors}); "
                f"got {X.shape} and {beta.shape}"
            )
        latent = Z + X @ beta

    probabilities = expit(A @ latent.T + offsets[:, None])
    D = (rng.random(probabilities.shape) < probabilities).astype(np.int8)
    D = _repair_constant(D, rng)

    return D, Z, A, offsets


__all__ = ['simulate_detection_data']
