"""model_selection.py
Choose the number of BFA factors (K) by an information criterion.

Typical usage
-------------
>>> from scbfa._utils.model_selection import select_k_bfa
>>> best_k, results = select_k_bfa(D, [2, 5, 10], fit=lambda K: fit_bfa(D, K))

Every candidate is fit on the full matrix; the criterion penalises the
number of free parameters after removing the gauge freedoms of the
bilinear term.
"""
from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Tuple

import numpy as np

__all__ = ["count_free_parameters", "select_k_bfa"]


def count_free_parameters(num_genes: int, num_cells: int, num_factors: int) -> int:
    """Free parameters of a K-factor model with per-gene offsets.

    Latent positions (N x K, centered), loadings (G x K) and offsets (G),
    minus the K x K invertible transforms that leave ``eta`` unchanged.

    The count does not depend on the covariates. ``beta`` only splits the
    N x K latent positions into ``Z + X beta``, and ``gamma`` is the
    minimum-norm vector reproducing a single offset per gene, so neither
    the P columns of X nor the Q columns of W add free parameters.
    """
    K = num_factors
    return (num_cells - 1) * K + num_genes * K + num_genes - K * K


def select_k_bfa(
    D: np.ndarray,
    candidate_Ks: List[int],
    fit: Callable[[int], Any],
    criterion: str = "bic",
) -> Tuple[int, List[Dict[str, Any]]]:
    """Fit every candidate K and return the one minimising the criterion.

    Parameters
    ----------
    D : np.ndarray
        Binary matrix (genes x cells).
    candidate_Ks : List[int]
        Candidate numbers of factors.
    fit : callable
        ``fit(K)`` returns a BFAResult. Its unpenalized log-likelihood
        (``convergence_info["final_loglik"]``) enters the criterion.
    criterion : {'bic', 'aic'}

    Returns
    -------
    best_k : int
    results : List[Dict]
        One dict per candidate with keys "K", "loglik", "num_params",
        "bic", "aic", "converged".
    """
    G, N = D.shape
    num_obs = D.size

    results: List[Dict[str, Any]] = []
    t0 = time.time()

    for K in candidate_Ks:
        result = fit(K)
        loglik = float(result.convergence_info["final_loglik"])
        num_params = count_free_parameters(G, N, K)
        results.append({
            "K": K,
            "loglik": loglik,
            "num_params": num_params,
            "bic": -2 * loglik + num_params * np.log(num_obs),
            "aic": -2 * loglik + 2 * num_params,
            "converged": result.converged,
        })

    best_entry = min(results, key=lambda d: d[criterion])
    best_k = best_entry["K"]

    elapsed = time.time() - t0
    best_entry["elapsed_sec"] = elapsed

    return best_k, results
