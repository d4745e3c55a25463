"""Inference wrappers for the BFA and Binary PCA engines.

These take validated arrays, run the engine, and package the output into
result objects with convergence diagnostics and metadata.
"""

import time
import numpy as np
from typing import Optional

from scbfa._models.bfa_model import BFAModel
from scbfa._models.binary_pca import binary_pca
from scbfa._utils.convergence_monitor import LogLikelihoodMonitor
from scbfa._core.results import BFAResult, BinaryPCAResult


def run_bfa_inference(
    D: np.ndarray,
    num_factors: int,
    X: np.ndarray,
    W: np.ndarray,
    max_iterations: int = 500,
    convergence_threshold: float = 1e-6,
    init: str = 'svd',
    rng: Optional[np.random.Generator] = None,
    penalty: float = 1.0,
    ridge: float = 1e-8,
    max_condition: float = 1e12,
    weight_epsilon: float = 1e-6,
    clip_delta: float = 0.05,
    max_step_halvings: int = 10,
    decrease_tol: float = 1e-8,
    verbose: bool = False
) -> BFAResult:
    """
    Run BFA on a binary detection matrix.

    Parameters
    ----------
    D : np.ndarray, shape (G, N)
        Binary detection matrix without constant rows or columns
    num_factors : int
        Number of latent factors K
    X : np.ndarray, shape (N, P)
        Cell-level covariates
    W : np.ndarray, shape (G, Q)
        Gene-level covariates
    max_iterations : int, default=500
        Maximum number of sweeps
    convergence_threshold : float, default=1e-6
        Relative change of the penalized log-likelihood that counts as converged
    penalty : float, default=1.0
        L2 penalty on the bilinear term (see ``BFAModel``)
    verbose : bool, default=False
        Print progress information

    Other parameters are passed to ``BFAModel`` and ``LogLikelihoodMonitor``.

    Returns
    -------
    BFAResult
        Fitted model results
    """
    start_time = time.time()

    model = BFAModel(
        D, num_factors, X, W,
        init=init,
        rng=rng,
        penalty=penalty,
        ridge=ridge,
        max_condition=max_condition,
        weight_epsilon=weight_epsilon,
        clip_delta=clip_delta,
        max_step_halvings=max_step_halvings,
    )
    monitor = LogLikelihoodMonitor(
        convergence_threshold=convergence_threshold,
        max_iterations=max_iterations,
        decrease_tol=decrease_tol,
        verbose=verbose,
    )

    model.fit(monitor)

    run_time = time.time() - start_time
    convergence_stats = monitor.get_convergence_stats()

    convergence_info = {
        'num_iterations': convergence_stats['num_iterations'],
        'final_loglik': model.loglik(),
        'final_objective': convergence_stats['final_loglik'],
        'final_relative_change': convergence_stats['final_relative_change'],
        'converged': convergence_stats['converged'],
        'stop_reason': convergence_stats['stop_reason'],
        'warnings': convergence_stats['warnings'],
        'rejected_steps': dict(model.rejected_steps),
        'run_time': run_time
    }

    metadata = {
        'max_iterations': max_iterations,
        'convergence_threshold': convergence_threshold,
        'init': init,
        'penalty': penalty,
        'ridge': ridge,
        'max_condition': max_condition,
        'weight_epsilon': weight_epsilon,
        'clip_delta': clip_delta,
        'max_step_halvings': max_step_halvings,
        'decrease_tol': decrease_tol,
    }

    result = BFAResult(
        Z=model.Z,
        A=model.A,
        beta=model.beta,
        gamma=model.gamma,
        loglik_trace=np.array(convergence_stats['loglik_history']),
        converged=convergence_stats['converged'],
        X=X,
        W=W,
        convergence_info=convergence_info,
        metadata=metadata,
    )

    if verbose:
        print(f"\nBFA completed in {run_time:.2f} seconds")
        print(f"Iterations: {convergence_stats['num_iterations']}")
        print(f"Final log-likelihood: {convergence_info['final_loglik']:.4f} "
              f"(penalized: {convergence_info['final_objective']:.4f})")
        print(f"Converged: {convergence_stats['converged']}")

    return result


def run_binary_pca_inference(
    D: np.ndarray,
    num_components: int,
    X: np.ndarray,
    standardize: bool = True,
    min_variance: float = 1e-8,
    verbose: bool = False
) -> BinaryPCAResult:
    """
    Run Binary PCA on a binary detection matrix.

    Parameters
    ----------
    D : np.ndarray, shape (G, N)
        Binary detection matrix without constant rows or columns
    num_components : int
        Number of components K
    X : np.ndarray, shape (N, P)
        Cell-level covariates regressed out before decomposition
    standardize : bool, default=True
        Scale each gene by its Bernoulli standard deviation
    min_variance : float, default=1e-8
        Floor on per-gene detection variance
    verbose : bool, default=False
        Print progress information

    Returns
    -------
    BinaryPCAResult
    """
    start_time = time.time()
    fit = binary_pca(D, num_components, X, standardize=standardize, min_variance=min_variance)
    run_time = time.time() - start_time

    metadata = {
        'standardize': standardize,
        'min_variance': min_variance,
        'num_cell_covariates': X.shape[1],
        'run_time': run_time,
    }

    result = BinaryPCAResult(
        x=fit['x'],
        loadings=fit['loadings'],
        explained_variance=fit['explained_variance'],
        explained_variance_ratio=fit['explained_variance_ratio'],
        singular_values=fit['singular_values'],
        center=fit['center'],
        scale=fit['scale'],
        metadata=metadata,
    )

    if verbose:
        print(f"\nBinary PCA completed in {run_time:.2f} seconds")
        print(f"Explained variance ratio: {np.round(fit['explained_variance_ratio'], 4).tolist()}")

    return result
