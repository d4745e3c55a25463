"""Main user-facing API for binary factor analysis of gene detection.

This module provides the functions for embedding single cells from a binary
genes x cells detection matrix, either with the iterative BFA model or with
the closed-form Binary PCA approximation.
"""

import numpy as np
import pandas as pd
from typing import Union, Optional, List, Tuple, Dict, Any

from scbfa._core.inference import run_bfa_inference, run_binary_pca_inference
from scbfa._core.results import BFAResult, BinaryPCAResult
from scbfa._core.validation import (
    check_covariates,
    check_detection_matrix,
    check_labels,
    check_not_degenerate,
    check_rank,
)
from scbfa._utils.model_selection import select_k_bfa
from scbfa.exceptions import DimensionError

DEFAULT_MAX_ITER = 500
DEFAULT_TOL = 1e-6


def _prepare_detection_matrix(D, gene_names, cell_ids):
    """Extract labels from a DataFrame and return a validated float array."""
    if isinstance(D, pd.DataFrame):
        if gene_names is None:
            gene_names = D.index.tolist()
        if cell_ids is None:
            cell_ids = D.columns.tolist()
        D = D.to_numpy()

    D_array = check_detection_matrix(D)
    G, N = D_array.shape
    gene_names = check_labels(gene_names, G, 'gene_names')
    cell_ids = check_labels(cell_ids, N, 'cell_ids')
    return D_array, gene_names, cell_ids


def _as_generator(random_state) -> np.random.Generator:
    if isinstance(random_state, np.random.Generator):
        return random_state
    return np.random.default_rng(random_state)


def fit_bfa(
    D: Union[np.ndarray, pd.DataFrame],
    num_factors: int,
    X: Optional[np.ndarray] = None,
    W: Optional[np.ndarray] = None,
    max_iter: int = DEFAULT_MAX_ITER,
    tol: float = DEFAULT_TOL,
    init: str = 'svd',
    random_state: Optional[Union[int, np.random.Generator]] = None,
    gene_names: Optional[List] = None,
    cell_ids: Optional[List] = None,
    verbose: bool = False,
    **model_kwargs
) -> BFAResult:
    """
    Fit a binary factor analysis model to a gene detection matrix.

    Each entry ``D[g, n]`` is modelled as Bernoulli with logit
    ``A[g] . (Z[n] + X[n] beta) + W[g] . gamma[g]`` and the log-likelihood
    is maximised, with an L2 penalty on the bilinear term, by alternating
    IRLS updates of the cell and gene blocks.

    Parameters
    ----------
    D : np.ndarray, sparse matrix or pd.DataFrame, shape (G, N)
        Binary detection matrix, genes x cells. No gene or cell may be
        constant (see ``filter_detection_matrix``). If DataFrame, gene and
        cell labels are taken from the index and columns.

    num_factors : int
        Number of latent factors K, ``1 <= K < min(G, N)``.

    X : np.ndarray, shape (N, P), optional
        Cell-level covariates (e.g. batch indicators). Default: intercept only.

    W : np.ndarray, shape (G, Q), optional
        Gene-level covariates (e.g. QC metrics). Default: intercept only.

    max_iter : int, default=500
        Maximum number of sweeps (>= 1).

    tol : float, default=1e-6
        Stop when the relative improvement of the penalized log-likelihood
        falls below this.

    init : {'svd', 'random'}, default='svd'
        Initialization of Z and A: truncated SVD of the clipped logit of D,
        or Gaussian draws from ``random_state``.

    random_state : int or np.random.Generator, optional
        Seed or generator for random initialization.

    gene_names, cell_ids : list, optional
        Labels of length G and N.

    verbose : bool, default=False
        Print per-iteration progress.

    **model_kwargs : dict
        Numerical settings: penalty (L2 weight on the bilinear term,
        default 1.0), ridge, max_condition, weight_epsilon, clip_delta,
        max_step_halvings, decrease_tol.

    Returns
    -------
    BFAResult
        Object with Z (N x K), A (G x K), beta (P x K), gamma (G x Q),
        loglik_trace and converged.

    Raises
    ------
    DimensionError
        If D, X, W or num_factors have inconsistent shapes.
    DegenerateInputError
        If a gene or cell of D is constant.
    NumericalError
        If a block's normal equations are too ill-conditioned to solve.
    ValueError
        If D is not binary or parameters are invalid.

    Examples
    --------
    >>> from scbfa import build_detection_matrix, fit_bfa
    >>> D = build_detection_matrix(counts)
    >>> result = fit_bfa(D, num_factors=10)
    >>> embedding = result.Z
    """
    if max_iter < 1:
        raise ValueError(f"max_iter must be >= 1, got {max_iter}")
    if not tol > 0:
        raise ValueError(f"tol must be > 0, got {tol}")

    D_array, gene_names, cell_ids = _prepare_detection_matrix(D, gene_names, cell_ids)
    G, N = D_array.shape
    K = check_rank(num_factors, G, N)
    X_array = check_covariates(X, N, 'X')
    W_array = check_covariates(W, G, 'W')
    check_not_degenerate(D_array)

    result = run_bfa_inference(
        D=D_array,
        num_factors=K,
        X=X_array,
        W=W_array,
        max_iterations=max_iter,
        convergence_threshold=tol,
        init=init,
        rng=_as_generator(random_state),
        verbose=verbose,
        **model_kwargs
    )

    result.gene_names = gene_names
    result.cell_ids = cell_ids

    return result


def fit_binary_pca(
    D: Union[np.ndarray, pd.DataFrame],
    num_components: int,
    X: Optional[np.ndarray] = None,
    standardize: bool = True,
    min_variance: float = 1e-8,
    gene_names: Optional[List] = None,
    cell_ids: Optional[List] = None,
    verbose: bool = False
) -> BinaryPCAResult:
    """
    Closed-form approximate embedding of a gene detection matrix.

    The detection matrix is transposed to cells x genes, each gene is
    centered at its detection frequency ``p_g`` and (by default) divided by
    ``sqrt(p_g (1 - p_g))``, cell covariates are regressed out, and a thin
    SVD gives the embedding in one step.

    Parameters
    ----------
    D : np.ndarray, sparse matrix or pd.DataFrame, shape (G, N)
        Binary detection matrix, genes x cells.

    num_components : int
        Number of components K, ``1 <= K < min(G, N)``.

    X : np.ndarray, shape (N, P), optional
        Cell-level covariates to regress out. Default: centering only.

    standardize : bool, default=True
        Scale genes by their Bernoulli standard deviation.

    min_variance : float, default=1e-8
        Floor on ``p_g (1 - p_g)``; clipped genes are reported with a warning.

    gene_names, cell_ids : list, optional
        Labels of length G and N.

    verbose : bool, default=False
        Print a short report.

    Returns
    -------
    BinaryPCAResult
        Object with x (N x K scores), loadings (G x K) and explained_variance.

    Raises
    ------
    DimensionError
        If D, X or num_components have inconsistent shapes.
    DegenerateInputError
        If a gene or cell of D is constant.

    Examples
    --------
    >>> from scbfa import fit_binary_pca
    >>> pca = fit_binary_pca(D, num_components=10)
    >>> pca.x.shape
    (N, 10)
    """
    D_array, gene_names, cell_ids = _prepare_detection_matrix(D, gene_names, cell_ids)
    G, N = D_array.shape
    K = check_rank(num_components, G, N, name='num_components')
    X_array = check_covariates(X, N, 'X')
    design_rank = np.linalg.matrix_rank(np.hstack([np.ones((N, 1)), X_array]))
    if K > N - design_rank:
        raise DimensionError(
            f"X leaves {N - design_rank} residual dimensions across {N} cells; "
            f"cannot extract {K} components"
        )
    check_not_degenerate(D_array)

    result = run_binary_pca_inference(
        D=D_array,
        num_components=K,
        X=X_array,
        standardize=standardize,
        min_variance=min_variance,
        verbose=verbose,
    )

    result.gene_names = gene_names
    result.cell_ids = cell_ids

    return result


def select_num_factors(
    D: Union[np.ndarray, pd.DataFrame],
    candidate_factors: Optional[List[int]] = None,
    X: Optional[np.ndarray] = None,
    W: Optional[np.ndarray] = None,
    criterion: str = 'bic',
    verbose: bool = False,
    **fit_kwargs
) -> Tuple[int, List[Dict[str, Any]]]:
    """
    Choose the number of factors by an information criterion.

    Parameters
    ----------
    D : np.ndarray or pd.DataFrame, shape (G, N)
        Binary detection matrix.

    candidate_factors : list of int, optional
        K values to evaluate. Default: [1, 2, 3, 5, 8, 10] restricted to
        values below ``min(G, N)``.

    X, W : np.ndarray, optional
        Cell- and gene-level covariates, as in ``fit_bfa``.

    criterion : {'bic', 'aic'}, default='bic'
        Criterion to minimise.

    verbose : bool, default=False
        Print the table of results.

    **fit_kwargs : dict
        Passed to ``fit_bfa`` (max_iter, tol, init, random_state, ...).

    Returns
    -------
    best_k : int
        K with the lowest criterion value.

    results : list of dict
        One dict per candidate with keys 'K', 'loglik', 'num_params',
        'bic', 'aic', 'converged'.

    Examples
    --------
    >>> best_k, table = select_num_factors(D, candidate_factors=[2, 5, 10])
    >>> result = fit_bfa(D, num_factors=best_k)
    """
    if criterion not in ('bic', 'aic'):
        raise ValueError(f"criterion must be 'bic' or 'aic', got '{criterion}'")

    D_array, _, _ = _prepare_detection_matrix(D, None, None)
    G, N = D_array.shape

    if candidate_factors is None:
        candidate_factors = [k for k in (1, 2, 3, 5, 8, 10) if k < min(G, N)]
    if not candidate_factors:
        raise ValueError("candidate_factors must contain at least one value")

    best_k, results = select_k_bfa(
        D_array,
        candidate_factors,
        fit=lambda K: fit_bfa(D_array, K, X=X, W=W, **fit_kwargs),
        criterion=criterion,
    )

    if verbose:
        print("\nModel selection results:")
        print(f"{'K':<5} {'Log-lik':<14} {'BIC':<14} {'AIC':<14}")
        print("-" * 48)
        for entry in results:
            print(f"{entry['K']:<5} {entry['loglik']:<14.2f} {entry['bic']:<14.2f} {entry['aic']:<14.2f}")
        print(f"\nBest K (minimum {criterion.upper()}): {best_k}")

    return best_k, results
