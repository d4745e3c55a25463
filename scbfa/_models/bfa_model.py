"""Binary factor analysis of a genes x cells detection matrix.

Each entry is Bernoulli with logit

    eta[g, n] = A[g] . (Z[n] + X[n] beta) + W[g] . gamma[g]

The fit maximises the penalized log-likelihood

    loglik(D; eta) - penalty / (2 N) * ||A U'||_F^2,    U = Z + X beta

by block coordinate ascent: one IRLS step for all cells with the gene
parameters fixed, then one for all genes with the cell parameters fixed,
followed by a gauge normalization that removes the rotation/scale freedom
of the bilinear term. The penalty depends on ``A`` and ``U`` only through
their product, so the gauge step never lowers the objective, and it keeps
the logits finite when a gene is separable along the factors.
"""

import logging
from enum import Enum
from typing import Callable, Optional, Tuple

import numpy as np
from scipy import linalg
from scipy.special import expit, logit

from scbfa.exceptions import DimensionError, NumericalError

logger = logging.getLogger(__name__)


class FitState(Enum):
    INIT_BLOCK = 'init_block'
    UPDATE_Z = 'update_z'
    UPDATE_A = 'update_a'
    CHECK_CONVERGENCE = 'check_convergence'
    DONE = 'done'


def bernoulli_loglik(D: np.ndarray, eta: np.ndarray, axis: Optional[int] = None):
    """Bernoulli log-likelihood of ``D`` under logits ``eta``."""
    return np.sum(D * eta - np.logaddexp(0.0, eta), axis=axis)


def normalize_gauge(U: np.ndarray, A: np.ndarray, offset: np.ndarray, X: np.ndarray):
    """Fix the gauge of the bilinear term without changing ``eta``.

    The cell mean of ``U`` moves into the gene offsets, ``U`` is split into
    ``X beta`` (projection onto the columns of X) and ``Z`` (the residual),
    ``Z`` is rescaled so ``Z'Z / N = I``, the factors are rotated so
    ``A'A`` is diagonal with decreasing entries, and each factor's sign is
    chosen so its largest-magnitude loading is positive.

    Parameters
    ----------
    U : np.ndarray, shape (N, K)
        Combined latent positions ``Z + X beta``.
    A : np.ndarray, shape (G, K)
        Gene loadings.
    offset : np.ndarray, shape (G,)
        Per-gene detection offsets.
    X : np.ndarray, shape (N, P)
        Cell-level covariates.

    Returns
    -------
    tuple: (U, Z, A, beta, offset)
    """
    N = U.shape[0]
    mean = U.mean(axis=0)
    offset = offset + A @ mean
    U = U - mean

    beta = linalg.lstsq(X, U)[0]
    Z = U - X @ beta

    _, S, Vt = linalg.svd(Z, full_matrices=False)
    floor = S.max() * 1e-12 if S.max() > 0 else 1.0
    S = np.maximum(S, floor)
    scale = Vt.T / S * np.sqrt(N)
    inverse_t = Vt.T * S / np.sqrt(N)
    A = A @ inverse_t

    _, _, Vt_a = linalg.svd(A, full_matrices=False)
    rotation = scale @ Vt_a.T
    A = A @ Vt_a.T

    signs = np.sign(A[np.argmax(np.abs(A), axis=0), np.arange(A.shape[1])])
    signs[signs == 0] = 1.0
    A = A * signs
    rotation = rotation * signs

    Z = Z @ rotation
    beta = beta @ rotation
    U = Z + X @ beta
    return U, Z, A, beta, offset


class BFAModel:
    """
    Logistic latent factor model fit by alternating IRLS block updates.

    The model holds only the state of a single fit; build a new instance
    for every call.

    Parameters
    ----------
    D : np.ndarray, shape (G, N)
        Binary detection matrix (validated by the caller).
    num_factors : int
        Number of latent factors K.
    X : np.ndarray, shape (N, P)
        Cell-level covariates (intercept column when absent).
    W : np.ndarray, shape (G, Q)
        Gene-level covariates (intercept column when absent).
    init : {'svd', 'random'}
        Initialization of Z and A.
    rng : np.random.Generator, optional
        Random source for ``init='random'``.
    penalty : float
        Weight of the L2 penalty on the bilinear term ``A U'``. With
        ``Z'Z / N = I`` this is a unit-variance Gaussian prior on the
        loadings.
    ridge : float
        Numerical jitter added to the diagonal of every block's normal
        matrix.
    max_condition : float
        Largest tolerated condition number of a block's normal matrix.
    weight_epsilon : float
        Added to the IRLS weights ``mu(1 - mu)``.
    clip_delta : float
        Detection values are clipped to ``[clip_delta, 1 - clip_delta]``
        before the logit used by the SVD initialization.
    max_step_halvings : int
        Step halvings per row before the row keeps its old value.
    """

    def __init__(
        self,
        D: np.ndarray,
        num_factors: int,
        X: np.ndarray,
        W: np.ndarray,
        init: str = 'svd',
        rng: Optional[np.random.Generator] = None,
        penalty: float = 1.0,
        ridge: float = 1e-8,
        max_condition: float = 1e12,
        weight_epsilon: float = 1e-6,
        clip_delta: float = 0.05,
        max_step_halvings: int = 10,
    ):
        if init not in ('svd', 'random'):
            raise ValueError(f"init must be 'svd' or 'random', got '{init}'")
        if not 0 < clip_delta < 0.5:
            raise ValueError(f"clip_delta must be in (0, 0.5), got {clip_delta}")
        if not penalty > 0:
            raise ValueError(f"penalty must be > 0, got {penalty}")
        if ridge < 0 or weight_epsilon <= 0:
            raise ValueError("ridge must be >= 0 and weight_epsilon > 0")

        self.D = D
        self.G, self.N = D.shape
        self.K = num_factors
        self.X = X
        self.W = W

        if X.shape[1] + self.K >= self.N:
            raise DimensionError(
                f"X has {X.shape[1]} columns; with K={self.K} this needs more than "
                f"{X.shape[1] + self.K} cells, got {self.N}"
            )
        self._w_norm_sq = np.sum(W ** 2, axis=1)
        if np.any(self._w_norm_sq == 0):
            raise ValueError("W has all-zero rows; every gene needs a nonzero covariate")

        self.init = init
        self.rng = rng if rng is not None else np.random.default_rng()
        self.penalty = penalty
        self.ridge = ridge
        self.max_condition = max_condition
        self.weight_epsilon = weight_epsilon
        self.clip_delta = clip_delta
        self.max_step_halvings = max_step_halvings

        self.U = None
        self.Z = None
        self.A = None
        self.beta = None
        self.offset = None
        self.state = FitState.INIT_BLOCK
        self.rejected_steps = {'cells': 0, 'genes': 0}

    # ------------------------------------------------------------------
    # Parameters

    def _initialize_parameters(self) -> None:
        K = self.K
        if self.init == 'svd':
            clipped = np.clip(self.D, self.clip_delta, 1 - self.clip_delta)
            L = logit(clipped)
            L = L - L.mean(axis=1, keepdims=True)
            P, S, Qt = linalg.svd(L, full_matrices=False)
            root = np.sqrt(S[:K])
            self.A = P[:, :K] * root
            self.U = Qt[:K].T * root
        else:
            self.A = 0.1 * self.rng.standard_normal((self.G, K))
            self.U = self.rng.standard_normal((self.N, K))

        self.Z = self.U.copy()
        self.beta = np.zeros((self.X.shape[1], K))
        self.offset = np.zeros(self.G)

    @property
    def gamma(self) -> np.ndarray:
        """Minimum-norm gene covariate coefficients reproducing the offsets."""
        return self.offset[:, None] * self.W / self._w_norm_sq[:, None]

    def linear_predictor(self, U: Optional[np.ndarray] = None, A: Optional[np.ndarray] = None,
                         offset: Optional[np.ndarray] = None) -> np.ndarray:
        """Return the G x N logits for the given (default: current) parameters."""
        U = self.U if U is None else U
        A = self.A if A is None else A
        offset = self.offset if offset is None else offset
        return A @ U.T + offset[:, None]

    def loglik(self) -> float:
        """Unpenalized Bernoulli log-likelihood."""
        return float(bernoulli_loglik(self.D, self.linear_predictor()))

    def penalty_term(self, U: Optional[np.ndarray] = None, A: Optional[np.ndarray] = None) -> float:
        """``penalty / (2 N) * ||A U'||_F^2``."""
        U = self.U if U is None else U
        A = self.A if A is None else A
        return 0.5 * self.penalty / self.N * float(np.sum((A.T @ A) * (U.T @ U)))

    def objective(self) -> float:
        """Penalized log-likelihood; the quantity the fit maximises."""
        return self.loglik() - self.penalty_term()

    # ------------------------------------------------------------------
    # IRLS pieces

    def _working_response(self, eta: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        mu = expit(eta)
        weights = mu * (1 - mu) + self.weight_epsilon
        response = eta + (self.D - mu) / weights
        return response, weights

    def _solve_normal_equations(self, H: np.ndarray, rhs: np.ndarray, block: str) -> np.ndarray:
        """Solve a batch of penalized normal equations ``(H + ridge I) x = rhs``."""
        size = H.shape[-1]
        H = H + self.ridge * np.eye(size)
        condition = np.linalg.cond(H)
        bad = ~np.isfinite(condition) | (condition > self.max_condition)
        if bad.any():
            worst = np.nanmax(np.where(np.isfinite(condition), condition, np.inf))
            raise NumericalError(
                f"{bad.sum()} {block} normal equation(s) are ill-conditioned "
                f"(condition number up to {worst:.3e} > {self.max_condition:.1e}); "
                f"try a larger penalty or fewer factors"
            )
        try:
            solution = np.linalg.solve(H, rhs[..., None])[..., 0]
        except np.linalg.LinAlgError as exc:
            raise NumericalError(f"Singular {block} normal equations: {exc}") from exc
        if not np.all(np.isfinite(solution)):
            raise NumericalError(f"Non-finite {block} parameters after IRLS update")
        return solution

    def _step_halving(self, old: np.ndarray, new: np.ndarray,
                      row_objective: Callable[[np.ndarray], np.ndarray]) -> Tuple[np.ndarray, int]:
        """Halve each row's step until its objective does not decrease."""
        old_ll = row_objective(old)
        step = new - old
        factor = np.ones(old.shape[0])
        candidate = new.copy()
        candidate_ll = row_objective(candidate)

        for _ in range(self.max_step_halvings):
            worse = candidate_ll < old_ll
            if not worse.any():
                break
            factor[worse] *= 0.5
            candidate[worse] = old[worse] + factor[worse, None] * step[worse]
            candidate_ll = row_objective(candidate)

        rejected = candidate_ll < old_ll
        candidate[rejected] = old[rejected]
        return candidate, int(rejected.sum())

    def update_cells(self) -> None:
        """IRLS step for every cell's latent position, genes held fixed."""
        eta = self.linear_predictor()
        response, weights = self._working_response(eta)
        target = response - self.offset[:, None]

        K = self.K
        # Per cell the penalty is penalty / (2N) * u' A'A u
        shrink = self.penalty / self.N * (self.A.T @ self.A)
        outer = (self.A[:, :, None] * self.A[:, None, :]).reshape(self.G, K * K)
        H = (weights.T @ outer).reshape(self.N, K, K) + shrink
        rhs = (weights * target).T @ self.A
        proposal = self._solve_normal_equations(H, rhs, 'cell')

        def row_objective(U):
            loglik = bernoulli_loglik(self.D, self.linear_predictor(U=U), axis=0)
            return loglik - 0.5 * np.sum((U @ shrink) * U, axis=1)

        self.U, rejected = self._step_halving(self.U, proposal, row_objective)
        self.rejected_steps['cells'] += rejected

    def update_genes(self) -> None:
        """IRLS step for every gene's loadings and offset, cells held fixed."""
        eta = self.linear_predictor()
        response, weights = self._working_response(eta)

        K = self.K
        design = np.hstack([self.U, np.ones((self.N, 1))])
        size = design.shape[1]
        # Loadings are penalized through U'U; offsets are free
        shrink = np.zeros((size, size))
        shrink[:K, :K] = self.penalty / self.N * (self.U.T @ self.U)
        outer = (design[:, :, None] * design[:, None, :]).reshape(self.N, size * size)
        H = (weights @ outer).reshape(self.G, size, size) + shrink
        current = np.hstack([self.A, self.offset[:, None]])
        rhs = (weights * response) @ design
        proposal = self._solve_normal_equations(H, rhs, 'gene')

        def row_objective(params):
            eta = params[:, :-1] @ self.U.T + params[:, -1:]
            loglik = bernoulli_loglik(self.D, eta, axis=1)
            return loglik - 0.5 * np.sum((params @ shrink) * params, axis=1)

        updated, rejected = self._step_halving(current, proposal, row_objective)
        self.rejected_steps['genes'] += rejected
        self.A = updated[:, :-1]
        self.offset = updated[:, -1]

    def apply_gauge(self) -> None:
        self.U, self.Z, self.A, self.beta, self.offset = normalize_gauge(
            self.U, self.A, self.offset, self.X
        )

    # ------------------------------------------------------------------
    # Driver

    def fit(self, monitor) -> 'BFAModel':
        """
        Run the fit to termination.

        States advance INIT_BLOCK -> UPDATE_Z -> UPDATE_A -> CHECK_CONVERGENCE,
        then back to UPDATE_Z or on to DONE as the monitor decides.

        Parameters
        ----------
        monitor : LogLikelihoodMonitor
            Receives the initial penalized log-likelihood and one value per
            sweep.
        """
        self.state = FitState.INIT_BLOCK
        while self.state is not FitState.DONE:
            if self.state is FitState.INIT_BLOCK:
                self._initialize_parameters()
                monitor.start(self.objective())
                self.state = FitState.UPDATE_Z
            elif self.state is FitState.UPDATE_Z:
                self.update_cells()
                self.state = FitState.UPDATE_A
            elif self.state is FitState.UPDATE_A:
                self.update_genes()
                self.apply_gauge()
                self.state = FitState.CHECK_CONVERGENCE
            elif self.state is FitState.CHECK_CONVERGENCE:
                stop = monitor.check_convergence(self.objective())
                self.state = FitState.DONE if stop else FitState.UPDATE_Z

        logger.debug("BFA fit finished; rejected row steps: %s", self.rejected_steps)
        return self
