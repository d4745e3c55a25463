import logging
import warnings
from typing import List, Optional, Sequence

import numpy as np

from scbfa.exceptions import ConvergenceWarning

logger = logging.getLogger(__name__)

STOP_TOLERANCE = 'tolerance'
STOP_MAX_ITER = 'max_iter'
STOP_DECREASE = 'loglik_decrease'


def _decrease_allowance(previous: float, decrease_tol: float) -> float:
    return decrease_tol * max(1.0, abs(previous))


def _relative_change(previous: float, current: float) -> float:
    return (current - previous) / max(abs(previous), np.finfo(float).tiny)


def should_stop(
    loglik_history: Sequence[float],
    iteration: int,
    max_iter: int,
    tol: float,
    decrease_tol: float = 1e-8,
) -> bool:
    """Decide whether block coordinate ascent should terminate.

    Stops when ``iteration >= max_iter``, when the relative improvement
    ``(ll[t] - ll[t-1]) / |ll[t-1]|`` falls below ``tol`` (needs at least
    two entries), or when the log-likelihood drops. A drop larger than
    ``decrease_tol * max(1, |ll[t-1]|)`` is not numeric noise and issues a
    ``ConvergenceWarning``; it never raises.
    """
    if len(loglik_history) >= 2:
        previous, current = loglik_history[-2], loglik_history[-1]
        change = current - previous
        if change < -_decrease_allowance(previous, decrease_tol):
            warnings.warn(
                f"Log-likelihood decreased by {-change:.3e} at iteration {iteration} "
                f"({previous:.6f} -> {current:.6f})",
                ConvergenceWarning,
                stacklevel=2,
            )
            return True
    if iteration >= max_iter:
        return True
    if iteration < 2 or len(loglik_history) < 2:
        return False
    return _relative_change(previous, current) < tol


class LogLikelihoodMonitor:
    """Tracks the log-likelihood trace of a fit and records why it stopped."""

    def __init__(self, convergence_threshold: float = 1e-6, max_iterations: int = 500,
                 decrease_tol: float = 1e-8, verbose: bool = False):
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        if not convergence_threshold > 0:
            raise ValueError(f"convergence_threshold must be > 0, got {convergence_threshold}")
        self.convergence_threshold = convergence_threshold
        self.max_iterations = max_iterations
        self.decrease_tol = decrease_tol
        self.verbose = verbose
        self.loglik_history: List[float] = []
        self.relative_change_history: List[float] = []
        self.iteration = 0
        self.stop_reason: Optional[str] = None
        self.warnings: List[str] = []

    def start(self, initial_loglik: float) -> None:
        """Record the log-likelihood of the initial parameters."""
        self.loglik_history = [float(initial_loglik)]
        self.relative_change_history = []
        self.iteration = 0
        self.stop_reason = None
        self.warnings = []

    def check_convergence(self, loglik: float) -> bool:
        """Record one completed sweep and return True when the fit should stop."""
        previous = self.loglik_history[-1]
        self.loglik_history.append(float(loglik))
        self.iteration += 1

        relative_change = _relative_change(previous, loglik)
        self.relative_change_history.append(float(relative_change))
        logger.debug("Iteration %d: loglik = %.6f, relative change = %.3e",
                     self.iteration, loglik, relative_change)
        if self.verbose:
            print(f"Iteration {self.iteration}: log-likelihood = {loglik:.4f}, "
                  f"relative change = {relative_change:.3e}")

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always', ConvergenceWarning)
            stop = should_stop(self.loglik_history, self.iteration, self.max_iterations,
                               self.convergence_threshold, self.decrease_tol)
        for w in caught:
            self._warn(str(w.message))

        if not stop:
            return False

        if loglik - previous < -_decrease_allowance(previous, self.decrease_tol):
            self.stop_reason = STOP_DECREASE
        elif self.iteration >= 2 and relative_change < self.convergence_threshold:
            self.stop_reason = STOP_TOLERANCE
        else:
            self.stop_reason = STOP_MAX_ITER
            self._warn(
                f"Reached maximum iterations ({self.max_iterations}) with relative "
                f"change {relative_change:.3e} >= tol {self.convergence_threshold:g}"
            )
        return True

    def _warn(self, message: str) -> None:
        self.warnings.append(message)
        warnings.warn(message, ConvergenceWarning, stacklevel=3)

    @property
    def converged(self) -> bool:
        return self.stop_reason == STOP_TOLERANCE

    def get_convergence_stats(self) -> dict:
        """Return convergence statistics."""
        final_change = self.relative_change_history[-1] if self.relative_change_history else None
        return {
            'final_loglik': self.loglik_history[-1] if self.loglik_history else None,
            'num_iterations': self.iteration,
            'loglik_history': list(self.loglik_history),
            'relative_change_history': list(self.relative_change_history),
            'final_relative_change': final_change,
            'stop_reason': self.stop_reason,
            'converged': self.converged,
            'warnings': list(self.warnings),
        }
