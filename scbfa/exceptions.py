"""Error taxonomy for scbfa model fitting."""


class ScBFAError(Exception):
    """Base class for errors raised by scbfa."""


class DimensionError(ScBFAError, ValueError):
    """Shapes of D, X, W or the requested rank K are inconsistent."""


class DegenerateInputError(ScBFAError, ValueError):
    """The detection matrix has a constant gene (row) or cell (column)."""


class NumericalError(ScBFAError, RuntimeError):
    """A block's weighted normal equations could not be solved reliably."""


class ConvergenceWarning(UserWarning):
    """Fit stopped at the iteration cap or the log-likelihood decreased.

    Non-fatal: the result is still returned, with ``converged=False`` where
    the tolerance was not met.
    """


__all__ = [
    'ScBFAError',
    'DimensionError',
    'DegenerateInputError',
    'NumericalError',
    'ConvergenceWarning',
]
