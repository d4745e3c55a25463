"""Input checks shared by the BFA and Binary PCA engines.

All checks run before any optimization or decomposition so a bad input
never produces partial state.
"""

from typing import Optional

import numpy as np
import scipy.sparse as sp

from scbfa.exceptions import DegenerateInputError, DimensionError

_MAX_REPORTED = 10


def _format_indices(indices: np.ndarray) -> str:
    shown = ', '.join(str(i) for i in indices[:_MAX_REPORTED])
    if indices.size > _MAX_REPORTED:
        shown += f", ... ({indices.size} total)"
    return shown


def check_detection_matrix(D) -> np.ndarray:
    """Return ``D`` as a float64 array after checking it is binary and 2-D."""
    if sp.issparse(D):
        D = D.toarray()
    D = np.asarray(D)

    if D.ndim != 2:
        raise DimensionError(f"D must be 2D, got shape {D.shape}")
    if D.shape[0] < 2 or D.shape[1] < 2:
        raise DimensionError(f"D must have at least 2 genes and 2 cells, got shape {D.shape}")

    D = D.astype(np.float64)
    if np.isnan(D).any():
        raise ValueError("D contains missing values (NaN)")
    if not np.all((D == 0) | (D == 1)):
        raise ValueError("D must be binary (only 0 and 1 values)")
    return D


def check_not_degenerate(D: np.ndarray) -> None:
    """Raise ``DegenerateInputError`` if any gene or cell is constant."""
    row_sums = D.sum(axis=1)
    bad_genes = np.flatnonzero((row_sums == 0) | (row_sums == D.shape[1]))
    if bad_genes.size:
        raise DegenerateInputError(
            f"{bad_genes.size} gene(s) detected in no cell or in every cell "
            f"(rows {_format_indices(bad_genes)}); filter them before fitting"
        )

    col_sums = D.sum(axis=0)
    bad_cells = np.flatnonzero((col_sums == 0) | (col_sums == D.shape[0]))
    if bad_cells.size:
        raise DegenerateInputError(
            f"{bad_cells.size} cell(s) detecting no gene or every gene "
            f"(columns {_format_indices(bad_cells)}); filter them before fitting"
        )


def check_rank(num_factors: int, num_genes: int, num_cells: int, name: str = 'num_factors') -> int:
    """Check ``1 <= K < min(N, G)``."""
    if isinstance(num_factors, bool) or not isinstance(num_factors, (int, np.integer)):
        raise TypeError(f"{name} must be an integer, got {type(num_factors).__name__}")
    upper = min(num_genes, num_cells)
    if num_factors < 1 or num_factors >= upper:
        raise DimensionError(
            f"{name} must satisfy 1 <= K < min(genes, cells) = {upper}, got {num_factors}"
        )
    return int(num_factors)


def check_covariates(covariates: Optional[np.ndarray], num_rows: int, name: str) -> np.ndarray:
    """
    Return a covariate matrix with ``num_rows`` rows.

    ``None`` becomes the intercept-only design (a column of ones); a 1-D
    array is treated as a single covariate column.
    """
    if covariates is None:
        return np.ones((num_rows, 1))

    if sp.issparse(covariates):
        covariates = covariates.toarray()
    covariates = np.asarray(covariates, dtype=np.float64)
    if covariates.ndim == 1:
        covariates = covariates.reshape(-1, 1)
    if covariates.ndim != 2:
        raise DimensionError(f"{name} must be 1D or 2D, got shape {covariates.shape}")
    if covariates.shape[0] != num_rows:
        raise DimensionError(
            f"{name} has {covariates.shape[0]} rows but D implies {num_rows}"
        )
    if covariates.shape[1] == 0:
        raise DimensionError(f"{name} must have at least one column")
    if not np.all(np.isfinite(covariates)):
        raise ValueError(f"{name} contains missing or infinite values")
    return covariates


def check_labels(labels, length: int, name: str) -> list:
    """Default labels to integer indices and check their length."""
    if labels is None:
        return list(range(length))
    labels = list(labels)
    if len(labels) != length:
        raise ValueError(f"{name} length ({len(labels)}) must match {length}")
    return labels
