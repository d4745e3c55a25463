"""Binary gene detection matrices from single-cell count data.

The detection matrix ``D`` is genes x cells with ``D[g, n] = 1`` when gene
``g`` has a nonzero count in cell ``n``. Both model engines consume it.
"""

import logging
from typing import Any, Optional, Tuple

import numpy as np
import pandas as pd
import scipy.sparse as sp

from scbfa.exceptions import DimensionError

logger = logging.getLogger(__name__)


def _unwrap_counts(counts: Any, layer: Optional[str] = None):
    """Pull a genes x cells matrix out of a bare matrix or a container.

    Containers are recognised by duck typing:

    - mappings or objects exposing ``counts`` are taken as genes x cells;
    - AnnData-like objects exposing ``X`` (and optionally ``layers``) are
      cells x genes and are transposed.
    """
    if isinstance(counts, (np.ndarray, pd.DataFrame)) or sp.issparse(counts):
        return counts

    if isinstance(counts, dict):
        if 'counts' not in counts:
            raise TypeError("Mapping input must hold a 'counts' entry")
        return counts['counts']

    if layer is not None:
        layers = getattr(counts, 'layers', None)
        if layers is None or layer not in layers:
            raise KeyError(f"Layer '{layer}' not found on {type(counts).__name__}")
        return layers[layer].T

    if hasattr(counts, 'counts'):
        return counts.counts
    if hasattr(counts, 'X'):
        return counts.X.T

    # Sequences of rows
    return np.asarray(counts)


def build_detection_matrix(counts: Any, layer: Optional[str] = None, as_sparse: bool = False):
    """
    Convert a raw count matrix into a binary detection matrix.

    Parameters
    ----------
    counts : array-like, sparse matrix, pd.DataFrame or container
        Nonnegative counts, genes x cells. Containers exposing ``counts``
        (genes x cells) or ``X`` / ``layers`` (cells x genes, AnnData
        convention) are unwrapped.
    layer : str, optional
        Layer to read from an AnnData-like container instead of ``X``.
    as_sparse : bool, default=False
        Return a ``scipy.sparse.csr_matrix`` instead of a dense array.

    Returns
    -------
    np.ndarray or scipy.sparse.csr_matrix, shape (G, N)
        ``int8`` matrix with 1 where the count is positive.

    Raises
    ------
    DimensionError
        If the matrix is not 2-D or is empty.
    TypeError
        If the values are not numeric.
    ValueError
        If counts are negative or not finite.
    """
    matrix = _unwrap_counts(counts, layer=layer)

    if isinstance(matrix, pd.DataFrame):
        matrix = matrix.to_numpy()

    if sp.issparse(matrix):
        matrix = sp.csr_matrix(matrix)
        values = matrix.data
    else:
        matrix = np.asarray(matrix)
        values = matrix

    if matrix.ndim != 2:
        raise DimensionError(f"counts must be 2D, got shape {matrix.shape}")
    if matrix.shape[0] == 0 or matrix.shape[1] == 0:
        raise DimensionError(f"counts must be non-empty, got shape {matrix.shape}")
    if not (np.issubdtype(values.dtype, np.number) or np.issubdtype(values.dtype, np.bool_)):
        raise TypeError(f"counts must be numeric, got dtype {values.dtype}")

    if values.size:
        if not np.all(np.isfinite(values)):
            raise ValueError("counts contain missing or infinite values")
        if np.any(values < 0):
            raise ValueError("Negative counts not allowed")

    if sp.issparse(matrix):
        detected = (matrix > 0).astype(np.int8)
        detected.eliminate_zeros()
        return detected if as_sparse else detected.toarray()

    detected = (matrix > 0).astype(np.int8)
    return sp.csr_matrix(detected) if as_sparse else detected


def filter_detection_matrix(
    D,
    min_cells: int = 1,
    min_genes: int = 1,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Remove degenerate genes and cells from a detection matrix.

    A gene is dropped when it is detected in fewer than ``min_cells`` cells
    or in every cell; a cell is dropped when fewer than ``min_genes`` genes
    are detected or every gene is. Dropping cells can make a gene constant
    (and vice versa), so filtering repeats until nothing changes.

    Parameters
    ----------
    D : array-like or sparse matrix, shape (G, N)
        Binary detection matrix.
    min_cells : int, default=1
        Minimum number of cells a gene must be detected in.
    min_genes : int, default=1
        Minimum number of genes a cell must detect.

    Returns
    -------
    D_filtered : np.ndarray
        Detection matrix restricted to the kept genes and cells.
    gene_mask : np.ndarray of bool, shape (G,)
        Kept genes of the input.
    cell_mask : np.ndarray of bool, shape (N,)
        Kept cells of the input.
    """
    D = D.toarray() if sp.issparse(D) else np.asarray(D)
    if D.ndim != 2:
        raise DimensionError(f"D must be 2D, got shape {D.shape}")
    if min_cells < 1 or min_genes < 1:
        raise ValueError("min_cells and min_genes must be >= 1")

    gene_mask = np.ones(D.shape[0], dtype=bool)
    cell_mask = np.ones(D.shape[1], dtype=bool)

    while True:
        sub = D[np.ix_(gene_mask, cell_mask)]
        n_cells = sub.shape[1]
        n_genes = sub.shape[0]

        gene_counts = sub.sum(axis=1)
        keep_genes = (gene_counts >= min_cells) & (gene_counts < n_cells)
        cell_counts = sub.sum(axis=0)
        keep_cells = (cell_counts >= min_genes) & (cell_counts < n_genes)

        if keep_genes.all() and keep_cells.all():
            break

        gene_mask[np.flatnonzero(gene_mask)[~keep_genes]] = False
        cell_mask[np.flatnonzero(cell_mask)[~keep_cells]] = False

        if not gene_mask.any() or not cell_mask.any():
            break

    logger.info(
        "Kept %d of %d genes and %d of %d cells",
        gene_mask.sum(), gene_mask.size, cell_mask.sum(), cell_mask.size
    )
    return D[np.ix_(gene_mask, cell_mask)], gene_mask, cell_mask


__all__ = ['build_detection_matrix', 'filter_detection_matrix']
