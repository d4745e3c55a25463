"""Tests for building and filtering detection matrices."""

from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest
import scipy.sparse as sp

from scbfa import build_detection_matrix, filter_detection_matrix, DimensionError


COUNTS = np.array([
    [0, 3, 1],
    [2, 0, 0],
    [0, 0, 7],
])
EXPECTED = np.array([
    [0, 1, 1],
    [1, 0, 0],
    [0, 0, 1],
])


def test_dense_counts():
    D = build_detection_matrix(COUNTS)
    assert D.dtype == np.int8
    np.testing.assert_array_equal(D, EXPECTED)


def test_float_counts():
    D = build_detection_matrix(COUNTS.astype(float) * 0.5)
    np.testing.assert_array_equal(D, EXPECTED)


def test_sparse_counts():
    D = build_detection_matrix(sp.csc_matrix(COUNTS))
    assert isinstance(D, np.ndarray)
    np.testing.assert_array_equal(D, EXPECTED)

    D_sparse = build_detection_matrix(sp.csr_matrix(COUNTS), as_sparse=True)
    assert sp.issparse(D_sparse)
    np.testing.assert_array_equal(D_sparse.toarray(), EXPECTED)


def test_dataframe_counts():
    df = pd.DataFrame(COUNTS, index=['g1', 'g2', 'g3'], columns=['c1', 'c2', 'c3'])
    np.testing.assert_array_equal(build_detection_matrix(df), EXPECTED)


def test_container_with_counts():
    container = SimpleNamespace(counts=COUNTS)
    np.testing.assert_array_equal(build_detection_matrix(container), EXPECTED)
    np.testing.assert_array_equal(build_detection_matrix({'counts': COUNTS}), EXPECTED)


def test_anndata_like_container_is_transposed():
    # AnnData stores cells x genes
    adata = SimpleNamespace(X=sp.csr_matrix(COUNTS.T), layers={'raw': COUNTS.T * 2})
    np.testing.assert_array_equal(build_detection_matrix(adata), EXPECTED)
    np.testing.assert_array_equal(build_detection_matrix(adata, layer='raw'), EXPECTED)

    with pytest.raises(KeyError):
        build_detection_matrix(adata, layer='missing')


def test_invalid_counts():
    with pytest.raises(ValueError):
        build_detection_matrix(np.array([[1, -1], [0, 2]]))
    with pytest.raises(ValueError):
        build_detection_matrix(np.array([[1.0, np.nan], [0, 2]]))
    with pytest.raises(DimensionError):
        build_detection_matrix(np.array([1, 2, 3]))
    with pytest.raises(TypeError):
        build_detection_matrix(np.array([['a', 'b'], ['c', 'd']]))
    with pytest.raises(TypeError):
        build_detection_matrix({'X': COUNTS})


def test_filter_removes_constant_genes_and_cells():
    D = np.array([
        [1, 1, 1],  # detected everywhere
        [0, 1, 0],
        [1, 0, 0],
        [0, 0, 0],  # never detected
    ])
    filtered, gene_mask, cell_mask = filter_detection_matrix(D)

    # Dropping genes 0 and 3 leaves cell 2 with nothing detected
    np.testing.assert_array_equal(gene_mask, [False, True, True, False])
    np.testing.assert_array_equal(cell_mask, [True, True, False])
    np.testing.assert_array_equal(filtered, [[0, 1], [1, 0]])


def test_filter_keeps_clean_matrix():
    D = np.array([[1, 0, 1], [0, 1, 1], [1, 1, 0], [0, 0, 1]])
    filtered, gene_mask, cell_mask = filter_detection_matrix(D)
    np.testing.assert_array_equal(filtered, D)
    assert gene_mask.all() and cell_mask.all()


def test_filter_min_cells():
    D = np.array([[1, 0, 0, 0], [1, 1, 0, 0], [0, 1, 1, 0], [0, 0, 1, 1]])
    filtered, gene_mask, _ = filter_detection_matrix(D, min_cells=2)
    assert not gene_mask[0]
    assert filtered.shape[0] == 3
