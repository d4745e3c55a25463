"""Binary factor analysis of single-cell gene detection patterns.

Embeds cells from a binary genes x cells detection matrix (1 where a gene
has a nonzero count). Offers an iterative logistic factor model (BFA) and a
fast closed-form approximation (Binary PCA).

Public API
----------
build_detection_matrix : function
    Binarize a count matrix or a container wrapping one

filter_detection_matrix : function
    Drop genes and cells that are detected everywhere or nowhere

fit_bfa : function
    Fit the binary factor analysis model

fit_binary_pca : function
    Closed-form embedding from a transformed SVD

select_num_factors : function
    Choose the number of factors by BIC / AIC

BFAResult, BinaryPCAResult : class
    Result objects with fitted matrices and helper methods

simulate_detection_data : function
    Generate synthetic detection data for testing

Examples
--------
Basic usage:

>>> from scbfa import build_detection_matrix, filter_detection_matrix, fit_bfa
>>> D = build_detection_matrix(counts)          # genes x cells
>>> D, gene_mask, cell_mask = filter_detection_matrix(D)
>>> result = fit_bfa(D, num_factors=5)
>>> print(result.summary())

Closed-form approximation:

>>> from scbfa import fit_binary_pca
>>> pca = fit_binary_pca(D, num_components=5)
>>> pca.x.shape
"""

from scbfa.bfa import fit_bfa, fit_binary_pca, select_num_factors
from scbfa.detection import build_detection_matrix, filter_detection_matrix
from scbfa._core.results import BFAResult, BinaryPCAResult
from scbfa.simulation import simulate_detection_data
from scbfa.exceptions import (
    ScBFAError,
    DimensionError,
    DegenerateInputError,
    NumericalError,
    ConvergenceWarning,
)

__all__ = [
    'build_detection_matrix',
    'filter_detection_matrix',
    'fit_bfa',
    'fit_binary_pca',
    'select_num_factors',
    'BFAResult',
    'BinaryPCAResult',
    'simulate_detection_data',
    'ScBFAError',
    'DimensionError',
    'DegenerateInputError',
    'NumericalError',
    'ConvergenceWarning',
]

__version__ = '0.1.0'
