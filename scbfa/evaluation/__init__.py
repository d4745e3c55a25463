"""Evaluation utilities for embeddings against ground truth.

This module provides functions for simulation studies where the true latent
positions and loadings are known.
"""

from scbfa.evaluation.evaluate import evaluate_result, compare_models

__all__ = ['evaluate_result', 'compare_models']
