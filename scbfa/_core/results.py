"""Result records for BFA and Binary PCA fits."""

import numpy as np
import pandas as pd
from scipy.special import expit
from typing import Optional, Dict, Any, List, Union


def _top_genes(matrix: np.ndarray, gene_names: List, n: int, use_names: bool) -> Dict[int, List[tuple]]:
    """Rank genes by absolute weight in each column of a G x K matrix."""
    results = {}
    for k in range(matrix.shape[1]):
        weights = matrix[:, k]
        top_indices = np.argsort(np.abs(weights))[::-1][:n]
        results[k] = [
            (gene_names[i] if use_names else int(i), float(weights[i]))
            for i in top_indices
        ]
    return results


class BFAResult:
    """
    Encapsulates results from fitting a binary factor analysis model.

    Attributes
    ----------
    Z : np.ndarray, shape (N, K)
        Cell embedding. Normalized so ``Z.T @ Z / N`` is the identity and
        orthogonal to the columns of the cell covariates.

    A : np.ndarray, shape (G, K)
        Gene loadings; ``A.T @ A`` is diagonal with decreasing entries.

    beta : np.ndarray, shape (P, K)
        Cell covariate effects in latent space.

    gamma : np.ndarray, shape (G, Q)
        Gene covariate coefficients; ``(W * gamma).sum(axis=1)`` is each
        gene's detection offset.

    loglik_trace : np.ndarray
        Penalized log-likelihood of the initial parameters followed by one
        value per iteration. The unpenalized value of the final fit is
        ``convergence_info['final_loglik']``.

    converged : bool
        True when the relative log-likelihood change fell below ``tol``.

    num_factors, num_genes, num_cells : int

    gene_names, cell_ids : list
        Labels (length G and N).

    convergence_info : dict
        Iterations, final log-likelihood, stop reason, warnings, run time.

    metadata : dict
        Hyper-parameters used for fitting.
    """

    def __init__(
        self,
        Z: np.ndarray,
        A: np.ndarray,
        beta: np.ndarray,
        gamma: np.ndarray,
        loglik_trace: np.ndarray,
        converged: bool,
        X: Optional[np.ndarray] = None,
        W: Optional[np.ndarray] = None,
        gene_names: Optional[List] = None,
        cell_ids: Optional[List] = None,
        convergence_info: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        if Z.ndim != 2 or A.ndim != 2:
            raise ValueError(f"Z and A must be 2D, got shapes {Z.shape} and {A.shape}")

        N, K = Z.shape
        G, K_a = A.shape
        if K != K_a:
            raise ValueError(f"Inconsistent K dimensions: Z={K}, A={K_a}")
        if beta.shape[1] != K:
            raise ValueError(f"beta must have {K} columns, got shape {beta.shape}")
        if gamma.shape[0] != G:
            raise ValueError(f"gamma must have {G} rows, got shape {gamma.shape}")

        self.Z = Z
        self.A = A
        self.beta = beta
        self.gamma = gamma
        self.loglik_trace = np.asarray(loglik_trace, dtype=float)
        self.converged = bool(converged)

        self.X = X if X is not None else np.ones((N, 1))
        self.W = W if W is not None else np.ones((G, 1))
        if self.X.shape != (N, beta.shape[0]):
            raise ValueError(f"X shape {self.X.shape} does not match ({N}, {beta.shape[0]})")
        if self.W.shape != gamma.shape:
            raise ValueError(f"W shape {self.W.shape} does not match gamma {gamma.shape}")

        self.num_factors = K
        self.num_genes = G
        self.num_cells = N

        self.gene_names = gene_names if gene_names is not None else list(range(G))
        self.cell_ids = cell_ids if cell_ids is not None else list(range(N))
        if len(self.gene_names) != G:
            raise ValueError(f"gene_names length ({len(self.gene_names)}) must match G ({G})")
        if len(self.cell_ids) != N:
            raise ValueError(f"cell_ids length ({len(self.cell_ids)}) must match N ({N})")

        self.convergence_info = convergence_info if convergence_info is not None else {}
        self.metadata = metadata if metadata is not None else {}

    @property
    def gene_offsets(self) -> np.ndarray:
        """Per-gene detection offset ``W[g] . gamma[g]``."""
        return np.sum(self.W * self.gamma, axis=1)

    def linear_predictor(self) -> np.ndarray:
        """
        Fitted logits, genes x cells.

        Recomputed on every call; nothing is cached on the result.
        """
        latent = self.Z + self.X @ self.beta
        return self.A @ latent.T + self.gene_offsets[:, None]

    def detection_probabilities(self) -> np.ndarray:
        """Fitted detection probabilities, genes x cells."""
        return expit(self.linear_predictor())

    def summary(self) -> str:
        """
        Generate a human-readable summary of the fitted model.

        Returns
        -------
        str
            Summary text
        """
        lines = []
        lines.append("=" * 60)
        lines.append("Binary Factor Analysis Results Summary")
        lines.append("=" * 60)
        lines.append("")

        lines.append(f"Number of genes: {self.num_genes}")
        lines.append(f"Number of cells: {self.num_cells}")
        lines.append(f"Number of factors: {self.num_factors}")
        lines.append(f"Cell covariates: {self.beta.shape[0]}, gene covariates: {self.gamma.shape[1]}")
        lines.append("")

        lines.append("Convergence Information:")
        lines.append(f"  Iterations: {self.convergence_info.get('num_iterations', 'N/A')}")
        final_loglik = self.convergence_info.get('final_loglik')
        if isinstance(final_loglik, float):
            lines.append(f"  Final log-likelihood: {final_loglik:.4f}")
        final_change = self.convergence_info.get('final_relative_change')
        if isinstance(final_change, float):
            lines.append(f"  Final relative change: {final_change:.3e}")
        lines.append(f"  Stop reason: {self.convergence_info.get('stop_reason', 'N/A')}")
        lines.append(f"  Converged: {self.converged}")
        for message in self.convergence_info.get('warnings', []):
            lines.append(f"  Warning: {message}")
        lines.append("")

        lines.append("Loading norms per factor:")
        for k, norm in enumerate(np.linalg.norm(self.A, axis=0)):
            lines.append(f"  Factor {k}: {norm:.3f}")
        lines.append("")

        lines.append("=" * 60)

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (f"BFAResult(num_genes={self.num_genes}, "
                f"num_cells={self.num_cells}, "
                f"num_factors={self.num_factors}, "
                f"converged={self.converged})")

    def get_top_genes_per_factor(self, n: int = 10, use_names: bool = True) -> Dict[int, List[tuple]]:
        """
        Get the N genes with the largest absolute loading on each factor.

        Parameters
        ----------
        n : int, default=10
            Number of genes per factor
        use_names : bool, default=True
            Return gene names instead of indices

        Returns
        -------
        dict
            Factor index -> list of (gene, loading) tuples, sorted by
            absolute loading (largest first).

        Examples
        --------
        >>> result = fit_bfa(D, num_factors=3)
        >>> for k, genes in result.get_top_genes_per_factor(n=5).items():
        ...     print(k, [name for name, _ in genes])
        """
        return _top_genes(self.A, self.gene_names, n, use_names)

    def get_gene_loadings(
        self,
        gene_name: Optional[Union[str, int]] = None,
        gene_idx: Optional[int] = None
    ) -> np.ndarray:
        """
        Get the loadings of a single gene.

        Parameters
        ----------
        gene_name : str or int, optional
            Label of the gene (must exist in gene_names)
        gene_idx : int, optional
            Index of the gene (0-based)

        Returns
        -------
        np.ndarray, shape (K,)

        Raises
        ------
        ValueError
            If neither or both parameters provided, or if gene not found
        """
        if gene_name is None and gene_idx is None:
            raise ValueError("Must provide either gene_name or gene_idx")
        if gene_name is not None and gene_idx is not None:
            raise ValueError("Cannot provide both gene_name and gene_idx")

        if gene_name is not None:
            try:
                idx = self.gene_names.index(gene_name)
            except ValueError:
                raise ValueError(f"Gene '{gene_name}' not found in gene_names")
        else:
            if gene_idx < 0 or gene_idx >= self.num_genes:
                raise ValueError(f"gene_idx {gene_idx} out of range [0, {self.num_genes})")
            idx = gene_idx

        return self.A[idx, :].copy()

    def embedding_frame(self) -> pd.DataFrame:
        """Cell embedding as a DataFrame indexed by cell id."""
        columns = [f"factor_{k}" for k in range(self.num_factors)]
        return pd.DataFrame(self.Z, index=self.cell_ids, columns=columns)

    def loadings_frame(self) -> pd.DataFrame:
        """Gene loadings as a DataFrame indexed by gene name."""
        columns = [f"factor_{k}" for k in range(self.num_factors)]
        return pd.DataFrame(self.A, index=self.gene_names, columns=columns)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert result to dictionary for serialization.

        Returns
        -------
        dict
            Dictionary containing all result data
        """
        return {
            'Z': self.Z,
            'A': self.A,
            'beta': self.beta,
            'gamma': self.gamma,
            'loglik_trace': self.loglik_trace,
            'converged': self.converged,
            'num_factors': self.num_factors,
            'num_genes': self.num_genes,
            'num_cells': self.num_cells,
            'gene_names': self.gene_names,
            'cell_ids': self.cell_ids,
            'convergence_info': self.convergence_info,
            'metadata': self.metadata,
        }


class BinaryPCAResult:
    """
    Encapsulates results from Binary PCA.

    Attributes
    ----------
    x : np.ndarray, shape (N, K)
        Cell scores (left singular vectors scaled by singular values).
    loadings : np.ndarray, shape (G, K)
        Gene loadings (right singular vectors).
    explained_variance : np.ndarray, shape (K,)
        Variance of each component's scores.
    explained_variance_ratio : np.ndarray, shape (K,)
        Share of the transformed matrix's total variance.
    singular_values : np.ndarray, shape (K,)
    center : np.ndarray, shape (G,)
        Per-gene detection frequency subtracted before decomposition.
    scale : np.ndarray, shape (G,)
        Per-gene divisor (ones when not standardized).
    """

    def __init__(
        self,
        x: np.ndarray,
        loadings: np.ndarray,
        explained_variance: np.ndarray,
        explained_variance_ratio: np.ndarray,
        singular_values: np.ndarray,
        center: np.ndarray,
        scale: np.ndarray,
        gene_names: Optional[List] = None,
        cell_ids: Optional[List] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        N, K = x.shape
        G, K_l = loadings.shape
        if K != K_l:
            raise ValueError(f"Inconsistent K dimensions: x={K}, loadings={K_l}")

        self.x = x
        self.loadings = loadings
        self.explained_variance = explained_variance
        self.explained_variance_ratio = explained_variance_ratio
        self.singular_values = singular_values
        self.center = center
        self.scale = scale

        self.num_components = K
        self.num_genes = G
        self.num_cells = N

        self.gene_names = gene_names if gene_names is not None else list(range(G))
        self.cell_ids = cell_ids if cell_ids is not None else list(range(N))
        if len(self.gene_names) != G:
            raise ValueError(f"gene_names length ({len(self.gene_names)}) must match G ({G})")
        if len(self.cell_ids) != N:
            raise ValueError(f"cell_ids length ({len(self.cell_ids)}) must match N ({N})")

        self.metadata = metadata if metadata is not None else {}

    def summary(self) -> str:
        lines = []
        lines.append("=" * 60)
        lines.append("Binary PCA Results Summary")
        lines.append("=" * 60)
        lines.append("")
        lines.append(f"Number of genes: {self.num_genes}")
        lines.append(f"Number of cells: {self.num_cells}")
        lines.append(f"Number of components: {self.num_components}")
        lines.append("")
        lines.append("Explained variance:")
        for k in range(self.num_components):
            lines.append(f"  PC{k + 1}: {self.explained_variance[k]:.4f} "
                         f"({100 * self.explained_variance_ratio[k]:.1f}%)")
        lines.append("")
        lines.append("=" * 60)
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (f"BinaryPCAResult(num_genes={self.num_genes}, "
                f"num_cells={self.num_cells}, "
                f"num_components={self.num_components})")

    def get_top_genes_per_component(self, n: int = 10, use_names: bool = True) -> Dict[int, List[tuple]]:
        """Genes with the largest absolute loading on each component."""
        return _top_genes(self.loadings, self.gene_names, n, use_names)

    def scores_frame(self) -> pd.DataFrame:
        """Cell scores as a DataFrame indexed by cell id."""
        columns = [f"PC{k + 1}" for k in range(self.num_components)]
        return pd.DataFrame(self.x, index=self.cell_ids, columns=columns)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'x': self.x,
            'loadings': self.loadings,
            'explained_variance': self.explained_variance,
            'explained_variance_ratio': self.explained_variance_ratio,
            'singular_values': self.singular_values,
            'center': self.center,
            'scale': self.scale,
            'num_components': self.num_components,
            'num_genes': self.num_genes,
            'num_cells': self.num_cells,
            'gene_names': self.gene_names,
            'cell_ids': self.cell_ids,
            'metadata': self.metadata,
        }
