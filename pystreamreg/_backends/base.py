"""
Abstract base classes for backends.

A backend is the decomposition service used at finalization: it turns a
symmetric matrix into eigenvalues, a Moore-Penrose pseudo-inverse and a
condition number. Accumulation itself never touches a backend.
"""

from abc import ABC, abstractmethod
import numpy as np
from dataclasses import dataclass

from ..exceptions import InvalidInputError


@dataclass
class DecompositionResult:
    """Eigen-decomposition of a symmetric matrix."""
    eigenvalues: np.ndarray      # Ascending, as returned by eigh
    pseudo_inverse: np.ndarray   # Moore-Penrose generalized inverse
    condition_number: float      # max|λ| / min|λ| (inf if singular)


class BackendBase(ABC):
    """Abstract base class for all backends."""

    @abstractmethod
    def decompose(self, matrix: np.ndarray) -> DecompositionResult:
        """
        Decompose a symmetric matrix.

        Parameters
        ----------
        matrix : ndarray, shape (p, p)
            Finite symmetric matrix (e.g. X'X or a Cox Hessian)

        Returns
        -------
        DecompositionResult
            Eigenvalues, pseudo-inverse and condition number (numpy)
        """
        pass

    @abstractmethod
    def get_device_info(self) -> dict:
        """Get backend information."""
        pass

    @staticmethod
    def _prepare(matrix) -> np.ndarray:
        """Check shape and finiteness, and symmetrize."""
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
            raise InvalidInputError("Matrix to decompose must be square")
        if matrix.shape[0] == 0:
            raise InvalidInputError("Matrix to decompose is empty")
        if not np.all(np.isfinite(matrix)):
            raise InvalidInputError("Matrix to decompose is not finite")
        return 0.5 * (matrix + matrix.T)


def pseudo_inverse_from_eigh(eigenvalues: np.ndarray,
                             eigenvectors: np.ndarray) -> tuple:
    """
    Pseudo-inverse and condition number from an eigen-decomposition.

    Eigenvalues below ``p * eps * max|λ|`` in magnitude are treated as
    exact zeros.
    """
    p = eigenvalues.shape[0]
    magnitudes = np.abs(eigenvalues)
    max_mag = magnitudes.max()
    min_mag = magnitudes.min()

    eps = np.finfo(np.float64).eps
    cutoff = p * eps * max_mag
    keep = magnitudes > cutoff

    inv_eigenvalues = np.zeros_like(eigenvalues)
    inv_eigenvalues[keep] = 1.0 / eigenvalues[keep]
    pinv = (eigenvectors * inv_eigenvalues) @ eigenvectors.T

    condition_number = float(max_mag / min_mag) if min_mag > 0 else np.inf
    return pinv, condition_number


class CPUBackend(BackendBase):
    """CPU backend base class (always FP64)."""
    pass


class GPUBackendFP64(BackendBase):
    """GPU backend base class for FP64."""
    pass
