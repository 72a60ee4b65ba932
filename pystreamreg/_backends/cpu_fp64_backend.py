"""
CPU backend using NumPy + SciPy.

This is the reference decomposition service.
"""

import numpy as np
from scipy.linalg import eigh

from .base import CPUBackend, DecompositionResult, pseudo_inverse_from_eigh


class CPUBackendFP64(CPUBackend):
    """
    CPU backend using LAPACK's symmetric eigensolver.

    Always uses FP64 precision.
    """

    def __init__(self):
        self.name = "cpu_fp64"
        self.precision = "fp64"

    def decompose(self, matrix: np.ndarray) -> DecompositionResult:
        """Eigen-decompose a symmetric matrix with scipy.linalg.eigh."""
        sym = self._prepare(matrix)

        # Eigenvalues ascending, eigenvectors in columns
        eigenvalues, eigenvectors = eigh(sym)
        pinv, condition_number = pseudo_inverse_from_eigh(eigenvalues, eigenvectors)

        return DecompositionResult(
            eigenvalues=eigenvalues,
            pseudo_inverse=pinv,
            condition_number=condition_number,
        )

    def get_device_info(self) -> dict:
        """Get backend information."""
        import scipy
        return {
            'backend': 'cpu',
            'precision': 'fp64',
            'library': f'NumPy {np.__version__}, SciPy {scipy.__version__}',
        }
