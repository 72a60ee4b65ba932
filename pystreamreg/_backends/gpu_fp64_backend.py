"""
GPU backend using PyTorch with FP64 precision.

For data center GPUs: A100, H100, V100. The matrices decomposed here are
only width x width, so this pays off for very wide models only.
"""

import numpy as np
import warnings
from typing import Optional

from .base import GPUBackendFP64, DecompositionResult, pseudo_inverse_from_eigh


class PyTorchBackendFP64(GPUBackendFP64):
    """
    PyTorch GPU backend with FP64 precision.

    Runs the symmetric eigensolver on the device, then forms the
    pseudo-inverse on the host with the same cutoff rule as the CPU backend.
    """

    def __init__(self, device: Optional[str] = None):
        """Initialize PyTorch FP64 backend."""
        self.name = "pytorch_fp64"
        self.precision = "fp64"

        try:
            import torch
            self.torch = torch
        except ImportError:
            raise ImportError(
                "PyTorch required for GPU backend. "
                "Install: pip install torch"
            )

        if device == 'mps':
            raise RuntimeError(
                "FP64 not supported on Apple Metal. "
                "Use the CPU backend."
            )

        if device is None:
            if torch.cuda.is_available():
                device = 'cuda'
            else:
                warnings.warn("No CUDA GPU available, using CPU")
                device = 'cpu'

        self.device = torch.device(device)

        if device == 'cuda':
            from .precision_detector import detect_gpu_capabilities, PrecisionSupport
            caps = detect_gpu_capabilities()
            if caps.fp64_support == PrecisionSupport.GIMPED_FP64:
                warnings.warn(
                    f"Using FP64 on {caps.gpu_name} with gimped FP64 support. "
                    f"This will be ~{int(1/caps.fp64_throughput_ratio)}x slower than FP32.",
                    UserWarning
                )

    def decompose(self, matrix: np.ndarray) -> DecompositionResult:
        """Eigen-decompose a symmetric matrix with torch.linalg.eigh."""
        torch = self.torch
        sym = self._prepare(matrix)

        sym_gpu = torch.from_numpy(sym).to(device=self.device, dtype=torch.float64)
        eigenvalues_gpu, eigenvectors_gpu = torch.linalg.eigh(sym_gpu)

        eigenvalues = eigenvalues_gpu.cpu().numpy()
        eigenvectors = eigenvectors_gpu.cpu().numpy()
        pinv, condition_number = pseudo_inverse_from_eigh(eigenvalues, eigenvectors)

        return DecompositionResult(
            eigenvalues=eigenvalues,
            pseudo_inverse=pinv,
            condition_number=condition_number,
        )

    def get_device_info(self) -> dict:
        """Get backend information."""
        return {
            'backend': 'gpu',
            'precision': 'fp64',
            'device': str(self.device),
            'library': f'PyTorch {self.torch.__version__}',
        }
