"""
Backend selection and management.

Provides the decomposition service used by every finalization step:
CPU (NumPy/SciPy, always available) or NVIDIA GPU (PyTorch, FP64 only).
"""

from typing import Optional

from .base import BackendBase, DecompositionResult
from .cpu_fp64_backend import CPUBackendFP64
from .precision_detector import detect_gpu_capabilities, GPUCapabilities

# PyTorch is optional
try:
    import torch  # noqa: F401
    from .gpu_fp64_backend import PyTorchBackendFP64
    PYTORCH_FP64_AVAILABLE = True
except ImportError:
    PYTORCH_FP64_AVAILABLE = False


def get_backend(backend='auto', use_fp64: Optional[bool] = None) -> BackendBase:
    """
    Get decomposition backend.

    Parameters
    ----------
    backend : str or BackendBase
        Backend selection:
        - 'auto': GPU only if it has full-speed FP64, else CPU
        - 'cpu': CPU with NumPy/SciPy (FP64)
        - 'gpu' / 'pytorch': PyTorch CUDA (FP64)
        An existing backend instance is returned unchanged.

    use_fp64 : bool or None
        Accepted for interface compatibility. Decompositions are always
        FP64; passing False raises ValueError.

    Returns
    -------
    BackendBase
        Backend instance

    Examples
    --------
    >>> backend = get_backend('cpu')
    >>> backend.decompose(np.eye(3)).condition_number
    1.0
    """
    if isinstance(backend, BackendBase):
        return backend

    if use_fp64 is False:
        raise ValueError(
            "Finalization requires FP64; use_fp64=False is not supported"
        )

    if backend == 'auto':
        if PYTORCH_FP64_AVAILABLE:
            caps = detect_gpu_capabilities()
            if caps.has_gpu and caps.recommended_fp64:
                return PyTorchBackendFP64()
        return CPUBackendFP64()

    elif backend == 'cpu':
        return CPUBackendFP64()

    elif backend in ('gpu', 'pytorch'):
        if not PYTORCH_FP64_AVAILABLE:
            raise RuntimeError(
                "PyTorch backend unavailable.\n"
                "Install: pip install torch"
            )
        caps = detect_gpu_capabilities()
        if not caps.has_gpu:
            raise ValueError(
                "No CUDA GPU detected.\n"
                "Options:\n"
                "  - Use backend='cpu'\n"
                "  - Install PyTorch with CUDA for NVIDIA"
            )
        return PyTorchBackendFP64()

    else:
        raise ValueError(
            f"Unknown backend: '{backend}'\n"
            f"Valid options: 'auto', 'cpu', 'gpu', 'pytorch'"
        )


def list_available_backends() -> list:
    """List names of available backends."""
    backends = ['cpu']
    if PYTORCH_FP64_AVAILABLE:
        backends.append('pytorch')
    return backends


def print_backend_info():
    """Print detailed backend information (diagnostic)."""
    caps = detect_gpu_capabilities()

    print("PyStreamReg Backend Status")
    print("=" * 50)
    print("\nAvailable Backends:")
    print("  CPU (FP64):          ✓ - symmetric eigendecomposition (LAPACK)")
    print(f"  PyTorch CUDA (FP64): {'✓' if PYTORCH_FP64_AVAILABLE else '✗'} - symmetric eigendecomposition")

    print("\nHardware Detection:")
    if caps.has_gpu:
        print(f"  GPU Name: {caps.gpu_name}")
        print(f"  FP64 Support: {caps.fp64_support.value}")
    else:
        print("  No GPU detected")

    print("\nRecommended Backend:")
    print(f"  {get_backend('auto').name}")


__all__ = [
    'get_backend',
    'list_available_backends',
    'print_backend_info',
    'BackendBase',
    'DecompositionResult',
    'GPUCapabilities',
    'detect_gpu_capabilities',
    'PYTORCH_FP64_AVAILABLE',
]
