"""
Hardware precision capability detection.

Finalization needs FP64, so a GPU is only worth using when it has
full-speed double precision.
"""

import warnings
from dataclasses import dataclass
from enum import Enum


class PrecisionSupport(Enum):
    """FP64 support level for hardware."""
    NO_GPU = "no_gpu"            # No CUDA GPU available
    GIMPED_FP64 = "gimped_fp64"  # FP64 exists but slow (consumer NVIDIA)
    FULL_FP64 = "full_fp64"      # Full-speed FP64 (A100, H100)


@dataclass
class GPUCapabilities:
    """
    GPU capability information.

    Attributes
    ----------
    has_gpu : bool
        Whether a CUDA GPU is available
    gpu_name : str
        Human-readable GPU name
    fp64_support : PrecisionSupport
        Level of FP64 support
    fp64_throughput_ratio : float
        Ratio of FP64 to FP32 throughput
    """
    has_gpu: bool
    gpu_name: str
    fp64_support: PrecisionSupport
    fp64_throughput_ratio: float

    @property
    def recommended_fp64(self) -> bool:
        """Whether decompositions should run on this GPU."""
        return self.fp64_support == PrecisionSupport.FULL_FP64


# Data center GPUs with full FP64
FULL_FP64_MODELS = ('A100', 'A800', 'H100', 'H800', 'V100', 'P100')

# Consumer series and their FP64:FP32 ratio
GIMPED_FP64_SERIES = (
    ('RTX 50', 1/64),
    ('RTX 40', 1/64),
    ('RTX 30', 1/64),
    ('RTX 20', 1/32),
    ('GTX', 1/32),
)


def detect_gpu_capabilities() -> GPUCapabilities:
    """
    Detect CUDA hardware and FP64 capabilities.

    Returns
    -------
    GPUCapabilities
        Detected hardware capabilities
    """
    try:
        import torch
    except ImportError:
        return _no_gpu()

    if not torch.cuda.is_available():
        return _no_gpu()

    gpu_name = torch.cuda.get_device_name(0)
    support, ratio = classify_nvidia_gpu(gpu_name)
    return GPUCapabilities(
        has_gpu=True,
        gpu_name=gpu_name,
        fp64_support=support,
        fp64_throughput_ratio=ratio,
    )


def _no_gpu() -> GPUCapabilities:
    return GPUCapabilities(
        has_gpu=False,
        gpu_name="CPU only",
        fp64_support=PrecisionSupport.NO_GPU,
        fp64_throughput_ratio=1.0,
    )


def classify_nvidia_gpu(gpu_name: str) -> tuple:
    """
    Classify NVIDIA GPU FP64 capabilities.

    Parameters
    ----------
    gpu_name : str
        GPU name from torch.cuda.get_device_name()

    Returns
    -------
    (support_level, throughput_ratio)
    """
    gpu_upper = gpu_name.upper()

    if any(model in gpu_upper for model in FULL_FP64_MODELS):
        return PrecisionSupport.FULL_FP64, 0.5

    for series, ratio in GIMPED_FP64_SERIES:
        if series in gpu_upper:
            return PrecisionSupport.GIMPED_FP64, ratio

    warnings.warn(
        f"Unknown NVIDIA GPU '{gpu_name}'. Assuming gimped FP64."
    )
    return PrecisionSupport.GIMPED_FP64, 1/32
