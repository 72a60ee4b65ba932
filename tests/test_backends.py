"""
Test decomposition backends with auto-detection.

Tests appropriate backends based on available hardware:
- CPU: Always tested
- PyTorch CUDA: Tested if NVIDIA GPU available
"""

import pytest
import numpy as np
from pystreamreg._backends import (
    get_backend,
    list_available_backends,
    print_backend_info,
    PYTORCH_FP64_AVAILABLE,
)
from pystreamreg._backends.precision_detector import (
    detect_gpu_capabilities,
    classify_nvidia_gpu,
    PrecisionSupport,
)
from pystreamreg.exceptions import InvalidInputError


GPU_CAPS = detect_gpu_capabilities()
HAS_NVIDIA = GPU_CAPS.has_gpu and PYTORCH_FP64_AVAILABLE

DECOMP_TOL = 1e-10


def random_spd(p, seed=0):
    rng = np.random.default_rng(seed)
    A = rng.standard_normal((3 * p, p))
    return A.T @ A


class TestBackendDetection:
    """Test hardware detection and backend availability."""

    def test_detect_gpu_capabilities(self):
        caps = detect_gpu_capabilities()
        assert caps.gpu_name is not None
        assert caps.has_gpu == (caps.fp64_support != PrecisionSupport.NO_GPU)

    def test_classify_nvidia_gpu(self):
        assert classify_nvidia_gpu("NVIDIA A100-SXM4-40GB")[0] == PrecisionSupport.FULL_FP64
        support, ratio = classify_nvidia_gpu("NVIDIA GeForce RTX 4090")
        assert support == PrecisionSupport.GIMPED_FP64
        assert ratio == 1/64

    def test_unknown_gpu_warns(self):
        with pytest.warns(UserWarning, match="Unknown NVIDIA GPU"):
            support, _ = classify_nvidia_gpu("Mystery Accelerator 9000")
        assert support == PrecisionSupport.GIMPED_FP64

    def test_list_backends(self):
        backends = list_available_backends()
        assert isinstance(backends, list)
        assert 'cpu' in backends
        if PYTORCH_FP64_AVAILABLE:
            assert 'pytorch' in backends

    def test_print_backend_info(self, capsys):
        print_backend_info()
        captured = capsys.readouterr()
        assert 'Backend Status' in captured.out
        assert 'CPU' in captured.out


class TestGetBackend:
    """Test backend selection."""

    def test_cpu(self):
        backend = get_backend('cpu')
        assert backend.name == 'cpu_fp64'
        assert backend.precision == 'fp64'

    def test_auto_without_gpu_is_cpu(self):
        if not GPU_CAPS.recommended_fp64:
            assert get_backend('auto').name == 'cpu_fp64'

    def test_instance_passthrough(self):
        backend = get_backend('cpu')
        assert get_backend(backend) is backend

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown backend"):
            get_backend('tpu')

    def test_fp32_rejected(self):
        with pytest.raises(ValueError, match="FP64"):
            get_backend('cpu', use_fp64=False)


class TestCPUBackend:
    """Test CPU decomposition service (always available)."""

    def test_cpu_device_info(self):
        info = get_backend('cpu').get_device_info()
        assert info['backend'] == 'cpu'
        assert info['precision'] == 'fp64'

    def test_identity(self):
        result = get_backend('cpu').decompose(np.eye(4))
        np.testing.assert_allclose(result.pseudo_inverse, np.eye(4), atol=DECOMP_TOL)
        np.testing.assert_allclose(result.eigenvalues, np.ones(4), atol=DECOMP_TOL)
        assert result.condition_number == pytest.approx(1.0)

    def test_spd_matches_inverse(self):
        A = random_spd(5)
        result = get_backend('cpu').decompose(A)

        np.testing.assert_allclose(result.pseudo_inverse, np.linalg.inv(A),
                                   rtol=1e-8, atol=DECOMP_TOL)
        np.testing.assert_allclose(result.condition_number, np.linalg.cond(A), rtol=1e-8)
        assert np.all(np.diff(result.eigenvalues) >= 0)

    def test_negative_definite(self):
        A = -random_spd(3, seed=7)
        result = get_backend('cpu').decompose(A)
        np.testing.assert_allclose(result.pseudo_inverse, np.linalg.inv(A),
                                   rtol=1e-8, atol=DECOMP_TOL)

    def test_singular_uses_pseudo_inverse(self):
        A = np.diag([2.0, 0.0, 5.0])
        result = get_backend('cpu').decompose(A)

        np.testing.assert_allclose(result.pseudo_inverse, np.diag([0.5, 0.0, 0.2]),
                                   atol=DECOMP_TOL)
        assert result.condition_number == np.inf

    def test_asymmetric_input_is_symmetrized(self):
        A = random_spd(3, seed=3)
        skewed = A.copy()
        skewed[0, 1] += 1e-3
        skewed[1, 0] -= 1e-3
        result = get_backend('cpu').decompose(skewed)
        np.testing.assert_allclose(result.pseudo_inverse, np.linalg.inv(A), rtol=1e-8)

    def test_rejects_non_square(self):
        with pytest.raises(InvalidInputError, match="square"):
            get_backend('cpu').decompose(np.ones((2, 3)))

    def test_rejects_non_finite(self):
        A = np.eye(2)
        A[0, 1] = A[1, 0] = np.nan
        with pytest.raises(InvalidInputError, match="not finite"):
            get_backend('cpu').decompose(A)

    def test_rejects_empty(self):
        with pytest.raises(InvalidInputError, match="empty"):
            get_backend('cpu').decompose(np.zeros((0, 0)))


@pytest.mark.skipif(not HAS_NVIDIA, reason="NVIDIA GPU not available")
class TestPyTorchBackend:
    """Test PyTorch CUDA backend (NVIDIA GPUs only)."""

    def test_pytorch_backend_creation(self):
        backend = get_backend('pytorch')
        assert backend.name == 'pytorch_fp64'
        assert backend.precision == 'fp64'

    def test_pytorch_device_info(self):
        info = get_backend('pytorch').get_device_info()
        assert info['backend'] == 'gpu'
        assert 'cuda' in str(info['device']).lower()

    def test_pytorch_vs_cpu_consistency(self):
        A = random_spd(6, seed=11)
        cpu_result = get_backend('cpu').decompose(A)
        gpu_result = get_backend('pytorch').decompose(A)

        np.testing.assert_allclose(gpu_result.pseudo_inverse, cpu_result.pseudo_inverse,
                                   rtol=1e-8, atol=DECOMP_TOL)
        np.testing.assert_allclose(gpu_result.condition_number,
                                   cpu_result.condition_number, rtol=1e-8)
