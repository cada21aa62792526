"""
GPU/CPU array backend for the software compute device.

Uses CuPy (GPU) when available and requested, NumPy (CPU) otherwise.
"""

import logging

import numpy as np

# Try to import CuPy
try:
    import cupy as cp
    CUPY_AVAILABLE = True
except ImportError:
    cp = None
    CUPY_AVAILABLE = False

logger = logging.getLogger(__name__)


class ComputeBackend:
    """
    Backend abstraction for array operations.

    Kernels are written against ``backend.xp`` so the same code runs on
    NumPy or CuPy arrays.
    """

    def __init__(self, use_gpu: bool = False):
        """
        Initialize compute backend.

        Args:
            use_gpu: If True, use GPU (CuPy) when available
        """
        self.use_gpu = use_gpu and CUPY_AVAILABLE
        self.xp = cp if self.use_gpu else np

        if self.use_gpu:
            logger.info("Using GPU backend (CuPy) - Device: %s",
                        cp.cuda.runtime.getDeviceProperties(0)['name'].decode())
        elif use_gpu:
            logger.warning("CuPy not available, using CPU backend (NumPy)")
        else:
            logger.debug("Using CPU backend (NumPy)")

    @property
    def name(self) -> str:
        """Get backend name."""
        return "CuPy (GPU)" if self.use_gpu else "NumPy (CPU)"

    def zeros(self, shape, dtype=np.float32):
        """Create zero-filled array."""
        return self.xp.zeros(shape, dtype=dtype)

    def to_numpy(self, x) -> np.ndarray:
        """Convert array to NumPy (for readback)."""
        if self.use_gpu:
            return cp.asnumpy(x)
        return np.asarray(x)

    def from_numpy(self, x):
        """Convert NumPy array to backend array."""
        if self.use_gpu:
            return cp.asarray(x)
        return np.asarray(x)

    def synchronize(self) -> None:
        """Synchronize GPU (no-op for CPU)."""
        if self.use_gpu:
            cp.cuda.Stream.null.synchronize()


def is_gpu_available() -> bool:
    """Check if GPU (CuPy) is available."""
    return CUPY_AVAILABLE
