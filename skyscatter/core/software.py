"""
Software compute device.

Executes the kernels in :mod:`skyscatter.core.kernels` on NumPy (or CuPy
through :class:`ComputeBackend`) arrays. Half-precision textures are stored
as float16 so that readbacks and persisted files carry exactly the precision
a GPU texture would.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np

from .backend import ComputeBackend
from .device import (
    ComputeBuffer,
    ComputeDevice,
    FilterMode,
    Texture,
    TextureFormat,
)
from .errors import ConfigurationError, ResourceError
from .kernels import KERNELS, KernelSpec

logger = logging.getLogger(__name__)

_STORAGE_DTYPES = {
    TextureFormat.RGBA_HALF: np.float16,
    TextureFormat.RGBA_FLOAT: np.float32,
}


class SoftwareDevice(ComputeDevice):
    """
    Compute device running vectorised kernels on the host (or CuPy).

    Args:
        use_gpu: Run kernels on CuPy arrays when CuPy is installed
        kernels: Optional kernel table overriding the built-in one; tests use
            it to simulate devices that lack a kernel
    """

    def __init__(self, use_gpu: bool = False, kernels: Optional[Mapping[str, KernelSpec]] = None):
        self.backend = ComputeBackend(use_gpu=use_gpu)
        self.xp = self.backend.xp
        self.kernels: Dict[str, KernelSpec] = dict(KERNELS if kernels is None else kernels)
        self._textures: Dict[int, Any] = {}
        self._buffers: Dict[int, Any] = {}
        self.dispatch_log: List[Tuple[str, Tuple[int, int, int]]] = []

    # =========================================================================
    # RESOURCES
    # =========================================================================
    def create_texture(
        self,
        name: str,
        size: Tuple[int, ...],
        fmt: TextureFormat = TextureFormat.RGBA_HALF,
        random_write: bool = False,
        filter_mode: FilterMode = FilterMode.BILINEAR,
    ) -> Texture:
        size = tuple(int(s) for s in size)
        if len(size) not in (2, 3) or any(s < 1 for s in size):
            raise ResourceError(f"Invalid texture size {size} for {name!r}")
        volume = len(size) == 3
        texture = Texture(
            name=name,
            width=size[0],
            height=size[1],
            depth=size[2] if volume else 1,
            volume=volume,
            fmt=fmt,
            random_write=random_write,
            filter_mode=filter_mode,
        )
        self._textures[texture.handle] = self.backend.zeros(
            texture.array_shape, dtype=_STORAGE_DTYPES[fmt]
        )
        logger.debug("Created %r", texture)
        return texture

    def release_texture(self, texture: Texture) -> None:
        self._textures.pop(texture.handle, None)
        texture.released = True

    def create_buffer(self, count: int, stride: int) -> ComputeBuffer:
        if count < 1 or stride < 4 or stride % 4:
            raise ResourceError(f"Invalid buffer layout count={count} stride={stride}")
        buffer = ComputeBuffer(count=count, stride=stride)
        self._buffers[buffer.handle] = self.backend.zeros(buffer.float_count, dtype=np.float32)
        return buffer

    def release_buffer(self, buffer: ComputeBuffer) -> None:
        self._buffers.pop(buffer.handle, None)
        buffer.released = True

    def get_buffer_data(self, buffer: ComputeBuffer) -> np.ndarray:
        self.backend.synchronize()
        return self.backend.to_numpy(self.buffer_array(buffer)).copy()

    def set_buffer_data(self, buffer: ComputeBuffer, data: np.ndarray) -> None:
        data = np.asarray(data, dtype=np.float32).reshape(-1)
        if data.size != buffer.float_count:
            raise ResourceError(
                f"Cannot upload {data.size} floats into a buffer of {buffer.float_count}"
            )
        self.buffer_array(buffer)[:] = self.backend.from_numpy(data)

    # =========================================================================
    # KERNEL-SIDE ACCESS
    # =========================================================================
    def texture_array(self, texture: Texture):
        """Texel array of a live texture, promoted to float64."""
        return self._storage(texture).astype(self.xp.float64)

    def store(self, texture: Texture, values) -> None:
        """Write a full texel array, rounding to the texture's storage format."""
        storage = self._storage(texture)
        values = self.xp.asarray(values)
        if values.shape != storage.shape:
            raise ResourceError(
                f"Kernel produced shape {values.shape} for {texture!r}, expected {storage.shape}"
            )
        storage[...] = values.astype(storage.dtype)

    def buffer_array(self, buffer: ComputeBuffer):
        try:
            return self._buffers[buffer.handle]
        except KeyError:
            raise ResourceError(f"Buffer {buffer.handle} was released") from None

    def write_host(self, destination: np.ndarray, values) -> None:
        """Copy a kernel result into a host array bound as an output."""
        values = self.backend.to_numpy(values)
        if destination.shape != values.shape:
            raise ResourceError(
                f"Destination shape {destination.shape} does not match {values.shape}"
            )
        destination[...] = values.astype(destination.dtype)

    def _storage(self, texture: Texture):
        try:
            return self._textures[texture.handle]
        except KeyError:
            raise ResourceError(f"{texture!r} was released") from None

    # =========================================================================
    # DISPATCH
    # =========================================================================
    def has_kernel(self, name: str) -> bool:
        return name in self.kernels

    def kernel_bindings(self, name: str) -> Tuple[str, ...]:
        if name not in self.kernels:
            raise ConfigurationError(f"Compute device has no kernel {name!r}")
        return self.kernels[name].bindings

    def dispatch(
        self,
        kernel: str,
        groups: Tuple[int, int, int],
        bindings: Mapping[str, Any],
    ) -> None:
        if kernel not in self.kernels:
            raise ConfigurationError(f"Compute device has no kernel {kernel!r}")
        self.check_bindings(kernel, bindings)
        groups = tuple(int(g) for g in groups)
        if len(groups) != 3 or any(g < 1 for g in groups):
            raise ResourceError(f"Invalid dispatch extent {groups} for {kernel!r}")
        logger.debug("Dispatch %s %s", kernel, groups)
        self.dispatch_log.append((kernel, groups))
        self.kernels[kernel].fn(self, groups, bindings)
