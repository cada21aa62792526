"""
Compute device capability.

The precompute orchestrator, the buffer bridge and the aerial perspective
evaluator only talk to a device through this interface: allocate textures and
structured buffers, look kernels up by name, dispatch them with named
bindings, and move buffer contents to and from the host.
"""

import abc
import enum
import itertools
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Tuple

import numpy as np

from .constants import CHANNELS
from .errors import ConfigurationError


class TextureFormat(enum.Enum):
    RGBA_HALF = "ARGBHalf"
    RGBA_FLOAT = "ARGBFloat"


class FilterMode(enum.Enum):
    POINT = "point"
    BILINEAR = "bilinear"


_handle_ids = itertools.count(1)


@dataclass(eq=False)
class Texture:
    """
    Handle to a device texture.

    ``depth`` is 1 for 2D textures. The handle never owns texel storage;
    the device that created it does.
    """
    name: str
    width: int
    height: int
    depth: int = 1
    volume: bool = False
    fmt: TextureFormat = TextureFormat.RGBA_HALF
    random_write: bool = False
    filter_mode: FilterMode = FilterMode.BILINEAR
    handle: int = field(default_factory=lambda: next(_handle_ids))
    released: bool = False

    @property
    def size(self) -> Tuple[int, ...]:
        if self.volume:
            return (self.width, self.height, self.depth)
        return (self.width, self.height)

    @property
    def array_shape(self) -> Tuple[int, ...]:
        """Shape of the texel array, slowest axis first."""
        if self.volume:
            return (self.depth, self.height, self.width, CHANNELS)
        return (self.height, self.width, CHANNELS)

    @property
    def texel_count(self) -> int:
        return self.width * self.height * max(self.depth, 1)

    @property
    def float_count(self) -> int:
        return self.texel_count * CHANNELS

    def __repr__(self):
        dims = "x".join(str(d) for d in self.size)
        return f"<Texture {self.name!r} {dims} {self.fmt.value}>"


@dataclass(eq=False)
class ComputeBuffer:
    """Handle to a structured device buffer of ``count`` elements."""
    count: int
    stride: int
    handle: int = field(default_factory=lambda: next(_handle_ids))
    released: bool = False

    @property
    def float_count(self) -> int:
        return self.count * self.stride // 4


class ComputeDevice(abc.ABC):
    """Abstract compute device."""

    @abc.abstractmethod
    def create_texture(
        self,
        name: str,
        size: Tuple[int, ...],
        fmt: TextureFormat = TextureFormat.RGBA_HALF,
        random_write: bool = False,
        filter_mode: FilterMode = FilterMode.BILINEAR,
    ) -> Texture:
        """Allocate a 2D (``size`` of length 2) or 3D texture."""

    @abc.abstractmethod
    def release_texture(self, texture: Texture) -> None:
        """Destroy a texture."""

    @abc.abstractmethod
    def create_buffer(self, count: int, stride: int) -> ComputeBuffer:
        """Allocate a structured buffer."""

    @abc.abstractmethod
    def release_buffer(self, buffer: ComputeBuffer) -> None:
        """Destroy a structured buffer."""

    @abc.abstractmethod
    def get_buffer_data(self, buffer: ComputeBuffer) -> np.ndarray:
        """Copy a buffer to host memory, waiting for pending dispatches."""

    @abc.abstractmethod
    def set_buffer_data(self, buffer: ComputeBuffer, data: np.ndarray) -> None:
        """Upload host data into a buffer."""

    @abc.abstractmethod
    def has_kernel(self, name: str) -> bool:
        """True if a kernel of that name can be dispatched."""

    @abc.abstractmethod
    def kernel_bindings(self, name: str) -> Tuple[str, ...]:
        """Binding names the kernel declares."""

    @abc.abstractmethod
    def dispatch(
        self,
        kernel: str,
        groups: Tuple[int, int, int],
        bindings: Mapping[str, Any],
    ) -> None:
        """Run a kernel over a 3D thread-group extent with named bindings."""

    def require_kernels(self, names: Iterable[str]) -> None:
        """Raise ConfigurationError listing every kernel the device lacks."""
        missing = [name for name in names if not self.has_kernel(name)]
        if missing:
            raise ConfigurationError(
                f"Compute device is missing kernel(s): {', '.join(missing)}"
            )

    def check_bindings(self, kernel: str, bindings: Dict[str, Any]) -> None:
        """Raise ConfigurationError if a declared binding is not supplied."""
        missing = [name for name in self.kernel_bindings(kernel) if name not in bindings]
        if missing:
            raise ConfigurationError(
                f"Kernel {kernel!r} is missing binding(s): {', '.join(missing)}"
            )
