"""
Skyscatter KTX Utilities - KTX 1.1 persistence of lookup tables.

Tables are written as uncompressed RGBA half-float images. 3D tables can be
tiled into a 2D atlas with their depth slices laid side by side, which is the
layout most image viewers and engine importers expect.
"""

import logging
import os
import struct
from dataclasses import dataclass

import numpy as np

from ..core import bridge
from ..core.constants import (
    CHANNELS,
    GL_HALF_FLOAT,
    GL_RGBA,
    GL_RGBA16F,
    HALF_SIZE,
    KTX_ENDIANNESS,
    KTX_IDENTIFIER,
)
from ..core.device import ComputeDevice, Texture
from ..core.errors import PersistenceError, ResourceError

logger = logging.getLogger(__name__)

# glType .. bytesOfKeyValueData
_HEADER_FORMAT = "<12I"
# Offset of the first texel when there is no key/value data
HEADER_SIZE = len(KTX_IDENTIFIER) + len(KTX_ENDIANNESS) + struct.calcsize(_HEADER_FORMAT) + 4


@dataclass
class KTXImage:
    """Decoded KTX file: header fields plus float32 texels."""
    gl_type: int
    gl_type_size: int
    gl_format: int
    gl_internal_format: int
    gl_base_internal_format: int
    width: int
    height: int
    depth: int
    num_array_elements: int
    num_faces: int
    num_mip_levels: int
    bytes_of_key_value_data: int
    image_size: int
    data: np.ndarray

    @property
    def is_volume(self) -> bool:
        return self.depth > 0


# =============================================================================
# ATLAS TILING
# =============================================================================
def tile_volume(volume: np.ndarray) -> np.ndarray:
    """
    Lay the depth slices of a (D, H, W, C) volume side by side.

    Texel (i, j, k) lands at column ``k * W + i`` of row ``j`` in the
    returned (H, W * D, C) image.
    """
    depth, height, width, channels = volume.shape
    return volume.transpose(1, 0, 2, 3).reshape(height, depth * width, channels)


def untile_volume(image: np.ndarray, depth: int) -> np.ndarray:
    """Inverse of :func:`tile_volume`."""
    height, tiled_width, channels = image.shape
    if tiled_width % depth:
        raise ResourceError(f"Atlas width {tiled_width} is not a multiple of depth {depth}")
    width = tiled_width // depth
    return image.reshape(height, depth, width, channels).transpose(1, 0, 2, 3)


# =============================================================================
# ENCODE / DECODE
# =============================================================================
def encode_ktx(data: np.ndarray, width: int, height: int, depth: int = 0) -> bytes:
    """
    Encode RGBA texels as a KTX 1.1 file.

    Args:
        data: Texels in linear order (depth-major, row-major, RGBA)
        width: Image width
        height: Image height
        depth: Volume depth, 0 for 2D images and tiled atlases

    Returns:
        Complete file contents
    """
    texels = np.asarray(data).reshape(-1)
    expected = width * height * max(depth, 1) * CHANNELS
    if texels.size != expected:
        raise ResourceError(
            f"KTX payload has {texels.size} values, {width}x{height}x{depth} needs {expected}"
        )
    payload = texels.astype('<f2').tobytes()
    header = struct.pack(
        "<13I",
        GL_HALF_FLOAT,      # glType
        HALF_SIZE,          # glTypeSize
        GL_RGBA,            # glFormat
        GL_RGBA16F,         # glInternalFormat
        GL_RGBA,            # glBaseInternalFormat
        width,
        height,
        depth,
        0,                  # numberOfArrayElements
        1,                  # numberOfFaces
        1,                  # numberOfMipmapLevels
        0,                  # bytesOfKeyValueData
        len(payload),       # imageSize
    )
    return KTX_IDENTIFIER + KTX_ENDIANNESS + header + payload


def decode_ktx(raw: bytes) -> KTXImage:
    if raw[:len(KTX_IDENTIFIER)] != KTX_IDENTIFIER:
        raise ResourceError("Not a KTX 1.1 file")
    offset = len(KTX_IDENTIFIER)
    if raw[offset:offset + len(KTX_ENDIANNESS)] != KTX_ENDIANNESS:
        raise ResourceError("Unsupported KTX endianness")
    offset += len(KTX_ENDIANNESS)

    fields = struct.unpack_from(_HEADER_FORMAT, raw, offset)
    offset += struct.calcsize(_HEADER_FORMAT) + fields[-1]
    (image_size,) = struct.unpack_from("<I", raw, offset)
    offset += 4

    payload = np.frombuffer(raw, dtype='<f2', count=image_size // HALF_SIZE, offset=offset)
    return KTXImage(*fields, image_size, payload.astype(np.float32))


def read_ktx(path: str) -> KTXImage:
    """Read a KTX file written by :func:`save`."""
    with open(path, "rb") as f:
        return decode_ktx(f.read())


# =============================================================================
# PERSISTENCE
# =============================================================================
def save(
    device: ComputeDevice,
    table: Texture,
    name: str,
    output_dir: str,
    tile_volume_to_2d: bool = False,
) -> str:
    """
    Read a table back from the device and write ``<output_dir>/<name>.ktx``.

    Args:
        device: Device owning the table
        table: 2D or 3D table
        name: File stem
        output_dir: Destination directory (created if missing)
        tile_volume_to_2d: Write a 3D table as a 2D atlas of its slices

    Returns:
        Path of the written file

    Raises:
        PersistenceError: If the destination cannot be written
    """
    data = bridge.readback(device, table)
    width, height, depth = table.width, table.height, table.depth if table.volume else 0

    if table.volume and tile_volume_to_2d:
        volume = data.reshape(table.array_shape)
        data = tile_volume(volume)
        width, depth = width * table.depth, 0

    path = os.path.join(output_dir, f"{name}.ktx")
    contents = encode_ktx(data, width, height, depth)
    try:
        os.makedirs(output_dir, exist_ok=True)
        with open(path, "wb") as f:
            f.write(contents)
    except OSError as e:
        raise PersistenceError(f"Failed to write {path}: {e}") from e

    logger.info("Saved %s (%dx%dx%d)", path, width, height, depth)
    return path


def load_table(path: str) -> np.ndarray:
    """
    Load a KTX file as an RGBA array shaped (H, W, 4) or (D, H, W, 4).
    """
    image = read_ktx(path)
    if image.is_volume:
        shape = (image.depth, image.height, image.width, CHANNELS)
    else:
        shape = (image.height, image.width, CHANNELS)
    return image.data.reshape(shape)
