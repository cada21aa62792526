"""
Device buffer bridge - move LUT contents between textures and host memory.

Textures cannot be read directly; every transfer goes through a structured
buffer of float4 elements filled or drained by a transfer kernel. The
buffer's ``get_buffer_data`` call is the synchronisation point with the
device.
"""

import logging

import numpy as np

from .constants import CHANNELS, KERNEL_READ_TEXTURE, KERNEL_WRITE_TEXTURE
from .device import ComputeDevice, Texture
from .errors import ResourceError

logger = logging.getLogger(__name__)

# float4 element
BUFFER_STRIDE = 4 * CHANNELS


def _dispatch_extent(table: Texture):
    return (table.width, table.height, max(table.depth, 1))


def readback(device: ComputeDevice, table: Texture) -> np.ndarray:
    """
    Copy a 2D or 3D table into a flat float32 array.

    Returns:
        Array of ``width * height * max(depth, 1) * 4`` floats, depth-major,
        then row-major, channel-interleaved.
    """
    device.require_kernels([KERNEL_READ_TEXTURE])
    buffer = device.create_buffer(table.texel_count, BUFFER_STRIDE)
    try:
        device.dispatch(
            KERNEL_READ_TEXTURE,
            _dispatch_extent(table),
            {'_Source': table, '_Buffer': buffer},
        )
        data = device.get_buffer_data(buffer)
    finally:
        device.release_buffer(buffer)
    logger.debug("Read back %r (%d floats)", table, data.size)
    return data


def writeback(device: ComputeDevice, table: Texture, data: np.ndarray) -> None:
    """
    Upload a flat float array into a table.

    Raises:
        ResourceError: If ``data`` does not hold exactly one RGBA value per texel
    """
    data = np.asarray(data, dtype=np.float32).reshape(-1)
    if data.size != table.float_count:
        raise ResourceError(
            f"Cannot write {data.size} floats into {table!r}; expected {table.float_count}"
        )
    device.require_kernels([KERNEL_WRITE_TEXTURE])
    buffer = device.create_buffer(table.texel_count, BUFFER_STRIDE)
    try:
        device.set_buffer_data(buffer, data)
        device.dispatch(
            KERNEL_WRITE_TEXTURE,
            _dispatch_extent(table),
            {'_Buffer': buffer, '_Destination': table},
        )
    finally:
        device.release_buffer(buffer)
    logger.debug("Wrote back %r", table)
