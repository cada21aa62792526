"""
Skyscatter EXR Utilities - LUT atlas export for inspection in image tools.
"""

import logging
import os
from typing import Dict

import numpy as np

from ..core.errors import ConfigurationError, PersistenceError, ResourceError
from .ktx import tile_volume

# OpenEXR is an optional extra
try:
    import OpenEXR
    import Imath
    HAS_OPENEXR = True
except ImportError:
    HAS_OPENEXR = False

logger = logging.getLogger(__name__)

CHANNEL_NAMES = ('R', 'G', 'B', 'A')


def _require_openexr():
    if not HAS_OPENEXR:
        raise ConfigurationError("OpenEXR module not available. "
                                 "Install with: pip install skyscatter[exr]")


def lut_to_image(table: np.ndarray) -> np.ndarray:
    """
    Flatten a LUT array to a 2D RGBA image.

    Volumes (D, H, W, 4) are tiled with their depth slices side by side.
    """
    table = np.asarray(table, dtype=np.float32)
    if table.ndim == 4:
        return tile_volume(table)
    if table.ndim == 3:
        return table
    raise ResourceError(f"Expected a (H, W, 4) or (D, H, W, 4) table, got {table.shape}")


def write_lut_exr(filepath: str, table: np.ndarray, half_precision: bool = True) -> str:
    """
    Write a LUT as an RGBA EXR image.

    Args:
        filepath: Output file path
        table: LUT texels, (H, W, 4) or (D, H, W, 4)
        half_precision: Store 16-bit floats (True) or 32-bit floats (False)

    Returns:
        The written path
    """
    _require_openexr()
    image = lut_to_image(table)
    height, width = image.shape[:2]

    if half_precision:
        pixel_type = Imath.PixelType(Imath.PixelType.HALF)
        dtype = np.float16
    else:
        pixel_type = Imath.PixelType(Imath.PixelType.FLOAT)
        dtype = np.float32

    header = OpenEXR.Header(width, height)
    header['channels'] = {name: Imath.Channel(pixel_type) for name in CHANNEL_NAMES}
    # EXR scanline 0 is the top row; LUT row 0 is the bottom
    flipped = image[::-1]
    pixels = {
        name: np.ascontiguousarray(flipped[:, :, i]).astype(dtype).tobytes()
        for i, name in enumerate(CHANNEL_NAMES)
    }

    try:
        exr_file = OpenEXR.OutputFile(filepath, header)
        exr_file.writePixels(pixels)
        exr_file.close()
    except OSError as e:
        raise PersistenceError(f"Failed to write {filepath}: {e}") from e

    logger.info("Saved %s (%dx%d)", filepath, width, height)
    return filepath


def read_lut_exr(filepath: str) -> np.ndarray:
    """
    Read an RGBA EXR written by :func:`write_lut_exr`.

    Returns:
        (H, W, 4) float32 array with row 0 at the bottom
    """
    _require_openexr()
    if not os.path.exists(filepath):
        raise FileNotFoundError(f"EXR file not found: {filepath}")

    exr_file = OpenEXR.InputFile(filepath)
    header = exr_file.header()
    dw = header['dataWindow']
    width = dw.max.x - dw.min.x + 1
    height = dw.max.y - dw.min.y + 1

    float_type = Imath.PixelType(Imath.PixelType.FLOAT)
    image = np.zeros((height, width, 4), dtype=np.float32)
    for i, name in enumerate(CHANNEL_NAMES):
        raw = exr_file.channel(name, float_type)
        image[:, :, i] = np.frombuffer(raw, dtype=np.float32).reshape(height, width)
    exr_file.close()
    return image[::-1].copy()


def export_tables(tables: Dict[str, np.ndarray], output_dir: str) -> Dict[str, str]:
    """Write each named table as ``<output_dir>/<name>.exr``."""
    _require_openexr()
    os.makedirs(output_dir, exist_ok=True)
    return {
        name: write_lut_exr(os.path.join(output_dir, f"{name}.exr"), table)
        for name, table in tables.items()
    }
