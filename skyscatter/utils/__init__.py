"""
Skyscatter Utilities
"""

from .ktx import KTXImage, encode_ktx, decode_ktx, read_ktx, load_table, tile_volume, untile_volume
from .exr import HAS_OPENEXR, write_lut_exr, read_lut_exr
