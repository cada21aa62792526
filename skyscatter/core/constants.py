"""
Skyscatter constants - LUT dimensions, physical defaults and texture formats.
"""

import numpy as np

# =============================================================================
# LUT DIMENSIONS
# =============================================================================
# 2D tables are (width, height), 3D tables are (width, height, depth).
TRANSMITTANCE_LUT_SIZE = (32, 128)
SKYBOX_LUT_SIZE = (32, 128, 32)
GATHER_SUM_LUT_SIZE = (32, 32)
INSCATTERING_LUT_SIZE = (32, 32, 16)

CHANNELS = 4

# =============================================================================
# PHYSICAL DEFAULTS (meters, m^-1)
# =============================================================================
PLANET_RADIUS = 6371000.0
ATMOSPHERE_HEIGHT = 80000.0

# Rayleigh, Mie, ozone
DENSITY_SCALE_HEIGHTS = np.array([8000.0, 1200.0, 8000.0])

RAYLEIGH_SCATTERING = np.array([5.8, 13.5, 33.1]) * 1e-6
MIE_SCATTERING = np.array([5.0, 5.0, 5.0]) * 1e-6
OZONE_EXTINCTION = np.array([3.426, 8.298, 0.356]) * 1e-6

MIE_G = 0.76
INCOMING_LIGHT = np.array([4.0, 4.0, 4.0])
SUN_ILLUMINANCE = 120000.0

# Height fog
HF_BETA_RAYLEIGH_SCATTER = np.array([5.8, 13.5, 33.1]) * 1e-6
HF_BETA_MIE_SCATTER = 2.0e-6
HF_BETA_ABSORPTION_SCATTER = 1.0e-6
HF_MIE_ASYMMETRY = 0.402
HF_SCALE_HEIGHT = 1200.0

# =============================================================================
# INTEGRATION
# =============================================================================
DEFAULT_SCATTERING_ORDERS = 3
DEFAULT_SAMPLE_COUNT = 16
TRANSMITTANCE_SAMPLE_COUNT = 64
GATHER_SAMPLE_COUNT = 8
AERIAL_STEPS_PER_SLICE = 4

# =============================================================================
# KERNEL NAMES
# =============================================================================
KERNEL_TRANSMITTANCE = "Transmittance"
KERNEL_SKYBOX = "SkyboxLUT"
KERNEL_GATHER_SUM = "GatherSum"
KERNEL_MULTIPLE_SCATTER = "MultipleScatterLUT"
KERNEL_SKYLIGHT = "Skylight"
KERNEL_SUNLIGHT = "Sunlight"
KERNEL_AERIAL_PERSPECTIVE = "AerialPerspLUT"
KERNEL_COMPOSITE = "Composite"
KERNEL_READ_TEXTURE = "ReadTexture"
KERNEL_WRITE_TEXTURE = "WriteTexture"

# =============================================================================
# TABLE NAMES
# =============================================================================
TRANSMITTANCE_LUT = "TransmittanceLUT"
SKYBOX_LUT = "SkyboxLUT"
SKYBOX_LUT_WORK = "SkyboxLUT2"
SKYBOX_LUT_SINGLE = "SkyboxLUTSingle"
GATHER_SUM_LUT = "GatherSumLUT"
GATHER_SUM_LUT_ORDER = "GatherSumLUT2"
SKYLIGHT_LUT = "SkylightLUT"
SUNLIGHT_LUT = "SunlightLUT"
INSCATTERING_LUT = "InscatteringLUT"
EXTINCTION_LUT = "ExtinctionLUT"

# =============================================================================
# KTX 1.1
# =============================================================================
KTX_IDENTIFIER = bytes([
    0xAB, 0x4B, 0x54, 0x58,
    0x20, 0x31, 0x31, 0xBB,
    0x0D, 0x0A, 0x1A, 0x0A,
])
KTX_ENDIANNESS = bytes([0x01, 0x02, 0x03, 0x04])

GL_HALF_FLOAT = 0x140B
GL_RGBA = 0x1908
GL_RGBA16F = 0x881A
HALF_SIZE = 2
