"""
Skyscatter Core - scattering LUT precompute and aerial perspective.
"""

from .constants import *
from .errors import ConfigurationError, PersistenceError, ResourceError, SkyScatterError
from .parameters import (
    AtmosphereParameters,
    CameraState,
    HeightFogParameters,
    PrecomputeSettings,
    RenderMode,
    SunLight,
)
from .backend import ComputeBackend, is_gpu_available
from .device import ComputeBuffer, ComputeDevice, FilterMode, Texture, TextureFormat
from .software import SoftwareDevice
from .registry import LUTRegistry
from .binder import Material, ParameterBinder
from .precompute import PrecomputeContext, PrecomputeResult, ScatteringPrecompute
from .aerial import AerialPerspective
