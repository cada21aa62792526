"""
Skyscatter - Precomputed atmospheric scattering lookup tables

Precomputes transmittance, single and multiple scattering lookup tables for a
planetary atmosphere, persists them as KTX files, and evaluates a per-frame
aerial perspective volume from the converged tables.
"""

__version__ = "1.0.0"

from .core import (
    AerialPerspective,
    AtmosphereParameters,
    CameraState,
    ConfigurationError,
    HeightFogParameters,
    LUTRegistry,
    Material,
    ParameterBinder,
    PersistenceError,
    PrecomputeContext,
    PrecomputeResult,
    PrecomputeSettings,
    RenderMode,
    ResourceError,
    ScatteringPrecompute,
    SkyScatterError,
    SoftwareDevice,
    SunLight,
)
from .atmosphere import AtmosphericScattering
