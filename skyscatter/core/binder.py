"""
Parameter binder - physical constants and per-frame values into uniform state.

Kernel bindings are plain dictionaries handed to ``ComputeDevice.dispatch``.
Material bindings land in a :class:`Material`, the uniform container a host
renderer reads when drawing the sky and the aerial perspective composite.
"""

import logging
from typing import Any, Dict, Optional, Set

import numpy as np

from .constants import (
    TRANSMITTANCE_LUT,
    SKYBOX_LUT,
    SKYBOX_LUT_WORK,
    SKYBOX_LUT_SINGLE,
    SKYLIGHT_LUT,
    SUNLIGHT_LUT,
)
from .errors import ConfigurationError
from .parameters import AtmosphereParameters, PrecomputeSettings, RenderMode, SunLight
from .registry import LUTRegistry

logger = logging.getLogger(__name__)

REFERENCE_KEYWORD = "ATMOSPHERE_REFERENCE"


def vec4(value, w: float = 0.0) -> np.ndarray:
    """Pad a scalar or 3-vector to the vec4 layout uniforms use."""
    arr = np.asarray(value, dtype=np.float64).reshape(-1)
    if arr.size == 1:
        arr = np.repeat(arr, 3)
    out = np.full(4, w, dtype=np.float64)
    out[:min(arr.size, 4)] = arr[:4]
    return out


def size_vec(size) -> np.ndarray:
    """LUT dimensions as a vec4 (unused axes 0)."""
    return vec4([float(s) for s in size])


class Material:
    """Uniform state of a host material: named values plus shader keywords."""

    def __init__(self, name: str = "Material"):
        self.name = name
        self.values: Dict[str, Any] = {}
        self.keywords: Set[str] = set()

    def set(self, name: str, value) -> None:
        self.values[name] = value

    def update(self, values: Dict[str, Any]) -> None:
        self.values.update(values)

    def get(self, name: str, default=None):
        return self.values.get(name, default)

    def __getitem__(self, name: str):
        return self.values[name]

    def __contains__(self, name: str) -> bool:
        return name in self.values

    def enable_keyword(self, keyword: str) -> None:
        self.keywords.add(keyword)

    def disable_keyword(self, keyword: str) -> None:
        self.keywords.discard(keyword)

    def is_keyword_enabled(self, keyword: str) -> bool:
        return keyword in self.keywords


class ParameterBinder:
    """
    Translates the parameter set, the sun and the settings into bindings.

    Args:
        params: Physical parameter set
        sun: Directional light, may be None until the host assigns one
        settings: LUT sizes and sample counts
    """

    def __init__(
        self,
        params: AtmosphereParameters,
        sun: Optional[SunLight],
        settings: PrecomputeSettings,
    ):
        self.params = params
        self.sun = sun
        self.settings = settings

    def require_sun(self) -> SunLight:
        if self.sun is None:
            raise ConfigurationError("Sun light is not set")
        return self.sun

    def compute_bindings(self, registry: LUTRegistry) -> Dict[str, Any]:
        """Uniforms shared by every scattering kernel."""
        sun = self.require_sun()
        p = self.params
        s = self.settings
        bindings = {
            '_AtmosphereHeight': float(p.atmosphere_height),
            '_PlanetRadius': float(p.planet_radius),
            '_DensityScaleHeight': vec4(p.density_scale_heights),
            '_ScatteringR': vec4(p.scattering_r),
            '_ScatteringM': vec4(p.scattering_m),
            '_ExtinctionR': vec4(p.extinction_r),
            '_ExtinctionM': vec4(p.extinction_m),
            '_ExtinctionO': vec4(p.ozone_extinction),
            '_LightColor': vec4(sun.light_color, 1.0),
            '_MieG': float(p.mie_g),
            '_DistanceScale': float(p.distance_scale),
            '_SampleCount': int(s.sample_count),
            '_TransmittanceSampleCount': int(s.transmittance_sample_count),
            '_GatherSampleCount': int(s.gather_sample_count),
            '_AerialStepsPerSlice': int(s.aerial_steps_per_slice),
            '_ScatterLUTSize': size_vec(s.skybox_lut_size),
            '_TransmittanceLUTSize': size_vec(s.transmittance_lut_size),
            '_GatherSumLUTSize': size_vec(s.gather_sum_lut_size),
            '_InscatteringLUTSize': size_vec(s.inscattering_lut_size),
        }
        if TRANSMITTANCE_LUT in registry:
            bindings['_TransmittanceLUT'] = registry.get(TRANSMITTANCE_LUT)
        return bindings

    def material_bindings(self, registry: LUTRegistry) -> Dict[str, Any]:
        """Uniforms of the sky and compositing materials."""
        sun = self.require_sun()
        p = self.params
        fog = p.height_fog
        bindings = self.compute_bindings(registry)
        bindings.update({
            '_LightDir': vec4(sun.direction, 1.0 / (sun.range * sun.range)),
            '_LightIrradiance': vec4(sun.light_color, 1.0),
            '_SunIlluminance': float(p.sun_illuminance),
            '_IncomingLight': vec4(p.incoming_light, 1.0),
            '_HFBetaRs': vec4(fog.beta_rs),
            '_HFBetaMs': float(fog.beta_ms),
            '_HFBetaMa': float(fog.beta_ma),
            '_HFMieAsymmetry': float(fog.mie_asymmetry),
            '_HFScaleHeight': float(fog.scale_height),
            '_HFAlbedoR': vec4(fog.albedo_r),
            '_HFAlbedoM': vec4(fog.albedo_m),
        })
        for uniform, table in (
            ('_SkyboxLUT', SKYBOX_LUT),
            ('_SkyboxLUT2', SKYBOX_LUT_WORK),
            ('_SkyboxLUTSingle', SKYBOX_LUT_SINGLE),
            ('_SkylightLUT', SKYLIGHT_LUT),
            ('_SunlightLUT', SUNLIGHT_LUT),
        ):
            if table in registry:
                bindings[uniform] = registry.get(table)
        return bindings

    def apply_material(self, material: Material, registry: LUTRegistry) -> Material:
        material.update(self.material_bindings(registry))
        return material

    def update_skybox(
        self,
        material: Material,
        registry: LUTRegistry,
        camera_position,
        mode: RenderMode = RenderMode.OPTIMIZED,
    ) -> Material:
        """Per-frame skybox update: uniforms, camera position and render mode."""
        self.apply_material(material, registry)
        material.set('_CameraPos', vec4(camera_position))
        if mode == RenderMode.REFERENCE:
            material.enable_keyword(REFERENCE_KEYWORD)
        else:
            material.disable_keyword(REFERENCE_KEYWORD)
        return material
