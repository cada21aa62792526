"""
Skyscatter Parameters - Atmosphere, light, camera and precompute settings.
"""

import enum
from dataclasses import dataclass, field, asdict
from typing import Optional, Tuple

import numpy as np

from .constants import (
    PLANET_RADIUS,
    ATMOSPHERE_HEIGHT,
    DENSITY_SCALE_HEIGHTS,
    RAYLEIGH_SCATTERING,
    MIE_SCATTERING,
    OZONE_EXTINCTION,
    MIE_G,
    INCOMING_LIGHT,
    SUN_ILLUMINANCE,
    HF_BETA_RAYLEIGH_SCATTER,
    HF_BETA_MIE_SCATTER,
    HF_BETA_ABSORPTION_SCATTER,
    HF_MIE_ASYMMETRY,
    HF_SCALE_HEIGHT,
    TRANSMITTANCE_LUT_SIZE,
    SKYBOX_LUT_SIZE,
    GATHER_SUM_LUT_SIZE,
    INSCATTERING_LUT_SIZE,
    DEFAULT_SCATTERING_ORDERS,
    DEFAULT_SAMPLE_COUNT,
    TRANSMITTANCE_SAMPLE_COUNT,
    GATHER_SAMPLE_COUNT,
    AERIAL_STEPS_PER_SLICE,
)
from .errors import ConfigurationError


class RenderMode(enum.Enum):
    REFERENCE = "reference"
    OPTIMIZED = "optimized"


def _vec3(value) -> np.ndarray:
    arr = np.asarray(value, dtype=np.float64)
    if arr.ndim == 0:
        arr = np.full(3, float(arr))
    return arr[:3].copy()


@dataclass
class HeightFogParameters:
    """
    Height fog constants forwarded to the compositing material.

    The beta coefficients are base values multiplied by their user
    coefficients, the same way the Rayleigh/Mie coefficients are.
    """
    beta_rayleigh_scatter_coef: float = 1.0
    beta_mie_scatter_coef: float = 1.0
    beta_absorption_scatter_coef: float = 1.0
    mie_asymmetry: float = HF_MIE_ASYMMETRY
    scale_height: float = HF_SCALE_HEIGHT
    albedo_r: np.ndarray = field(default_factory=lambda: np.ones(4))
    albedo_m: np.ndarray = field(default_factory=lambda: np.ones(4))

    def __post_init__(self):
        self.albedo_r = np.asarray(self.albedo_r, dtype=np.float64)
        self.albedo_m = np.asarray(self.albedo_m, dtype=np.float64)

    @property
    def beta_rs(self) -> np.ndarray:
        return HF_BETA_RAYLEIGH_SCATTER * self.beta_rayleigh_scatter_coef

    @property
    def beta_ms(self) -> float:
        return HF_BETA_MIE_SCATTER * self.beta_mie_scatter_coef

    @property
    def beta_ma(self) -> float:
        return HF_BETA_ABSORPTION_SCATTER * self.beta_absorption_scatter_coef


@dataclass
class AtmosphereParameters:
    """
    Physical parameter set for one precompute run.

    All spatial values are in meters, coefficients in m^-1. The base Rayleigh
    and Mie vectors are scaled by the four user coefficients to produce the
    scattering/extinction vectors actually bound to the kernels.
    """

    # Planet geometry
    planet_radius: float = PLANET_RADIUS
    atmosphere_height: float = ATMOSPHERE_HEIGHT

    # Rayleigh, Mie, ozone scale heights
    density_scale_heights: np.ndarray = field(
        default_factory=lambda: DENSITY_SCALE_HEIGHTS.copy()
    )

    rayleigh_sct: np.ndarray = field(default_factory=lambda: RAYLEIGH_SCATTERING.copy())
    mie_sct: np.ndarray = field(default_factory=lambda: MIE_SCATTERING.copy())
    ozone_extinction: np.ndarray = field(default_factory=lambda: OZONE_EXTINCTION.copy())

    # User coefficients
    rayleigh_scatter_coef: float = 1.0
    rayleigh_extinction_coef: float = 1.0
    mie_scatter_coef: float = 1.0
    mie_extinction_coef: float = 1.0

    mie_g: float = MIE_G
    incoming_light: np.ndarray = field(default_factory=lambda: INCOMING_LIGHT.copy())
    sun_illuminance: float = SUN_ILLUMINANCE

    # World units to meters
    distance_scale: float = 1.0

    height_fog: HeightFogParameters = field(default_factory=HeightFogParameters)

    def __post_init__(self):
        """Ensure arrays are numpy arrays."""
        self.density_scale_heights = np.asarray(self.density_scale_heights, dtype=np.float64)
        self.rayleigh_sct = _vec3(self.rayleigh_sct)
        self.mie_sct = _vec3(self.mie_sct)
        self.ozone_extinction = _vec3(self.ozone_extinction)
        self.incoming_light = _vec3(self.incoming_light)
        if isinstance(self.height_fog, dict):
            self.height_fog = HeightFogParameters(**self.height_fog)

    @classmethod
    def earth_default(cls, use_ozone: bool = True) -> 'AtmosphereParameters':
        """Create default Earth atmosphere parameters."""
        params = cls()
        if not use_ozone:
            params.ozone_extinction = np.zeros(3)
        return params

    @classmethod
    def from_artistic_controls(
        cls,
        rayleigh_density_scale: float = 1.0,
        mie_density_scale: float = 1.0,
        mie_g: float = MIE_G,
        rayleigh_height: float = DENSITY_SCALE_HEIGHTS[0],
        mie_height: float = DENSITY_SCALE_HEIGHTS[1],
        use_ozone: bool = True,
        ozone_density: float = 1.0,
    ) -> 'AtmosphereParameters':
        """
        Create atmosphere parameters from artistic control values.

        Args:
            rayleigh_density_scale: Multiplier for both Rayleigh coefficients
            mie_density_scale: Multiplier for both Mie coefficients
            mie_g: Mie phase function asymmetry, clamped to [0, 0.999]
            rayleigh_height: Scale height for air molecules (meters)
            mie_height: Scale height for aerosols (meters)
            use_ozone: Include ozone absorption
            ozone_density: Multiplier for ozone absorption
        """
        params = cls()
        params.rayleigh_scatter_coef = rayleigh_density_scale
        params.rayleigh_extinction_coef = rayleigh_density_scale
        params.mie_scatter_coef = mie_density_scale
        params.mie_extinction_coef = mie_density_scale
        params.mie_g = float(np.clip(mie_g, 0.0, 0.999))
        params.density_scale_heights = np.array(
            [rayleigh_height, mie_height, DENSITY_SCALE_HEIGHTS[2]]
        )
        if not use_ozone or ozone_density <= 0:
            params.ozone_extinction = np.zeros(3)
        else:
            params.ozone_extinction = OZONE_EXTINCTION * ozone_density
        return params

    @classmethod
    def zero_scattering(cls) -> 'AtmosphereParameters':
        """An atmosphere that neither scatters nor absorbs."""
        params = cls()
        params.rayleigh_scatter_coef = 0.0
        params.rayleigh_extinction_coef = 0.0
        params.mie_scatter_coef = 0.0
        params.mie_extinction_coef = 0.0
        params.ozone_extinction = np.zeros(3)
        return params

    @property
    def top_radius(self) -> float:
        return self.planet_radius + self.atmosphere_height

    @property
    def scattering_r(self) -> np.ndarray:
        return self.rayleigh_sct * self.rayleigh_scatter_coef

    @property
    def extinction_r(self) -> np.ndarray:
        return self.rayleigh_sct * self.rayleigh_extinction_coef

    @property
    def scattering_m(self) -> np.ndarray:
        return self.mie_sct * self.mie_scatter_coef

    @property
    def extinction_m(self) -> np.ndarray:
        return self.mie_sct * self.mie_extinction_coef

    def validate(self) -> None:
        """Raise ConfigurationError unless the set is physically usable."""
        if self.planet_radius <= 0 or self.atmosphere_height <= 0:
            raise ConfigurationError("planet radius and atmosphere height must be positive")
        if np.any(self.density_scale_heights <= 0):
            raise ConfigurationError("density scale heights must be positive")
        coefficients = {
            'rayleigh_sct': self.rayleigh_sct,
            'mie_sct': self.mie_sct,
            'ozone_extinction': self.ozone_extinction,
            'incoming_light': self.incoming_light,
            'rayleigh_scatter_coef': self.rayleigh_scatter_coef,
            'rayleigh_extinction_coef': self.rayleigh_extinction_coef,
            'mie_scatter_coef': self.mie_scatter_coef,
            'mie_extinction_coef': self.mie_extinction_coef,
        }
        for name, value in coefficients.items():
            if np.any(np.asarray(value) < 0):
                raise ConfigurationError(f"{name} must be non-negative, got {value}")
        if not 0.0 <= self.mie_g < 1.0:
            raise ConfigurationError(f"mie_g must be in [0, 1), got {self.mie_g}")
        if self.distance_scale <= 0:
            raise ConfigurationError("distance_scale must be positive")

    def to_dict(self) -> dict:
        data = asdict(self)
        return _to_plain(data)

    @classmethod
    def from_dict(cls, data: dict) -> 'AtmosphereParameters':
        """Build from a config section; unknown keys raise ConfigurationError."""
        data = dict(data)
        _reject_unknown(cls, data, 'atmosphere')
        fog = data.get('height_fog')
        if isinstance(fog, dict):
            _reject_unknown(HeightFogParameters, fog, 'atmosphere.height_fog')
        return cls(**data)


@dataclass
class SunLight:
    """
    Directional sun light.

    ``direction`` is the light's forward vector (pointing from the sun into
    the scene); kernels use its negation as the direction towards the sun.
    """
    direction: np.ndarray = field(
        default_factory=lambda: np.array([0.0, -0.5, 0.8660254])
    )
    color: np.ndarray = field(default_factory=lambda: np.ones(3))
    intensity: float = 1.0
    range: float = 10.0

    def __post_init__(self):
        direction = np.asarray(self.direction, dtype=np.float64)
        norm = np.linalg.norm(direction)
        if norm == 0:
            raise ConfigurationError("sun direction must be non-zero")
        self.direction = direction / norm
        self.color = _vec3(self.color)

    @classmethod
    def from_angles(cls, elevation: float, heading: float = 0.0, **kwargs) -> 'SunLight':
        """Build a sun from elevation/heading in degrees (Y-up world)."""
        elev = np.radians(elevation)
        head = np.radians(heading)
        to_sun = np.array([
            np.cos(elev) * np.sin(head),
            np.sin(elev),
            np.cos(elev) * np.cos(head),
        ])
        return cls(direction=-to_sun, **kwargs)

    @classmethod
    def from_dict(cls, data: dict) -> 'SunLight':
        """Build from a config section holding a direction or elevation/heading."""
        data = dict(data)
        if 'direction' in data:
            _reject_unknown(cls, data, 'sun')
            return cls(**data)
        elevation = data.pop('elevation', 30.0)
        heading = data.pop('heading', 0.0)
        _reject_unknown(cls, data, 'sun')
        return cls.from_angles(elevation, heading, **data)

    @property
    def light_color(self) -> np.ndarray:
        return self.color * self.intensity


@dataclass
class CameraState:
    """
    Camera position and the four world-space far-plane frustum corners,
    ordered bottom-left, top-left, top-right, bottom-right.
    """
    position: np.ndarray
    corners: np.ndarray

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=np.float64).reshape(3)
        self.corners = np.asarray(self.corners, dtype=np.float64).reshape(4, 3)

    @classmethod
    def from_perspective(
        cls,
        position,
        forward=(0.0, 0.0, 1.0),
        up=(0.0, 1.0, 0.0),
        fov: float = 60.0,
        aspect: float = 16.0 / 9.0,
        far: float = 1000.0,
    ) -> 'CameraState':
        """
        Build the frustum corners of a perspective camera.

        Args:
            position: Camera position in world units
            forward: View direction
            up: Approximate up vector
            fov: Vertical field of view in degrees
            aspect: Width / height
            far: Far clip plane distance
        """
        position = np.asarray(position, dtype=np.float64)
        forward = np.asarray(forward, dtype=np.float64)
        forward = forward / np.linalg.norm(forward)
        right = np.cross(np.asarray(up, dtype=np.float64), forward)
        right = right / np.linalg.norm(right)
        true_up = np.cross(forward, right)

        half_h = np.tan(np.radians(fov) * 0.5) * far
        half_w = half_h * aspect
        center = position + forward * far
        corners = np.array([
            center - right * half_w - true_up * half_h,
            center - right * half_w + true_up * half_h,
            center + right * half_w + true_up * half_h,
            center + right * half_w - true_up * half_h,
        ])
        return cls(position=position, corners=corners)

    @classmethod
    def degenerate(cls, position) -> 'CameraState':
        """A camera whose frustum collapsed onto its position."""
        position = np.asarray(position, dtype=np.float64)
        return cls(position=position, corners=np.tile(position, (4, 1)))

    def corners_vec4(self) -> np.ndarray:
        """Corners padded to vec4 the way material vector arrays expect."""
        return np.concatenate([self.corners, np.zeros((4, 1))], axis=1)


@dataclass
class PrecomputeSettings:
    """Sizes, sample counts and persistence options of a precompute run."""

    num_scattering_orders: int = DEFAULT_SCATTERING_ORDERS

    transmittance_lut_size: Tuple[int, int] = TRANSMITTANCE_LUT_SIZE
    skybox_lut_size: Tuple[int, int, int] = SKYBOX_LUT_SIZE
    gather_sum_lut_size: Tuple[int, int] = GATHER_SUM_LUT_SIZE
    inscattering_lut_size: Tuple[int, int, int] = INSCATTERING_LUT_SIZE

    sample_count: int = DEFAULT_SAMPLE_COUNT
    transmittance_sample_count: int = TRANSMITTANCE_SAMPLE_COUNT
    gather_sample_count: int = GATHER_SAMPLE_COUNT
    aerial_steps_per_slice: int = AERIAL_STEPS_PER_SLICE

    # Where KTX files go; None disables persistence
    output_dir: Optional[str] = None
    persist_aerial_perspective: bool = True

    render_mode: RenderMode = RenderMode.OPTIMIZED
    render_atmospheric_fog: bool = True

    def __post_init__(self):
        self.transmittance_lut_size = tuple(int(x) for x in self.transmittance_lut_size)
        self.skybox_lut_size = tuple(int(x) for x in self.skybox_lut_size)
        self.gather_sum_lut_size = tuple(int(x) for x in self.gather_sum_lut_size)
        self.inscattering_lut_size = tuple(int(x) for x in self.inscattering_lut_size)
        if isinstance(self.render_mode, str):
            self.render_mode = RenderMode(self.render_mode.lower())
        if self.num_scattering_orders < 1:
            raise ConfigurationError(
                f"num_scattering_orders must be >= 1, got {self.num_scattering_orders}"
            )
        for name in ('sample_count', 'transmittance_sample_count',
                     'gather_sample_count', 'aerial_steps_per_slice'):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be >= 1")

    @classmethod
    def from_dict(cls, data: dict) -> 'PrecomputeSettings':
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    def to_dict(self) -> dict:
        data = asdict(self)
        data['render_mode'] = self.render_mode.value
        return _to_plain(data)


def _to_plain(value):
    """Convert numpy values in nested containers to JSON friendly types."""
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, enum.Enum):
        return value.value
    return value


def _reject_unknown(cls, data: dict, section: str) -> None:
    unknown = sorted(set(data) - set(cls.__dataclass_fields__))
    if unknown:
        raise ConfigurationError(f"Unknown {section} option(s): {', '.join(unknown)}")
