"""
Software implementations of the scattering kernels.

Every kernel the precompute orchestrator and the aerial perspective evaluator
dispatch by name lives here, written against ``dev.xp`` so it runs on NumPy or
CuPy. Texture axes:

- transmittance, skylight, sunlight (2D): x = altitude, y = view/sun zenith cosine
- skybox (3D): x = altitude, y = view zenith cosine, z = sun zenith cosine
- gather sum (2D): x = altitude, y = sun zenith cosine
- aerial perspective (3D): x, y = normalized screen position, z = depth slice

Altitude maps linearly onto [0, atmosphere height] and cosines onto [-1, 1],
both sampled at texel centers. Skybox texels assume the sun lies in the
view plane (zero relative azimuth).
"""

from collections import namedtuple
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

import numpy as np

from .constants import (
    KERNEL_TRANSMITTANCE,
    KERNEL_SKYBOX,
    KERNEL_GATHER_SUM,
    KERNEL_MULTIPLE_SCATTER,
    KERNEL_SKYLIGHT,
    KERNEL_SUNLIGHT,
    KERNEL_AERIAL_PERSPECTIVE,
    KERNEL_COMPOSITE,
    KERNEL_READ_TEXTURE,
    KERNEL_WRITE_TEXTURE,
)
from .errors import ResourceError

KernelSpec = namedtuple('KernelSpec', ['fn', 'bindings'])

KERNELS: Dict[str, KernelSpec] = {}

ATMOSPHERE_BINDINGS = (
    '_AtmosphereHeight',
    '_PlanetRadius',
    '_DensityScaleHeight',
    '_ScatteringR',
    '_ScatteringM',
    '_ExtinctionR',
    '_ExtinctionM',
    '_ExtinctionO',
    '_MieG',
)

FOUR_PI = 4.0 * np.pi


def kernel(name: str, bindings: Tuple[str, ...]) -> Callable:
    """Register a kernel function under ``name`` with its declared bindings."""
    def decorator(fn):
        KERNELS[name] = KernelSpec(fn, tuple(bindings))
        return fn
    return decorator


# =============================================================================
# SHARED HELPERS
# =============================================================================
@dataclass
class _Atmosphere:
    bottom: float
    height: float
    scale_heights: np.ndarray
    scattering_r: np.ndarray
    scattering_m: np.ndarray
    extinction_r: np.ndarray
    extinction_m: np.ndarray
    extinction_o: np.ndarray
    mie_g: float

    @property
    def top(self) -> float:
        return self.bottom + self.height


def _atmosphere(b) -> _Atmosphere:
    def vec3(name):
        return np.asarray(b[name], dtype=np.float64).reshape(-1)[:3]
    return _Atmosphere(
        bottom=float(b['_PlanetRadius']),
        height=float(b['_AtmosphereHeight']),
        scale_heights=np.asarray(b['_DensityScaleHeight'], dtype=np.float64).reshape(-1)[:3],
        scattering_r=vec3('_ScatteringR'),
        scattering_m=vec3('_ScatteringM'),
        extinction_r=vec3('_ExtinctionR'),
        extinction_m=vec3('_ExtinctionM'),
        extinction_o=vec3('_ExtinctionO'),
        mie_g=float(b['_MieG']),
    )


def _centers(xp, n: int):
    return (xp.arange(n, dtype=xp.float64) + 0.5) / n


def _ray_length(xp, r, mu, bottom: float, top: float):
    """Distance to the ground if the ray hits it, else to the top of the atmosphere."""
    disc_top = r * r * (mu * mu - 1.0) + top * top
    d_top = xp.maximum(0.0, -r * mu + xp.sqrt(xp.maximum(0.0, disc_top)))
    disc_bottom = r * r * (mu * mu - 1.0) + bottom * bottom
    hits_ground = (mu < 0.0) & (disc_bottom >= 0.0)
    d_bottom = xp.maximum(0.0, -r * mu - xp.sqrt(xp.maximum(0.0, disc_bottom)))
    return xp.where(hits_ground, d_bottom, d_top), hits_ground


def _densities(xp, h, atm: _Atmosphere):
    h = xp.maximum(h, 0.0)
    return (
        xp.exp(-h / atm.scale_heights[0]),
        xp.exp(-h / atm.scale_heights[1]),
        xp.exp(-h / atm.scale_heights[2]),
    )


def _extinction(xp, h, atm: _Atmosphere):
    d_r, d_m, d_o = _densities(xp, h, atm)
    return (
        d_r[..., None] * xp.asarray(atm.extinction_r)
        + d_m[..., None] * xp.asarray(atm.extinction_m)
        + d_o[..., None] * xp.asarray(atm.extinction_o)
    )


def rayleigh_phase(xp, nu):
    return 3.0 / (16.0 * np.pi) * (1.0 + nu * nu)


def mie_phase(xp, g: float, nu):
    """Cornette-Shanks phase function."""
    k = 3.0 / (8.0 * np.pi) * (1.0 - g * g) / (2.0 + g * g)
    return k * (1.0 + nu * nu) / xp.power(xp.maximum(1.0 + g * g - 2.0 * g * nu, 1e-8), 1.5)


def sample_2d(xp, tex, u, v):
    """Bilinear, clamp-to-edge sample of a (H, W, C) array at normalized (u, v)."""
    height, width = tex.shape[:2]
    x = xp.clip(u * width - 0.5, 0.0, width - 1)
    y = xp.clip(v * height - 0.5, 0.0, height - 1)
    x0 = xp.floor(x).astype(xp.int64)
    y0 = xp.floor(y).astype(xp.int64)
    x1 = xp.minimum(x0 + 1, width - 1)
    y1 = xp.minimum(y0 + 1, height - 1)
    fx = (x - x0)[..., None]
    fy = (y - y0)[..., None]
    return (
        tex[y0, x0] * (1 - fx) * (1 - fy)
        + tex[y0, x1] * fx * (1 - fy)
        + tex[y1, x0] * (1 - fx) * fy
        + tex[y1, x1] * fx * fy
    )


def sample_3d(xp, tex, u, v, w):
    """Trilinear, clamp-to-edge sample of a (D, H, W, C) array."""
    depth, height, width = tex.shape[:3]
    x = xp.clip(u * width - 0.5, 0.0, width - 1)
    y = xp.clip(v * height - 0.5, 0.0, height - 1)
    z = xp.clip(w * depth - 0.5, 0.0, depth - 1)
    x0 = xp.floor(x).astype(xp.int64)
    y0 = xp.floor(y).astype(xp.int64)
    z0 = xp.floor(z).astype(xp.int64)
    x1 = xp.minimum(x0 + 1, width - 1)
    y1 = xp.minimum(y0 + 1, height - 1)
    z1 = xp.minimum(z0 + 1, depth - 1)
    fx = (x - x0)[..., None]
    fy = (y - y0)[..., None]
    fz = (z - z0)[..., None]

    def plane(zi):
        return (
            tex[zi, y0, x0] * (1 - fx) * (1 - fy)
            + tex[zi, y0, x1] * fx * (1 - fy)
            + tex[zi, y1, x0] * (1 - fx) * fy
            + tex[zi, y1, x1] * fx * fy
        )

    return plane(z0) * (1 - fz) + plane(z1) * fz


def _sun_transmittance(xp, transmittance, atm: _Atmosphere, r, h, mu_s):
    """Transmittance towards the sun, zero when the planet blocks it."""
    trans = sample_2d(xp, transmittance, h / atm.height, (mu_s + 1.0) * 0.5)[..., :3]
    _, blocked = _ray_length(xp, r, mu_s, atm.bottom, atm.top)
    return xp.where(blocked[..., None], 0.0, trans)


def _mie_from_alpha(xp, rgba, atm: _Atmosphere):
    """
    Rebuild the Mie RGB of a single-scatter texel that only stores Mie red
    in its alpha channel.
    """
    beta_r = atm.scattering_r
    beta_m = atm.scattering_m
    if beta_m[0] > 0:
        grey_ratio = beta_m / beta_m[0]
    else:
        grey_ratio = np.zeros(3)
    if beta_r[0] > 0 and np.all(beta_r > 0) and beta_m[0] > 0:
        color_ratio = (beta_r[0] / beta_r) * grey_ratio
    else:
        color_ratio = np.zeros(3)

    rgb = rgba[..., :3]
    alpha = rgba[..., 3:4]
    red = rgba[..., 0:1]
    safe_red = xp.where(red > 0, red, 1.0)
    colored = rgb * alpha / safe_red * xp.asarray(color_ratio)
    grey = alpha * xp.asarray(grey_ratio)
    use_colored = (red > 0) & bool(color_ratio[0] > 0)
    return xp.where(use_colored, colored, grey)


def _march(xp, atm: _Atmosphere, h, mu, mu_s, nu, steps: int):
    """
    Midpoint ray march from altitude ``h`` along view cosine ``mu`` to the
    ground or the top of the atmosphere. Returns per-sample arrays with a
    trailing sample axis.
    """
    r = atm.bottom + h
    length, _ = _ray_length(xp, r, mu, atm.bottom, atm.top)
    ds = length / steps
    t = (xp.arange(steps, dtype=xp.float64) + 0.5) * ds[..., None]
    r_, mu_, mu_s_, nu_ = r[..., None], mu[..., None], mu_s[..., None], nu[..., None]
    r_t = xp.sqrt(xp.maximum(0.0, r_ * r_ + t * t + 2.0 * r_ * mu_ * t))
    h_t = xp.clip(r_t - atm.bottom, 0.0, atm.height)
    mu_s_t = xp.clip((r_ * mu_s_ + t * nu_) / xp.maximum(r_t, 1e-6), -1.0, 1.0)

    step_depth = _extinction(xp, h_t, atm) * ds[..., None, None]
    optical_depth = xp.cumsum(step_depth, axis=-2) - 0.5 * step_depth
    view_transmittance = xp.exp(-optical_depth)
    d_r, d_m, _ = _densities(xp, h_t, atm)
    return r_t, h_t, mu_s_t, view_transmittance, ds, d_r, d_m


def _skybox_grid(xp, width: int, height: int):
    """Altitude fractions (1, W) and view cosines (H, 1) of one skybox slice."""
    u = _centers(xp, width)[None, :]
    mu = (_centers(xp, height) * 2.0 - 1.0)[:, None]
    return xp.broadcast_arrays(u, mu)


def _rgba(xp, rgb, alpha: float):
    return xp.concatenate([rgb, xp.full(rgb.shape[:-1] + (1,), alpha)], axis=-1)


# =============================================================================
# TRANSFER KERNELS
# =============================================================================
@kernel(KERNEL_READ_TEXTURE, ('_Source', '_Buffer'))
def read_texture(dev, groups, b):
    texture, buffer = b['_Source'], b['_Buffer']
    if buffer.float_count != texture.float_count:
        raise ResourceError(
            f"Buffer of {buffer.float_count} floats cannot hold {texture!r} "
            f"({texture.float_count} floats)"
        )
    texels = dev.texture_array(texture)
    dev.buffer_array(buffer)[:] = texels.astype(dev.xp.float32).reshape(-1)


@kernel(KERNEL_WRITE_TEXTURE, ('_Buffer', '_Destination'))
def write_texture(dev, groups, b):
    texture, buffer = b['_Destination'], b['_Buffer']
    if buffer.float_count != texture.float_count:
        raise ResourceError(
            f"Buffer of {buffer.float_count} floats does not match {texture!r} "
            f"({texture.float_count} floats)"
        )
    dev.store(texture, dev.buffer_array(buffer).reshape(texture.array_shape))


# =============================================================================
# PRECOMPUTE KERNELS
# =============================================================================
@kernel(KERNEL_TRANSMITTANCE,
        ('_TransmittanceLUT', '_TransmittanceSampleCount') + ATMOSPHERE_BINDINGS)
def transmittance(dev, groups, b):
    """Optical depth integration from each (altitude, view cosine) texel."""
    xp = dev.xp
    atm = _atmosphere(b)
    target = b['_TransmittanceLUT']
    steps = int(b['_TransmittanceSampleCount'])

    u, mu = _skybox_grid(xp, target.width, target.height)
    r = atm.bottom + u * atm.height
    length, _ = _ray_length(xp, r, mu, atm.bottom, atm.top)
    ds = length / steps
    t = (xp.arange(steps, dtype=xp.float64) + 0.5) * ds[..., None]
    r_t = xp.sqrt(xp.maximum(
        0.0, r[..., None] ** 2 + t * t + 2.0 * r[..., None] * mu[..., None] * t))
    h_t = r_t - atm.bottom
    optical_depth = xp.sum(_extinction(xp, h_t, atm), axis=-2) * ds[..., None]
    dev.store(target, _rgba(xp, xp.exp(-optical_depth), 1.0))


@kernel(KERNEL_SKYBOX,
        ('_SkyboxLUT2', '_SkyboxLUTSingle', '_TransmittanceLUT', '_LightColor',
         '_SampleCount') + ATMOSPHERE_BINDINGS)
def skybox_single_scattering(dev, groups, b):
    """Single Rayleigh (rgb) and Mie (red in alpha) inscattering, phase free."""
    xp = dev.xp
    atm = _atmosphere(b)
    target = b['_SkyboxLUT2']
    single = b['_SkyboxLUTSingle']
    steps = int(b['_SampleCount'])
    transmittance = dev.texture_array(b['_TransmittanceLUT'])
    light = xp.asarray(np.asarray(b['_LightColor'], dtype=np.float64).reshape(-1)[:3])

    u, mu = _skybox_grid(xp, target.width, target.height)
    h = u * atm.height
    out = xp.zeros(target.array_shape, dtype=xp.float64)
    for k, mu_s_value in enumerate(_centers(np, target.depth) * 2.0 - 1.0):
        mu_s = xp.full(h.shape, mu_s_value)
        nu = mu * mu_s + xp.sqrt(xp.maximum(0.0, (1.0 - mu * mu) * (1.0 - mu_s * mu_s)))
        r_t, h_t, mu_s_t, view_t, ds, d_r, d_m = _march(xp, atm, h, mu, mu_s, nu, steps)
        sun_t = _sun_transmittance(xp, transmittance, atm, r_t, h_t, mu_s_t)
        path = view_t * sun_t
        rayleigh = xp.sum(path * d_r[..., None], axis=-2) * ds[..., None]
        mie = xp.sum(path * d_m[..., None], axis=-2) * ds[..., None]
        rayleigh = rayleigh * xp.asarray(atm.scattering_r) * light
        mie = mie * xp.asarray(atm.scattering_m) * light
        out[k, ..., :3] = rayleigh
        out[k, ..., 3] = mie[..., 0]

    dev.store(target, out)
    dev.store(single, out)


@kernel(KERNEL_GATHER_SUM,
        ('_GatherSumLUT2', '_SkyboxLUT2', '_SingleScatterSource',
         '_GatherSampleCount') + ATMOSPHERE_BINDINGS)
def gather_sum(dev, groups, b):
    """
    Integrate the skybox radiance over the sphere of incoming directions for
    each (altitude, sun cosine) texel.

    A single-scatter source stores phase-free Rayleigh/Mie terms and gets the
    phase functions applied here; multiple-scatter sources are isotropic.
    """
    xp = dev.xp
    atm = _atmosphere(b)
    target = b['_GatherSumLUT2']
    skybox = dev.texture_array(b['_SkyboxLUT2'])
    single_source = bool(b['_SingleScatterSource'])
    n_theta = int(b['_GatherSampleCount'])
    n_phi = 2 * n_theta
    d_theta = np.pi / n_theta
    d_phi = 2.0 * np.pi / n_phi

    u, mu_s = _skybox_grid(xp, target.width, target.height)
    theta = _centers(xp, n_theta) * np.pi
    cos_theta = xp.cos(theta)
    sin_theta = xp.sin(theta)

    # (H, W, n_theta, 4)
    radiance = sample_3d(
        xp, skybox,
        u[..., None], ((cos_theta + 1.0) * 0.5)[None, None, :], ((mu_s + 1.0) * 0.5)[..., None],
    )

    if single_source:
        phi = _centers(xp, n_phi) * 2.0 * np.pi
        sin_s = xp.sqrt(xp.maximum(0.0, 1.0 - mu_s * mu_s))
        # (H, W, n_theta, n_phi)
        nu = (sin_theta[:, None] * xp.cos(phi)[None, :])[None, None] * sin_s[..., None, None] \
            + cos_theta[None, None, :, None] * mu_s[..., None, None]
        p_r = rayleigh_phase(xp, nu)
        p_m = mie_phase(xp, atm.mie_g, nu)
        rayleigh = radiance[..., :3]
        mie = _mie_from_alpha(xp, radiance, atm)
        per_theta = (
            rayleigh * xp.sum(p_r, axis=-1)[..., None]
            + mie * xp.sum(p_m, axis=-1)[..., None]
        ) * d_phi
    else:
        per_theta = radiance[..., :3] * (2.0 * np.pi)

    gathered = xp.sum(per_theta * (sin_theta * d_theta)[:, None], axis=-2)
    dev.store(target, _rgba(xp, gathered, 0.0))


@kernel(KERNEL_MULTIPLE_SCATTER,
        ('_SkyboxLUT2', '_GatherSumLUT', '_SampleCount') + ATMOSPHERE_BINDINGS)
def multiple_scattering(dev, groups, b):
    """Re-scatter the gathered radiance isotropically along every skybox ray."""
    xp = dev.xp
    atm = _atmosphere(b)
    target = b['_SkyboxLUT2']
    gathered = dev.texture_array(b['_GatherSumLUT'])
    steps = int(b['_SampleCount'])
    beta_r = xp.asarray(atm.scattering_r)
    beta_m = xp.asarray(atm.scattering_m)

    u, mu = _skybox_grid(xp, target.width, target.height)
    h = u * atm.height
    out = xp.zeros(target.array_shape, dtype=xp.float64)
    for k, mu_s_value in enumerate(_centers(np, target.depth) * 2.0 - 1.0):
        mu_s = xp.full(h.shape, mu_s_value)
        nu = mu * mu_s + xp.sqrt(xp.maximum(0.0, (1.0 - mu * mu) * (1.0 - mu_s * mu_s)))
        _, h_t, mu_s_t, view_t, ds, d_r, d_m = _march(xp, atm, h, mu, mu_s, nu, steps)
        source = sample_2d(xp, gathered, h_t / atm.height, (mu_s_t + 1.0) * 0.5)[..., :3]
        scattering = d_r[..., None] * beta_r + d_m[..., None] * beta_m
        inscatter = xp.sum(view_t * scattering * source, axis=-2) * ds[..., None] / FOUR_PI
        out[k, ..., :3] = inscatter

    dev.store(target, out)


@kernel(KERNEL_SKYLIGHT,
        ('_SkylightLUT', '_SkyboxLUT', '_SkyboxLUTSingle',
         '_GatherSampleCount') + ATMOSPHERE_BINDINGS)
def skylight(dev, groups, b):
    """Cosine-weighted sky irradiance on a horizontal surface."""
    xp = dev.xp
    atm = _atmosphere(b)
    target = b['_SkylightLUT']
    multi = dev.texture_array(b['_SkyboxLUT'])
    single = dev.texture_array(b['_SkyboxLUTSingle'])
    n_theta = int(b['_GatherSampleCount'])
    n_phi = 2 * n_theta
    d_theta = 0.5 * np.pi / n_theta
    d_phi = 2.0 * np.pi / n_phi

    u, mu_s = _skybox_grid(xp, target.width, target.height)
    theta = _centers(xp, n_theta) * 0.5 * np.pi
    cos_theta = xp.cos(theta)
    sin_theta = xp.sin(theta)
    phi = _centers(xp, n_phi) * 2.0 * np.pi

    coords = (u[..., None], ((cos_theta + 1.0) * 0.5)[None, None, :], ((mu_s + 1.0) * 0.5)[..., None])
    single_rgba = sample_3d(xp, single, *coords)
    multi_rgb = sample_3d(xp, multi, *coords)[..., :3]

    sin_s = xp.sqrt(xp.maximum(0.0, 1.0 - mu_s * mu_s))
    nu = (sin_theta[:, None] * xp.cos(phi)[None, :])[None, None] * sin_s[..., None, None] \
        + cos_theta[None, None, :, None] * mu_s[..., None, None]
    p_r = xp.sum(rayleigh_phase(xp, nu), axis=-1)[..., None] * d_phi
    p_m = xp.sum(mie_phase(xp, atm.mie_g, nu), axis=-1)[..., None] * d_phi
    radiance = (
        single_rgba[..., :3] * p_r
        + _mie_from_alpha(xp, single_rgba, atm) * p_m
        + multi_rgb * (2.0 * np.pi)
    )
    weight = (cos_theta * sin_theta * d_theta)[:, None]
    dev.store(target, _rgba(xp, xp.sum(radiance * weight, axis=-2), 1.0))


@kernel(KERNEL_SUNLIGHT,
        ('_SunlightLUT', '_TransmittanceLUT', '_LightColor') + ATMOSPHERE_BINDINGS)
def sunlight(dev, groups, b):
    """Direct sun irradiance reaching each (altitude, sun cosine)."""
    xp = dev.xp
    atm = _atmosphere(b)
    target = b['_SunlightLUT']
    transmittance = dev.texture_array(b['_TransmittanceLUT'])
    light = xp.asarray(np.asarray(b['_LightColor'], dtype=np.float64).reshape(-1)[:3])

    u, mu_s = _skybox_grid(xp, target.width, target.height)
    h = u * atm.height
    sun_t = _sun_transmittance(xp, transmittance, atm, atm.bottom + h, h, mu_s)
    dev.store(target, _rgba(xp, sun_t * light, 1.0))


# =============================================================================
# PER-FRAME KERNELS
# =============================================================================
@kernel(KERNEL_AERIAL_PERSPECTIVE,
        ('_InscatteringLUT', '_ExtinctionLUT', '_GatherSumLUT', '_TransmittanceLUT',
         '_BottomLeftCorner', '_TopLeftCorner', '_TopRightCorner', '_BottomRightCorner',
         '_CameraPos', '_LightDir', '_LightColor', '_DistanceScale',
         '_AerialStepsPerSlice') + ATMOSPHERE_BINDINGS)
def aerial_perspective(dev, groups, b):
    """
    March every frustum ray from the camera to the far plane and record
    accumulated inscattering and extinction at each depth slice.

    World space is Y-up with the ground plane at y = 0.
    """
    xp = dev.xp
    atm = _atmosphere(b)
    inscatter_lut = b['_InscatteringLUT']
    extinction_lut = b['_ExtinctionLUT']
    gathered = dev.texture_array(b['_GatherSumLUT'])
    transmittance = dev.texture_array(b['_TransmittanceLUT'])
    light = xp.asarray(np.asarray(b['_LightColor'], dtype=np.float64).reshape(-1)[:3])
    scale = float(b['_DistanceScale'])
    steps_per_slice = int(b['_AerialStepsPerSlice'])

    def vec3(name):
        return xp.asarray(np.asarray(b[name], dtype=np.float64).reshape(-1)[:3])

    bottom_left, top_left = vec3('_BottomLeftCorner'), vec3('_TopLeftCorner')
    top_right, bottom_right = vec3('_TopRightCorner'), vec3('_BottomRightCorner')
    camera = vec3('_CameraPos')
    to_sun = -vec3('_LightDir')
    to_sun = to_sun / max(float(xp.linalg.norm(to_sun)), 1e-12)

    width, height, depth = inscatter_lut.width, inscatter_lut.height, inscatter_lut.depth
    u = _centers(xp, width)[None, :, None]
    v = _centers(xp, height)[:, None, None]
    bottom = bottom_left + (bottom_right - bottom_left) * u
    top = top_left + (top_right - top_left) * u
    far = bottom + (top - bottom) * v
    ray = (far - camera) * scale
    length = xp.linalg.norm(ray, axis=-1)
    direction = ray / xp.where(length > 0, length, 1.0)[..., None]

    steps = depth * steps_per_slice
    ds = length / steps
    t = (xp.arange(steps, dtype=xp.float64) + 0.5) * ds[..., None]
    center = xp.asarray([0.0, -atm.bottom, 0.0])
    origin = camera * scale - center
    pos = origin + direction[..., None, :] * t[..., None]
    r = xp.linalg.norm(pos, axis=-1)
    h = xp.clip(r - atm.bottom, 0.0, atm.height)
    up = pos / xp.maximum(r, 1e-6)[..., None]
    mu_s = xp.clip(xp.sum(up * to_sun, axis=-1), -1.0, 1.0)
    nu = xp.sum(direction * to_sun, axis=-1)[..., None]

    step_depth = _extinction(xp, h, atm) * ds[..., None, None]
    cumulative = xp.cumsum(step_depth, axis=-2)
    view_t = xp.exp(-(cumulative - 0.5 * step_depth))
    d_r, d_m, _ = _densities(xp, h, atm)

    beta_r = xp.asarray(atm.scattering_r)
    beta_m = xp.asarray(atm.scattering_m)
    sun_t = _sun_transmittance(xp, transmittance, atm, atm.bottom + h, h, mu_s)
    single = (
        d_r[..., None] * beta_r * rayleigh_phase(xp, nu)[..., None]
        + d_m[..., None] * beta_m * mie_phase(xp, atm.mie_g, nu)[..., None]
    ) * sun_t * light
    source = sample_2d(xp, gathered, h / atm.height, (mu_s + 1.0) * 0.5)[..., :3]
    multi = (d_r[..., None] * beta_r + d_m[..., None] * beta_m) * source / FOUR_PI
    inscatter = xp.cumsum(view_t * (single + multi), axis=-2) * ds[..., None, None]

    slice_ends = xp.arange(1, depth + 1) * steps_per_slice - 1
    # (H, W, D, 3) -> (D, H, W, 3)
    inscatter = xp.moveaxis(inscatter[..., slice_ends, :], 2, 0)
    extinction = xp.moveaxis(xp.exp(-cumulative[..., slice_ends, :]), 2, 0)
    dev.store(inscatter_lut, _rgba(xp, inscatter, 1.0))
    dev.store(extinction_lut, _rgba(xp, extinction, 1.0))


@kernel(KERNEL_COMPOSITE,
        ('_Background', '_Depth', '_Destination', '_InscatteringLUT', '_ExtinctionLUT'))
def composite(dev, groups, b):
    """
    Blend aerial perspective over an opaque scene:
    ``color * extinction + inscatter`` sampled at each pixel's depth fraction.

    Image row 0 is the bottom of the screen. Pixels at depth >= 1 are sky and
    pass through untouched.
    """
    xp = dev.xp
    background = xp.asarray(b['_Background'], dtype=xp.float64)
    depth = xp.asarray(b['_Depth'], dtype=xp.float64)
    inscatter = dev.texture_array(b['_InscatteringLUT'])
    extinction = dev.texture_array(b['_ExtinctionLUT'])
    slices = inscatter.shape[0]

    # Prepend the camera slice (no haze) so depth 0 interpolates to identity.
    inscatter = xp.concatenate([xp.zeros_like(inscatter[:1]), inscatter], axis=0)
    extinction = xp.concatenate([xp.ones_like(extinction[:1]), extinction], axis=0)

    height, width = depth.shape
    u = _centers(xp, width)[None, :]
    v = _centers(xp, height)[:, None]
    u, v = xp.broadcast_arrays(u, v)
    d = xp.clip(depth, 0.0, 1.0)
    # slice index f = d * slices maps onto texel centers of the padded volume
    w = (d * slices + 0.5) / (slices + 1)
    ins = sample_3d(xp, inscatter, u, v, w)[..., :3]
    ext = sample_3d(xp, extinction, u, v, w)[..., :3]

    result = background.copy()
    hazed = background[..., :3] * ext + ins
    result[..., :3] = xp.where((depth < 1.0)[..., None], hazed, background[..., :3])
    dev.write_host(b['_Destination'], result)
