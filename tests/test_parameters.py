"""
Skyscatter Parameter Tests - defaults, derived coefficients and validation.

Run with: python -m pytest tests/test_parameters.py
Or standalone: python tests/test_parameters.py
"""

import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np
import pytest


def test_constants():
    """Test that LUT sizes and physical constants are properly defined."""
    from skyscatter.core.constants import (
        TRANSMITTANCE_LUT_SIZE,
        SKYBOX_LUT_SIZE,
        GATHER_SUM_LUT_SIZE,
        INSCATTERING_LUT_SIZE,
        PLANET_RADIUS,
        ATMOSPHERE_HEIGHT,
        MIE_G,
    )

    assert TRANSMITTANCE_LUT_SIZE == (32, 128)
    assert SKYBOX_LUT_SIZE == (32, 128, 32)
    assert GATHER_SUM_LUT_SIZE == (32, 32)
    assert INSCATTERING_LUT_SIZE == (32, 32, 16)
    assert PLANET_RADIUS == 6371000.0
    assert ATMOSPHERE_HEIGHT == 80000.0
    assert MIE_G == 0.76

    print("✓ Constants test passed")


def test_atmosphere_parameters():
    """Test AtmosphereParameters defaults and derived vectors."""
    from skyscatter.core.parameters import AtmosphereParameters

    params = AtmosphereParameters.earth_default()
    assert params.top_radius == 6371000.0 + 80000.0
    np.testing.assert_allclose(params.density_scale_heights, [8000.0, 1200.0, 8000.0])
    np.testing.assert_allclose(params.scattering_r, np.array([5.8, 13.5, 33.1]) * 1e-6)
    np.testing.assert_allclose(params.scattering_m, np.full(3, 5e-6))
    np.testing.assert_allclose(params.ozone_extinction, np.array([3.426, 8.298, 0.356]) * 1e-6)

    params.rayleigh_scatter_coef = 2.0
    params.rayleigh_extinction_coef = 0.5
    np.testing.assert_allclose(params.scattering_r, params.rayleigh_sct * 2.0)
    np.testing.assert_allclose(params.extinction_r, params.rayleigh_sct * 0.5)

    no_ozone = AtmosphereParameters.earth_default(use_ozone=False)
    assert np.all(no_ozone.ozone_extinction == 0)

    params.validate()

    print("✓ AtmosphereParameters test passed")


def test_artistic_controls():
    """Test building parameters from artistic multipliers."""
    from skyscatter.core.parameters import AtmosphereParameters

    params = AtmosphereParameters.from_artistic_controls(
        rayleigh_density_scale=2.0,
        mie_density_scale=0.5,
        mie_g=1.5,
        mie_height=2000.0,
        ozone_density=2.0,
    )

    assert params.rayleigh_scatter_coef == 2.0
    assert params.mie_extinction_coef == 0.5
    assert params.mie_g == pytest.approx(0.999)
    assert params.density_scale_heights[1] == 2000.0
    np.testing.assert_allclose(params.ozone_extinction, np.array([3.426, 8.298, 0.356]) * 2e-6)

    print("✓ Artistic controls test passed")


def test_parameter_validation():
    """Invalid coefficients are configuration errors."""
    from skyscatter.core.errors import ConfigurationError
    from skyscatter.core.parameters import AtmosphereParameters

    params = AtmosphereParameters()
    params.mie_scatter_coef = -1.0
    with pytest.raises(ConfigurationError):
        params.validate()

    params = AtmosphereParameters(mie_g=1.0)
    with pytest.raises(ConfigurationError):
        params.validate()

    params = AtmosphereParameters(planet_radius=0.0)
    with pytest.raises(ConfigurationError):
        params.validate()

    # Zero scattering is valid
    AtmosphereParameters.zero_scattering().validate()

    print("✓ Parameter validation test passed")


def test_parameters_dict_round_trip():
    """to_dict output is JSON friendly and rebuilds the same set."""
    import json
    from skyscatter.core.parameters import AtmosphereParameters

    params = AtmosphereParameters.from_artistic_controls(rayleigh_density_scale=3.0)
    params.height_fog.scale_height = 900.0
    data = json.loads(json.dumps(params.to_dict()))
    rebuilt = AtmosphereParameters.from_dict(data)

    np.testing.assert_allclose(rebuilt.scattering_r, params.scattering_r)
    assert rebuilt.height_fog.scale_height == 900.0

    print("✓ Parameters dict test passed")


def test_unknown_config_keys():
    """Unknown atmosphere, height fog or sun keys are configuration errors."""
    from skyscatter.core.errors import ConfigurationError
    from skyscatter.core.parameters import AtmosphereParameters, SunLight

    with pytest.raises(ConfigurationError, match="mie_gg"):
        AtmosphereParameters.from_dict({"mie_gg": 0.8})
    with pytest.raises(ConfigurationError, match="height"):
        AtmosphereParameters.from_dict({"height_fog": {"height": 10.0}})
    with pytest.raises(ConfigurationError, match="power"):
        SunLight.from_dict({"elevation": 10.0, "power": 2.0})

    sun = SunLight.from_dict({"elevation": 90.0, "intensity": 2.0})
    np.testing.assert_allclose(sun.direction, [0.0, -1.0, 0.0], atol=1e-12)
    assert sun.intensity == 2.0

    print("✓ Unknown config keys test passed")


def test_sun_light():
    """Sun direction is normalised and light colour includes intensity."""
    from skyscatter.core.errors import ConfigurationError
    from skyscatter.core.parameters import SunLight

    sun = SunLight(direction=[0.0, -2.0, 0.0], color=[1.0, 0.5, 0.25], intensity=2.0)
    np.testing.assert_allclose(sun.direction, [0.0, -1.0, 0.0])
    np.testing.assert_allclose(sun.light_color, [2.0, 1.0, 0.5])

    overhead = SunLight.from_angles(90.0)
    np.testing.assert_allclose(overhead.direction, [0.0, -1.0, 0.0], atol=1e-12)

    with pytest.raises(ConfigurationError):
        SunLight(direction=[0.0, 0.0, 0.0])

    print("✓ SunLight test passed")


def test_camera_state():
    """Frustum corners are ordered bottom-left, top-left, top-right, bottom-right."""
    from skyscatter.core.parameters import CameraState

    camera = CameraState.from_perspective(
        position=[0.0, 10.0, 0.0], forward=[0.0, 0.0, 1.0], up=[0.0, 1.0, 0.0],
        fov=90.0, aspect=1.0, far=100.0,
    )
    bl, tl, tr, br = camera.corners
    assert bl[1] < tl[1] and br[1] < tr[1]
    assert bl[0] == pytest.approx(tl[0])
    assert tr[0] == pytest.approx(br[0])
    np.testing.assert_allclose(camera.corners[:, 2], 100.0)
    assert tl[1] - bl[1] == pytest.approx(200.0)

    degenerate = CameraState.degenerate([1.0, 2.0, 3.0])
    assert np.all(degenerate.corners == [1.0, 2.0, 3.0])
    assert camera.corners_vec4().shape == (4, 4)

    print("✓ CameraState test passed")


def test_precompute_settings():
    """Settings validate order counts and ignore unknown config keys."""
    from skyscatter.core.errors import ConfigurationError
    from skyscatter.core.parameters import PrecomputeSettings, RenderMode

    settings = PrecomputeSettings.from_dict({
        "num_scattering_orders": 5,
        "skybox_lut_size": [8, 16, 8],
        "render_mode": "REFERENCE",
        "unknown_option": True,
    })
    assert settings.num_scattering_orders == 5
    assert settings.skybox_lut_size == (8, 16, 8)
    assert settings.render_mode == RenderMode.REFERENCE
    assert settings.to_dict()["render_mode"] == "reference"

    with pytest.raises(ConfigurationError):
        PrecomputeSettings(num_scattering_orders=0)

    print("✓ PrecomputeSettings test passed")


def run_all_tests():
    """Run all tests."""
    print("\n" + "="*60)
    print("Skyscatter Parameter Tests")
    print("="*60 + "\n")

    tests = [
        test_constants,
        test_atmosphere_parameters,
        test_artistic_controls,
        test_parameter_validation,
        test_parameters_dict_round_trip,
        test_unknown_config_keys,
        test_sun_light,
        test_camera_state,
        test_precompute_settings,
    ]

    passed = 0
    failed = 0

    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"✗ {test.__name__} FAILED: {e}")
            failed += 1

    print("\n" + "="*60)
    print(f"Results: {passed} passed, {failed} failed")
    print("="*60 + "\n")

    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
