"""
Skyscatter Binder Tests - kernel and material uniform state.

Run with: python -m pytest tests/test_binder.py
Or standalone: python tests/test_binder.py
"""

import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np
import pytest


def _binder(sun="default"):
    from skyscatter.core.binder import ParameterBinder
    from skyscatter.core.parameters import AtmosphereParameters, PrecomputeSettings, SunLight

    params = AtmosphereParameters.earth_default()
    params.mie_scatter_coef = 2.0
    if sun == "default":
        sun = SunLight(direction=[0.0, -1.0, 0.0], color=[1.0, 0.9, 0.8], intensity=2.0, range=10.0)
    return ParameterBinder(params, sun, PrecomputeSettings())


def test_compute_bindings():
    """Kernel uniforms carry the derived coefficients and LUT sizes."""
    from skyscatter.core.registry import LUTRegistry
    from skyscatter.core.software import SoftwareDevice

    binder = _binder()
    registry = LUTRegistry(SoftwareDevice())
    bindings = binder.compute_bindings(registry)

    assert bindings['_PlanetRadius'] == 6371000.0
    assert bindings['_AtmosphereHeight'] == 80000.0
    np.testing.assert_allclose(bindings['_ScatteringM'][:3], np.full(3, 10e-6))
    np.testing.assert_allclose(bindings['_ExtinctionM'][:3], np.full(3, 5e-6))
    np.testing.assert_allclose(bindings['_DensityScaleHeight'][:3], [8000.0, 1200.0, 8000.0])
    np.testing.assert_allclose(bindings['_LightColor'], [2.0, 1.8, 1.6, 1.0])
    assert bindings['_MieG'] == 0.76
    assert bindings['_SampleCount'] == 16
    np.testing.assert_array_equal(bindings['_ScatterLUTSize'], [32, 128, 32, 0])
    np.testing.assert_array_equal(bindings['_TransmittanceLUTSize'], [32, 128, 0, 0])
    assert '_TransmittanceLUT' not in bindings

    table = registry.get_or_create("TransmittanceLUT", (32, 128))
    assert binder.compute_bindings(registry)['_TransmittanceLUT'] is table

    print("✓ Compute bindings test passed")


def test_material_bindings():
    """Material uniforms add light direction, irradiance and height fog."""
    from skyscatter.core.binder import Material
    from skyscatter.core.registry import LUTRegistry
    from skyscatter.core.software import SoftwareDevice

    binder = _binder()
    registry = LUTRegistry(SoftwareDevice())
    skybox = registry.get_or_create("SkyboxLUT", (4, 4, 4))
    material = binder.apply_material(Material(), registry)

    np.testing.assert_allclose(material['_LightDir'], [0.0, -1.0, 0.0, 0.01])
    np.testing.assert_allclose(material['_LightIrradiance'][:3], [2.0, 1.8, 1.6])
    assert material['_SunIlluminance'] == 120000.0
    assert material['_HFMieAsymmetry'] == 0.402
    assert material['_HFScaleHeight'] == 1200.0
    np.testing.assert_allclose(material['_HFBetaRs'][:3], np.array([5.8, 13.5, 33.1]) * 1e-6)
    assert material['_SkyboxLUT'] is skybox
    assert '_SkylightLUT' not in material

    print("✓ Material bindings test passed")


def test_update_skybox_keyword():
    """Reference mode toggles the ATMOSPHERE_REFERENCE keyword."""
    from skyscatter.core.binder import Material, REFERENCE_KEYWORD
    from skyscatter.core.parameters import RenderMode
    from skyscatter.core.registry import LUTRegistry
    from skyscatter.core.software import SoftwareDevice

    binder = _binder()
    registry = LUTRegistry(SoftwareDevice())
    material = Material()

    binder.update_skybox(material, registry, [1.0, 2.0, 3.0], RenderMode.REFERENCE)
    assert material.is_keyword_enabled(REFERENCE_KEYWORD)
    np.testing.assert_allclose(material['_CameraPos'][:3], [1.0, 2.0, 3.0])

    binder.update_skybox(material, registry, [0.0, 0.0, 0.0], RenderMode.OPTIMIZED)
    assert not material.is_keyword_enabled(REFERENCE_KEYWORD)

    print("✓ Update skybox test passed")


def test_missing_sun():
    """Binding without a sun is a configuration error."""
    from skyscatter.core.errors import ConfigurationError
    from skyscatter.core.registry import LUTRegistry
    from skyscatter.core.software import SoftwareDevice

    binder = _binder(sun=None)
    with pytest.raises(ConfigurationError):
        binder.compute_bindings(LUTRegistry(SoftwareDevice()))

    print("✓ Missing sun test passed")


def test_vec4():
    """Scalars and 3-vectors pad to vec4."""
    from skyscatter.core.binder import vec4

    np.testing.assert_array_equal(vec4(2.0), [2.0, 2.0, 2.0, 0.0])
    np.testing.assert_array_equal(vec4([1.0, 2.0, 3.0], 1.0), [1.0, 2.0, 3.0, 1.0])

    print("✓ vec4 test passed")


def run_all_tests():
    """Run all tests."""
    print("\n" + "="*60)
    print("Skyscatter Binder Tests")
    print("="*60 + "\n")

    tests = [
        test_compute_bindings,
        test_material_bindings,
        test_update_skybox_keyword,
        test_missing_sun,
        test_vec4,
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
