"""
Skyscatter CLI Tests - precompute, inspect and compare subcommands.

Run with: python -m pytest tests/test_cli.py
Or standalone: python tests/test_cli.py
"""

import sys
import os
import json
import tempfile

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

CONFIG = {
    "atmosphere": {"mie_g": 0.8},
    "sun": {"elevation": 25.0, "intensity": 1.5},
    "settings": {
        "transmittance_lut_size": [8, 16],
        "skybox_lut_size": [8, 8, 4],
        "gather_sum_lut_size": [8, 4],
        "sample_count": 4,
        "transmittance_sample_count": 16,
        "gather_sample_count": 2,
    },
}


def _write_config(directory):
    path = os.path.join(directory, "atmosphere.json")
    with open(path, "w") as f:
        json.dump(CONFIG, f)
    return path


def test_precompute_command():
    """precompute writes every table and the resolved configuration."""
    from skyscatter.__main__ import main

    with tempfile.TemporaryDirectory() as tmp:
        output = os.path.join(tmp, "luts")
        code = main(["-q", "precompute", "--output", output, "--orders", "2",
                     "--config", _write_config(tmp)])
        assert code == 0

        files = set(os.listdir(output))
        for name in ("transmittance.ktx", "skyboxlutsingle.ktx", "gathersum1.ktx",
                     "gathersum2.ktx", "gathersum.ktx", "skyboxlut1.ktx",
                     "skyboxlut2.ktx", "skyboxlut.ktx", "skylightlut.ktx",
                     "sunlightlut.ktx", "config.json"):
            assert name in files, name

        with open(os.path.join(output, "config.json")) as f:
            resolved = json.load(f)
        assert resolved["atmosphere"]["mie_g"] == 0.8
        assert resolved["settings"]["num_scattering_orders"] == 2
        assert resolved["sun"]["intensity"] == 1.5

    print("✓ Precompute command test passed")


def test_inspect_command():
    """inspect prints the header of a KTX file."""
    import contextlib
    import io
    import numpy as np
    from skyscatter.__main__ import main
    from skyscatter.utils.ktx import encode_ktx

    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "lut.ktx")
        with open(path, "wb") as f:
            f.write(encode_ktx(np.ones(4 * 2 * 4), 4, 2, 0))
        buffer = io.StringIO()
        with contextlib.redirect_stdout(buffer):
            assert main(["-q", "inspect", path]) == 0
        out = buffer.getvalue()
        assert "4 x 2 x 0" in out
        assert "0x881A" in out

    print("✓ Inspect command test passed")


def test_compare_command():
    """compare exits 0 for identical runs and 1 once a file differs."""
    from skyscatter.__main__ import main

    with tempfile.TemporaryDirectory() as tmp:
        config = _write_config(tmp)
        first = os.path.join(tmp, "a")
        second = os.path.join(tmp, "b")
        assert main(["-q", "precompute", "--output", first, "--orders", "1", "--config", config]) == 0
        assert main(["-q", "precompute", "--output", second, "--orders", "1", "--config", config]) == 0

        assert main(["-q", "compare", first, second]) == 0

        with open(os.path.join(second, "skyboxlut.ktx"), "r+b") as f:
            f.seek(-1, os.SEEK_END)
            last = f.read(1)
            f.seek(-1, os.SEEK_END)
            f.write(bytes([last[0] ^ 0xFF]))
        assert main(["-q", "compare", first, second]) == 1

        os.remove(os.path.join(second, "gathersum1.ktx"))
        assert main(["-q", "compare", first, second]) == 1

    print("✓ Compare command test passed")


def test_precompute_failure_exit_code():
    """Persistence failures are reported with a non-zero exit code."""
    from skyscatter.__main__ import main

    with tempfile.TemporaryDirectory() as tmp:
        blocker = os.path.join(tmp, "blocker")
        with open(blocker, "w") as f:
            f.write("x")
        code = main(["-q", "precompute", "--output", blocker, "--orders", "1",
                     "--config", _write_config(tmp)])
        assert code == 2

    print("✓ Precompute failure test passed")


def test_unknown_config_key_exit_code():
    """A typo in the config file exits with 2 instead of a traceback."""
    from skyscatter.__main__ import main

    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "bad.json")
        with open(path, "w") as f:
            json.dump({"atmosphere": {"mie_gg": 0.8}}, f)
        code = main(["-q", "precompute", "--output", os.path.join(tmp, "luts"),
                     "--config", path])
        assert code == 2
        assert not os.path.exists(os.path.join(tmp, "luts"))

    print("✓ Unknown config key test passed")


def run_all_tests():
    """Run all tests."""
    print("\n" + "="*60)
    print("Skyscatter CLI Tests")
    print("="*60 + "\n")

    tests = [
        test_precompute_command,
        test_inspect_command,
        test_compare_command,
        test_precompute_failure_exit_code,
        test_unknown_config_key_exit_code,
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
