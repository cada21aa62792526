"""
Skyscatter KTX Tests - header layout, atlas tiling and persistence.

Run with: python -m pytest tests/test_ktx.py
Or standalone: python tests/test_ktx.py
"""

import sys
import os
import struct
import tempfile

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np
import pytest


def _header(raw):
    return struct.unpack_from("<13I", raw, 16)


def test_volume_header():
    """A 32x128x32 volume writes depth 32 and the full half-float image size."""
    from skyscatter.utils.ktx import encode_ktx, HEADER_SIZE

    raw = encode_ktx(np.zeros(32 * 128 * 32 * 4, dtype=np.float32), 32, 128, 32)

    assert raw[:12] == bytes([0xAB, 0x4B, 0x54, 0x58, 0x20, 0x31, 0x31, 0xBB,
                              0x0D, 0x0A, 0x1A, 0x0A])
    assert raw[12:16] == bytes([0x01, 0x02, 0x03, 0x04])
    assert _header(raw) == (
        0x140B, 2, 0x1908, 0x881A, 0x1908,
        32, 128, 32,
        0, 1, 1, 0,
        32 * 128 * 32 * 4 * 2,
    )
    assert len(raw) == HEADER_SIZE + 32 * 128 * 32 * 4 * 2

    print("✓ Volume header test passed")


def test_tiled_header():
    """A tiled volume is a (W*D) x H image with depth 0."""
    from skyscatter.utils.ktx import encode_ktx, tile_volume

    volume = np.zeros((32, 128, 32, 4), dtype=np.float32)
    atlas = tile_volume(volume)
    assert atlas.shape == (128, 32 * 32, 4)

    fields = _header(encode_ktx(atlas, 32 * 32, 128, 0))
    assert fields[5:8] == (1024, 128, 0)
    assert fields[12] == 32 * 128 * 32 * 4 * 2

    print("✓ Tiled header test passed")


def test_tiling_layout():
    """Texel (i, j, k) lands at column k*W + i of row j, and untiling inverts it."""
    from skyscatter.utils.ktx import tile_volume, untile_volume

    depth, height, width = 4, 3, 5
    volume = np.random.default_rng(7).random((depth, height, width, 4)).astype(np.float32)
    atlas = tile_volume(volume)

    for k in range(depth):
        for j in range(height):
            for i in range(width):
                np.testing.assert_array_equal(atlas[j, k * width + i], volume[k, j, i])

    np.testing.assert_array_equal(untile_volume(atlas, depth), volume)

    print("✓ Tiling layout test passed")


def test_decode():
    """Decoding recovers the header fields and half-float values."""
    from skyscatter.utils.ktx import decode_ktx, encode_ktx

    values = np.arange(2 * 3 * 4, dtype=np.float32) * 0.5
    image = decode_ktx(encode_ktx(values, 2, 3, 0))

    assert (image.width, image.height, image.depth) == (2, 3, 0)
    assert not image.is_volume
    np.testing.assert_array_equal(image.data, values)

    with pytest.raises(ValueError):
        decode_ktx(b"not a ktx file at all, not even close")

    print("✓ Decode test passed")


def test_encode_size_mismatch():
    """Payload sizes must match the declared dimensions."""
    from skyscatter.core.errors import ResourceError
    from skyscatter.utils.ktx import encode_ktx

    with pytest.raises(ResourceError):
        encode_ktx(np.zeros(10), 2, 2, 0)

    print("✓ Encode size mismatch test passed")


def test_save_tiled_from_device():
    """Saving a device volume tiles it into the atlas layout."""
    from skyscatter.core.bridge import writeback
    from skyscatter.core.software import SoftwareDevice
    from skyscatter.utils.ktx import load_table, read_ktx, save

    device = SoftwareDevice()
    width, height, depth = 3, 2, 4
    table = device.create_texture("Volume", (width, height, depth))
    volume = np.arange(depth * height * width * 4, dtype=np.float32).reshape(depth, height, width, 4)
    writeback(device, table, volume)

    with tempfile.TemporaryDirectory() as tmp:
        path = save(device, table, "volume", tmp, tile_volume_to_2d=True)
        assert os.path.basename(path) == "volume.ktx"
        image = read_ktx(path)
        assert (image.width, image.height, image.depth) == (width * depth, height, 0)
        atlas = image.data.reshape(height, width * depth, 4)
        for k in range(depth):
            for j in range(height):
                for i in range(width):
                    np.testing.assert_array_equal(atlas[j, k * width + i], volume[k, j, i])

        plain = save(device, table, "volume3d", tmp)
        np.testing.assert_array_equal(load_table(plain), volume)

    print("✓ Save tiled test passed")


def test_save_overwrites():
    """Saving twice truncates: the second file is byte-identical to a fresh one."""
    from skyscatter.core.bridge import writeback
    from skyscatter.core.software import SoftwareDevice
    from skyscatter.utils.ktx import save

    device = SoftwareDevice()
    small = device.create_texture("Small", (2, 2))
    large = device.create_texture("Large", (4, 4))
    writeback(device, small, np.ones(16))

    with tempfile.TemporaryDirectory() as tmp:
        save(device, large, "lut", tmp)
        path = save(device, small, "lut", tmp)
        with open(path, "rb") as f:
            raw = f.read()
        assert len(raw) == 68 + 2 * 2 * 4 * 2

    print("✓ Save overwrite test passed")


def test_save_failure():
    """An unwritable destination raises PersistenceError."""
    from skyscatter.core.errors import PersistenceError
    from skyscatter.core.software import SoftwareDevice
    from skyscatter.utils.ktx import save

    device = SoftwareDevice()
    table = device.create_texture("Table", (2, 2))

    with tempfile.TemporaryDirectory() as tmp:
        blocker = os.path.join(tmp, "blocker")
        with open(blocker, "w") as f:
            f.write("x")
        with pytest.raises(PersistenceError):
            save(device, table, "table", blocker)
        with pytest.raises(OSError):
            save(device, table, "table", os.path.join(blocker, "nested"))

    print("✓ Save failure test passed")


def run_all_tests():
    """Run all tests."""
    print("\n" + "="*60)
    print("Skyscatter KTX Tests")
    print("="*60 + "\n")

    tests = [
        test_volume_header,
        test_tiled_header,
        test_tiling_layout,
        test_decode,
        test_encode_size_mismatch,
        test_save_tiled_from_device,
        test_save_overwrites,
        test_save_failure,
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
