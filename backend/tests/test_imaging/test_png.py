"""Tests for imaging.png and imaging.pngsort — PNG decode/encode and the full path."""

import io
import struct
import zlib

import numpy as np
import pytest
from PIL import Image as PILImage

from conftest import make_png, random_pixels
from imaging.png import ImageFormatError, decode_png, encode_png, probe_png
from imaging.pngsort import sort_png, sort_png_image
from sorting.config import PixelFormat
from sorting.errors import ConfigError

pytestmark = pytest.mark.smoke


@pytest.mark.parametrize(
    "shape, fmt",
    [
        ((5, 7), PixelFormat.L),
        ((5, 7, 2), PixelFormat.LA),
        ((5, 7, 3), PixelFormat.RGB),
        ((5, 7, 4), PixelFormat.RGBA),
    ],
)
def test_decode_supported_modes(shape, fmt):
    rng = np.random.default_rng(1)
    arr = rng.integers(0, 256, shape, dtype=np.uint8)
    image = decode_png(make_png(arr))
    assert image.pixel_format is fmt
    assert (image.width, image.height) == (7, 5)
    np.testing.assert_array_equal(image.buffer, arr.reshape(-1))


def test_encode_preserves_mode_and_pixels():
    arr = random_pixels(c=4)
    image = decode_png(make_png(arr))
    encoded = encode_png(image)
    with PILImage.open(io.BytesIO(encoded)) as img:
        assert img.format == "PNG"
        assert img.mode == "RGBA"
        np.testing.assert_array_equal(np.asarray(img), arr)


def test_encode_grayscale():
    arr = np.arange(12, dtype=np.uint8).reshape(3, 4)
    encoded = encode_png(decode_png(make_png(arr)))
    with PILImage.open(io.BytesIO(encoded)) as img:
        assert img.mode == "L"
        np.testing.assert_array_equal(np.asarray(img), arr)


def test_palette_rejected():
    img = PILImage.new("P", (4, 4))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    with pytest.raises(ImageFormatError, match="Indexed"):
        decode_png(buf.getvalue())


def test_non_png_rejected():
    img = PILImage.new("RGB", (4, 4))
    buf = io.BytesIO()
    img.save(buf, format="BMP")
    with pytest.raises(ImageFormatError, match="PNG"):
        decode_png(buf.getvalue())


def test_garbage_rejected():
    with pytest.raises(ImageFormatError, match="Could not decode"):
        decode_png(b"definitely not an image")


def test_probe_reads_header():
    header = probe_png(make_png(random_pixels(h=9, w=11)))
    assert header == {"ok": True, "width": 11, "height": 9, "mode": "RGB"}


def test_probe_garbage():
    header = probe_png(b"\x00\x01")
    assert header["ok"] is False
    assert "error" in header


def test_sort_png_row_major(rgb_png):
    out = sort_png(
        {"sort_range": "RowMajor", "sort_mode": "TiedBySum", "sort_channel": ["R", "G", "B"]},
        rgb_png,
    )
    image = decode_png(out)
    sums = image.to_array().astype(int).sum(axis=2).reshape(-1)
    assert (np.diff(sums) >= 0).all()
    original = decode_png(rgb_png)
    assert sorted(map(tuple, image.to_array().reshape(-1, 3).tolist())) == sorted(
        map(tuple, original.to_array().reshape(-1, 3).tolist())
    )


def test_sort_png_accepts_json_text(rgba_png):
    out = sort_png('{"sort_range": "Column", "sort_channel": ["A"], "descending": true}', rgba_png)
    image = decode_png(out)
    assert image.pixel_format is PixelFormat.RGBA
    alpha = image.to_array()[:, :, 3].astype(int)
    assert (np.diff(alpha, axis=0) <= 0).all()


def test_sort_png_image_returns_geometry(rgb_png):
    encoded, image = sort_png_image({"sort_range": "Row", "sort_channel": ["G"]}, rgb_png)
    assert (image.width, image.height) == (24, 16)
    assert decode_png(encoded).pixel_format is PixelFormat.RGB


def test_sort_png_config_error_for_image(rgb_png):
    with pytest.raises(ConfigError, match="not present in RGB"):
        sort_png({"sort_range": "Row", "sort_channel": ["A"]}, rgb_png)


def test_sort_png_grayscale_rejects_sort_mode():
    png = make_png(np.zeros((3, 3), dtype=np.uint8))
    with pytest.raises(ConfigError, match="grayscale"):
        sort_png({"sort_range": "Row", "sort_mode": "Untied"}, png)


def _chunk(kind: bytes, body: bytes) -> bytes:
    return struct.pack(">I", len(body)) + kind + body + struct.pack(">I", zlib.crc32(kind + body))


def _raw_png(width: int, height: int, bit_depth: int, color_type: int, rows: list[bytes]) -> bytes:
    """Assemble a PNG directly, for bit depths Pillow will not write."""
    ihdr = struct.pack(">IIBBBBB", width, height, bit_depth, color_type, 0, 0, 0)
    idat = zlib.compress(b"".join(b"\x00" + row for row in rows))
    return (
        b"\x89PNG\r\n\x1a\n"
        + _chunk(b"IHDR", ihdr)
        + _chunk(b"IDAT", idat)
        + _chunk(b"IEND", b"")
    )


@pytest.mark.parametrize(
    "color_type, channels",
    [(0, 1), (2, 3), (4, 2), (6, 4)],
    ids=["L", "RGB", "LA", "RGBA"],
)
def test_16_bit_rejected(color_type, channels):
    # two pixels, first channel 1000 and 256: truncation would give 3 and 1
    samples = [1000] + [0] * (channels - 1) + [256] + [0] * (channels - 1)
    png = _raw_png(2, 1, 16, color_type, [struct.pack(f">{len(samples)}H", *samples)])
    with pytest.raises(ImageFormatError, match="16-bit"):
        decode_png(png)


def test_16_bit_rejected_by_sort_png():
    png = _raw_png(2, 1, 16, 2, [struct.pack(">6H", 1000, 0, 0, 256, 0, 0)])
    with pytest.raises(ImageFormatError, match="8-bit"):
        sort_png({"sort_range": "Row", "sort_channel": ["R"]}, png)


def test_sub_byte_grayscale_rejected():
    png = _raw_png(2, 1, 4, 0, [bytes([0x1F])])
    with pytest.raises(ImageFormatError, match="4-bit"):
        decode_png(png)


def test_hand_built_8_bit_png_accepted():
    png = _raw_png(2, 1, 8, 2, [bytes([200, 1, 2, 100, 3, 4])])
    image = decode_png(png)
    assert image.pixel_format is PixelFormat.RGB
    assert image.tobytes() == bytes([200, 1, 2, 100, 3, 4])


def test_color_key_survives_sort():
    arr = random_pixels(h=4, w=5)
    arr[0, 0] = (0, 0, 0)
    buf = io.BytesIO()
    PILImage.fromarray(arr).save(buf, format="PNG", transparency=(0, 0, 0))

    assert decode_png(buf.getvalue()).transparency == (0, 0, 0)
    out = sort_png({"sort_range": "RowMajor", "sort_channel": ["R", "G", "B"]}, buf.getvalue())
    with PILImage.open(io.BytesIO(out)) as img:
        assert img.info.get("transparency") == (0, 0, 0)


def test_grayscale_color_key_survives_sort():
    arr = np.arange(12, dtype=np.uint8).reshape(3, 4)
    buf = io.BytesIO()
    PILImage.fromarray(arr).save(buf, format="PNG", transparency=5)
    out = sort_png({"sort_range": "Column", "descending": True}, buf.getvalue())
    with PILImage.open(io.BytesIO(out)) as img:
        assert img.info.get("transparency") == 5


def test_no_color_key_by_default(rgb_png):
    assert decode_png(rgb_png).transparency is None
    out = sort_png({"sort_range": "Row", "sort_channel": ["R"]}, rgb_png)
    with PILImage.open(io.BytesIO(out)) as img:
        assert "transparency" not in img.info
