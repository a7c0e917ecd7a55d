"""PNG container decode/encode via Pillow.

Only 8-bit L, LA, RGB and RGBA images are accepted. Anything that would
need a color conversion to fit (palette, 1/2/4-bit, 16-bit, CMYK) is rejected
rather than converted, since the sort must only permute existing values.
"""

import io

import numpy as np
from PIL import Image as PILImage
from PIL import UnidentifiedImageError

from sorting.config import PixelFormat
from sorting.image import Image

SUPPORTED_MODES = {fmt.value: fmt for fmt in PixelFormat}

# 8-byte signature, then IHDR length, type, width and height
IHDR_BIT_DEPTH_OFFSET = 24


class ImageFormatError(ValueError):
    """Input bytes are not a PNG the engine can sort."""


def probe_png(data: bytes) -> dict:
    """Read PNG header metadata without decoding pixel data."""
    try:
        with PILImage.open(io.BytesIO(data)) as img:
            if img.format != "PNG":
                return {"ok": False, "error": f"Not a PNG image: {img.format}"}
            return {
                "ok": True,
                "width": img.size[0],
                "height": img.size[1],
                "mode": img.mode,
            }
    except (UnidentifiedImageError, PILImage.DecompressionBombError, OSError) as e:
        return {"ok": False, "error": f"Failed to open image: {type(e).__name__}"}


def _bit_depth(data: bytes) -> int:
    """Sample bit depth from the IHDR chunk, which always follows the signature."""
    return data[IHDR_BIT_DEPTH_OFFSET]


def decode_png(data: bytes) -> Image:
    """Decode PNG bytes into an Image. Raises ImageFormatError."""
    try:
        with PILImage.open(io.BytesIO(data)) as img:
            if img.format != "PNG":
                raise ImageFormatError(f"Expected a PNG image, got {img.format}")
            if img.mode == "P":
                raise ImageFormatError("Indexed color type is not supported")
            # Pillow rescales 1/2/4-bit samples and truncates 16-bit ones
            depth = _bit_depth(data)
            if depth != 8:
                raise ImageFormatError(
                    f"Only 8-bit PNGs are supported, got {depth}-bit samples"
                )
            fmt = SUPPORTED_MODES.get(img.mode)
            if fmt is None:
                raise ImageFormatError(
                    f"Unsupported PNG mode {img.mode!r}; "
                    f"supported: {sorted(SUPPORTED_MODES)}"
                )
            arr = np.asarray(img, dtype=np.uint8)
            width, height = img.size
            transparency = img.info.get("transparency")
    except (UnidentifiedImageError, PILImage.DecompressionBombError, OSError) as e:
        raise ImageFormatError(f"Could not decode PNG: {e}") from e

    image = Image.from_bytes(arr, width, height, fmt)
    # tRNS only applies to formats without an alpha channel
    if transparency is not None and fmt in (PixelFormat.L, PixelFormat.RGB):
        image = image.with_transparency(transparency)
    return image


def encode_png(image: Image) -> bytes:
    """Encode an Image as PNG bytes in its own pixel format.

    A tRNS color key carried on the image is written back out; sorting only
    moves pixels, so the keyed color still marks the same pixels.
    """
    arr = image.to_array().copy()
    if image.pixel_format is PixelFormat.L:
        arr = arr.reshape(image.height, image.width)
    img = PILImage.fromarray(arr)
    params = {}
    if image.transparency is not None:
        params["transparency"] = image.transparency
    buf = io.BytesIO()
    img.save(buf, format="PNG", **params)
    return buf.getvalue()
