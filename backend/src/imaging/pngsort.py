"""PNG in, PNG out — decode, validate, sort and re-encode one image."""

import logging

from imaging.png import decode_png, encode_png
from sorting.config import SortConfig, parse_config
from sorting.engine import sort_image
from sorting.image import Image

logger = logging.getLogger(__name__)


def sort_png_image(
    config: SortConfig | dict | str, data: bytes, *, workers: int = 1
) -> tuple[bytes, Image]:
    """Like sort_png, but also returns the sorted Image for its geometry."""
    if not isinstance(config, SortConfig):
        config = parse_config(config)

    image = decode_png(data)
    logger.info(
        "Decoded %dx%d %s PNG (%d bytes)",
        image.width,
        image.height,
        image.pixel_format.value,
        len(data),
    )
    # Validate before sorting so config errors surface ahead of any work
    config.validate(image.pixel_format)

    sorted_image = sort_image(image, config, workers=workers)
    return encode_png(sorted_image), sorted_image


def sort_png(config: SortConfig | dict | str, data: bytes, *, workers: int = 1) -> bytes:
    """Sort the pixels of a PNG.

    Args:
        config:  SortConfig, raw config dict, or its JSON text.
        data:    PNG file bytes.
        workers: Threads for per-line sorting.

    Returns:
        PNG bytes with the same dimensions and pixel format.

    Raises:
        ConfigError: invalid config or config not applicable to the image.
        ImageFormatError: not a decodable 8-bit L/LA/RGB/RGBA PNG.
    """
    encoded, _ = sort_png_image(config, data, workers=workers)
    return encoded
