"""Key extraction — one sort key per pixel from the channel priority list."""

import numpy as np

from sorting.config import PixelFormat, SortConfig, TieMode
from sorting.pixel_view import PixelBufferView

# Bits per channel when packing a priority list into one scalar key
CHANNEL_BITS = 8


def channel_offsets(config: SortConfig, pixel_format: PixelFormat) -> tuple[int, ...]:
    """Byte offsets of config.sort_channel within a pixel, in priority order."""
    return tuple(pixel_format.offset(c) for c in config.sort_channel)


def raw_tuples(view: PixelBufferView, line: np.ndarray, offsets: tuple[int, ...]) -> np.ndarray:
    """(n, k) int64 array: each row is a pixel's channels in priority order."""
    pixels = view.take(line)
    return pixels[:, list(offsets)].astype(np.int64)


def extract_keys(
    view: PixelBufferView,
    line: np.ndarray,
    offsets: tuple[int, ...],
    tie_mode: TieMode,
) -> np.ndarray:
    """Compute sort keys for every pixel of a line.

    Untied       -> (n, k) raw channel tuples, compared lexicographically.
    TiedBySum    -> (n,) sum of the raw tuple.
    TiedByOrder  -> (n,) primary channel in the high bits, each following
                    channel packed below it, so ties cascade in priority order.
    """
    tuples = raw_tuples(view, line, offsets)
    if tie_mode is TieMode.UNTIED:
        return tuples
    if tie_mode is TieMode.TIED_BY_SUM:
        return tuples.sum(axis=1)
    if tie_mode is TieMode.TIED_BY_ORDER:
        key = np.zeros(tuples.shape[0], dtype=np.int64)
        for col in range(tuples.shape[1]):
            key = (key << CHANNEL_BITS) | tuples[:, col]
        return key
    raise ValueError(f"unknown tie mode: {tie_mode}")
