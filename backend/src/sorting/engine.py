"""Sorting engine — partition, key, sort and write back one image.

Each call is a pure function (Image, SortConfig) -> Image. The input buffer
is never modified and the output is only returned once every pixel has been
written exactly once.

Optional per-line parallelism: lines have no data dependency on each other,
so with ``workers > 1`` they are sorted on a thread pool. numpy releases the
GIL inside argsort/lexsort and the gather/scatter copies, and results are
committed in line order, so output is identical for any worker count.
"""

import logging
import threading
import time
from collections import defaultdict, deque
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from sorting.config import PixelFormat, SortConfig
from sorting.image import Image
from sorting.keys import channel_offsets, extract_keys
from sorting.partition import build_lines, check_tiling
from sorting.pixel_view import PixelBufferView
from sorting.segment import sort_line
from sorting.writeback import Writeback

logger = logging.getLogger(__name__)

# Cap on the per-call thread pool size
MAX_WORKERS = 16

# Sorts slower than this are logged as warnings (milliseconds)
SORT_WARN_MS = 1000

# Rolling timing samples per range mode
_timing_lock = threading.Lock()
_sort_timing: dict[str, deque] = defaultdict(lambda: deque(maxlen=100))


def record_timing(range_name: str, elapsed_ms: float):
    """Record a timing sample for a range mode."""
    with _timing_lock:
        _sort_timing[range_name].append(elapsed_ms)


def get_sort_stats() -> dict[str, dict]:
    """Return p50/p95/max per range mode."""
    with _timing_lock:
        snapshot = {name: sorted(samples) for name, samples in _sort_timing.items()}
    return {
        name: {
            "p50": s[len(s) // 2] if s else 0,
            "p95": s[int(len(s) * 0.95)] if len(s) >= 20 else None,
            "max": s[-1] if s else 0,
            "samples": len(s),
        }
        for name, s in snapshot.items()
    }


def flush_timing():
    """Clear all timing stats."""
    with _timing_lock:
        _sort_timing.clear()


def _sort_one(
    view: PixelBufferView,
    line: np.ndarray,
    offsets: tuple[int, ...],
    config: SortConfig,
) -> np.ndarray:
    keys = extract_keys(view, line, offsets, config.tie_mode)
    return sort_line(keys, config.descending)


def sort_image(image: Image, config: SortConfig, *, workers: int = 1) -> Image:
    """Sort an image's pixels according to ``config``.

    Args:
        image:   Input image (left untouched).
        config:  Parsed configuration; validated here against the image format.
        workers: Threads used for per-line sorting (1 = sequential).

    Returns:
        A new Image with the same width, height and pixel format.

    Raises:
        ConfigError: config does not fit the image's pixel format.
        InternalInvariantError: lines or writeback failed to tile the image.
    """
    resolved = config.validate(image.pixel_format)
    offsets = channel_offsets(resolved, image.pixel_format)

    source = PixelBufferView(image.buffer, image.width, image.height, image.channels)
    lines = build_lines(image.width, image.height, resolved.sort_range)
    check_tiling(lines, image.pixel_count)

    logger.debug(
        "Sorting %dx%d %s: %s, %d lines, mode=%s, channels=%s, descending=%s",
        image.width,
        image.height,
        image.pixel_format.value,
        resolved.sort_range.value,
        len(lines),
        resolved.tie_mode.value,
        [c.value for c in resolved.sort_channel],
        resolved.descending,
    )

    t0 = time.monotonic()
    wb = Writeback(source)
    workers = max(1, min(int(workers), MAX_WORKERS, len(lines)))

    if workers == 1:
        for line in lines:
            wb.commit(line, _sort_one(source, line, offsets, resolved))
    else:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            perms = pool.map(
                lambda line: _sort_one(source, line, offsets, resolved), lines
            )
            for line, perm in zip(lines, perms):
                wb.commit(line, perm)

    output = wb.finish()
    elapsed_ms = (time.monotonic() - t0) * 1000
    record_timing(resolved.sort_range.value, elapsed_ms)

    if elapsed_ms > SORT_WARN_MS:
        logger.warning(
            "Sort of %dx%d image took %.0fms (>%dms warn threshold)",
            image.width,
            image.height,
            elapsed_ms,
            SORT_WARN_MS,
        )

    return Image(
        image.width,
        image.height,
        image.pixel_format,
        output.buffer,
        transparency=image.transparency,
    )


def sort_buffer(
    buffer: bytes | bytearray | np.ndarray,
    width: int,
    height: int,
    pixel_format: PixelFormat,
    config: SortConfig,
    *,
    workers: int = 1,
) -> bytes:
    """Sort a raw interleaved pixel buffer; returns a new buffer of equal length.

    Raises:
        ShapeError: buffer length does not match width * height * channels.
    """
    image = Image.from_bytes(buffer, width, height, pixel_format)
    return sort_image(image, config, workers=workers).tobytes()
