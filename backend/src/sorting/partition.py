"""Partitioner — split the image into independently sorted lines."""

import numpy as np

from sorting.config import RangeMode
from sorting.errors import InternalInvariantError


def build_lines(width: int, height: int, sort_range: RangeMode) -> list[np.ndarray]:
    """Return the ordered lines for a range mode.

    Each line is a 1-D int64 array of flat pixel indices (y * width + x),
    listed in the order pixels are laid out after sorting.
    """
    grid = np.arange(width * height, dtype=np.int64).reshape(height, width)

    if sort_range is RangeMode.ROW:
        return [grid[y] for y in range(height)]
    if sort_range is RangeMode.COLUMN:
        return [np.ascontiguousarray(grid[:, x]) for x in range(width)]
    if sort_range is RangeMode.ROW_MAJOR:
        return [grid.reshape(-1)]
    if sort_range is RangeMode.COLUMN_MAJOR:
        return [np.ascontiguousarray(grid.T).reshape(-1)]
    raise ValueError(f"unknown sort range: {sort_range}")


def check_tiling(lines: list[np.ndarray], pixel_count: int) -> None:
    """Raise InternalInvariantError unless lines cover each pixel exactly once."""
    counts = np.zeros(pixel_count, dtype=np.int64)
    for line in lines:
        if line.size and (line.min() < 0 or line.max() >= pixel_count):
            raise InternalInvariantError(
                f"line references pixel outside [0, {pixel_count})"
            )
        np.add.at(counts, line, 1)

    missing = int(np.count_nonzero(counts == 0))
    repeated = int(np.count_nonzero(counts > 1))
    if missing or repeated:
        raise InternalInvariantError(
            f"lines do not tile the image: {missing} pixels uncovered, "
            f"{repeated} pixels in more than one line"
        )
