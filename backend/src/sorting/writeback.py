"""Writeback — commit per-line permutations into a fresh output buffer."""

import numpy as np

from sorting.errors import InternalInvariantError
from sorting.pixel_view import PixelBufferView


class Writeback:
    """Output buffer plus a coverage map of which pixels were written.

    Lines write disjoint index sets, so ``commit`` may be called from
    several threads at once without locking.
    """

    def __init__(self, source: PixelBufferView):
        self.source = source
        self.output = PixelBufferView.allocate(source.width, source.height, source.channels)
        self._written = np.zeros(len(source), dtype=np.int32)

    def commit(self, line: np.ndarray, perm: np.ndarray) -> None:
        """Write ``source[line[perm[j]]]`` to ``output[line[j]]``."""
        if perm.shape != line.shape:
            raise InternalInvariantError(
                f"permutation length {perm.size} does not match line length {line.size}"
            )
        self.output.put(line, self.source.take(line[perm]))
        np.add.at(self._written, line, 1)

    def finish(self) -> PixelBufferView:
        """Return the output view, or raise if coverage is not exactly once."""
        missing = int(np.count_nonzero(self._written == 0))
        repeated = int(np.count_nonzero(self._written > 1))
        if missing or repeated:
            raise InternalInvariantError(
                f"writeback left {missing} pixels unwritten and wrote "
                f"{repeated} pixels more than once"
            )
        return self.output


def write_back(
    source: PixelBufferView, lines: list[np.ndarray], permutations: list[np.ndarray]
) -> PixelBufferView:
    """Apply each line's permutation and return the completed output view."""
    if len(lines) != len(permutations):
        raise InternalInvariantError(
            f"{len(lines)} lines but {len(permutations)} permutations"
        )
    wb = Writeback(source)
    for line, perm in zip(lines, permutations):
        wb.commit(line, perm)
    return wb.finish()
