"""Pixel buffer view — typed random access over a flat channel buffer."""

import numpy as np


class PixelBufferView:
    """Non-owning (N, C) view over a flat uint8 buffer.

    Pixels are addressed by flat index ``y * width + x``. Indices outside
    ``[0, width * height)`` raise IndexError; negative indices are not
    wrapped the way plain numpy indexing would.
    """

    def __init__(self, buffer: np.ndarray, width: int, height: int, channels: int):
        self.width = width
        self.height = height
        self.channels = channels
        self._pixels = buffer.reshape(width * height, channels)

    @classmethod
    def allocate(cls, width: int, height: int, channels: int) -> "PixelBufferView":
        return cls(np.zeros(width * height * channels, dtype=np.uint8), width, height, channels)

    def __len__(self) -> int:
        return self._pixels.shape[0]

    @property
    def readonly(self) -> bool:
        return not self._pixels.flags.writeable

    @property
    def buffer(self) -> np.ndarray:
        """The underlying flat buffer."""
        return self._pixels.reshape(-1)

    def _check(self, index: int):
        if not 0 <= index < len(self):
            raise IndexError(f"pixel index {index} out of range [0, {len(self)})")

    def _check_many(self, indices: np.ndarray):
        if indices.size and (indices.min() < 0 or indices.max() >= len(self)):
            raise IndexError(
                f"pixel indices out of range [0, {len(self)}): "
                f"min={indices.min()}, max={indices.max()}"
            )

    def get(self, index: int) -> tuple[int, ...]:
        self._check(index)
        return tuple(int(v) for v in self._pixels[index])

    def set(self, index: int, values) -> None:
        self._check(index)
        if len(values) != self.channels:
            raise ValueError(
                f"expected {self.channels} channel values, got {len(values)}"
            )
        self._pixels[index] = values

    def take(self, indices: np.ndarray) -> np.ndarray:
        """Gather pixels at ``indices`` as an (n, C) array copy."""
        self._check_many(indices)
        return self._pixels[indices]

    def put(self, indices: np.ndarray, pixels: np.ndarray) -> None:
        """Scatter an (n, C) array of pixels to ``indices``."""
        self._check_many(indices)
        self._pixels[indices] = pixels

    def channel(self, offset: int, indices: np.ndarray) -> np.ndarray:
        """Single channel values for the pixels at ``indices``."""
        self._check_many(indices)
        return self._pixels[indices, offset]
