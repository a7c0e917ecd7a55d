"""Decoded raster image handed to and returned from the sorting engine."""

from dataclasses import dataclass, replace

import numpy as np

from sorting.config import PixelFormat
from sorting.errors import ShapeError


# Arrays have no scalar truth value, so compare and hash by identity
@dataclass(frozen=True, eq=False)
class Image:
    """Flat uint8 channel buffer plus its geometry.

    The buffer is stored as a read-only 1-D array so an engine invocation
    can never modify its input in place. ``transparency`` is the optional
    PNG tRNS color key (an int for L, an (r, g, b) tuple for RGB); it rides
    along unchanged because sorting only moves pixels.
    """

    width: int
    height: int
    pixel_format: PixelFormat
    buffer: np.ndarray
    transparency: int | tuple[int, ...] | None = None

    def __post_init__(self):
        if not isinstance(self.buffer, np.ndarray) or self.buffer.dtype != np.uint8:
            raise ShapeError("Image buffer must be a uint8 numpy array")
        flat = self.buffer.reshape(-1).view()
        flat.flags.writeable = False
        object.__setattr__(self, "buffer", flat)

        if self.width <= 0 or self.height <= 0:
            raise ShapeError(
                f"Image dimensions must be positive, got {self.width}x{self.height}"
            )
        expected = self.width * self.height * self.pixel_format.bytes_per_pixel
        if self.buffer.size != expected:
            raise ShapeError(
                f"Buffer length {self.buffer.size} does not match "
                f"{self.width}x{self.height}x{self.pixel_format.bytes_per_pixel} "
                f"({expected} bytes expected for {self.pixel_format.value})"
            )

    @classmethod
    def from_bytes(
        cls, data: bytes | bytearray | np.ndarray, width: int, height: int,
        pixel_format: PixelFormat,
    ) -> "Image":
        """Copy a raw buffer into a new Image, detaching it from the caller."""
        if isinstance(data, np.ndarray):
            if data.dtype != np.uint8:
                raise ShapeError(f"Buffer dtype must be uint8, got {data.dtype}")
            buf = data.reshape(-1).copy()
        else:
            buf = np.frombuffer(bytes(data), dtype=np.uint8).copy()
        return cls(width, height, pixel_format, buf)

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def channels(self) -> int:
        return self.pixel_format.bytes_per_pixel

    def to_array(self) -> np.ndarray:
        """Return the buffer as an (H, W, C) array (a read-only view)."""
        return self.buffer.reshape(self.height, self.width, self.channels)

    def tobytes(self) -> bytes:
        return self.buffer.tobytes()

    def with_transparency(self, transparency: int | tuple[int, ...] | None) -> "Image":
        """Return a copy carrying a tRNS color key."""
        return replace(self, transparency=transparency)
