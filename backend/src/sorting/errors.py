"""Error taxonomy for the sorting engine.

Caller mistakes (ConfigError, ShapeError) carry enough detail to fix the
input. InternalInvariantError means the engine itself is broken and must
never be reported back to the caller as if it were their fault.
"""


class SortError(Exception):
    """Base class for every error raised by the sorting engine."""


class ConfigError(SortError, ValueError):
    """Invalid sort configuration (bad enum value, channel list, type)."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class ShapeError(SortError, ValueError):
    """Buffer length or dimensions do not describe a valid image."""


class InternalInvariantError(SortError, RuntimeError):
    """Partition or writeback produced lines that do not tile the image."""
