"""Sort configuration — parse the JSON-like config once into strict enums.

Raw config (as sent by the host UI or sidecar client):
    {
        "descending": false,
        "sort_range": "RowMajor",
        "sort_mode": "Untied",          # optional
        "sort_channel": ["R", "G", "B"]
    }
"""

import json
from dataclasses import dataclass
from enum import Enum

from sorting.errors import ConfigError


class RangeMode(Enum):
    ROW = "Row"
    COLUMN = "Column"
    ROW_MAJOR = "RowMajor"
    COLUMN_MAJOR = "ColumnMajor"


class TieMode(Enum):
    UNTIED = "Untied"
    TIED_BY_SUM = "TiedBySum"
    TIED_BY_ORDER = "TiedByOrder"


class Channel(Enum):
    R = "R"
    G = "G"
    B = "B"
    A = "A"
    L = "L"


class PixelFormat(Enum):
    L = "L"
    LA = "LA"
    RGB = "RGB"
    RGBA = "RGBA"

    @property
    def channels(self) -> tuple[Channel, ...]:
        return tuple(Channel(c) for c in self.value)

    @property
    def bytes_per_pixel(self) -> int:
        return len(self.value)

    @property
    def is_grayscale(self) -> bool:
        return self in (PixelFormat.L, PixelFormat.LA)

    def offset(self, channel: Channel) -> int:
        """Byte offset of a channel within one pixel of this format."""
        try:
            return self.channels.index(channel)
        except ValueError:
            raise ConfigError(
                "sort_channel",
                f"channel {channel.value} not present in {self.value} image",
            ) from None


def _parse_enum(enum_cls: type[Enum], value, field: str) -> Enum:
    """Match a raw string against an enum's exact value or kebab-case alias."""
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        raise ConfigError(field, f"expected a string, got {type(value).__name__}")
    for member in enum_cls:
        if value == member.value or value == kebab_name(member.value):
            return member
    allowed = ", ".join(m.value for m in enum_cls)
    raise ConfigError(field, f"unknown value {value!r}, expected one of: {allowed}")


def kebab_name(name: str) -> str:
    """'RowMajor' -> 'row-major', the spelling the CLI accepts."""
    out = []
    for i, ch in enumerate(name):
        if ch.isupper() and i > 0:
            out.append("-")
        out.append(ch.lower())
    return "".join(out)


def _parse_channels(raw, field: str = "sort_channel") -> tuple[Channel, ...]:
    if not isinstance(raw, (list, tuple)):
        raise ConfigError(field, f"expected a list, got {type(raw).__name__}")
    channels = []
    for item in raw:
        if isinstance(item, str):
            item = item.upper()
        channels.append(_parse_enum(Channel, item, field))
    if len(set(channels)) != len(channels):
        raise ConfigError(field, "duplicate channels are not allowed")
    return tuple(channels)


@dataclass(frozen=True)
class SortConfig:
    """Validated sort configuration.

    sort_channel is the priority list: first entry is the primary key.
    An empty tuple means "use the format default" and is only accepted
    for grayscale images.
    """

    sort_range: RangeMode
    sort_channel: tuple[Channel, ...] = ()
    sort_mode: TieMode | None = None
    descending: bool = False

    @property
    def tie_mode(self) -> TieMode:
        return self.sort_mode or TieMode.UNTIED

    def validate(self, pixel_format: PixelFormat) -> "SortConfig":
        """Check this config against an image format.

        Returns a copy with defaults resolved (tie mode and, for grayscale,
        the luminance channel). Raises ConfigError on mismatch.
        """
        if pixel_format.is_grayscale:
            if self.sort_mode is not None:
                raise ConfigError(
                    "sort_mode", "not applicable for grayscale images"
                )
            channels = self.sort_channel or (Channel.L,)
        else:
            if not self.sort_channel:
                raise ConfigError("sort_channel", "at least one channel is required")
            channels = self.sort_channel

        for channel in channels:
            pixel_format.offset(channel)

        # Grayscale keeps sort_mode unset so the result validates again
        return SortConfig(
            sort_range=self.sort_range,
            sort_channel=channels,
            sort_mode=None if pixel_format.is_grayscale else self.tie_mode,
            descending=self.descending,
        )

    def to_dict(self) -> dict:
        out = {
            "descending": self.descending,
            "sort_range": self.sort_range.value,
            "sort_channel": [c.value for c in self.sort_channel],
        }
        if self.sort_mode is not None:
            out["sort_mode"] = self.sort_mode.value
        return out


KNOWN_KEYS = {"descending", "sort_range", "sort_mode", "sort_channel"}


def parse_config(raw: dict | str) -> SortConfig:
    """Parse a raw config dict (or its JSON text) into a SortConfig.

    Raises:
        ConfigError: on invalid JSON, unknown keys, wrong types or
            unrecognised enum values. The error's ``field`` names the key.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigError("config", f"invalid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError("config", f"expected an object, got {type(raw).__name__}")

    unknown = set(raw) - KNOWN_KEYS
    if unknown:
        raise ConfigError("config", f"unknown keys: {sorted(unknown)}")

    if "sort_range" not in raw:
        raise ConfigError("sort_range", "missing required field")
    sort_range = _parse_enum(RangeMode, raw["sort_range"], "sort_range")

    sort_mode = None
    if raw.get("sort_mode") is not None:
        sort_mode = _parse_enum(TieMode, raw["sort_mode"], "sort_mode")

    descending = raw.get("descending", False)
    if not isinstance(descending, bool):
        raise ConfigError(
            "descending", f"expected a bool, got {type(descending).__name__}"
        )

    sort_channel = _parse_channels(raw.get("sort_channel", []))

    return SortConfig(
        sort_range=sort_range,
        sort_channel=sort_channel,
        sort_mode=sort_mode,
        descending=descending,
    )
