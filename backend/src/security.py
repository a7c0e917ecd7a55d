"""Security validation gates for the pngsort sidecar."""

import json
import os
import re
from pathlib import Path

# Input file validation
MAX_UPLOAD_SIZE = 100 * 1024 * 1024  # 100 MB
ALLOWED_EXTENSIONS = {".png"}

# Pixel count cap (100 MP, e.g. 10000 x 10000)
MAX_PIXEL_COUNT = 100_000_000

ALLOWED_OUTPUT_EXTENSIONS = {".png"}
BLOCKED_OUTPUT_PREFIXES = (
    "/System",
    "/Library",
    "/usr",
    "/bin",
    "/sbin",
    "/etc",
    "/private/var",
    "/private/etc",
)


def _unsafe_name(name: str) -> bool:
    return ".." in name or "/" in name or "\\" in name or "\x00" in name


def validate_upload(path: str) -> list[str]:
    """Validate an input image path. Returns list of errors (empty = valid).

    The path must resolve under the user's home directory, exist, not be a
    symlink, carry a .png extension and be at most MAX_UPLOAD_SIZE bytes.
    """
    errors: list[str] = []
    p = Path(path)

    resolved = str(p.resolve())
    if not resolved.startswith(str(Path.home())):
        errors.append("Path must be within user home directory")
        return errors

    if not p.exists():
        errors.append(f"File not found: {path}")
        return errors

    if p.is_symlink():
        errors.append("Symlinks are not allowed")
        return errors

    ext = p.suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        errors.append(
            f"Extension '{ext}' not allowed. Allowed: {sorted(ALLOWED_EXTENSIONS)}"
        )

    size = p.stat().st_size
    if size > MAX_UPLOAD_SIZE:
        errors.append(
            f"File too large: {size / (1024 * 1024):.1f} MB "
            f"(max {MAX_UPLOAD_SIZE // (1024 * 1024)} MB)"
        )

    if _unsafe_name(p.name):
        errors.append(f"Unsafe filename: {p.name}")

    return errors


def validate_pixel_count(width: int, height: int) -> list[str]:
    """Validate image dimensions against MAX_PIXEL_COUNT."""
    errors: list[str] = []
    count = width * height
    if count > MAX_PIXEL_COUNT:
        errors.append(
            f"Image {width}x{height} ({count} pixels) exceeds maximum {MAX_PIXEL_COUNT}"
        )
    return errors


def validate_output_path(path: str) -> list[str]:
    """Validate an output image path. Returns list of errors (empty = valid)."""
    errors: list[str] = []
    p = Path(path)

    if not p.is_absolute():
        errors.append("Output path must be absolute")
        return errors

    resolved = str(p.resolve())
    for prefix in BLOCKED_OUTPUT_PREFIXES:
        if resolved.startswith(prefix):
            errors.append(f"Cannot write to system directory: {prefix}")
            return errors

    ext = p.suffix.lower()
    if ext not in ALLOWED_OUTPUT_EXTENSIONS:
        errors.append(f"Output extension '{ext}' not allowed.")

    parent = p.parent
    if not parent.exists():
        errors.append(f"Output directory does not exist: {parent}")
    elif not os.access(str(parent), os.W_OK):
        errors.append(f"Output directory is not writable: {parent}")

    if _unsafe_name(p.name):
        errors.append(f"Unsafe output filename: {p.name}")

    return errors


# --- PII stripping for Sentry and crash dumps ---

_HOME = os.path.expanduser("~")
_USERNAME = os.path.basename(_HOME)
_PATH_PATTERN = re.compile(r"/Users/[^/\s]+|/home/[^/\s]+|C:\\Users\\[^\\\s]+")
_SENSITIVE_KEYS = {"_token", "token", "auth", "key", "secret", "password", "dsn"}


def _scrub_dict(d: dict):
    for key in list(d.keys()):
        if any(s in key.lower() for s in _SENSITIVE_KEYS):
            d[key] = "<REDACTED>"


def strip_pii(event: dict, hint: dict) -> dict:
    """Sentry before_send hook. Strips home paths, usernames and tokens."""
    event_str = json.dumps(event)
    event_str = event_str.replace(_HOME, "<HOME>")
    if _USERNAME:
        event_str = event_str.replace(_USERNAME, "<USER>")
    event_str = _PATH_PATTERN.sub("<REDACTED_PATH>", event_str)
    event = json.loads(event_str)

    _scrub_dict(event.get("extra", {}))
    for ctx in event.get("contexts", {}).values():
        if isinstance(ctx, dict):
            _scrub_dict(ctx)
    return event
