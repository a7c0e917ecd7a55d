"""Diagnostics for the sidecar process.

- JSON log records to a rotating file under ~/.pngsort/logs
- faulthandler tracebacks for C-level crashes (separate file)
- sys.excepthook that writes PII-stripped crash dumps
"""

import datetime
import faulthandler
import json
import logging
import logging.handlers
import os
import sys
import traceback
from pathlib import Path

logger = logging.getLogger(__name__)

APP_DIR = "~/.pngsort"
LOG_FILE = "pngsort.log"
FAULT_FILE = "pngsort_fault.log"

MAX_CRASH_REPORTS = 5
MAX_LOG_AGE_DAYS = 7
LOG_MAX_BYTES = 10_000_000
LOG_BACKUPS = 7


def _app_dir() -> str:
    return os.path.realpath(os.path.expanduser(APP_DIR))


def _validate_log_dir(env_dir: str) -> str:
    """Return env_dir if it lies under the app directory, else the default."""
    default = os.path.join(_app_dir(), "logs")
    if not env_dir:
        return default
    resolved = os.path.realpath(env_dir)
    allowed = _app_dir()
    if resolved != allowed and not resolved.startswith(allowed + os.sep):
        logger.warning("APP_LOG_DIR outside allowed prefix, using default")
        return default
    return resolved


class JSONFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.datetime.fromtimestamp(
                record.created, tz=datetime.timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry)


def _prune(paths: list[Path], keep: int = 0, older_than: float | None = None):
    """Delete files beyond the newest ``keep`` or older than a timestamp."""
    try:
        paths = sorted(paths, key=lambda f: f.stat().st_mtime, reverse=True)
        for i, f in enumerate(paths):
            too_many = keep and i >= keep
            too_old = older_than is not None and f.stat().st_mtime < older_than
            if too_many or too_old:
                f.unlink(missing_ok=True)
    except OSError as e:
        logger.debug("Pruning failed: %s", e)


def setup_structured_logging(log_dir: str | None = None) -> str:
    """Attach a rotating JSON handler to the root logger.

    Returns the directory actually used.
    """
    resolved_dir = _validate_log_dir(log_dir or os.environ.get("APP_LOG_DIR", ""))
    os.makedirs(resolved_dir, mode=0o700, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        os.path.join(resolved_dir, LOG_FILE),
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUPS,
    )
    handler.setFormatter(JSONFormatter())

    level_name = os.environ.get("APP_LOG_LEVEL", "INFO").upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    root.addHandler(handler)

    cutoff = datetime.datetime.now() - datetime.timedelta(days=MAX_LOG_AGE_DAYS)
    _prune(list(Path(resolved_dir).glob(f"{LOG_FILE}*")), older_than=cutoff.timestamp())
    return resolved_dir


def setup_faulthandler(log_dir: str):
    """Send C-level crash tracebacks to their own file.

    Kept apart from the rotating log: rotation would invalidate the
    descriptor faulthandler holds.
    """
    fault_path = os.path.join(log_dir, FAULT_FILE)
    try:
        fault_file = open(fault_path, "a", buffering=1)  # noqa: SIM115
        os.chmod(fault_path, 0o600)
        faulthandler.enable(file=fault_file, all_threads=True)
    except OSError as e:
        print(f"WARNING: Could not enable faulthandler: {e}", file=sys.stderr)


def _crash_report(exc_type, exc_value, exc_tb) -> dict:
    from security import strip_pii

    report = {
        "timestamp": datetime.datetime.now(tz=datetime.timezone.utc).strftime(
            "%Y%m%dT%H%M%SZ"
        ),
        "exception_type": exc_type.__name__ if exc_type else "Unknown",
        "exception_message": str(exc_value),
        "traceback": traceback.format_exception(exc_type, exc_value, exc_tb),
        "python_version": sys.version,
        "platform": sys.platform,
    }
    return strip_pii({"extra": report}, {}).get("extra", report)


def setup_excepthook(crash_dir: str | None = None):
    """Install a sys.excepthook that writes JSON crash dumps."""
    crash_dir = crash_dir or os.path.join(os.path.expanduser(APP_DIR), "crash_reports")

    def _crash_excepthook(exc_type, exc_value, exc_tb):
        try:
            os.makedirs(crash_dir, mode=0o700, exist_ok=True)
            report = _crash_report(exc_type, exc_value, exc_tb)
            crash_path = os.path.join(crash_dir, f"crash_{report['timestamp']}.json")

            old_umask = os.umask(0o077)
            try:
                with open(crash_path, "w") as f:
                    json.dump(report, f, indent=2)
            finally:
                os.umask(old_umask)

            _prune(list(Path(crash_dir).glob("crash_*.json")), keep=MAX_CRASH_REPORTS)
        except Exception:
            # never recurse from inside the hook
            pass

        sys.__excepthook__(exc_type, exc_value, exc_tb)

    sys.excepthook = _crash_excepthook


def init_diagnostics():
    """Initialize all diagnostic layers. Call from main.py."""
    log_dir = setup_structured_logging()
    setup_faulthandler(log_dir)
    setup_excepthook()
    logger.info("Diagnostics initialized: logging=%s, faulthandler=enabled", log_dir)
