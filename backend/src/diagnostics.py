"""Diagnostics — structured logging, faulthandler, crash dumps.

Layers:
1. Structured JSON logging with RotatingFileHandler
2. faulthandler: C-level crash tracebacks (numpy/Pillow segfaults)
3. sys.excepthook: unhandled Python exceptions → JSON crash dumps
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

APP_DIR = "~/.tonescope"
LOG_FILENAME = "tonescope.log"
FAULT_FILENAME = "tonescope_fault.log"

MAX_CRASH_REPORTS = 5
MAX_LOG_AGE_DAYS = 7
MAX_LOG_BYTES = 10_000_000
LOG_BACKUPS = 7


def _app_dir() -> str:
    return os.path.expanduser(APP_DIR)


def _validate_log_dir(env_dir: str) -> str:
    """Validate APP_LOG_DIR is under ~/.tonescope. Returns safe path."""
    default = os.path.join(_app_dir(), "logs")
    if not env_dir:
        return default
    resolved = os.path.realpath(env_dir)
    allowed = os.path.realpath(_app_dir())
    if resolved != allowed and not resolved.startswith(allowed + os.sep):
        logger.warning("APP_LOG_DIR outside allowed prefix, using default")
        return default
    return resolved


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

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


def _cleanup_old_logs(log_dir: str):
    """Delete rotated logs older than MAX_LOG_AGE_DAYS."""
    cutoff = datetime.datetime.now() - datetime.timedelta(days=MAX_LOG_AGE_DAYS)
    try:
        for f in Path(log_dir).glob(f"{LOG_FILENAME}*"):
            if f.stat().st_mtime < cutoff.timestamp():
                f.unlink(missing_ok=True)
    except OSError:
        logger.debug("Log cleanup skipped for %s", log_dir)


def _cleanup_old_crash_reports(crash_dir: str):
    """Keep only the newest MAX_CRASH_REPORTS crash files."""
    try:
        crash_files = sorted(
            Path(crash_dir).glob("crash_*.json"),
            key=lambda f: f.stat().st_mtime,
            reverse=True,
        )
        for old_file in crash_files[MAX_CRASH_REPORTS:]:
            old_file.unlink(missing_ok=True)
    except OSError:
        logger.debug("Crash report cleanup skipped for %s", crash_dir)


def setup_structured_logging(log_dir: str | None = None) -> str:
    """Attach a rotating JSON log handler to the root logger.

    Args:
        log_dir: Override log directory (validated against ~/.tonescope).

    Returns:
        The directory actually used.
    """
    resolved_dir = _validate_log_dir(log_dir or os.environ.get("APP_LOG_DIR", ""))
    os.makedirs(resolved_dir, mode=0o700, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        os.path.join(resolved_dir, LOG_FILENAME),
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
    )
    handler.setFormatter(JSONFormatter())

    level_name = os.environ.get("APP_LOG_LEVEL", "INFO").upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    root.addHandler(handler)

    _cleanup_old_logs(resolved_dir)
    return resolved_dir


def setup_faulthandler(log_dir: str):
    """Enable faulthandler on its own file.

    Kept separate from the rotating log: rotation would invalidate the
    file descriptor faulthandler writes to.
    """
    fault_path = os.path.join(log_dir, FAULT_FILENAME)
    try:
        fault_file = open(fault_path, "a", buffering=1)  # noqa: SIM115
        os.chmod(fault_path, 0o600)
        faulthandler.enable(file=fault_file, all_threads=True)
    except OSError as e:
        print(f"WARNING: Could not enable faulthandler: {e}", file=sys.stderr)


def _crash_payload(exc_type, exc_value, exc_tb) -> str:
    """Serialize an exception to PII-stripped JSON."""
    from security import strip_pii

    crash_data = {
        "timestamp": datetime.datetime.now(tz=datetime.timezone.utc).strftime(
            "%Y%m%dT%H%M%SZ"
        ),
        "exception_type": exc_type.__name__ if exc_type else "Unknown",
        "exception_message": str(exc_value),
        "traceback": traceback.format_exception(exc_type, exc_value, exc_tb),
        "python_version": sys.version,
        "platform": sys.platform,
    }
    # strip_pii takes a Sentry event; wrap the dump as "extra"
    sanitized = strip_pii({"extra": crash_data}, {})
    return json.dumps(sanitized.get("extra", crash_data), indent=2)


def setup_excepthook():
    """Install sys.excepthook that writes structured crash dumps."""
    crash_dir = os.path.join(_app_dir(), "crash_reports")

    def _crash_excepthook(exc_type, exc_value, exc_tb):
        try:
            os.makedirs(crash_dir, mode=0o700, exist_ok=True)
            stamp = datetime.datetime.now(tz=datetime.timezone.utc).strftime(
                "%Y%m%dT%H%M%SZ"
            )
            crash_path = os.path.join(crash_dir, f"crash_{stamp}.json")
            payload = _crash_payload(exc_type, exc_value, exc_tb)

            old_umask = os.umask(0o077)
            try:
                with open(crash_path, "w") as f:
                    f.write(payload)
            finally:
                os.umask(old_umask)

            _cleanup_old_crash_reports(crash_dir)
        except Exception:
            # Never recurse out of the crash handler
            pass

        sys.__excepthook__(exc_type, exc_value, exc_tb)

    sys.excepthook = _crash_excepthook


def init_diagnostics():
    """Initialize all diagnostic layers. Call from main.py."""
    log_dir = setup_structured_logging()
    setup_faulthandler(log_dir)
    setup_excepthook()
    logger.info("Diagnostics initialized: logging=%s, faulthandler=enabled", log_dir)
