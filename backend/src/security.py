"""Security validation gates for the Tonescope sidecar."""

import json
import os
import re
from pathlib import Path

# SEC-1: Upload validation
MAX_UPLOAD_SIZE = 100 * 1024 * 1024  # 100 MB
ALLOWED_EXTENSIONS = {
    ".png",
    ".jpg",
    ".jpeg",
    ".webp",
    ".bmp",
    ".gif",
    ".tif",
    ".tiff",
}

# SEC-2: Decoded area cap (decompression bombs), 16K x 8K. Must stay below
# Pillow's hard limit (2 * Image.MAX_IMAGE_PIXELS), past which Image.open fails.
MAX_PIXEL_COUNT = 134_217_728


def validate_upload(path: str) -> list[str]:
    """Validate an image file path. Returns list of errors (empty = valid).

    Checks (SEC-1):
    - Path is under the user home
    - File exists
    - Not a symlink
    - Extension in whitelist
    - File size <= 100 MB
    - Filename is safe (no path traversal)
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
        size_mb = size / (1024 * 1024)
        errors.append(
            f"File too large: {size_mb:.1f} MB (max {MAX_UPLOAD_SIZE // (1024 * 1024)} MB)"
        )

    name = p.name
    if ".." in name or "/" in name or "\\" in name or "\x00" in name:
        errors.append(f"Unsafe filename: {name}")

    return errors


def validate_pixel_count(width: int, height: int) -> list[str]:
    """Validate decoded image area against the SEC-2 cap. Returns list of errors."""
    errors: list[str] = []
    if width * height > MAX_PIXEL_COUNT:
        errors.append(
            f"Image {width}x{height} exceeds maximum {MAX_PIXEL_COUNT} pixels (SEC-2)"
        )
    return errors


# --- PII stripping for Sentry and crash dumps ---

_HOME = os.path.expanduser("~")
_USERNAME = os.path.basename(_HOME)
_PATH_PATTERN = re.compile(r"/Users/[^/\s]+|/home/[^/\s]+|C:\\Users\\[^\\\s]+")
_SENSITIVE_KEYS = {"_token", "token", "auth", "key", "secret", "password", "dsn"}


def _scrub_dict(d: dict):
    """Redact values for keys that look sensitive."""
    for key in list(d.keys()):
        if any(s in key.lower() for s in _SENSITIVE_KEYS):
            d[key] = "<REDACTED>"


def strip_pii(event: dict, hint: dict) -> dict:
    """Sentry before_send hook. Strips file paths and auth tokens.

    Also usable for crash dump sanitization.
    """
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
