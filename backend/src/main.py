"""Tonescope sidecar entry point: telemetry, limits, then the ZMQ loop."""

import os
import platform
import sys
from pathlib import Path

import sentry_sdk

from _version import __version__
from diagnostics import APP_DIR, init_diagnostics
from security import strip_pii
from zmq_server import ZMQServer

CONSENT_FILENAME = "telemetry_consent"

# Address-space cap (Linux/macOS only); decoded images stay well below this
MAX_MEMORY_BYTES = 2 * 1024 * 1024 * 1024  # 2 GB


def _telemetry_consented(app_dir: str = APP_DIR) -> bool:
    consent = Path(os.path.expanduser(app_dir)) / CONSENT_FILENAME
    try:
        return consent.read_text().strip() == "yes"
    except OSError:
        return False


def _init_sentry(consented: bool) -> str:
    """Start the Sentry client. Without consent the DSN is empty and nothing is sent.

    Returns the DSN actually used.
    """
    dsn = os.environ.get("SENTRY_DSN", "") if consented else ""
    sentry_sdk.init(
        dsn=dsn,
        release=f"tonescope@{__version__}",
        environment=os.environ.get("SENTRY_ENV", "development"),
        traces_sample_rate=0.1,
        before_send=strip_pii,
        max_breadcrumbs=50,
    )
    return dsn


def _apply_resource_limits():
    if platform.system() == "Windows":
        return
    try:
        import resource

        _, hard = resource.getrlimit(resource.RLIMIT_AS)
        if hard != resource.RLIM_INFINITY:
            # soft limit may not exceed the hard one
            limit = min(MAX_MEMORY_BYTES, hard)
        else:
            limit = MAX_MEMORY_BYTES
        resource.setrlimit(resource.RLIMIT_AS, (limit, hard))
    except (ImportError, ValueError, OSError):
        print("WARNING: Could not set memory limit", file=sys.stderr)


def main():
    _init_sentry(_telemetry_consented())
    init_diagnostics()
    _apply_resource_limits()
    server = ZMQServer()
    print(f"ZMQ_PORT={server.port}", flush=True)
    print(f"ZMQ_PING_PORT={server.ping_port}", flush=True)
    print(f"ZMQ_TOKEN={server.token}", flush=True)
    server.run()


if __name__ == "__main__":
    main()
