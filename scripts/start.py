#!/usr/bin/env python3
"""
Container entrypoint: run the release phase, then exec gunicorn on app.wsgi.

Campaign sends run inside the request (throttled to the campaign's messages
per minute), so the worker timeout defaults well above gunicorn's 30s.

Env:
    PORT              bind port (default 8080)
    WEB_CONCURRENCY   worker count (default 2)
    GUNICORN_TIMEOUT  worker timeout in seconds (default 300)

Usage:
    python scripts/start.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _int_env(name: str, default: int, *, low: int, high: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        value = None
    if value is None or not low <= value <= high:
        print(f"ERROR: {name}={raw!r} must be an integer between {low} and {high}.", flush=True)
        sys.exit(1)
    return value


def main() -> None:
    port = _int_env("PORT", 8080, low=1, high=65535)
    workers = _int_env("WEB_CONCURRENCY", 2, low=1, high=64)
    timeout = _int_env("GUNICORN_TIMEOUT", 300, low=30, high=3600)

    from scripts.release import run_release

    try:
        run_release()
    except Exception as e:
        print(f"TourDesk release failed, not starting web workers: {e}", flush=True)
        sys.exit(1)

    print(f"=== Starting TourDesk on 0.0.0.0:{port} ({workers} workers, timeout {timeout}s) ===", flush=True)
    # gunicorn replaces this process and owns signal handling
    os.execvp(
        "gunicorn",
        [
            "gunicorn",
            "app.wsgi:app",
            "--bind", f"0.0.0.0:{port}",
            "--workers", str(workers),
            "--timeout", str(timeout),
            "--preload",
            "--access-logfile", "-",
            "--error-logfile", "-",
        ],
    )


if __name__ == "__main__":
    main()
