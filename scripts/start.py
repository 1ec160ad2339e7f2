#!/usr/bin/env python3
"""
Production entrypoint: apply audit-trail migrations, then hand the process to gunicorn.

Environment:
    PORT               listen port (default 8080)
    WEB_CONCURRENCY    gunicorn workers (default 2)
    GUNICORN_TIMEOUT   worker timeout in seconds (default 60); lesson uploads
                       are forwarded to the API inside the request

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


def _int_env(name: str, default: int, *, low: int = 1, high: int = 65535) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        value = -1
    if not low <= value <= high:
        print(f"ERROR: {name}={raw!r} must be an integer between {low} and {high}.", flush=True)
        sys.exit(1)
    return value


def gunicorn_argv() -> list[str]:
    port = _int_env("PORT", 8080)
    workers = _int_env("WEB_CONCURRENCY", 2, high=32)
    timeout = _int_env("GUNICORN_TIMEOUT", 60, high=600)
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(workers),
        "--timeout", str(timeout),
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    argv = gunicorn_argv()

    from scripts.release import run_release

    try:
        run_release()
    except Exception as e:
        print(f"Release failed: {e}", flush=True)
        sys.exit(1)

    print(f"Starting backoffice: {' '.join(argv)}", flush=True)
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
