#!/usr/bin/env python3
"""
Container entrypoint for the SpipUniform API.

Runs scripts/release.py (migrations + seeds) and then hands the process over
to gunicorn with os.execvp, so gunicorn is PID 1 and gets SIGTERM directly.

Environment:
    PORT              listen port (default 8080)
    WEB_CONCURRENCY   gunicorn workers (default 2)
    GUNICORN_TIMEOUT  worker timeout in seconds (default 60; uploads can be slow)
    SKIP_RELEASE=1    start the web process only
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _env_int(name: str, default: int, lo: int, hi: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        value = lo - 1
    if value < lo or value > hi:
        print(f"ERROR: {name}={raw!r} must be an integer between {lo} and {hi}.", flush=True)
        sys.exit(1)
    return value


def gunicorn_argv() -> list[str]:
    port = _env_int("PORT", 8080, 1, 65535)
    workers = _env_int("WEB_CONCURRENCY", 2, 1, 64)
    timeout = _env_int("GUNICORN_TIMEOUT", 60, 1, 3600)
    return [
        "gunicorn",
        "app.wsgi:app",
        f"--bind=0.0.0.0:{port}",
        f"--workers={workers}",
        f"--timeout={timeout}",
        "--preload",
        "--access-logfile=-",
        "--error-logfile=-",
    ]


def main() -> None:
    argv = gunicorn_argv()

    if (os.environ.get("SKIP_RELEASE") or "").strip() != "1":
        from scripts.release import run_release

        try:
            run_release()
        except Exception as e:
            print(f"Release failed, not starting web: {e}", flush=True)
            sys.exit(1)

    print("Exec: " + " ".join(argv), flush=True)
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
