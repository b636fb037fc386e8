#!/usr/bin/env python3
"""
Production startup script.

Checks the environment, runs the release phase (migrations + seed) and then
execs gunicorn. Any preflight problem is printed and the process exits 1
before the database is touched.

Usage:
    python scripts/start.py
"""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.steward.encryption import EncryptionKeyError, load_key  # noqa: E402

DEFAULT_PORT = "8080"
DEFAULT_WORKERS = "2"


def _is_production(environ: Mapping[str, str]) -> bool:
    return (environ.get("ENV") or "").strip().lower() in ("prod", "production")


def _positive_int(raw: str, name: str, upper: int | None = None) -> str | None:
    try:
        value = int(raw)
    except ValueError:
        return f"Invalid {name} value '{raw}'. Must be an integer."
    if value < 1 or (upper is not None and value > upper):
        bound = f"1-{upper}" if upper else "at least 1"
        return f"Invalid {name} value '{raw}'. Must be {bound}."
    return None


def preflight(environ: Mapping[str, str]) -> tuple[str, str, list[str]]:
    """
    Returns (port, workers, errors). Production also needs a real SECRET_KEY and
    a usable ENCRYPTION_KEY, since member birth dates and church tax ids are
    written encrypted.
    """
    errors: list[str] = []
    port = (environ.get("PORT") or "").strip() or DEFAULT_PORT
    workers = (environ.get("WEB_CONCURRENCY") or "").strip() or DEFAULT_WORKERS
    for raw, name, upper in ((port, "PORT", 65535), (workers, "WEB_CONCURRENCY", None)):
        problem = _positive_int(raw, name, upper)
        if problem:
            errors.append(problem)

    if _is_production(environ):
        if (environ.get("SECRET_KEY") or "change-me").strip() == "change-me":
            errors.append("SECRET_KEY must be set in production.")
        try:
            load_key(environ.get("ENCRYPTION_KEY"))
        except EncryptionKeyError as e:
            errors.append(str(e))
    return port, workers, errors


def gunicorn_argv(port: str, workers: str) -> list[str]:
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", workers,
        "--timeout", "60",
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    port, workers, errors = preflight(os.environ)
    if errors:
        for e in errors:
            print(f"ERROR: {e}", flush=True)
        sys.exit(1)
    if not (os.environ.get("PORT") or "").strip():
        print(f"WARNING: PORT not set, using default {DEFAULT_PORT}", flush=True)

    print("=== Running release phase ===", flush=True)
    from scripts.release import run_release

    try:
        run_release()
    except Exception as e:
        print(f"Release failed: {e}", flush=True)
        sys.exit(1)

    print(f"=== Starting gunicorn on 0.0.0.0:{port} ({workers} workers) ===", flush=True)
    # exec so gunicorn becomes PID 1 and receives signals directly
    argv = gunicorn_argv(port, workers)
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
