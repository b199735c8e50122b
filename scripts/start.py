#!/usr/bin/env python3
"""
Container entrypoint: release phase (migrations + privilege seed), then gunicorn.

Environment:
  PORT               listen port (default 8080)
  WEB_CONCURRENCY    gunicorn workers (default 2)
  GUNICORN_TIMEOUT   worker timeout in seconds (default 60)

Usage:
    python scripts/start.py [--skip-release]
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

DEFAULT_PORT = 8080


def parse_port(raw: str | None) -> int:
    value = (raw or "").strip()
    if not value:
        return DEFAULT_PORT
    port = int(value)
    if not 1 <= port <= 65535:
        raise ValueError(f"Port out of range: {port}")
    return port


def _positive_int_env(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    value = int(raw)
    if value < 1:
        raise ValueError(f"{name} must be positive")
    return value


def gunicorn_argv(port: int, *, workers: int, timeout: int) -> list[str]:
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(workers),
        "--timeout", str(timeout),
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--skip-release", action="store_true", help="Start gunicorn without migrating")
    args = parser.parse_args()

    try:
        port = parse_port(os.environ.get("PORT"))
        workers = _positive_int_env("WEB_CONCURRENCY", 2)
        timeout = _positive_int_env("GUNICORN_TIMEOUT", 60)
    except ValueError as e:
        print(f"ERROR: {e}", flush=True)
        sys.exit(1)

    if not args.skip_release:
        from scripts.release import run_release

        try:
            run_release()
        except Exception as e:
            print(f"Release failed: {e}", flush=True)
            sys.exit(1)

    argv = gunicorn_argv(port, workers=workers, timeout=timeout)
    print(f"Starting gunicorn on :{port} with {workers} workers", flush=True)
    # gunicorn replaces this process so it receives container signals directly
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
