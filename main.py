#!/usr/bin/env python3
"""
FinFlex Auth -- local development server.

Serves the auth API on http://localhost:3000/api/... the same way the
production deployment does, with auto-reload while editing.

Usage:
  python main.py
  python main.py --port 8080
  python main.py --host 0.0.0.0 --no-reload

Environment variables (also read from .env / .env.local):
  SECRET_KEY   Required. At least 32 characters. Signs bearer tokens.
  EMAIL_USER   Optional. SMTP login; with EMAIL_PASS enables real OTP emails.
  EMAIL_PASS   Optional. Without both, OTP codes are printed to the log.
"""

import argparse
import sys

import uvicorn
from pydantic import ValidationError

from core.config import get_settings


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the FinFlex Auth API locally.")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=3000, help="Port to listen on (default: 3000)")
    parser.add_argument("--no-reload", action="store_true", help="Disable auto-reload on code changes")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    # Fail before uvicorn spins up workers so the error is the last thing on screen.
    try:
        get_settings()
    except ValidationError as e:
        print(f"  [!] Configuration error: {e}", file=sys.stderr)
        return 1

    print(f"  Local API server listening at http://{args.host}:{args.port}")
    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=not args.no_reload)
    return 0


if __name__ == "__main__":
    sys.exit(main())
