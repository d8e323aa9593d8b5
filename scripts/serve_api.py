#!/usr/bin/env python3
"""
Serve the payment webhook API with uvicorn.

Usage:
    python3 scripts/serve_api.py [--host 0.0.0.0] [--port 8000] [--config default] [--create-schema]
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the order kernel webhook API.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--config", default="default", help="Configuration set name.")
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create tables (and PostgreSQL triggers) before serving.",
    )
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()

    import uvicorn

    from order_api.app import create_app
    from order_api.runtime import build_runtime
    from order_config import get_active_config
    from order_kernel.logging_config import configure_logging

    configure_logging(level=args.log_level)
    try:
        runtime = build_runtime(get_active_config(args.config), create_schema=args.create_schema)
    except Exception as e:
        print(f"ERROR: Failed to start: {e}", file=sys.stderr)
        return 1

    uvicorn.run(create_app(runtime), host=args.host, port=args.port, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
