"""Standalone launcher for the CleanFlow quarantine API.

Usage:
    python -m cleanflow.web [--host 127.0.0.1] [--port 8400]
"""

from __future__ import annotations

import argparse
import logging
import socket

import uvicorn


def find_free_port(host: str = "127.0.0.1", start: int = 8400, end: int = 8500) -> int:
    """Return the first free TCP port in [start, end)."""
    for port in range(start, end):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            try:
                s.bind((host, port))
                return port
            except OSError:
                continue
    raise RuntimeError(f"No free port found between {start} and {end}.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="CleanFlow quarantine editor API")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1)")
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="TCP port to use (a free port is picked when omitted)",
    )
    parser.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["critical", "error", "warning", "info", "debug"],
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    port = args.port if args.port is not None else find_free_port(args.host)
    print(f"CleanFlow: serving on http://{args.host}:{port}")
    uvicorn.run(
        "cleanflow.web.app:app",
        host=args.host,
        port=port,
        reload=args.reload,
        log_level=args.log_level,
    )
