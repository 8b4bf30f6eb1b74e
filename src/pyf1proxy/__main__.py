"""Command-line entry point: ``pyf1proxy`` / ``python -m pyf1proxy``."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Any

from aiohttp import web

from pyf1proxy.config import ProxyConfig
from pyf1proxy.exceptions import ConfigError
from pyf1proxy.server import create_app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pyf1proxy",
        description="Aggregate live F1 timing and rebroadcast it as a server-sent event stream",
    )
    parser.add_argument("--host", help="Interface to bind (default: $HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Port to listen on (default: $PORT or 4000)")
    parser.add_argument(
        "--mode",
        help="Force a source: auto, relay, signalr, mqtt, polling or replay (default: $F1_PROXY_MODE or auto)",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Logging level (default: $LOG_LEVEL or INFO)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides: dict[str, Any] = {}
    if args.host:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.mode is not None:
        overrides["mode"] = args.mode
    try:
        config = ProxyConfig.from_env(**overrides)
    except ConfigError as exc:
        print(f"pyf1proxy: {exc}", file=sys.stderr)
        sys.exit(2)

    web.run_app(create_app(config), host=config.host, port=config.port, print=None)


if __name__ == "__main__":
    main()
