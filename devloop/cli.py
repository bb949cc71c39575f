"""Command-line entry point — ``devloop`` / ``python -m devloop``.

Usage:
    devloop
    devloop --no-client
    devloop --root ~/src/orchid-ls --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from pydantic import ValidationError

from devloop.config import load_settings
from devloop.errors import ConfigError
from devloop.logsetup import configure_logging
from devloop.orchestrator import Orchestrator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devloop",
        description="Rebuild the interpreter and language server on change "
        "while the editor client compiles in watch mode.",
    )
    parser.add_argument(
        "--no-client", action="store_true",
        help="Do not start the client watch command",
    )
    parser.add_argument("--root", type=Path, default=None, help="Repository root (default: cwd)")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ...")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    overrides: dict = {}
    if args.no_client:
        overrides["START_CLIENT"] = False
    if args.root is not None:
        overrides["ROOT"] = args.root.resolve()
    if args.log_level:
        overrides["LOG_LEVEL"] = args.log_level

    try:
        settings = load_settings(**overrides)
    except ValidationError as exc:
        print(f"[devloop] FATAL: invalid configuration\n{exc}", file=sys.stderr)
        return 2

    configure_logging(settings.LOG_LEVEL)

    try:
        settings.validate_layout()
    except ConfigError as exc:
        print(f"[devloop] FATAL: {exc}", file=sys.stderr)
        return 2

    orchestrator = Orchestrator.from_settings(settings)
    return asyncio.run(orchestrator.run())


if __name__ == "__main__":
    raise SystemExit(main())
