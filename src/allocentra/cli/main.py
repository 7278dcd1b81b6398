from __future__ import annotations

import argparse
import sys
from typing import Sequence

from allocentra import __version__
from allocentra.cli import serve, simulate
from allocentra.config import get_settings
from allocentra.logging import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="allocentra",
        description="Deterministic, explainable allocation of budget and resource pools",
    )
    parser.add_argument("--version", action="version", version=f"allocentra {__version__}")
    subparsers = parser.add_subparsers(dest="command")
    simulate.register_simulate_parser(subparsers)
    serve.register_serve_parser(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(get_settings().log_level, json=False)

    if args.command == "simulate":
        sys.exit(simulate.handle_simulate_command(args))

    if args.command == "serve":
        sys.exit(serve.handle_serve_command(args))

    parser.print_help()
    sys.exit(1)


if __name__ == "__main__":  # pragma: no cover
    main()
