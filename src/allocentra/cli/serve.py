"""CLI command that runs the HTTP API under uvicorn."""

from __future__ import annotations

import argparse

import uvicorn

from allocentra.cli.ux import info
from allocentra.config import get_settings
from allocentra.core.errors import main_with_error_handling


@main_with_error_handling()
def serve_command(host: str = "127.0.0.1", port: int = 8000, reload: bool = False) -> int:
    settings = get_settings()
    info(f"Serving Allocentra API on http://{host}:{port}{settings.api_prefix}")
    uvicorn.run(
        "allocentra.api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )
    return 0


def register_serve_parser(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("serve", help="Run the HTTP API")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    parser.add_argument("--port", type=int, default=8000, help="Bind port")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")


def handle_serve_command(args: argparse.Namespace) -> int:
    return serve_command(host=args.host, port=args.port, reload=args.reload)
