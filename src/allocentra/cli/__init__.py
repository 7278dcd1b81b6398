"""
CLI commands for Allocentra.
"""

from allocentra.cli.serve import serve_command
from allocentra.cli.simulate import simulate_command

__all__ = [
    "serve_command",
    "simulate_command",
]
