"""Bounded-time yes/no prompt on the controlling terminal."""

from __future__ import annotations

import select
import sys

import typer


def timed_confirm(message: str, timeout_s: float) -> bool:
    """Ask a yes/no question; silence, EOF, or a timeout count as "no"."""
    typer.echo(f"{message} [y/N]: ", nl=False, err=True)
    try:
        ready, _, _ = select.select([sys.stdin], [], [], timeout_s)
    except (OSError, ValueError):
        ready = []
    if not ready:
        typer.echo("", err=True)
        return False
    reply = sys.stdin.readline()
    return reply.strip().lower() in {"y", "yes"}
