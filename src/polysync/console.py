"""Console output helpers built on rich."""

from __future__ import annotations

from typing import Any

from rich.console import Console

_console = Console(highlight=False)
_err_console = Console(stderr=True, highlight=False)


def get_console() -> Console:
    return _console


def header(text: str) -> None:
    _console.print(f"[bold]{text}[/bold]")
    _console.print("-" * len(text), style="dim")


def subheader(text: str) -> None:
    _console.print(f"[bold cyan]{text}[/bold cyan]")


def key_value(key: str, value: Any, indent: int = 0) -> None:
    pad = " " * indent
    _console.print(f"{pad}[dim]{key}:[/dim] {value}")


def info(text: str) -> None:
    _console.print(f"[blue]{text}[/blue]")


def success(text: str) -> None:
    _console.print(f"[green]{text}[/green]")


def warning(text: str) -> None:
    _err_console.print(f"[yellow]warning:[/yellow] {text}")


def error(text: str) -> None:
    _err_console.print(f"[red]error:[/red] {text}")


def dim(text: str) -> None:
    _console.print(text, style="dim")
