"""Shared output helpers for the dsmr-lxc CLI."""
from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console

from dsmrlxc.core.errors import CommandError, ProvisioningError


def print_success(console: Console, message: str, prefix: str = "✓") -> None:
    """Print success message with consistent formatting."""
    console.print(f"[green]{prefix}[/green] {message}")


def print_error(console: Console, message: str, prefix: str = "✗") -> None:
    """Print error message with consistent formatting."""
    console.print(f"[red]{prefix}[/red] {message}")


def print_warning(console: Console, message: str, prefix: str = "⚠") -> None:
    console.print(f"[yellow]{prefix}[/yellow] {message}")


def print_info(console: Console, message: str, prefix: str = "ℹ") -> None:
    console.print(f"[blue]{prefix}[/blue] {message}")


def print_summary(console: Console, result) -> None:
    """Final report of a successful installation.

    Args:
        console: Rich console for output
        result: ProvisioningResult returned by the orchestrator
    """
    console.print()
    print_success(console, "DSMR-reader installation complete")
    console.print(f"  Container: {result.vmid}")
    console.print(f"  Connection: {result.method_label}")
    if result.passthrough is not None:
        console.print(
            f"  Device: {result.passthrough.container_path} "
            f"(via {result.passthrough.strategy})"
        )
    if result.url:
        console.print(f"  Web interface: {result.url}")
    else:
        print_warning(console, "Container address unknown; check `pct exec "
                      f"{result.vmid} -- hostname -I`")


def handle_provisioning_error(exc: ProvisioningError, console: Console) -> None:
    """Report a fatal provisioning error and exit with its code.

    Raises:
        typer.Exit: always
    """
    print_error(console, str(exc), prefix="Error:")
    if exc.diagnostics:
        console.print(exc.diagnostics, markup=False, highlight=False)
    raise typer.Exit(exc.exit_code)


def handle_unexpected_error(
    exc: Exception,
    console: Console,
    step: str,
    verbose: bool = False,
    exit_code: int = 1,
    command: Optional[str] = None,
) -> None:
    """Report an exception no component anticipated.

    Raises:
        typer.Exit: always
    """
    print_error(console, f"Aborted unexpectedly during {step}: {exc}", prefix="Error:")
    if command is None and isinstance(exc, CommandError):
        command = " ".join(exc.cmd)
    if command:
        console.print(f"  Failing command: {command}", markup=False)
    if verbose:
        console.print_exception()
    raise typer.Exit(exit_code)
