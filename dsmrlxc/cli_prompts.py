"""Interactive prompts collecting credentials and the meter connection."""
from __future__ import annotations

from typing import List, Optional

import typer
from rich.console import Console

from dsmrlxc.cli_support import print_info, print_warning
from dsmrlxc.core.errors import InvalidInputError, ProvisioningError
from dsmrlxc.discovery.serial import SerialDevice, SerialDeviceFinder
from dsmrlxc.models.provisioning import DsmrCredentials, RemoteTcp, UsbPassthrough
from dsmrlxc.services.dsmr.environment import generate_secret_key

MIN_SECRET_LENGTH = 16

METHODS = {
    "1": "USB",
    "2": "Remote TCP",
}


def _prompt_required(label: str, hide_input: bool = False, confirm: bool = False) -> str:
    """Prompt until a non-blank answer is given."""
    while True:
        value = typer.prompt(
            label,
            default="",
            show_default=False,
            hide_input=hide_input,
            confirmation_prompt=confirm,
        )
        if value.strip():
            return value.strip() if not hide_input else value
        typer.echo(f"{label} is required.")


def prompt_credentials(console: Console) -> DsmrCredentials:
    username = _prompt_required("DSMR-reader admin username")
    password = _prompt_required("DSMR-reader admin password", hide_input=True, confirm=True)

    while True:
        secret = typer.prompt(
            "Django secret key (leave blank to generate)",
            default="",
            show_default=False,
            hide_input=True,
        ).strip()
        if not secret:
            secret = generate_secret_key()
            print_info(console, "Generated a random secret key")
            break
        if len(secret) >= MIN_SECRET_LENGTH:
            break
        print_warning(console, f"Secret key must be at least {MIN_SECRET_LENGTH} characters")

    return DsmrCredentials(username=username, password=password, secret_key=secret)


def prompt_method_choice(console: Console) -> str:
    """Ask for the meter connection method; returns the menu key.

    Raises:
        InvalidInputError: the answer is not a menu entry
    """
    console.print("\n[bold]How is the smart meter connected?[/bold]")
    for key, label in METHODS.items():
        console.print(f"  {key}) {label}")
    choice = typer.prompt("Select", default="1").strip()
    if choice not in METHODS:
        raise InvalidInputError(f"Invalid connection method selection: {choice!r}")
    return choice


def prompt_device(console: Console, finder: SerialDeviceFinder) -> SerialDevice:
    """Let the operator pick one of the detected serial adapters.

    Raises:
        ProvisioningError: no serial device is attached
        InvalidInputError: the selection is not in the list
    """
    devices: List[SerialDevice] = finder.find()
    if not devices:
        raise ProvisioningError(
            "No USB serial devices found under /dev/serial/by-id, /dev/ttyUSB* or /dev/ttyACM*. "
            "Connect the P1 cable or choose Remote TCP."
        )

    console.print("\n[bold]Detected serial devices:[/bold]")
    for index, device in enumerate(devices, start=1):
        console.print(f"  {index}) {device.label}", markup=False)

    answer = typer.prompt("Select device", default="1").strip()
    if not answer.isdigit() or not 1 <= int(answer) <= len(devices):
        raise InvalidInputError(f"Invalid device selection: {answer!r}")
    return devices[int(answer) - 1]


def prompt_port(label: str = "Remote port", default: Optional[int] = None) -> int:
    while True:
        port = typer.prompt(label, type=int, default=default)
        if 1 <= port <= 65535:
            return port
        typer.echo("Port must be between 1 and 65535.")


def prompt_connection(console: Console, finder: SerialDeviceFinder):
    """Ask for the connection method and its parameters."""
    choice = prompt_method_choice(console)
    if choice == "1":
        device = prompt_device(console, finder)
        # Passthrough targets the stable by-id link; it resolves to the node later
        return UsbPassthrough(device_path=device.link)

    host = _prompt_required("Remote host (IP or hostname)")
    port = prompt_port()
    return RemoteTcp(host=host, port=port)
