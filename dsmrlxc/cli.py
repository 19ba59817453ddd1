#!/usr/bin/env python3
"""dsmr-lxc CLI - DSMR-reader in a Proxmox LXC container."""

import typer

from dsmrlxc.cli_prompts import prompt_connection, prompt_credentials
from dsmrlxc.cli_support import (
    handle_provisioning_error,
    handle_unexpected_error,
    print_info,
    print_summary,
)
from dsmrlxc.core.config import InstallerConfig, get_config
from dsmrlxc.core.errors import ProvisioningError
from dsmrlxc.core.logger import console, err_console, get_logger, set_verbose, setup_file_logging
from dsmrlxc.core.orchestrator import ProvisioningOrchestrator
from dsmrlxc.discovery.serial import SerialDeviceFinder

app = typer.Typer(
    name="dsmr-lxc",
    help="""dsmr-lxc - Install DSMR-reader in a new Proxmox LXC container

Creates a Debian container, passes the P1 USB adapter through (or points
DSMR-reader at a remote TCP bridge) and runs DSMR-reader with podman-compose.

Run on the Proxmox host as root. Behaviour is tuned with DSMR_LXC_*
environment variables, e.g. DSMR_LXC_FORCE_NESTING=1 or DSMR_LXC_TRACE=1.
""",
    add_completion=False,
)

logger = get_logger(__name__)


def build_orchestrator(config: InstallerConfig) -> ProvisioningOrchestrator:
    return ProvisioningOrchestrator(config=config)


def build_device_finder() -> SerialDeviceFinder:
    return SerialDeviceFinder()


@app.command()
def install():
    """Provision a container and install DSMR-reader (interactive)."""
    try:
        config = get_config()
    except ProvisioningError as exc:
        handle_provisioning_error(exc, err_console)
    if config.trace:
        set_verbose(True)
    setup_file_logging(log_file=config.log_file, verbose=config.trace)

    orchestrator = build_orchestrator(config)
    try:
        preflight = orchestrator.preflight()
        print_info(console, f"Container {preflight.vmid} from {preflight.template}")

        orchestrator.step = "collecting credentials"
        credentials = prompt_credentials(console)
        orchestrator.step = "selecting connection method"
        method = prompt_connection(console, build_device_finder())

        result = orchestrator.provision(preflight, credentials, method)
    except ProvisioningError as exc:
        logger.debug(f"Provisioning failed during {orchestrator.step}: {exc}")
        handle_provisioning_error(exc, err_console)
    except (typer.Exit, typer.Abort):
        raise
    except Exception as exc:
        handle_unexpected_error(exc, err_console, orchestrator.step, verbose=config.trace)

    print_summary(console, result)


if __name__ == "__main__":
    app()
