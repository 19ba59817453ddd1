"""Debian LXC template selection and download."""
import re
from typing import List, Optional

from dsmrlxc.core.errors import CommandError, ProvisioningError
from dsmrlxc.core.logger import get_logger
from dsmrlxc.core.retry import retry
from dsmrlxc.core.shell import RunCmd, check_output, run_command
from dsmrlxc.core.status import Reporter, Status, log_reporter

logger = get_logger(__name__)

DEBIAN_TEMPLATE_RE = re.compile(r"debian-.*amd64")


def version_key(name: str):
    """Sort key ordering embedded numbers numerically (like ``sort -V``)."""
    return [(0, int(part), "") if part.isdigit() else (1, 0, part)
            for part in re.split(r"(\d+)", name) if part]


def latest(names: List[str]) -> Optional[str]:
    return max(names, key=version_key) if names else None


class TemplateManager:
    """Finds or downloads the newest Debian amd64 container template."""

    def __init__(self, run_cmd: RunCmd = None, storage: str = 'local',
                 report: Optional[Reporter] = None):
        self.run_cmd = run_cmd or run_command
        self.storage = storage
        self.report = report or log_reporter(logger)

    def list_local_templates(self) -> List[str]:
        """Debian templates already on the template storage (file names)."""
        output = check_output(self.run_cmd, ['pveam', 'list', self.storage])
        prefix = f"{self.storage}:vztmpl/"
        templates = []
        for line in output.splitlines():
            parts = line.split()
            if parts and DEBIAN_TEMPLATE_RE.search(parts[0]):
                volid = parts[0]
                templates.append(volid[len(prefix):] if volid.startswith(prefix) else volid)
        return templates

    def list_available_templates(self) -> List[str]:
        """Debian templates offered by the Proxmox template repository."""
        update = self.run_cmd(['pveam', 'update'])
        if update.returncode != 0:
            logger.warning("Failed to update template list")

        output = check_output(self.run_cmd, ['pveam', 'available'])
        templates = []
        for line in output.splitlines():
            parts = line.split()
            if len(parts) > 1 and DEBIAN_TEMPLATE_RE.search(parts[1]):
                templates.append(parts[1])
        return templates

    @retry(max_attempts=3, delay=5, exceptions=(CommandError,), label="template download")
    def download_template(self, template: str) -> None:
        """Download a template; retried on failure."""
        self.report(Status.INFO, f"Downloading template: {template}")
        check_output(self.run_cmd, ['pveam', 'download', self.storage, template])
        self.report(Status.OK, f"Downloaded template {template}")

    def ensure_debian_template(self) -> str:
        """Return the newest local Debian template, downloading one if needed.

        Raises:
            ProvisioningError: no Debian template is available at all
        """
        self.report(Status.INFO, "Checking for Debian LXC templates...")
        existing = latest(self.list_local_templates())
        if existing:
            self.report(Status.OK, f"Found existing template: {existing}")
            return existing

        self.report(Status.WARN, "No local Debian template found. Detecting latest available...")
        available = latest(self.list_available_templates())
        if not available:
            raise ProvisioningError("Could not detect any Debian templates from pveam")

        self.download_template(available)
        return available

    def volume_id(self, template: str) -> str:
        """Storage volume id used by ``pct create``."""
        return f"{self.storage}:vztmpl/{template}"
