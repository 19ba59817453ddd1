"""DSMR-reader installation inside the container.

Runs after the container is up:
1. Install podman and podman-compose
2. Create the application user and enable lingering
3. Push compose definition and environment file
4. Bring the stack up, optionally under a systemd unit

Every step fails hard; nothing here is retried.
"""
import shlex
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader

from dsmrlxc.core.config import InstallerConfig, get_config
from dsmrlxc.core.errors import CommandError, InstallationError
from dsmrlxc.core.logger import get_logger
from dsmrlxc.core.status import Reporter, Status, log_reporter
from dsmrlxc.services.proxmox.lifecycle import ContainerLifecycle

logger = get_logger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent.parent / "templates"

PACKAGES = [
    'podman',
    'podman-compose',
    'uidmap',
    'slirp4netns',
    'fuse-overlayfs',
    'curl',
    'ca-certificates',
]

COMPOSE_FILE = "compose.yaml"
ENV_FILE = ".env"
UNIT_NAME = "dsmr-reader.service"
COMPOSE_BIN = "/usr/bin/podman-compose"


def render_unit(user: str, uid: int, app_dir: str, project: str = "dsmr-reader") -> str:
    """Render the systemd unit that runs the compose project at boot."""
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    template = env.get_template(f"{UNIT_NAME}.j2")
    return template.render(
        user=user, uid=uid, app_dir=app_dir, project=project, compose_bin=COMPOSE_BIN,
    )


class DsmrInstaller:
    """Installs and starts DSMR-reader with podman-compose in a container."""

    def __init__(
        self,
        lifecycle: ContainerLifecycle,
        config: Optional[InstallerConfig] = None,
        report: Optional[Reporter] = None,
    ):
        self.lifecycle = lifecycle
        self.config = config or get_config()
        self.report = report or log_reporter(logger)

    def _run(self, vmid: int, step: str, script: str, user: Optional[str] = None) -> str:
        try:
            return self.lifecycle.exec_script(vmid, script, user=user)
        except CommandError as exc:
            raise InstallationError(
                f"{step} failed in container {vmid}", diagnostics=exc.diagnostics
            ) from exc

    def install_packages(self, vmid: int) -> None:
        self.report(Status.INFO, "Installing podman and podman-compose...")
        self._run(
            vmid,
            "Package installation",
            "apt-get update && DEBIAN_FRONTEND=noninteractive apt-get install -y "
            + " ".join(PACKAGES),
        )
        self.report(Status.OK, "Packages installed")

    def create_user(self, vmid: int) -> int:
        """Create the application user (if missing) and return its uid."""
        user = shlex.quote(self.config.app_user)
        self._run(
            vmid,
            "User creation",
            f"id -u {user} >/dev/null 2>&1 || useradd -m -s /bin/bash {user}",
        )
        self._run(vmid, "Enabling lingering", f"loginctl enable-linger {user}")
        output = self._run(vmid, "User lookup", f"id -u {user}")
        try:
            uid = int(output.strip())
        except ValueError:
            raise InstallationError(f"Unexpected uid for {self.config.app_user}: {output!r}")
        self.report(Status.OK, f"User {self.config.app_user} ready (uid {uid}, lingering enabled)")
        return uid

    def deploy_files(self, vmid: int, compose_text: str, env_text: str) -> None:
        app_dir = self.config.app_dir
        user = shlex.quote(self.config.app_user)
        self._run(vmid, "Creating app directory", f"mkdir -p {shlex.quote(app_dir)}")
        try:
            self.lifecycle.push_file(vmid, compose_text, f"{app_dir}/{COMPOSE_FILE}")
            self.lifecycle.push_file(vmid, env_text, f"{app_dir}/{ENV_FILE}", perms='0600')
        except CommandError as exc:
            raise InstallationError(
                f"Copying compose files into container {vmid} failed", diagnostics=exc.diagnostics
            ) from exc
        self._run(vmid, "Setting ownership", f"chown -R {user}:{user} {shlex.quote(app_dir)}")
        self.report(Status.OK, f"Compose project written to {app_dir}")

    def start_stack(self, vmid: int) -> None:
        self.report(Status.INFO, "Starting DSMR-reader (podman-compose up -d)...")
        self._run(
            vmid,
            "podman-compose up",
            f"cd {shlex.quote(self.config.app_dir)} && podman-compose up -d",
            user=self.config.app_user,
        )
        self.report(Status.OK, "DSMR-reader containers started")

    def register_autostart(self, vmid: int, uid: int) -> None:
        unit = render_unit(self.config.app_user, uid, self.config.app_dir)
        try:
            self.lifecycle.push_file(vmid, unit, f"/etc/systemd/system/{UNIT_NAME}")
        except CommandError as exc:
            raise InstallationError(
                f"Installing {UNIT_NAME} failed", diagnostics=exc.diagnostics
            ) from exc
        self._run(vmid, "Enabling autostart", f"systemctl daemon-reload && systemctl enable {UNIT_NAME}")
        self.report(Status.OK, f"Autostart enabled ({UNIT_NAME})")

    def install(self, vmid: int, compose_text: str, env_text: str) -> None:
        """Run every installation step in order."""
        self.install_packages(vmid)
        uid = self.create_user(vmid)
        self.deploy_files(vmid, compose_text, env_text)
        self.start_stack(vmid)
        if self.config.autostart:
            self.register_autostart(vmid, uid)
