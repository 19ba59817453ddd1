"""Container lifecycle management (allocate, create, exec, push)."""
import shlex
import tempfile
from pathlib import Path
from typing import List, Optional

from dsmrlxc.core.errors import CommandError, ProvisioningError
from dsmrlxc.core.logger import get_logger
from dsmrlxc.core.shell import RunCmd, check_output, run_command
from dsmrlxc.core.status import Reporter, Status, log_reporter
from dsmrlxc.models.provisioning import ProvisioningSpec

logger = get_logger(__name__)


class ContainerLifecycle:
    """Manages LXC container lifecycle operations through pct."""

    def __init__(self, run_cmd: RunCmd = None, report: Optional[Reporter] = None):
        self.run_cmd = run_cmd or run_command
        self.report = report or log_reporter(logger)

    def next_free_vmid(self) -> int:
        """Ask the cluster for the next unused container id."""
        output = check_output(self.run_cmd, ['pvesh', 'get', '/cluster/nextid']).strip()
        try:
            return int(output.strip('"'))
        except ValueError:
            raise ProvisioningError(f"Unexpected answer from pvesh nextid: {output!r}")

    def build_create_command(self, vmid: int, template_volid: str, spec: ProvisioningSpec) -> List[str]:
        cmd = [
            'pct', 'create', str(vmid), template_volid,
            '--hostname', spec.hostname,
            '--cores', str(spec.cores),
            '--memory', str(spec.memory),
            '--swap', str(spec.swap),
            '--rootfs', f'{spec.storage}:{spec.disk}',
            '--net0', f'name=eth0,bridge={spec.bridge},ip=dhcp',
            '--unprivileged', '1' if spec.unprivileged else '0',
            '--onboot', '1',
        ]
        features = spec.features.to_pct()
        if features:
            cmd.extend(['--features', features])
        return cmd

    def create_container(self, vmid: int, template_volid: str, spec: ProvisioningSpec) -> int:
        """Create container ``vmid`` from a template.

        Raises:
            CommandError: pct create failed
        """
        cmd = self.build_create_command(vmid, template_volid, spec)
        self.report(Status.INFO, f"Creating container {vmid} ({spec.hostname}) from {template_volid}")
        logger.debug(f"Command: {shlex.join(cmd)}")
        check_output(self.run_cmd, cmd)
        self.report(Status.OK, f"Container {vmid} ({spec.hostname}) created")
        return vmid

    def exec_script(self, vmid: int, script: str, user: Optional[str] = None) -> str:
        """Run a bash script inside the container and return its stdout.

        With ``user`` the script runs in that user's login shell.

        Raises:
            CommandError: the script exited non-zero
        """
        if user:
            inner = ['runuser', '-l', user, '-c', script]
        else:
            inner = ['bash', '-c', script]
        cmd = ['pct', 'exec', str(vmid), '--'] + inner
        logger.debug(f"Executing in container {vmid}: {shlex.join(inner)}")
        return check_output(self.run_cmd, cmd)

    def push_file(self, vmid: int, content: str, dest: str, perms: str = '0644') -> None:
        """Copy ``content`` into the container at ``dest``."""
        with tempfile.NamedTemporaryFile(mode='w', delete=False, suffix='.tmp') as f:
            f.write(content)
            temp_path = f.name

        try:
            check_output(
                self.run_cmd,
                ['pct', 'push', str(vmid), temp_path, dest, '--perms', perms],
            )
        finally:
            Path(temp_path).unlink(missing_ok=True)

    def container_ip(self, vmid: int) -> Optional[str]:
        """First IPv4 address of the container, if it reports one."""
        try:
            output = self.exec_script(vmid, 'hostname -I')
        except CommandError as exc:
            logger.debug(f"Could not read IP of container {vmid}: {exc}")
            return None
        for address in output.split():
            if '.' in address:
                return address
        return None
