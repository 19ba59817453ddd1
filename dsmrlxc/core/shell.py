"""External command execution.

All host and container commands go through a ``run_cmd`` callable with the
signature ``run_cmd(cmd, input=None) -> CompletedProcess``. Components accept
it as a constructor argument so tests can substitute a fake.
"""
import shlex
import shutil
import subprocess
from typing import Callable, Iterable, List, Optional

from dsmrlxc.core.errors import CommandError, MissingPrerequisiteError
from dsmrlxc.core.logger import get_logger

logger = get_logger(__name__)

RunCmd = Callable[..., subprocess.CompletedProcess]

REQUIRED_COMMANDS = ("pct", "pveam", "pvesh")


def run_command(cmd: List[str], input: Optional[str] = None) -> subprocess.CompletedProcess:
    """Run ``cmd`` to completion and capture its output.

    Never raises on a non-zero exit; callers inspect ``returncode``.
    """
    logger.debug(f"Running: {shlex.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            input=input,
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError as exc:
        return subprocess.CompletedProcess(cmd, 127, stdout="", stderr=str(exc))

    logger.debug(f"Exit code {result.returncode}: {shlex.join(cmd)}")
    return result


def check_output(run_cmd: RunCmd, cmd: List[str], input: Optional[str] = None) -> str:
    """Run ``cmd`` and return stdout, raising CommandError on failure."""
    result = run_cmd(cmd, input=input) if input is not None else run_cmd(cmd)
    if result.returncode != 0:
        raise CommandError(cmd, result.returncode, result.stdout or "", result.stderr or "")
    return result.stdout or ""


def ensure_commands(commands: Iterable[str] = REQUIRED_COMMANDS, which=shutil.which) -> None:
    """Fail fast when a required host command is missing."""
    missing = [name for name in commands if which(name) is None]
    if missing:
        raise MissingPrerequisiteError(
            f"Required command(s) not found: {', '.join(missing)}. "
            "Run this tool on a Proxmox VE host."
        )
