"""Error taxonomy for provisioning runs.

Every fatal condition raises a subclass of :class:`ProvisioningError`; the CLI
turns it into a non-zero exit. Recoverable conditions (dialect fallbacks, the
passthrough chain, the nesting-conflict retry) are handled inside their
components and never surface as exceptions.
"""
from typing import List, Optional


class ProvisioningError(Exception):
    """Base class for fatal provisioning failures."""

    exit_code = 1

    def __init__(self, message: str, diagnostics: Optional[str] = None):
        super().__init__(message)
        self.diagnostics = diagnostics


class MissingPrerequisiteError(ProvisioningError):
    """A required host command is not installed."""

    exit_code = 127


class InvalidInputError(ProvisioningError):
    """Operator input cannot be used (e.g. out-of-range menu selection)."""

    exit_code = 2


class ToolRejectedError(ProvisioningError):
    """Every dialect or mechanism for a configuration change was rejected."""


class DevicePathError(ProvisioningError):
    """The selected device does not resolve to a character device."""


class StartupFailedError(ProvisioningError):
    """The container did not start, even after the allowed retry."""


class CommandError(ProvisioningError):
    """An external command exited non-zero where no fallback exists."""

    def __init__(self, cmd: List[str], returncode: int, stdout: str = "", stderr: str = ""):
        output = (stderr or stdout or "").strip()
        super().__init__(
            f"Command failed with exit code {returncode}: {' '.join(cmd)}",
            diagnostics=output or None,
        )
        self.cmd = cmd
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class InstallationError(ProvisioningError):
    """A step of the in-container installation failed."""


class FetchError(ProvisioningError):
    """A remote template file could not be retrieved."""


class ComposeTemplateError(ProvisioningError):
    """The fetched compose definition cannot be adapted."""
