"""Detection of the raw LXC configuration syntax accepted by pct.

The option used to inject raw ``lxc.*`` lines changed across Proxmox VE
releases. The dialect is resolved once per run and every raw configuration
change of that run goes through a :class:`RawConfigWriter` bound to it.
"""
import re
from pathlib import Path
from typing import List, Optional

from dsmrlxc.core.config import InstallerConfig, get_config
from dsmrlxc.core.errors import ToolRejectedError
from dsmrlxc.core.logger import get_logger
from dsmrlxc.core.shell import RunCmd, run_command
from dsmrlxc.core.status import Reporter, Status, log_reporter
from dsmrlxc.models.provisioning import ConfigDialect
from .lxc_config import read_config, write_config

logger = get_logger(__name__)


def _raw_line(key: str, value: str) -> str:
    return f"{key}: {value}" if value else f"{key}:"


def flag_in_help(help_text: str, flag: str) -> bool:
    """True when ``flag`` is listed as an option at the start of a help line."""
    pattern = re.compile(rf"^\s*{re.escape(flag)}\s", re.MULTILINE)
    return bool(pattern.search(help_text))


class CapabilityProber:
    """Determines which raw configuration dialect pct accepts."""

    def __init__(
        self,
        run_cmd: RunCmd = None,
        config: Optional[InstallerConfig] = None,
        report: Optional[Reporter] = None,
    ):
        self.run_cmd = run_cmd or run_command
        self.config = config or get_config()
        self.report = report or log_reporter(logger)

    def _help_text(self) -> str:
        result = self.run_cmd(['pct', 'set', str(self.config.probe_vmid), '--help'])
        return f"{result.stdout or ''}\n{result.stderr or ''}"

    def resolve(self) -> ConfigDialect:
        """Select a dialect from pct's help text.

        Flag styles are checked most modern first; the first one listed wins.
        Without any, a direct edit of the config records is used when the
        config directory is present.

        Raises:
            ToolRejectedError: no dialect is usable
        """
        help_text = self._help_text()
        for dialect in ConfigDialect.flag_styles():
            if flag_in_help(help_text, dialect.flag):
                self.report(Status.INFO, f"Using LXC config flag: {dialect.flag}")
                return dialect

        if Path(self.config.lxc_config_dir).is_dir():
            self.report(
                Status.WARN,
                "pct offers no raw LXC config flag, editing container config files directly",
            )
            return ConfigDialect.DIRECT_FILE_EDIT

        raise ToolRejectedError(
            "No supported LXC config flag found (unexpected Proxmox version)"
        )

    def resolve_by_trial(self, vmid: int, key: str, value: str) -> ConfigDialect:
        """Select a dialect by issuing a real configuration change.

        Each flag style is tried in order against container ``vmid``; the
        first accepted one has applied the line. A rejected attempt changes
        nothing, so no cleanup happens between candidates.

        Raises:
            ToolRejectedError: every flag style was rejected and the config
                record cannot be edited directly
        """
        failures: List[str] = []
        for dialect in ConfigDialect.flag_styles():
            cmd = ['pct', 'set', str(vmid), dialect.flag, _raw_line(key, value)]
            result = self.run_cmd(cmd)
            if result.returncode == 0:
                self.report(Status.INFO, f"Using LXC config flag: {dialect.flag}")
                return dialect
            failures.append(f"{dialect.flag}: {(result.stderr or '').strip() or 'rejected'}")
            logger.debug(f"pct rejected {dialect.flag} for container {vmid}")

        writer = RawConfigWriter(
            ConfigDialect.DIRECT_FILE_EDIT, run_cmd=self.run_cmd, config=self.config, report=self.report
        )
        if self.config.config_path(vmid).exists():
            writer.apply(vmid, key, value)
            self.report(Status.WARN, "All pct config flags rejected, editing config file directly")
            return ConfigDialect.DIRECT_FILE_EDIT

        raise ToolRejectedError(
            "No supported LXC config flag found (unexpected Proxmox version)",
            diagnostics="\n".join(failures),
        )


class RawConfigWriter:
    """Applies raw LXC configuration lines with one fixed dialect."""

    def __init__(
        self,
        dialect: ConfigDialect,
        run_cmd: RunCmd = None,
        config: Optional[InstallerConfig] = None,
        report: Optional[Reporter] = None,
    ):
        self.dialect = dialect
        self.run_cmd = run_cmd or run_command
        self.config = config or get_config()
        self.report = report or log_reporter(logger)

    def apply(self, vmid: int, key: str, value: str) -> None:
        """Set ``key`` to ``value`` in the container's raw LXC configuration.

        Raises:
            ToolRejectedError: the bound dialect rejected the change
        """
        line = _raw_line(key, value)
        if self.dialect is ConfigDialect.DIRECT_FILE_EDIT:
            path = self.config.config_path(vmid)
            try:
                record = read_config(path)
                record.set(key, value)
                write_config(path, record)
            except OSError as exc:
                raise ToolRejectedError(f"Cannot edit {path}: {exc}") from exc
        else:
            cmd = ['pct', 'set', str(vmid), self.dialect.flag, line]
            result = self.run_cmd(cmd)
            if result.returncode != 0:
                raise ToolRejectedError(
                    f"pct rejected '{line}' for container {vmid}",
                    diagnostics=(result.stderr or result.stdout or "").strip() or None,
                )
        self.report(Status.OK, f"Applied '{line}' to container {vmid}")
