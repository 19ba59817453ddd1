"""Container start with recovery from the AppArmor/nesting conflict.

State machine::

    NOT_STARTED -> STARTING -> RUNNING
                            -> RETRYING_WITHOUT_NESTING -> RUNNING | FAILED
                            -> FAILED

The only recovered failure is a start rejected because the AppArmor profile
override conflicts with the nesting feature. Nesting is dropped (other
features kept as-is) and the start is retried exactly once.
"""
import re
from enum import Enum
from pathlib import Path
from typing import List, Optional

from dsmrlxc.core.config import InstallerConfig, get_config
from dsmrlxc.core.errors import StartupFailedError
from dsmrlxc.core.logger import get_logger
from dsmrlxc.core.shell import RunCmd, run_command
from dsmrlxc.core.status import Reporter, Status, log_reporter
from .lxc_config import drop_feature, has_feature

logger = get_logger(__name__)


class StartupState(str, Enum):
    NOT_STARTED = "not-started"
    STARTING = "starting"
    RUNNING = "running"
    RETRYING_WITHOUT_NESTING = "retrying-without-nesting"
    FAILED = "failed"


def _tail(text: str, lines: int) -> str:
    return "\n".join(text.splitlines()[-lines:])


class StartupSupervisor:
    """Starts a container, retrying once without nesting on a known conflict."""

    def __init__(
        self,
        run_cmd: RunCmd = None,
        config: Optional[InstallerConfig] = None,
        report: Optional[Reporter] = None,
    ):
        self.run_cmd = run_cmd or run_command
        self.config = config or get_config()
        self.report = report or log_reporter(logger)
        self.conflict_re = re.compile(self.config.nesting_conflict_pattern)
        self.state = StartupState.NOT_STARTED
        self.history: List[StartupState] = [self.state]
        self.attempts = 0

    def _transition(self, state: StartupState) -> None:
        logger.debug(f"Startup state: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def _attempt(self, vmid: int):
        self.attempts += 1
        result = self.run_cmd(['pct', 'start', str(vmid)])
        output = "\n".join(part for part in (result.stdout, result.stderr) if part).strip()
        if result.returncode != 0 and 'already running' in output.lower():
            logger.info(f"Container {vmid} already running")
            return True, output
        return result.returncode == 0, output

    def is_nesting_conflict(self, diagnostic: str) -> bool:
        return bool(self.conflict_re.search(diagnostic or ""))

    def start(self, vmid: int) -> StartupState:
        """Start container ``vmid``.

        Returns:
            StartupState.RUNNING

        Raises:
            StartupFailedError: the container did not start; carries the
                start output plus collected log lines
        """
        self._transition(StartupState.STARTING)
        self.report(Status.INFO, f"Starting container {vmid}...")
        ok, output = self._attempt(vmid)
        if ok:
            self._transition(StartupState.RUNNING)
            self.report(Status.OK, f"Container {vmid} started")
            return self.state

        if not self.is_nesting_conflict(output):
            self.report(Status.ERROR, "Unrecognized start failure, not retrying")
            return self._fail(vmid, output)

        if self.config.keep_nesting:
            self.report(
                Status.ERROR,
                "AppArmor override conflicts with nesting, and nesting is pinned "
                "(DSMR_LXC_KEEP_NESTING); not retrying",
            )
            return self._fail(vmid, output)

        self._transition(StartupState.RETRYING_WITHOUT_NESTING)
        self.report(Status.WARN, "AppArmor override conflicts with nesting, disabling nesting and retrying")
        if not self._disable_nesting(vmid):
            return self._fail(vmid, output)

        ok, retry_output = self._attempt(vmid)
        if ok:
            self._transition(StartupState.RUNNING)
            self.report(Status.OK, f"Container {vmid} started without nesting")
            self.report(Status.WARN, "Nesting is disabled; container isolation may be weaker than requested")
            return self.state

        return self._fail(vmid, "\n".join(part for part in (output, retry_output) if part))

    def _disable_nesting(self, vmid: int) -> bool:
        """Rewrite the features line without nesting.

        Returns False when the config cannot be read, there is no nesting
        entry to drop or pct refuses the change; the start is then not retried.
        """
        result = self.run_cmd(['pct', 'config', str(vmid)])
        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            self.report(Status.ERROR, f"Could not read configuration of container {vmid}: {detail}")
            return False

        features = None
        for line in (result.stdout or "").splitlines():
            key, sep, value = line.partition(':')
            if sep and key.strip() == 'features':
                features = value.strip()
                break

        if not has_feature(features):
            self.report(Status.ERROR, f"Container {vmid} has no nesting feature to drop")
            return False

        remaining = drop_feature(features)
        if remaining:
            cmd = ['pct', 'set', str(vmid), '--features', remaining]
        else:
            cmd = ['pct', 'set', str(vmid), '--delete', 'features']
        result = self.run_cmd(cmd)
        if result.returncode != 0:
            self.report(Status.ERROR, f"Could not update features of container {vmid}")
            return False
        self.report(Status.INFO, f"Features of container {vmid}: {remaining or '(none)'}")
        return True

    def _fail(self, vmid: int, output: str) -> StartupState:
        self._transition(StartupState.FAILED)
        logs = self.collect_diagnostics(vmid)
        diagnostics = "\n".join(part for part in (output, logs) if part)
        raise StartupFailedError(f"Container {vmid} failed to start", diagnostics=diagnostics or None)

    def collect_diagnostics(self, vmid: int) -> str:
        """Best-effort tail of the container's start log.

        Sources in order: the per-container LXC log, the journal of
        ``pve-container@<vmid>``, and a debug-mode ``lxc-start`` log.
        """
        lines = self.config.diagnostic_tail_lines

        log_file = Path(self.config.lxc_log_dir) / f"{vmid}.log"
        try:
            if log_file.is_file():
                text = log_file.read_text(errors='replace')
                if text.strip():
                    self.report(Status.INFO, f"Last {lines} lines of {log_file}")
                    return _tail(text, lines)
        except OSError as exc:
            logger.debug(f"Cannot read {log_file}: {exc}")

        result = self.run_cmd([
            'journalctl', '-u', f'pve-container@{vmid}', '-n', str(lines), '--no-pager',
        ])
        if result.returncode == 0 and (result.stdout or "").strip():
            self.report(Status.INFO, f"Last {lines} journal lines of pve-container@{vmid}")
            return _tail(result.stdout, lines)

        debug_log = Path(self.config.debug_log_dir) / f"lxc-{vmid}.log"
        self.run_cmd(['lxc-start', '-n', str(vmid), '-l', 'DEBUG', '-o', str(debug_log)])
        try:
            if debug_log.is_file():
                self.report(Status.INFO, f"Last {lines} lines of debug start log {debug_log}")
                return _tail(debug_log.read_text(errors='replace'), lines)
        except OSError as exc:
            logger.debug(f"Cannot read {debug_log}: {exc}")

        self.report(Status.WARN, f"No start logs found for container {vmid}")
        return ""
