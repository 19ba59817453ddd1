"""USB serial device passthrough for LXC containers.

Mechanisms are tried in order until one succeeds:

1. ``pct set <vmid> --dev0 path=<device>``
2. ``pct set <vmid> <flag> <device>`` for each historical flag spelling
3. direct edit of the config record (cgroup allow rule + bind mount)

When a ``pct set`` mechanism wins, raw grants for the same device from an
earlier direct edit are removed from the record.
"""
import os
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Callable, List, Optional, Tuple

from dsmrlxc.core.config import InstallerConfig, get_config
from dsmrlxc.core.errors import ToolRejectedError
from dsmrlxc.core.logger import get_logger
from dsmrlxc.core.shell import RunCmd, run_command
from dsmrlxc.core.status import Reporter, Status, log_reporter
from dsmrlxc.discovery.serial import device_numbers, resolve_device_path
from .lxc_config import grant_device, read_config, revoke_device, write_config

logger = get_logger(__name__)

BARE_PATH_FLAGS = ('--dev0', '-dev0', '--device0')


@dataclass(frozen=True)
class PassthroughContext:
    """Everything a passthrough strategy needs."""

    vmid: int
    host_path: str
    container_path: str
    run_cmd: RunCmd
    config: InstallerConfig
    stat_fn: Callable = os.stat


@dataclass(frozen=True)
class StrategyResult:
    """Outcome of one strategy: success, or a reason to try the next."""

    ok: bool
    detail: str = ""


@dataclass(frozen=True)
class PassthroughResult:
    strategy: str
    container_path: str


Strategy = Callable[[PassthroughContext], StrategyResult]


def _pct_set(ctx: PassthroughContext, flag: str, value: str) -> StrategyResult:
    result = ctx.run_cmd(['pct', 'set', str(ctx.vmid), flag, value])
    if result.returncode == 0:
        return StrategyResult(True)
    return StrategyResult(False, (result.stderr or result.stdout or "").strip() or "rejected")


def structured_path_option(ctx: PassthroughContext) -> StrategyResult:
    return _pct_set(ctx, '--dev0', f"path={ctx.host_path}")


def bare_path_option(flag: str) -> Strategy:
    def strategy(ctx: PassthroughContext) -> StrategyResult:
        return _pct_set(ctx, flag, ctx.host_path)

    strategy.__name__ = f"bare_path_option({flag})"
    return strategy


def direct_config_edit(ctx: PassthroughContext) -> StrategyResult:
    """Grant the device by rewriting the container's config record."""
    path = ctx.config.config_path(ctx.vmid)
    try:
        major, minor = device_numbers(ctx.host_path, stat_fn=ctx.stat_fn)
        record = read_config(path)
        write_config(path, grant_device(record, ctx.host_path, ctx.container_path, major, minor))
    except OSError as exc:
        return StrategyResult(False, str(exc))
    return StrategyResult(True, f"c {major}:{minor} rwm")


def drop_stale_grant(ctx: PassthroughContext) -> None:
    """Remove raw-config grants for the device left by an earlier config file edit."""
    path = ctx.config.config_path(ctx.vmid)
    if not path.exists():
        return
    try:
        major, minor = device_numbers(ctx.host_path, stat_fn=ctx.stat_fn)
        record = read_config(path)
        revoked = revoke_device(record, ctx.host_path, ctx.container_path, major, minor)
        if revoked.lines != record.lines:
            write_config(path, revoked)
            logger.info(f"Removed stale raw grant for {ctx.host_path} from {path}")
    except OSError as exc:
        logger.warning(f"Could not clean up raw grant in {path}: {exc}")


DEFAULT_STRATEGIES: List[Tuple[str, Strategy]] = (
    [("dev option (path=)", structured_path_option)]
    + [(f"dev option ({flag})", bare_path_option(flag)) for flag in BARE_PATH_FLAGS]
    + [("config file edit", direct_config_edit)]
)


class DevicePassthroughConfigurator:
    """Grants a container access to one host character device."""

    def __init__(
        self,
        run_cmd: RunCmd = None,
        config: Optional[InstallerConfig] = None,
        report: Optional[Reporter] = None,
        stat_fn: Optional[Callable] = None,
        strategies: Optional[List[Tuple[str, Strategy]]] = None,
    ):
        self.run_cmd = run_cmd or run_command
        self.config = config or get_config()
        self.report = report or log_reporter(logger)
        self.stat_fn = stat_fn or os.stat
        self.strategies = strategies if strategies is not None else DEFAULT_STRATEGIES

    @staticmethod
    def container_path_for(host_path: str) -> str:
        """In-container device node, derived from the host node's name."""
        return f"/dev/{PurePosixPath(host_path).name}"

    def configure(self, vmid: int, device_path: str) -> PassthroughResult:
        """Pass ``device_path`` through to container ``vmid``.

        Raises:
            DevicePathError: the path does not resolve to a character device
            ToolRejectedError: every mechanism failed
        """
        host_path = resolve_device_path(device_path, stat_fn=self.stat_fn)
        ctx = PassthroughContext(
            vmid=vmid,
            host_path=host_path,
            container_path=self.container_path_for(host_path),
            run_cmd=self.run_cmd,
            config=self.config,
            stat_fn=self.stat_fn,
        )

        failures = []
        for name, strategy in self.strategies:
            result = strategy(ctx)
            if result.ok:
                if strategy is not direct_config_edit:
                    drop_stale_grant(ctx)
                self.report(
                    Status.OK,
                    f"USB device {host_path} passed through via {name} "
                    f"(inside container: {ctx.container_path})",
                )
                return PassthroughResult(strategy=name, container_path=ctx.container_path)
            logger.debug(f"Passthrough via {name} failed: {result.detail}")
            failures.append(f"{name}: {result.detail}")

        raise ToolRejectedError(
            f"Could not pass {host_path} through to container {vmid}",
            diagnostics="\n".join(failures),
        )
