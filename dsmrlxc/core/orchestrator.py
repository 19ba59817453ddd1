"""End-to-end provisioning: container, isolation overrides, device, start, install."""
import shutil
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from dsmrlxc.core.config import InstallerConfig, get_config, load_spec_overrides
from dsmrlxc.core.errors import InvalidInputError
from dsmrlxc.core.logger import get_logger
from dsmrlxc.core.shell import RunCmd, ensure_commands, run_command
from dsmrlxc.core.status import Reporter, Status, log_reporter
from dsmrlxc.models.provisioning import (
    ConfigDialect,
    DsmrCredentials,
    FeatureFlags,
    ProvisioningSpec,
    UsbPassthrough,
)
from dsmrlxc.services.dsmr.compose import (
    RemoteTemplateFetcher,
    configure_compose,
    dump_compose,
    find_reader_services,
)
from dsmrlxc.services.dsmr.environment import EnvFile, configure_environment
from dsmrlxc.services.dsmr.installer import DsmrInstaller
from dsmrlxc.services.proxmox.capability import CapabilityProber, RawConfigWriter
from dsmrlxc.services.proxmox.lifecycle import ContainerLifecycle
from dsmrlxc.services.proxmox.passthrough import DevicePassthroughConfigurator, PassthroughResult
from dsmrlxc.services.proxmox.startup import StartupState, StartupSupervisor
from dsmrlxc.services.proxmox.templates import TemplateManager

logger = get_logger(__name__)

# AppArmor profile override and an empty capability drop list, needed for
# rootless podman inside the container
ISOLATION_OVERRIDES = [
    ("lxc.apparmor.profile", "unconfined"),
    ("lxc.cap.drop", ""),
]


def build_spec(config: InstallerConfig, overrides: Optional[Dict[str, Any]] = None) -> ProvisioningSpec:
    """Container spec from defaults, the YAML defaults file and nesting flags."""
    values = dict(overrides or {})
    features = values.pop('features', None) or {}
    if not isinstance(features, dict):
        raise InvalidInputError(f"Invalid container defaults: features must be a mapping, got {features!r}")
    features = dict(features)
    if config.force_nesting:
        features['nesting'] = True
    try:
        return ProvisioningSpec(**values, features=FeatureFlags(**features))
    except ValidationError as exc:
        error = exc.errors()[0]
        field_name = ".".join(str(part) for part in error["loc"]) or "value"
        raise InvalidInputError(f"Invalid container defaults: {field_name}: {error['msg']}") from exc


def published_port(compose: Dict[str, Any]) -> Optional[int]:
    """Host port of the DSMR-reader web interface, if the compose file maps one."""
    services = compose.get('services') or {}
    for name in find_reader_services(compose):
        for mapping in (services.get(name) or {}).get('ports') or []:
            parts = str(mapping).split(':')
            if len(parts) >= 2 and parts[-2].isdigit():
                return int(parts[-2])
    return None


@dataclass
class Preflight:
    """Facts gathered before any change is made."""

    vmid: int
    template: str
    dialect: Optional[ConfigDialect]
    spec: ProvisioningSpec


@dataclass
class ProvisioningResult:
    vmid: int
    method_label: str
    dialect: ConfigDialect
    passthrough: Optional[PassthroughResult] = None
    ip: Optional[str] = None
    web_port: Optional[int] = None
    startup_history: List[StartupState] = field(default_factory=list)

    @property
    def url(self) -> Optional[str]:
        if not self.ip:
            return None
        if self.web_port and self.web_port != 80:
            return f"http://{self.ip}:{self.web_port}"
        return f"http://{self.ip}"


class ProvisioningOrchestrator:
    """Drives pct through a complete DSMR-reader container installation."""

    def __init__(
        self,
        config: Optional[InstallerConfig] = None,
        run_cmd: RunCmd = None,
        report: Optional[Reporter] = None,
        fetcher: Optional[RemoteTemplateFetcher] = None,
        stat_fn: Optional[Callable] = None,
        sleep: Callable[[float], None] = time.sleep,
        which: Callable = shutil.which,
    ):
        self.config = config or get_config()
        self.run_cmd = run_cmd or run_command
        self.report = report or log_reporter(logger)
        self.fetcher = fetcher or RemoteTemplateFetcher(timeout=self.config.fetch_timeout)
        self.sleep = sleep
        self.which = which
        self.step = "startup"

        common = dict(run_cmd=self.run_cmd, report=self.report)
        self.lifecycle = ContainerLifecycle(**common)
        self.prober = CapabilityProber(config=self.config, **common)
        self.passthrough = DevicePassthroughConfigurator(config=self.config, stat_fn=stat_fn, **common)
        self.installer = DsmrInstaller(self.lifecycle, config=self.config, report=self.report)

    def _step(self, name: str) -> None:
        logger.debug(f"Step: {name}")
        self.step = name

    def preflight(self) -> Preflight:
        """Check prerequisites, resolve the config dialect, id and template."""
        self._step("checking prerequisites")
        ensure_commands(which=self.which)

        dialect = None
        if self.config.probe_mode == "trial":
            self.report(Status.INFO, "LXC config flag will be detected on the new container")
        else:
            self._step("detecting LXC config flag")
            dialect = self.prober.resolve()

        self._step("loading container defaults")
        spec = build_spec(self.config, load_spec_overrides(self.config))

        self._step("allocating container id")
        vmid = self.lifecycle.next_free_vmid()
        self.report(Status.INFO, f"Using CTID: {vmid}")

        self._step("selecting template")
        templates = TemplateManager(run_cmd=self.run_cmd, storage=spec.template_storage, report=self.report)
        template = templates.ensure_debian_template()

        return Preflight(vmid=vmid, template=template, dialect=dialect, spec=spec)

    def apply_isolation_overrides(self, vmid: int, dialect: Optional[ConfigDialect]) -> ConfigDialect:
        """Apply the raw LXC lines, all with one dialect."""
        overrides = list(ISOLATION_OVERRIDES)
        if dialect is None:
            key, value = overrides.pop(0)
            dialect = self.prober.resolve_by_trial(vmid, key, value)

        writer = RawConfigWriter(dialect, run_cmd=self.run_cmd, config=self.config, report=self.report)
        for key, value in overrides:
            writer.apply(vmid, key, value)
        return dialect

    def provision(self, preflight: Preflight, credentials: DsmrCredentials, method) -> ProvisioningResult:
        """Create, configure, start and install; raises on the first fatal error."""
        vmid = preflight.vmid

        self._step("creating container")
        templates = TemplateManager(run_cmd=self.run_cmd, storage=preflight.spec.template_storage)
        self.lifecycle.create_container(vmid, templates.volume_id(preflight.template), preflight.spec)

        self._step("applying LXC isolation overrides")
        dialect = self.apply_isolation_overrides(vmid, preflight.dialect)

        passthrough = None
        container_device = None
        if isinstance(method, UsbPassthrough):
            self._step("configuring USB passthrough")
            passthrough = self.passthrough.configure(vmid, method.device_path)
            container_device = passthrough.container_path

        self._step("starting container")
        supervisor = StartupSupervisor(run_cmd=self.run_cmd, config=self.config, report=self.report)
        supervisor.start(vmid)
        if self.config.start_settle_delay > 0:
            self.report(Status.INFO, f"Waiting {self.config.start_settle_delay:g}s for the container to settle...")
            self.sleep(self.config.start_settle_delay)

        self._step("fetching compose templates")
        compose = self.fetcher.fetch_compose(self.config.compose_url)
        env = EnvFile.parse(self.fetcher.fetch(self.config.env_url))

        self._step("templating compose files")
        compose = configure_compose(compose, device=container_device)
        env = configure_environment(env, credentials, method, container_device=container_device)

        self._step("installing DSMR-reader")
        self.installer.install(vmid, dump_compose(compose), env.render())

        self._step("reading container address")
        ip = self.lifecycle.container_ip(vmid)

        self._step("done")
        return ProvisioningResult(
            vmid=vmid,
            method_label=method.label,
            dialect=dialect,
            passthrough=passthrough,
            ip=ip,
            web_port=published_port(compose),
            startup_history=list(supervisor.history),
        )
