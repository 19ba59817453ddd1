"""dsmr-lxc runtime configuration and settings."""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from dsmrlxc.core.errors import InvalidInputError
from dsmrlxc.core.logger import get_logger

logger = get_logger(__name__)

DEFAULT_COMPOSE_URL = (
    "https://raw.githubusercontent.com/xirixiz/dsmr-reader-docker/main/examples/compose.yaml"
)
DEFAULT_ENV_URL = (
    "https://raw.githubusercontent.com/xirixiz/dsmr-reader-docker/main/examples/.env"
)

# Matches pct start output when an AppArmor profile override collides with nesting
DEFAULT_NESTING_CONFLICT_PATTERN = (
    r"(?is)(apparmor.*(nesting|nested))|((nesting|nested).*apparmor)"
)

# Searched in order when DSMR_LXC_DEFAULTS is not set
DEFAULTS_PATHS = [
    "./dsmr-lxc.yml",
    "/etc/dsmr-lxc/defaults.yml",
]

_TRUE = ("1", "true", "yes", "on")


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE


def _env_number(name: str, default, convert):
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return convert(value.strip())
    except ValueError:
        raise InvalidInputError(f"{name} must be a number, got {value!r}") from None


@dataclass
class InstallerConfig:
    """Runtime configuration for a provisioning run.

    Attributes:
        force_nesting: Request the nesting feature on the new container
        keep_nesting: Never drop nesting, even on an AppArmor conflict
        trace: Debug logging plus a log line for every external command
        nesting_conflict_pattern: Regex matched against pct start diagnostics
        start_settle_delay: Seconds to wait after the container starts
        lxc_config_dir: Directory holding <vmid>.conf records
        lxc_log_dir: Directory holding per-container LXC logs
        debug_log_dir: Where a debug-mode lxc-start writes its log
        diagnostic_tail_lines: Lines of log collected after a failed start
        compose_url: Remote compose definition template
        env_url: Remote environment file template
        fetch_timeout: Seconds before a remote fetch is abandoned
        autostart: Install a systemd unit that brings the stack up on boot
        app_user: Unprivileged user owning the compose project
        app_dir: Project directory inside the container
        probe_vmid: Container id used for reading pct set help text
        probe_mode: "help" reads pct help text, "trial" applies the first
            raw line with each flag style until one is accepted
        defaults_file: YAML file overriding ProvisioningSpec defaults
        log_file: Log file path (None uses the logger default)
    """

    force_nesting: bool = False
    keep_nesting: bool = False
    trace: bool = False
    nesting_conflict_pattern: str = DEFAULT_NESTING_CONFLICT_PATTERN

    start_settle_delay: float = 5.0

    lxc_config_dir: str = "/etc/pve/lxc"
    lxc_log_dir: str = "/var/log/lxc"
    debug_log_dir: str = "/tmp"
    diagnostic_tail_lines: int = 200

    compose_url: str = DEFAULT_COMPOSE_URL
    env_url: str = DEFAULT_ENV_URL
    fetch_timeout: int = 30

    autostart: bool = True
    app_user: str = "dsmr"
    app_dir: str = "/home/dsmr/dsmr-reader"

    probe_vmid: int = 100
    probe_mode: str = "help"

    defaults_file: Optional[str] = None
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "InstallerConfig":
        """Create config from environment variables.

        Environment variables:
            DSMR_LXC_FORCE_NESTING: Enable the nesting feature (1/true)
            DSMR_LXC_KEEP_NESTING: Keep nesting pinned on conflict (1/true)
            DSMR_LXC_TRACE: Verbose tracing (1/true)
            DSMR_LXC_NESTING_CONFLICT_PATTERN: Regex for the start conflict
            DSMR_LXC_START_SETTLE_DELAY: Seconds to wait after start
            DSMR_LXC_CONFIG_DIR / DSMR_LXC_LOG_DIR: Proxmox/LXC directories
            DSMR_LXC_COMPOSE_URL / DSMR_LXC_ENV_URL: Template sources
            DSMR_LXC_AUTOSTART: Install the systemd unit (default 1)
            DSMR_LXC_PROBE_MODE: "help" (default) or "trial"
            DSMR_LXC_DEFAULTS: YAML file overriding container defaults
            DSMR_LXC_LOG_FILE: Log file (default /var/log/dsmr-lxc/dsmr-lxc.log)

        Returns:
            InstallerConfig instance with values from environment or defaults
        """
        return cls(
            force_nesting=_env_flag("DSMR_LXC_FORCE_NESTING"),
            keep_nesting=_env_flag("DSMR_LXC_KEEP_NESTING"),
            trace=_env_flag("DSMR_LXC_TRACE"),
            nesting_conflict_pattern=os.getenv(
                "DSMR_LXC_NESTING_CONFLICT_PATTERN", cls.nesting_conflict_pattern
            ),
            start_settle_delay=_env_number(
                "DSMR_LXC_START_SETTLE_DELAY", cls.start_settle_delay, float
            ),
            lxc_config_dir=os.getenv("DSMR_LXC_CONFIG_DIR", cls.lxc_config_dir),
            lxc_log_dir=os.getenv("DSMR_LXC_LOG_DIR", cls.lxc_log_dir),
            diagnostic_tail_lines=_env_number(
                "DSMR_LXC_DIAGNOSTIC_LINES", cls.diagnostic_tail_lines, int
            ),
            compose_url=os.getenv("DSMR_LXC_COMPOSE_URL", cls.compose_url),
            env_url=os.getenv("DSMR_LXC_ENV_URL", cls.env_url),
            fetch_timeout=_env_number("DSMR_LXC_FETCH_TIMEOUT", cls.fetch_timeout, int),
            autostart=_env_flag("DSMR_LXC_AUTOSTART", default=True),
            probe_mode=os.getenv("DSMR_LXC_PROBE_MODE", cls.probe_mode),
            defaults_file=os.getenv("DSMR_LXC_DEFAULTS"),
            log_file=os.getenv("DSMR_LXC_LOG_FILE"),
        )

    def config_path(self, vmid: int) -> Path:
        """Persisted configuration record of container ``vmid``."""
        return Path(self.lxc_config_dir) / f"{vmid}.conf"


def load_spec_overrides(config: InstallerConfig) -> Dict[str, Any]:
    """Read container default overrides from the YAML defaults file.

    Returns an empty dict when no file is configured or found.
    """
    candidates = [config.defaults_file] if config.defaults_file else DEFAULTS_PATHS
    for candidate in candidates:
        path = Path(candidate)
        if not path.exists():
            continue
        with open(path, "r") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise InvalidInputError(f"Defaults file {path} is not valid YAML: {exc}") from exc
        if not isinstance(data, dict):
            raise InvalidInputError(f"Defaults file {path} must contain a mapping")
        logger.debug(f"Loaded container defaults from {path}")
        return data
    return {}


# Global config instance (can be overridden)
_config: Optional[InstallerConfig] = None


def get_config() -> InstallerConfig:
    """Get the global configuration, creating it from the environment if unset."""
    global _config
    if _config is None:
        _config = InstallerConfig.from_env()
    return _config


def set_config(config: Optional[InstallerConfig]):
    """Set (or with ``None``, reset) the global configuration."""
    global _config
    _config = config
