"""Provisioning models: container sizing, connection method, credentials."""
import re
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ConfigDialect(str, Enum):
    """Syntax used to inject raw LXC configuration lines.

    Members are listed in probing preference order.
    """

    LXC_LONG = "--lxc"
    LXC_SHORT = "-lxc"
    RAW = "-raw"
    DIRECT_FILE_EDIT = "direct-file-edit"

    @property
    def flag(self) -> str:
        if self is ConfigDialect.DIRECT_FILE_EDIT:
            raise ValueError("Direct file edit has no pct flag")
        return self.value

    @classmethod
    def flag_styles(cls):
        """Dialects expressed as a pct set flag, most modern first."""
        return [cls.LXC_LONG, cls.LXC_SHORT, cls.RAW]


class FeatureFlags(BaseModel):
    """Proxmox container features (the ``features:`` config key)."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    nesting: bool = False
    fuse: bool = True
    keyctl: bool = True

    def to_pct(self) -> str:
        """Render as pct's comma-separated value, e.g. ``nesting=1,fuse=1``."""
        parts = []
        for name in ("nesting", "fuse", "keyctl"):
            if getattr(self, name):
                parts.append(f"{name}=1")
        return ",".join(parts)


class ProvisioningSpec(BaseModel):
    """Container parameters, built once from defaults plus operator choices."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    hostname: str = "dsmr"
    cores: int = Field(2, ge=1)
    memory: int = Field(1024, ge=128, description="Memory in MB")
    swap: int = Field(512, ge=0, description="Swap in MB")
    disk: int = Field(8, ge=2, description="Root disk size in GB")
    bridge: str = "vmbr0"
    storage: str = "local-lvm"
    template_storage: str = "local"
    unprivileged: bool = True
    features: FeatureFlags = Field(default_factory=FeatureFlags)

    @field_validator('hostname')
    @classmethod
    def validate_hostname(cls, v):
        """Validate hostname is a single DNS label."""
        if not re.match(r'^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$', v):
            raise ValueError(f"Invalid container hostname: {v!r}")
        return v


class UsbPassthrough(BaseModel):
    """Read the smart meter through a host USB serial adapter."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    kind: Literal["usb"] = "usb"
    device_path: str

    @field_validator('device_path')
    @classmethod
    def validate_device_path(cls, v):
        if not v.startswith('/dev/'):
            raise ValueError(f"Device path must live under /dev: {v!r}")
        return v

    @property
    def label(self) -> str:
        return "USB"


class RemoteTcp(BaseModel):
    """Read the smart meter from a network serial bridge."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    kind: Literal["tcp"] = "tcp"
    host: str
    port: int = Field(..., ge=1, le=65535)

    @field_validator('host')
    @classmethod
    def validate_host(cls, v):
        v = v.strip()
        if not v or any(c.isspace() for c in v):
            raise ValueError("Remote host must be a hostname or IP address")
        return v

    @property
    def label(self) -> str:
        return "TCP"


ConnectionMethod = Annotated[Union[UsbPassthrough, RemoteTcp], Field(discriminator="kind")]


class DsmrCredentials(BaseModel):
    """DSMR-reader admin account and Django secret."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    secret_key: str = Field(..., min_length=16)
