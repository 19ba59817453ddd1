"""Data models for dsmr-lxc."""
from dsmrlxc.models.provisioning import (
    ConfigDialect,
    ConnectionMethod,
    DsmrCredentials,
    FeatureFlags,
    ProvisioningSpec,
    RemoteTcp,
    UsbPassthrough,
)

__all__ = [
    'ConfigDialect',
    'ConnectionMethod',
    'DsmrCredentials',
    'FeatureFlags',
    'ProvisioningSpec',
    'RemoteTcp',
    'UsbPassthrough',
]
