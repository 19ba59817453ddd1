"""Proxmox LXC container provisioning.

This package keeps one concern per module:
- TemplateManager: Debian template lookup and download
- ContainerLifecycle: Allocate ids, create, exec, push files
- CapabilityProber / RawConfigWriter: Raw LXC config dialect detection and use
- DevicePassthroughConfigurator: USB serial device passthrough fallback chain
- StartupSupervisor: Start with the nesting-conflict retry
"""
from .templates import TemplateManager
from .lifecycle import ContainerLifecycle
from .capability import CapabilityProber, RawConfigWriter
from .passthrough import DevicePassthroughConfigurator, PassthroughResult
from .startup import StartupState, StartupSupervisor

__all__ = [
    'TemplateManager',
    'ContainerLifecycle',
    'CapabilityProber',
    'RawConfigWriter',
    'DevicePassthroughConfigurator',
    'PassthroughResult',
    'StartupState',
    'StartupSupervisor',
]
