"""Host discovery helpers."""
from dsmrlxc.discovery.serial import (
    SerialDevice,
    SerialDeviceFinder,
    device_numbers,
    resolve_device_path,
)

__all__ = ['SerialDevice', 'SerialDeviceFinder', 'device_numbers', 'resolve_device_path']
