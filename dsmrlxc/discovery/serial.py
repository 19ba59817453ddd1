"""USB serial adapter discovery on the Proxmox host."""
import glob
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from dsmrlxc.core.errors import DevicePathError
from dsmrlxc.core.logger import get_logger

logger = get_logger(__name__)

BY_ID_DIR = "/dev/serial/by-id"
FALLBACK_PATTERNS = ("/dev/ttyUSB*", "/dev/ttyACM*")


@dataclass(frozen=True)
class SerialDevice:
    """A serial adapter as offered to the operator.

    ``link`` is the stable by-id name when one exists, ``target`` the device
    node it resolves to.
    """

    link: str
    target: str

    @property
    def label(self) -> str:
        if self.link == self.target:
            return self.target
        return f"{Path(self.link).name} -> {self.target}"


def resolve_device_path(path: str, stat_fn: Callable = os.stat) -> str:
    """Resolve symlinks and check the result is a character device.

    Raises:
        DevicePathError: the path is missing or not a character device
    """
    resolved = os.path.realpath(path)
    try:
        st = stat_fn(resolved)
    except FileNotFoundError as exc:
        raise DevicePathError(f"Device {path} does not exist") from exc

    if not stat.S_ISCHR(st.st_mode):
        raise DevicePathError(
            f"Device {path} resolves to {resolved}, which is not a character device"
        )
    return resolved


def device_numbers(path: str, stat_fn: Callable = os.stat) -> Tuple[int, int]:
    """Return the (major, minor) pair of a character device."""
    st = stat_fn(path)
    return os.major(st.st_rdev), os.minor(st.st_rdev)


class SerialDeviceFinder:
    """Lists candidate serial devices, preferring stable by-id links."""

    def __init__(self, by_id_dir: str = BY_ID_DIR, patterns=FALLBACK_PATTERNS,
                 stat_fn: Optional[Callable] = None):
        self.by_id_dir = Path(by_id_dir)
        self.patterns = patterns
        self.stat_fn = stat_fn or os.stat

    def find(self) -> List[SerialDevice]:
        devices = []
        if self.by_id_dir.is_dir():
            for link in sorted(self.by_id_dir.iterdir()):
                try:
                    target = resolve_device_path(str(link), stat_fn=self.stat_fn)
                except DevicePathError as exc:
                    logger.debug(f"Skipping {link}: {exc}")
                    continue
                devices.append(SerialDevice(link=str(link), target=target))

        if devices:
            return devices

        for pattern in self.patterns:
            for node in sorted(glob.glob(pattern)):
                devices.append(SerialDevice(link=node, target=node))
        return devices
