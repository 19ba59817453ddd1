"""Structured access to Proxmox LXC configuration records.

A record (``/etc/pve/lxc/<vmid>.conf``) is read in full, parsed into lines,
transformed by pure functions and written back in one write. Only the main
section is editable; snapshot sections (from the first ``[name]`` header on)
are carried through verbatim.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from dsmrlxc.core.logger import get_logger

logger = get_logger(__name__)

SECTION_RE = re.compile(r"^\[[^\]]+\]\s*$")

MOUNT_ENTRY_KEY = "lxc.mount.entry"
DEVICE_ALLOW_KEYS = ("lxc.cgroup2.devices.allow", "lxc.cgroup.devices.allow")


@dataclass(frozen=True)
class ConfigLine:
    """One line of the main section.

    ``key`` is None for comments and blank lines, which keep ``raw`` as-is.
    """

    key: Optional[str]
    value: str = ""
    raw: str = ""

    def render(self) -> str:
        if self.key is None:
            return self.raw
        return f"{self.key}: {self.value}" if self.value else f"{self.key}:"


def _entry(key: str, value: str) -> ConfigLine:
    line = ConfigLine(key=key, value=value)
    return ConfigLine(key=key, value=value, raw=line.render())


@dataclass
class LxcConfigRecord:
    """Parsed container configuration."""

    lines: List[ConfigLine] = field(default_factory=list)
    trailer: str = ""

    @classmethod
    def parse(cls, text: str) -> "LxcConfigRecord":
        lines: List[ConfigLine] = []
        raw_lines = text.splitlines()
        for index, raw in enumerate(raw_lines):
            if SECTION_RE.match(raw):
                # render() restores the blank separator line
                while lines and lines[-1].key is None and not lines[-1].raw.strip():
                    lines.pop()
                trailer = "\n".join(raw_lines[index:])
                return cls(lines=lines, trailer=trailer + "\n")
            stripped = raw.strip()
            if not stripped or stripped.startswith('#') or ':' not in stripped:
                lines.append(ConfigLine(key=None, raw=raw))
                continue
            key, value = stripped.split(':', 1)
            lines.append(ConfigLine(key=key.strip(), value=value.strip(), raw=raw))
        return cls(lines=lines)

    def render(self) -> str:
        body = "\n".join(line.raw if line.raw else line.render() for line in self.lines)
        if body and not body.endswith("\n"):
            body += "\n"
        if self.trailer:
            # Proxmox separates snapshot sections with a blank line
            if body and not body.endswith("\n\n"):
                body += "\n"
            body += self.trailer
        return body

    def get(self, key: str) -> Optional[str]:
        for line in self.lines:
            if line.key == key:
                return line.value
        return None

    def values(self, key: str) -> List[str]:
        return [line.value for line in self.lines if line.key == key]

    def copy(self) -> "LxcConfigRecord":
        return LxcConfigRecord(lines=list(self.lines), trailer=self.trailer)

    def remove(self, key: str, predicate: Optional[Callable[[str], bool]] = None) -> int:
        """Drop lines for ``key`` (optionally only those whose value matches)."""
        kept = []
        removed = 0
        for line in self.lines:
            if line.key == key and (predicate is None or predicate(line.value)):
                removed += 1
                continue
            kept.append(line)
        self.lines = kept
        return removed

    def append(self, key: str, value: str) -> None:
        self.lines.append(_entry(key, value))

    def set(self, key: str, value: str) -> None:
        """Replace every line for ``key`` with a single line."""
        lines = []
        replaced = False
        for line in self.lines:
            if line.key == key:
                if not replaced:
                    lines.append(_entry(key, value))
                    replaced = True
                continue
            lines.append(line)
        if not replaced:
            lines.append(_entry(key, value))
        self.lines = lines


def read_config(path: Path) -> LxcConfigRecord:
    """Read and parse a container configuration record."""
    with open(path, 'r') as f:
        return LxcConfigRecord.parse(f.read())


def write_config(path: Path, record: LxcConfigRecord) -> None:
    """Write the full record back in a single write."""
    with open(path, 'w') as f:
        f.write(record.render())
    logger.debug(f"Wrote container config {path}")


# ==================== Pure transformations ====================

def drop_feature(features: str, name: str = "nesting") -> str:
    """Remove one entry from a comma-separated features value.

    Other entries are preserved verbatim and in order:
    ``nesting=1,fuse=1,keyctl=1`` -> ``fuse=1,keyctl=1``.
    """
    kept = []
    for part in features.split(','):
        if not part.strip():
            continue
        if part.split('=', 1)[0].strip() == name:
            continue
        kept.append(part)
    return ",".join(kept)


def has_feature(features: Optional[str], name: str = "nesting") -> bool:
    if not features:
        return False
    for part in features.split(','):
        key, _, value = part.partition('=')
        if key.strip() == name and value.strip() not in ("0", ""):
            return True
    return False


def device_allow_rule(major: int, minor: int) -> str:
    """cgroup device rule granting read/write/mknod on a char device."""
    return f"c {major}:{minor} rwm"


def device_mount_entry(host_path: str, container_path: str) -> str:
    """Bind-mount entry exposing ``host_path`` at ``container_path``."""
    target = container_path.lstrip('/')
    return f"{host_path} {target} none bind,optional,create=file"


def revoke_device(
    record: LxcConfigRecord,
    host_path: str,
    container_path: str,
    major: int,
    minor: int,
) -> LxcConfigRecord:
    """Return a copy of ``record`` without raw-config grants for one device.

    Drops bind mounts of ``host_path`` or onto ``container_path`` and char
    device allow rules for ``major:minor`` under either cgroup key.
    """
    updated = record.copy()
    target = container_path.lstrip('/')
    device_id = f"{major}:{minor}"

    def same_mount(value: str) -> bool:
        parts = value.split()
        return bool(parts) and (parts[0] == host_path or (len(parts) > 1 and parts[1] == target))

    def same_device(value: str) -> bool:
        parts = value.split()
        return len(parts) >= 2 and parts[0] == 'c' and parts[1] == device_id

    updated.remove(MOUNT_ENTRY_KEY, same_mount)
    for key in DEVICE_ALLOW_KEYS:
        updated.remove(key, same_device)
    return updated


def grant_device(
    record: LxcConfigRecord,
    host_path: str,
    container_path: str,
    major: int,
    minor: int,
) -> LxcConfigRecord:
    """Return a copy of ``record`` granting the container one char device.

    Earlier entries for the same device path, the same in-container target or
    the same major:minor pair are removed before the new pair is appended, so
    applying the grant repeatedly yields exactly one entry of each kind.
    """
    updated = revoke_device(record, host_path, container_path, major, minor)
    updated.append(DEVICE_ALLOW_KEYS[0], device_allow_rule(major, minor))
    updated.append(MOUNT_ENTRY_KEY, device_mount_entry(host_path, container_path))
    return updated
