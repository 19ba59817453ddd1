"""DSMR-reader environment file (``KEY=value`` lines) templating."""
from __future__ import annotations

import re
import secrets
from dataclasses import dataclass, field
from typing import List, Optional

from dsmrlxc.models.provisioning import DsmrCredentials, RemoteTcp, UsbPassthrough

SECRET_KEY = "DJANGO_SECRET_KEY"
ADMIN_USER = "DSMRREADER_ADMIN_USER"
ADMIN_PASSWORD = "DSMRREADER_ADMIN_PASSWORD"

DATALOGGER_MODE = "DSMRREADER_DATALOGGER_MODE"
SERIAL_PORT = "DSMRREADER_DATALOGGER_SERIAL_PORT"
SERIAL_BAUDRATE = "DSMRREADER_DATALOGGER_SERIAL_BAUDRATE"
TCP_HOST = "DSMRREADER_DATALOGGER_TCP_HOST"
TCP_PORT = "DSMRREADER_DATALOGGER_TCP_PORT"

SERIAL_KEYS = (SERIAL_PORT, SERIAL_BAUDRATE)
TCP_KEYS = (TCP_HOST, TCP_PORT)

DEFAULT_BAUDRATE = "115200"

ASSIGNMENT_RE = re.compile(r"^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=(.*)$")
NEEDS_QUOTING_RE = re.compile(r"[\s#'\"$\\]")


def generate_secret_key() -> str:
    """Random Django secret key."""
    return secrets.token_urlsafe(50)


def quote_value(value: str) -> str:
    """Quote a value when compose would otherwise misread it."""
    if not NEEDS_QUOTING_RE.search(value):
        return value
    if "'" not in value:
        return f"'{value}'"
    escaped = value.replace('\\', '\\\\').replace('"', '\\"')
    return f'"{escaped}"'


@dataclass(frozen=True)
class EnvLine:
    key: Optional[str]
    value: str = ""
    raw: str = ""


@dataclass
class EnvFile:
    """Ordered environment file; comments and blank lines are preserved."""

    lines: List[EnvLine] = field(default_factory=list)

    @classmethod
    def parse(cls, text: str) -> "EnvFile":
        lines = []
        for raw in text.splitlines():
            match = ASSIGNMENT_RE.match(raw)
            if match and not raw.lstrip().startswith('#'):
                lines.append(EnvLine(key=match.group(1), value=match.group(2).strip(), raw=raw))
            else:
                lines.append(EnvLine(key=None, raw=raw))
        return cls(lines=lines)

    def render(self) -> str:
        text = "\n".join(line.raw for line in self.lines)
        return text + "\n" if text else ""

    def copy(self) -> "EnvFile":
        return EnvFile(lines=list(self.lines))

    def keys(self) -> List[str]:
        return [line.key for line in self.lines if line.key]

    def get(self, key: str) -> Optional[str]:
        for line in self.lines:
            if line.key == key:
                return line.value
        return None

    def set(self, key: str, value: str) -> None:
        """Assign ``key``, keeping the position of its first occurrence."""
        entry = EnvLine(key=key, value=quote_value(value), raw=f"{key}={quote_value(value)}")
        updated = []
        placed = False
        for line in self.lines:
            if line.key == key:
                if not placed:
                    updated.append(entry)
                    placed = True
                continue
            updated.append(line)
        if not placed:
            updated.append(entry)
        self.lines = updated

    def remove(self, key: str) -> None:
        self.lines = [line for line in self.lines if line.key != key]


def configure_environment(env: EnvFile, credentials: DsmrCredentials, method, container_device: Optional[str] = None) -> EnvFile:
    """Return a copy of ``env`` set up for this installation.

    Credentials are always written. The datalogger section is switched to
    the chosen connection method, and keys belonging to the other method are
    removed so no stale mode survives.
    """
    updated = env.copy()
    updated.set(SECRET_KEY, credentials.secret_key)
    updated.set(ADMIN_USER, credentials.username)
    updated.set(ADMIN_PASSWORD, credentials.password)

    if isinstance(method, RemoteTcp):
        updated.set(DATALOGGER_MODE, "tcp")
        updated.set(TCP_HOST, method.host)
        updated.set(TCP_PORT, str(method.port))
        for key in SERIAL_KEYS:
            updated.remove(key)
    elif isinstance(method, UsbPassthrough):
        updated.set(DATALOGGER_MODE, "serial")
        updated.set(SERIAL_PORT, container_device or method.device_path)
        if updated.get(SERIAL_BAUDRATE) is None:
            updated.set(SERIAL_BAUDRATE, DEFAULT_BAUDRATE)
        for key in TCP_KEYS:
            updated.remove(key)
    else:
        raise TypeError(f"Unsupported connection method: {method!r}")

    return updated
