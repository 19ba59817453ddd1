"""Shared test fixtures for dsmr-lxc tests."""
import copy
import os
import stat
import time
from types import SimpleNamespace

import pytest

from dsmrlxc.core.config import InstallerConfig, set_config


def ok(stdout=""):
    return SimpleNamespace(returncode=0, stdout=stdout, stderr="")


def fail(stderr="", returncode=1, stdout=""):
    return SimpleNamespace(returncode=returncode, stdout=stdout, stderr=stderr)


class FakeProxmox:
    """Scripted stand-in for ``run_cmd``.

    Rules are matched newest first. A rule matches on a command prefix or a
    predicate; its results are handed out in order and the last one repeats.
    A result may also be a callable taking the command.
    """

    def __init__(self):
        self.calls = []
        self.rules = []

    def on(self, *prefix, results=None, **result):
        prefix = [str(p) for p in prefix]
        return self.when(lambda cmd: cmd[:len(prefix)] == prefix, *(results or [self._result(**result)]))

    def when(self, predicate, *results):
        self.rules.insert(0, (predicate, list(results)))
        return self

    @staticmethod
    def _result(returncode=0, stdout="", stderr=""):
        return SimpleNamespace(returncode=returncode, stdout=stdout, stderr=stderr)

    def __call__(self, cmd, input=None):
        cmd = list(cmd)
        self.calls.append(cmd)
        for predicate, results in self.rules:
            if predicate(cmd):
                result = results.pop(0) if len(results) > 1 else results[0]
                return result(cmd) if callable(result) else result
        return ok()

    def commands(self, *prefix):
        prefix = [str(p) for p in prefix]
        return [cmd for cmd in self.calls if cmd[:len(prefix)] == prefix]


class RecordingReporter:
    def __init__(self):
        self.lines = []

    def __call__(self, status, message):
        self.lines.append((status, message))

    def messages(self, status=None):
        return [msg for st, msg in self.lines if status is None or st is status]


class FakeFetcher:
    """Serves fixed compose and environment templates."""

    def __init__(self, compose, env_text):
        self.compose = compose
        self.env_text = env_text
        self.urls = []

    def fetch_compose(self, url):
        self.urls.append(url)
        return copy.deepcopy(self.compose)

    def fetch(self, url):
        self.urls.append(url)
        return self.env_text


PCT_SET_HELP = """\
USAGE: pct set <vmid> [OPTIONS]

  Set container options.

  <vmid>     <integer> (100 - 999999999)

  -arch      <amd64 | arm64 | armhf | i386 | riscv32 | riscv64>
  -cores     <integer> (1 - 8192)
  {flag}       <string>
  -features  [force_rw_sys=<1|0>] [,fuse=<1|0>] [,keyctl=<1|0>] [,nesting=<1|0>]
  -hostname  <string>
"""

PVEAM_LIST = """\
NAME                                                         SIZE
local:vztmpl/debian-11-standard_11.7-1_amd64.tar.zst         123.29MB
local:vztmpl/debian-12-standard_12.2-1_amd64.tar.zst         120.29MB
"""

COMPOSE = {
    'services': {
        'dsmrdb': {
            'image': 'postgres:16-alpine',
        },
        'dsmr': {
            'image': 'ghcr.io/xirixiz/dsmr-reader-docker:latest',
            'depends_on': ['dsmrdb'],
            'ports': ['7777:80'],
            'devices': ['/dev/ttyUSB0:/dev/ttyUSB0'],
        },
    },
}

ENV_TEMPLATE = """\
# DSMR-reader
DJANGO_SECRET_KEY=changeme
DSMRREADER_ADMIN_USER=admin
DSMRREADER_ADMIN_PASSWORD=admin
DSMRREADER_DATALOGGER_MODE=serial
DSMRREADER_DATALOGGER_SERIAL_PORT=/dev/ttyUSB0
DSMRREADER_DATALOGGER_SERIAL_BAUDRATE=115200
"""


def char_device(major=188, minor=0):
    return SimpleNamespace(st_mode=stat.S_IFCHR | 0o660, st_rdev=os.makedev(major, minor))


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    """Retry back-off never waits in tests."""
    monkeypatch.setattr(time, "sleep", lambda seconds: None)


@pytest.fixture(autouse=True)
def reset_config():
    set_config(None)
    yield
    set_config(None)


@pytest.fixture
def fake_pct():
    return FakeProxmox()


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def config(tmp_path):
    """Config whose Proxmox and log directories live under tmp_path."""
    for name in ("lxc", "log", "debug"):
        (tmp_path / name).mkdir()
    return InstallerConfig(
        lxc_config_dir=str(tmp_path / "lxc"),
        lxc_log_dir=str(tmp_path / "log"),
        debug_log_dir=str(tmp_path / "debug"),
        start_settle_delay=0,
        defaults_file=str(tmp_path / "no-defaults.yml"),
        log_file=str(tmp_path / "dsmr-lxc.log"),
    )


@pytest.fixture
def fetcher():
    return FakeFetcher(COMPOSE, ENV_TEMPLATE)


@pytest.fixture
def proxmox_host(fake_pct):
    """A Proxmox host that accepts every step of a provisioning run."""
    fake_pct.on('pct', 'set', 100, '--help', stdout=PCT_SET_HELP.format(flag='-lxc'))
    fake_pct.on('pvesh', 'get', '/cluster/nextid', stdout="105\n")
    fake_pct.on('pveam', 'list', 'local', stdout=PVEAM_LIST)
    fake_pct.when(lambda cmd: cmd[:2] == ['pct', 'exec'] and cmd[-1] == 'id -u dsmr', ok("1000\n"))
    fake_pct.when(lambda cmd: cmd[:2] == ['pct', 'exec'] and cmd[-1] == 'hostname -I',
                  ok("192.168.1.50 fd00::50\n"))
    return fake_pct
