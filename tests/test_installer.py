"""Tests for the in-container DSMR-reader installer."""
from pathlib import Path

import pytest

from conftest import fail, ok
from dsmrlxc.core.errors import InstallationError
from dsmrlxc.services.dsmr.installer import PACKAGES, DsmrInstaller, render_unit
from dsmrlxc.services.proxmox.lifecycle import ContainerLifecycle


def scripts(fake_pct):
    """Scripts run through pct exec, in order."""
    return [cmd[-1] for cmd in fake_pct.commands('pct', 'exec')]


@pytest.fixture
def installer_host(fake_pct):
    pushed = {}

    def capture(cmd):
        pushed[cmd[4]] = (Path(cmd[3]).read_text(), cmd[-1])
        return ok()

    fake_pct.when(lambda cmd: cmd[:2] == ['pct', 'exec'] and cmd[-1] == 'id -u dsmr', ok("1000\n"))
    fake_pct.on('pct', 'push', results=[capture])
    fake_pct.pushed = pushed
    return fake_pct


def make_installer(fake_pct, config, reporter):
    return DsmrInstaller(ContainerLifecycle(run_cmd=fake_pct, report=reporter), config=config, report=reporter)


def test_render_unit():
    unit = render_unit("dsmr", 1000, "/home/dsmr/dsmr-reader")

    assert "User=dsmr\n" in unit
    assert "WorkingDirectory=/home/dsmr/dsmr-reader\n" in unit
    assert "Environment=XDG_RUNTIME_DIR=/run/user/1000\n" in unit
    assert "ExecStart=/usr/bin/podman-compose up -d\n" in unit
    assert "WantedBy=multi-user.target" in unit


def test_install_runs_every_step(installer_host, config, reporter):
    make_installer(installer_host, config, reporter).install(105, "services: {}\n", "KEY=value\n")

    run = scripts(installer_host)
    assert run[0].startswith("apt-get update && DEBIAN_FRONTEND=noninteractive apt-get install -y ")
    assert all(package in run[0] for package in PACKAGES)
    assert "useradd -m -s /bin/bash dsmr" in run[1]
    assert run[2] == "loginctl enable-linger dsmr"
    assert "cd /home/dsmr/dsmr-reader && podman-compose up -d" in run
    assert run[-1] == "systemctl daemon-reload && systemctl enable dsmr-reader.service"

    pushed = installer_host.pushed
    assert pushed["/home/dsmr/dsmr-reader/compose.yaml"] == ("services: {}\n", "0644")
    assert pushed["/home/dsmr/dsmr-reader/.env"] == ("KEY=value\n", "0600")
    assert "User=dsmr" in pushed["/etc/systemd/system/dsmr-reader.service"][0]


def test_compose_runs_as_app_user(installer_host, config, reporter):
    make_installer(installer_host, config, reporter).start_stack(105)

    assert installer_host.calls[-1][:8] == ['pct', 'exec', '105', '--', 'runuser', '-l', 'dsmr', '-c']


def test_autostart_can_be_disabled(installer_host, config, reporter):
    config.autostart = False

    make_installer(installer_host, config, reporter).install(105, "services: {}\n", "")

    assert not any("systemctl" in script for script in scripts(installer_host))
    assert "/etc/systemd/system/dsmr-reader.service" not in installer_host.pushed


def test_package_failure_is_fatal(installer_host, config, reporter):
    installer_host.when(
        lambda cmd: cmd[:2] == ['pct', 'exec'] and cmd[-1].startswith('apt-get'),
        fail("E: Unable to locate package podman-compose", returncode=100),
    )

    with pytest.raises(InstallationError) as excinfo:
        make_installer(installer_host, config, reporter).install(105, "", "")

    assert "Package installation failed in container 105" in str(excinfo.value)
    assert excinfo.value.diagnostics == "E: Unable to locate package podman-compose"
    assert installer_host.commands('pct', 'push') == []


def test_unexpected_uid(fake_pct, config, reporter):
    fake_pct.when(lambda cmd: cmd[-1] == 'id -u dsmr', ok("dsmr\n"))

    with pytest.raises(InstallationError, match="Unexpected uid"):
        make_installer(fake_pct, config, reporter).create_user(105)
