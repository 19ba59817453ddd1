"""Tests for runtime configuration."""
import pytest

from dsmrlxc.core.config import (
    DEFAULT_NESTING_CONFLICT_PATTERN,
    InstallerConfig,
    get_config,
    load_spec_overrides,
    set_config,
)
from dsmrlxc.core.errors import InvalidInputError
from dsmrlxc.core.orchestrator import build_spec


def test_defaults():
    config = InstallerConfig()

    assert config.force_nesting is False
    assert config.keep_nesting is False
    assert config.start_settle_delay == 5.0
    assert config.nesting_conflict_pattern == DEFAULT_NESTING_CONFLICT_PATTERN
    assert str(config.config_path(105)) == "/etc/pve/lxc/105.conf"


def test_from_env(monkeypatch):
    monkeypatch.setenv("DSMR_LXC_FORCE_NESTING", "1")
    monkeypatch.setenv("DSMR_LXC_KEEP_NESTING", "yes")
    monkeypatch.setenv("DSMR_LXC_TRACE", "true")
    monkeypatch.setenv("DSMR_LXC_START_SETTLE_DELAY", "0.5")
    monkeypatch.setenv("DSMR_LXC_AUTOSTART", "0")
    monkeypatch.setenv("DSMR_LXC_PROBE_MODE", "trial")
    monkeypatch.setenv("DSMR_LXC_COMPOSE_URL", "https://mirror.test/compose.yaml")

    config = InstallerConfig.from_env()

    assert config.force_nesting is True
    assert config.keep_nesting is True
    assert config.trace is True
    assert config.start_settle_delay == 0.5
    assert config.autostart is False
    assert config.probe_mode == "trial"
    assert config.compose_url == "https://mirror.test/compose.yaml"


def test_flags_off_when_unset(monkeypatch):
    for name in ("DSMR_LXC_FORCE_NESTING", "DSMR_LXC_KEEP_NESTING", "DSMR_LXC_TRACE"):
        monkeypatch.delenv(name, raising=False)

    config = InstallerConfig.from_env()

    assert not (config.force_nesting or config.keep_nesting or config.trace)
    assert config.autostart is True


def test_global_config(monkeypatch):
    custom = InstallerConfig(app_user="meter")
    set_config(custom)

    assert get_config() is custom

    set_config(None)
    monkeypatch.setenv("DSMR_LXC_TRACE", "1")
    assert get_config().trace is True


def test_spec_overrides_from_yaml(tmp_path):
    defaults = tmp_path / "defaults.yml"
    defaults.write_text("memory: 2048\nstorage: zfs\nfeatures:\n  keyctl: false\n")
    config = InstallerConfig(defaults_file=str(defaults))

    spec = build_spec(config, load_spec_overrides(config))

    assert spec.memory == 2048
    assert spec.storage == "zfs"
    assert spec.features.to_pct() == "fuse=1"


def test_missing_defaults_file(tmp_path):
    config = InstallerConfig(defaults_file=str(tmp_path / "absent.yml"))

    assert load_spec_overrides(config) == {}


def test_defaults_file_must_be_mapping(tmp_path):
    defaults = tmp_path / "defaults.yml"
    defaults.write_text("- memory\n")

    with pytest.raises(InvalidInputError, match="must contain a mapping"):
        load_spec_overrides(InstallerConfig(defaults_file=str(defaults)))


def test_force_nesting_adds_feature():
    spec = build_spec(InstallerConfig(force_nesting=True))

    assert spec.features.to_pct() == "nesting=1,fuse=1,keyctl=1"


@pytest.mark.parametrize("name", [
    "DSMR_LXC_START_SETTLE_DELAY",
    "DSMR_LXC_DIAGNOSTIC_LINES",
    "DSMR_LXC_FETCH_TIMEOUT",
])
def test_malformed_number_in_environment(monkeypatch, name):
    monkeypatch.setenv(name, "soon")

    with pytest.raises(InvalidInputError, match=f"{name} must be a number"):
        InstallerConfig.from_env()


def test_numbers_from_environment(monkeypatch):
    monkeypatch.setenv("DSMR_LXC_START_SETTLE_DELAY", " 2.5 ")
    monkeypatch.setenv("DSMR_LXC_FETCH_TIMEOUT", "10")

    config = InstallerConfig.from_env()

    assert config.start_settle_delay == 2.5
    assert config.fetch_timeout == 10


def test_defaults_file_with_invalid_value(tmp_path):
    defaults = tmp_path / "defaults.yml"
    defaults.write_text("memory: lots\n")
    config = InstallerConfig(defaults_file=str(defaults))

    with pytest.raises(InvalidInputError, match="Invalid container defaults: memory"):
        build_spec(config, load_spec_overrides(config))


def test_defaults_file_with_unknown_feature(tmp_path):
    defaults = tmp_path / "defaults.yml"
    defaults.write_text("features:\n  docker: true\n")
    config = InstallerConfig(defaults_file=str(defaults))

    with pytest.raises(InvalidInputError, match="docker"):
        build_spec(config, load_spec_overrides(config))


def test_defaults_file_with_broken_yaml(tmp_path):
    defaults = tmp_path / "defaults.yml"
    defaults.write_text("memory: [2048\n")

    with pytest.raises(InvalidInputError, match="not valid YAML"):
        load_spec_overrides(InstallerConfig(defaults_file=str(defaults)))
