"""Tests for container config record parsing and pure transforms."""
from dsmrlxc.services.proxmox.lxc_config import (
    LxcConfigRecord,
    device_allow_rule,
    device_mount_entry,
    drop_feature,
    grant_device,
    has_feature,
    read_config,
    revoke_device,
    write_config,
)

RECORD = """\
# DSMR reader
arch: amd64
cores: 2
features: nesting=1,fuse=1,keyctl=1
hostname: dsmr
lxc.apparmor.profile: unconfined

[pre-upgrade]
arch: amd64
lxc.mount.entry: /dev/ttyUSB0 dev/ttyUSB0 none bind,optional,create=file
snaptime: 1700000000
"""


def test_parse_render_preserves_record():
    record = LxcConfigRecord.parse(RECORD)

    assert record.render() == RECORD
    assert record.get('hostname') == 'dsmr'
    assert record.trailer.startswith('[pre-upgrade]')


def test_snapshot_section_is_not_editable():
    record = LxcConfigRecord.parse(RECORD)

    assert record.values('lxc.mount.entry') == []
    assert record.get('snaptime') is None


def test_set_replaces_duplicates_in_place():
    record = LxcConfigRecord.parse("a: 1\nb: 2\na: 3\n")

    record.set('a', '9')

    assert record.render() == "a: 9\nb: 2\n"


def test_set_appends_missing_key_before_snapshots():
    record = LxcConfigRecord.parse(RECORD)

    record.set('lxc.cap.drop', '')

    rendered = record.render()
    assert "lxc.apparmor.profile: unconfined\nlxc.cap.drop:\n\n[pre-upgrade]" in rendered


def test_read_write_round_trip(tmp_path):
    path = tmp_path / "105.conf"
    path.write_text(RECORD)

    write_config(path, read_config(path))

    assert path.read_text() == RECORD


class TestFeatures:
    def test_drop_nesting_keeps_other_entries(self):
        assert drop_feature("nesting=1,fuse=1,keyctl=1") == "fuse=1,keyctl=1"

    def test_drop_nesting_in_the_middle(self):
        assert drop_feature("fuse=1,nesting=1,mknod=1") == "fuse=1,mknod=1"

    def test_drop_only_entry(self):
        assert drop_feature("nesting=1") == ""

    def test_drop_absent_entry(self):
        assert drop_feature("fuse=1,keyctl=1") == "fuse=1,keyctl=1"

    def test_has_feature(self):
        assert has_feature("fuse=1,nesting=1")
        assert not has_feature("nesting=0,fuse=1")
        assert not has_feature(None)


class TestGrantDevice:
    def test_rules(self):
        assert device_allow_rule(188, 0) == "c 188:0 rwm"
        assert device_mount_entry("/dev/ttyUSB0", "/dev/ttyUSB0") == (
            "/dev/ttyUSB0 dev/ttyUSB0 none bind,optional,create=file"
        )

    def test_grant_is_idempotent(self):
        record = LxcConfigRecord.parse("arch: amd64\n")

        once = grant_device(record, "/dev/ttyUSB0", "/dev/ttyUSB0", 188, 0)
        twice = grant_device(once, "/dev/ttyUSB0", "/dev/ttyUSB0", 188, 0)

        assert twice.values('lxc.cgroup2.devices.allow') == ["c 188:0 rwm"]
        assert twice.values('lxc.mount.entry') == [
            "/dev/ttyUSB0 dev/ttyUSB0 none bind,optional,create=file"
        ]
        assert twice.render() == once.render()

    def test_grant_does_not_mutate_input(self):
        record = LxcConfigRecord.parse("arch: amd64\n")

        grant_device(record, "/dev/ttyUSB0", "/dev/ttyUSB0", 188, 0)

        assert record.render() == "arch: amd64\n"

    def test_replaces_stale_entries_for_same_device(self):
        record = LxcConfigRecord.parse(
            "arch: amd64\n"
            "lxc.cgroup.devices.allow: c 188:0 rwm\n"
            "lxc.cgroup2.devices.allow: c 10:200 rwm\n"
            "lxc.mount.entry: /dev/ttyUSB0 dev/ttyUSB0 none bind,optional,create=file\n"
            "lxc.mount.entry: /dev/net/tun dev/net/tun none bind,create=file\n"
        )

        updated = grant_device(record, "/dev/ttyUSB0", "/dev/ttyUSB0", 188, 0)

        assert updated.values('lxc.cgroup.devices.allow') == []
        assert updated.values('lxc.cgroup2.devices.allow') == ["c 10:200 rwm", "c 188:0 rwm"]
        assert updated.values('lxc.mount.entry') == [
            "/dev/net/tun dev/net/tun none bind,create=file",
            "/dev/ttyUSB0 dev/ttyUSB0 none bind,optional,create=file",
        ]

    def test_revoke_drops_only_matching_device(self):
        record = LxcConfigRecord.parse(
            "arch: amd64\n"
            "lxc.cgroup.devices.allow: c 188:0 rwm\n"
            "lxc.cgroup2.devices.allow: c 188:0 rwm\n"
            "lxc.cgroup2.devices.allow: c 10:200 rwm\n"
            "lxc.mount.entry: /dev/ttyUSB0 dev/ttyUSB0 none bind,optional,create=file\n"
            "lxc.mount.entry: /dev/net/tun dev/net/tun none bind,create=file\n"
            "\n"
            "[pre-upgrade]\n"
            "lxc.cgroup2.devices.allow: c 188:0 rwm\n"
        )

        updated = revoke_device(record, "/dev/ttyUSB0", "/dev/ttyUSB0", 188, 0)

        assert updated.render() == (
            "arch: amd64\n"
            "lxc.cgroup2.devices.allow: c 10:200 rwm\n"
            "lxc.mount.entry: /dev/net/tun dev/net/tun none bind,create=file\n"
            "\n"
            "[pre-upgrade]\n"
            "lxc.cgroup2.devices.allow: c 188:0 rwm\n"
        )
        assert len(record.values('lxc.cgroup2.devices.allow')) == 2
