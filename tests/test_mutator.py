"""
Tests for configuration mutation — backups, atomic rewrites, line patches.
"""

import stat

import pytest

from nodestrap.core.errors import MutationError
from nodestrap.core.mutation.config_mutator import ConfigMutator, KeyValueRule, backup_path
from nodestrap.core.mutation.stamps import AppliedStamps, digest_files


def _mode(path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


# ── Key/value rule ──────────────────────────────────────────────────


class TestKeyValueRule:
    def test_replaces_value_only(self):
        rule = KeyValueRule("cidr", "10.10.0.0/16")
        assert rule.replace("      cidr: 192.168.0.0/16\n") == "      cidr: 10.10.0.0/16\n"

    def test_equals_separator(self):
        rule = KeyValueRule("SystemdCgroup", "true", separator="=")
        assert rule.replace("            SystemdCgroup = false\n") == "            SystemdCgroup = true\n"

    def test_keeps_crlf(self):
        rule = KeyValueRule("a", "2")
        assert rule.replace("a: 1\r\n") == "a: 2\r\n"

    def test_does_not_match_longer_key(self):
        rule = KeyValueRule("cidr", "x")
        assert not rule.matches("  cidrBlock: 10.0.0.0/8\n")
        assert not rule.matches("  # cidr: 10.0.0.0/8\n")

    def test_count_in(self):
        rule = KeyValueRule("SystemdCgroup", "true", separator="=")
        assert rule.count_in("SystemdCgroup = true\nx = 1\n  SystemdCgroup = false\n") == 1


# ── replace ─────────────────────────────────────────────────────────


class TestReplace:
    def test_new_file_gets_no_backup(self, tmp_path):
        target = tmp_path / "etc" / "hosts"
        ConfigMutator().replace(target, "127.0.0.1 localhost\n")
        assert target.read_text() == "127.0.0.1 localhost\n"
        assert not backup_path(target).exists()

    def test_backup_equals_pre_call_content(self, tmp_path):
        target = tmp_path / "hosts"
        target.write_bytes(b"original\x00bytes\n")
        ConfigMutator().replace(target, "new\n")
        assert backup_path(target).read_bytes() == b"original\x00bytes\n"
        assert target.read_text() == "new\n"

    def test_backup_is_overwritten_by_next_mutation(self, tmp_path):
        target = tmp_path / "hosts"
        target.write_text("one\n")
        mutator = ConfigMutator()
        mutator.replace(target, "two\n")
        mutator.replace(target, "three\n")
        assert backup_path(target).read_text() == "two\n"

    def test_twice_is_same_result(self, tmp_path):
        target = tmp_path / "hosts"
        mutator = ConfigMutator()
        mutator.replace(target, "same\n")
        mutator.replace(target, "same\n")
        assert target.read_text() == "same\n"
        assert backup_path(target).read_text() == "same\n"

    def test_preserves_existing_mode(self, tmp_path):
        target = tmp_path / "script.conf"
        target.write_text("a\n")
        target.chmod(0o640)
        ConfigMutator().replace(target, "b\n")
        assert _mode(target) == 0o640

    def test_file_class_mode(self, tmp_path):
        target = tmp_path / "etc" / "netplan" / "99-custom-config.yaml"
        ConfigMutator().replace(target, "network: {}\n")
        assert _mode(target) == 0o600

    def test_explicit_mode_wins(self, tmp_path):
        target = tmp_path / "unit.service"
        ConfigMutator().replace(target, "[Unit]\n", mode=0o600)
        assert _mode(target) == 0o600

    def test_no_temp_files_left(self, tmp_path):
        target = tmp_path / "hosts"
        ConfigMutator().replace(target, "x\n")
        assert sorted(p.name for p in tmp_path.iterdir()) == ["hosts"]

    def test_unwritable_parent_raises(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        with pytest.raises(MutationError):
            ConfigMutator().replace(blocker / "child.conf", "x\n")


# ── patch ───────────────────────────────────────────────────────────


class TestPatch:
    def test_preserves_unrelated_lines(self, tmp_path):
        target = tmp_path / "custom-resources.yaml"
        target.write_text("A: 1\n    cidr: 192.168.0.0/16\nB: 2\n")
        matched = ConfigMutator().set_value(target, "cidr", "10.10.0.0/16")
        assert matched == 1
        assert target.read_text() == "A: 1\n    cidr: 10.10.0.0/16\nB: 2\n"

    def test_backup_equals_pre_call_content(self, tmp_path):
        target = tmp_path / "custom-resources.yaml"
        original = "A: 1\ncidr: 192.168.0.0/16\nB: 2"
        target.write_text(original)
        ConfigMutator().set_value(target, "cidr", "10.10.0.0/16")
        assert backup_path(target).read_text() == original
        assert target.read_text() == "A: 1\ncidr: 10.10.0.0/16\nB: 2"

    def test_zero_matches_is_not_an_error(self, tmp_path):
        target = tmp_path / "config.toml"
        target.write_text("version = 2\n")
        matched = ConfigMutator().set_value(target, "SystemdCgroup", "true", separator="=")
        assert matched == 0
        assert target.read_text() == "version = 2\n"
        assert backup_path(target).exists()

    def test_every_matching_line(self, tmp_path):
        target = tmp_path / "config.toml"
        target.write_text("  SystemdCgroup = false\nx = 1\n\tSystemdCgroup=false\n")
        matched = ConfigMutator().set_value(target, "SystemdCgroup", "true", separator="=")
        assert matched == 2
        assert target.read_text() == "  SystemdCgroup = true\nx = 1\n\tSystemdCgroup=true\n"

    def test_predicate_rules(self, tmp_path):
        target = tmp_path / "fstab"
        target.write_text("UUID=1 / ext4 defaults 0 1\n/swap.img none swap sw 0 0\n")
        matched = ConfigMutator().patch(
            target, lambda line: " swap " in line, lambda line: "#" + line,
        )
        assert matched == 1
        assert target.read_text() == "UUID=1 / ext4 defaults 0 1\n#/swap.img none swap sw 0 0\n"

    def test_non_utf8_bytes_survive(self, tmp_path):
        target = tmp_path / "legacy.conf"
        target.write_bytes(b"name: caf\xe9\nkey: old\n")
        ConfigMutator().set_value(target, "key", "new")
        assert target.read_bytes() == b"name: caf\xe9\nkey: new\n"

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(MutationError, match="Cannot read"):
            ConfigMutator().set_value(tmp_path / "absent.yaml", "cidr", "x")


# ── is_current / backup ─────────────────────────────────────────────


class TestQueries:
    def test_is_current(self, tmp_path):
        target = tmp_path / "hosts"
        mutator = ConfigMutator()
        assert not mutator.is_current(target, "x\n")
        target.write_text("x\n")
        assert mutator.is_current(target, "x\n")
        assert mutator.is_current(target, b"x\n")
        assert not mutator.is_current(target, "y\n")

    def test_is_current_checks_mode(self, tmp_path):
        target = tmp_path / "netplan" / "50-cloud-init.yaml"
        target.parent.mkdir()
        target.write_text("network: {}\n")
        target.chmod(0o644)
        assert not ConfigMutator().is_current(target, "network: {}\n")
        target.chmod(0o600)
        assert ConfigMutator().is_current(target, "network: {}\n")

    def test_backup_of_missing_file(self, tmp_path):
        assert ConfigMutator().backup(tmp_path / "absent") is None

    def test_custom_modes(self, tmp_path):
        mutator = ConfigMutator(modes={"*.key": 0o400})
        assert mutator.mode_for(tmp_path / "a.key") == 0o400
        assert mutator.mode_for(tmp_path / "etc" / "netplan" / "x.yaml") is None


# ── Applied-state stamps ────────────────────────────────────────────


class TestAppliedStamps:
    def test_missing_stamp_is_not_current(self, tmp_path):
        conf = tmp_path / "haproxy.cfg"
        conf.write_text("defaults\n")
        assert not AppliedStamps(tmp_path / "state").is_current("haproxy", [conf])

    def test_record_then_current(self, tmp_path):
        conf = tmp_path / "haproxy.cfg"
        conf.write_text("defaults\n")
        stamps = AppliedStamps(tmp_path / "state")
        stamps.record("haproxy", [conf])
        assert stamps.is_current("haproxy", [conf])
        assert stamps.stamp_path("haproxy") == tmp_path / "state" / "haproxy.sha256"

    def test_content_change_invalidates(self, tmp_path):
        conf = tmp_path / "config.toml"
        conf.write_text("SystemdCgroup = false\n")
        stamps = AppliedStamps(tmp_path / "state")
        stamps.record("containerd", [conf])
        conf.write_text("SystemdCgroup = true\n")
        assert not stamps.is_current("containerd", [conf])

    def test_absent_file_differs_from_empty(self, tmp_path):
        path = tmp_path / "netplan.yaml"
        absent = digest_files([path])
        path.write_text("")
        assert digest_files([path]) != absent

    def test_unwritable_state_dir(self, tmp_path):
        blocker = tmp_path / "state"
        blocker.write_text("not a directory")
        with pytest.raises(MutationError, match="Cannot write"):
            AppliedStamps(blocker).record("netplan", [])
