"""Tests for the command line interface."""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from volindex.cli import cli
from volindex.database import Database, FileEntry
from volindex.database.files import get_entries, upsert_entries
from volindex.database.volumes import get_volume, list_manual_roots, upsert_volume
from volindex.platform.mounts import MountDescriptor, VolumeEnumerator


@pytest.fixture
def env(tmp_path: Path) -> dict:
    return {"VOLINDEX_DIR": str(tmp_path / "store"), "VOLINDEX_MACHINE_ID": "m1"}


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "store" / "m1" / "index.db"


@pytest.fixture
def footage(tmp_path: Path) -> Path:
    folder = tmp_path / "footage"
    (folder / "Day1").mkdir(parents=True)
    (folder / "Day1" / "A001_C001.mov").write_bytes(b"\0" * 4)
    (folder / "notes.txt").write_text("n")
    return folder


class TestScanCommand:
    def test_scan_registers_root_and_indexes(self, env, store_path, footage):
        result = CliRunner().invoke(cli, ["scan", str(footage), "--label", "Footage"], env=env)

        assert result.exit_code == 0, result.output
        with Database(store_path) as db:
            roots = list_manual_roots(db.conn)
            rows = get_entries(db.conn, roots[0].target_id)

        assert [r.label for r in roots] == ["Footage"]
        assert {r["relative_path"] for r in rows} == {"Day1", "Day1/A001_C001.mov", "notes.txt"}

    def test_scan_missing_path_fails(self, env, tmp_path):
        result = CliRunner().invoke(cli, ["scan", str(tmp_path / "nope")], env=env)

        assert result.exit_code != 0


class TestRootsCommands:
    def test_add_list_remove(self, env, footage):
        runner = CliRunner()

        added = runner.invoke(cli, ["roots", "add", str(footage), "--interval-ms", "60000"], env=env)
        listed = runner.invoke(cli, ["roots", "list"], env=env)
        root_id = added.output.strip().rsplit("(id ", 1)[1].rstrip(")")
        removed = runner.invoke(cli, ["roots", "remove", root_id], env=env)
        missing = runner.invoke(cli, ["roots", "remove", root_id], env=env)

        assert added.exit_code == 0, added.output
        assert str(footage) in listed.output
        assert removed.exit_code == 0
        assert f"Removed manual root {root_id}" in removed.output
        assert missing.exit_code == 1

    def test_list_without_store(self, env):
        result = CliRunner().invoke(cli, ["roots", "list"], env=env)

        assert result.exit_code == 0
        assert "No database found" in result.output


class TestReadCommands:
    def test_status_after_scan(self, env, footage):
        runner = CliRunner()
        runner.invoke(cli, ["scan", str(footage)], env=env)

        result = runner.invoke(cli, ["status"], env=env)

        assert result.exit_code == 0
        assert "success" in result.output

    def test_find(self, env, footage):
        runner = CliRunner()
        runner.invoke(cli, ["scan", str(footage)], env=env)

        hit = runner.invoke(cli, ["find", "a001"], env=env)
        miss = runner.invoke(cli, ["find", "zzz"], env=env)

        assert "Day1/A001_C001.mov" in hit.output
        assert "No matches." in miss.output

    def test_merged_json(self, env, footage):
        runner = CliRunner()
        runner.invoke(cli, ["scan", str(footage)], env=env)

        result = runner.invoke(cli, ["merged", "--json"], env=env)

        assert result.exit_code == 0
        state = json.loads(result.output)
        assert state["drives"] == []
        assert [r["path"] for r in state["roots"]] == [str(footage.resolve())]
        assert state["roots"][0]["file_count"] == 2

    def test_read_commands_without_store(self, env):
        runner = CliRunner()

        for command in (["status"], ["find", "x"], ["volumes"]):
            result = runner.invoke(cli, command, env=env)
            assert result.exit_code == 0
            assert "No database found" in result.output


class TestVolumeCommands:
    def test_volumes_and_policy(self, env, store_path):
        with Database(store_path, machine_id="m1") as db:
            upsert_volume(
                db.conn,
                MountDescriptor(
                    key="UUID-1",
                    kind="volume",
                    volume_uuid="UUID-1",
                    volume_name="SHOOT",
                    mount_point="/media/SHOOT",
                ),
            )
        runner = CliRunner()

        policy = runner.invoke(
            cli,
            ["policy", "UUID-1", "--interval-ms", "-1", "--inactive", "--auto-purge"],
            env=env,
        )
        listed = runner.invoke(cli, ["volumes"], env=env)

        assert policy.exit_code == 0, policy.output
        assert "interval manual, inactive, auto-purge on" in policy.output
        assert "SHOOT" in listed.output
        assert "inactive auto-purge" in listed.output

    def test_policy_unknown_volume(self, env):
        result = CliRunner().invoke(cli, ["policy", "NOPE", "--active"], env=env)

        assert result.exit_code == 1

    def test_mounts(self, env, monkeypatch):
        mount = MountDescriptor(
            key="UUID-1",
            kind="volume",
            volume_uuid="UUID-1",
            volume_name="SHOOT",
            mount_point="/media/SHOOT",
            size_bytes=2048,
        )
        monkeypatch.setattr(VolumeEnumerator, "snapshot", lambda self: [mount])

        result = CliRunner().invoke(cli, ["mounts"], env=env)

        assert result.exit_code == 0
        assert "/media/SHOOT" in result.output
        assert "2.0 KB" in result.output

    def test_purge(self, env, store_path):
        with Database(store_path, machine_id="m1") as db:
            upsert_volume(
                db.conn,
                MountDescriptor(
                    key="UUID-1",
                    kind="volume",
                    volume_uuid="UUID-1",
                    volume_name="SHOOT",
                    mount_point="/media/SHOOT",
                ),
            )
            upsert_entries(
                db.conn,
                [
                    FileEntry(
                        target_id="UUID-1",
                        root_path="/media/SHOOT",
                        relative_path="clip.mov",
                        name="clip.mov",
                        ext="mov",
                        is_dir=False,
                        file_type="video",
                        size_bytes=4,
                    )
                ],
            )
        runner = CliRunner()

        declined = runner.invoke(cli, ["purge", "UUID-1"], input="n\n", env=env)
        purged = runner.invoke(cli, ["purge", "UUID-1", "--yes"], env=env)
        again = runner.invoke(cli, ["purge", "UUID-1", "--yes"], env=env)

        assert declined.exit_code != 0
        assert purged.exit_code == 0, purged.output
        assert "Purged SHOOT (1 entries)" in purged.output
        assert again.exit_code == 1
        with Database(store_path) as db:
            assert get_volume(db.conn, "UUID-1") is None
            assert get_entries(db.conn, "UUID-1") == []


class TestRootPolicyCommand:
    def test_roots_policy(self, env, store_path, footage):
        runner = CliRunner()
        runner.invoke(cli, ["roots", "add", str(footage), "--label", "Footage", "--interval-ms", "60000"], env=env)
        with Database(store_path) as db:
            root_id = list_manual_roots(db.conn)[0].id

        result = runner.invoke(
            cli,
            ["roots", "policy", str(root_id), "--interval-ms", "-1", "--inactive"],
            env=env,
        )

        assert result.exit_code == 0, result.output
        assert "Footage: interval manual, inactive" in result.output
        with Database(store_path) as db:
            root = list_manual_roots(db.conn)[0]
        assert root.scan_interval_ms == -1
        assert root.is_active is False

    def test_roots_policy_unknown_root(self, env):
        result = CliRunner().invoke(cli, ["roots", "policy", "42", "--active"], env=env)

        assert result.exit_code == 1
