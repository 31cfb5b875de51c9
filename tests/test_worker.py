"""Tests for the worker: context lifecycle, commands, channels and the run loop."""

import asyncio
import io
import json
from pathlib import Path

from volindex.config import Config, SchedulerConfig
from volindex.database.files import get_entries
from volindex.database.volumes import get_volume, update_volume_policy, upsert_volume
from volindex.platform.mounts import MountDescriptor
from volindex.remote import RemoteError
from volindex.scheduler.cancel import CancelToken
from volindex.scheduler.queue import ScanJob
from volindex.worker import MemoryChannel, StdioChannel, WorkerContext, handle_command, run_worker

STATUS_KEYS = {
    "runningMount",
    "queuedMount",
    "runningScheduled",
    "queuedScheduled",
    "runningTotal",
    "queuedTotal",
}


class StaticEnumerator:
    def __init__(self, mounts: list[MountDescriptor]):
        self.mounts = mounts

    def snapshot(self) -> list[MountDescriptor]:
        return list(self.mounts)


class FakeRemote:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.upserts: list[dict] = []
        self.registered: list[tuple] = []

    def register_device(self, device_id, name):
        self.registered.append((device_id, name))
        return {"ok": True}

    def upsert_state(self, device_id, volumes=None, manual_roots=None, files=None):
        self.upserts.append({"volumes": volumes, "manual_roots": manual_roots, "files": files})
        return {"ok": True}

    def fetch_state(self, device_id):
        if self.fail:
            raise RemoteError("aggregator down")
        return {"drives": [], "roots": [], "deviceId": device_id}


def make_drive(tmp_path: Path, name: str = "SHOOT") -> MountDescriptor:
    mount_point = tmp_path / "media" / name
    (mount_point / "Day1").mkdir(parents=True)
    (mount_point / "Day1" / "notes.txt").write_text("call sheet")
    (mount_point / "readme.txt").write_text("hi")
    return MountDescriptor(
        key=f"UUID-{name}",
        kind="volume",
        volume_uuid=f"UUID-{name}",
        volume_name=name,
        mount_point=str(mount_point),
    )


def make_ctx(tmp_path: Path, mounts: list[MountDescriptor] | None = None, remote=None) -> WorkerContext:
    config = Config(
        base_dir=tmp_path / "store",
        machine_id="m1",
        mount_prefixes=(str(tmp_path / "media"),),
        scheduler=SchedulerConfig(mount_poll_seconds=3600, due_sweep_seconds=3600),
    )
    return WorkerContext(config, enumerator=StaticEnumerator(mounts or []), remote=remote)


def waiting_job(key: str) -> ScanJob:
    token = CancelToken()

    async def run():
        while not token.cancelled:
            await asyncio.sleep(0.001)

    return ScanJob(key=key, run=run, token=token)


class TestWorkerContext:
    def test_startup_scans_mounted_volumes(self, tmp_path: Path):
        drive = make_drive(tmp_path)
        ctx = make_ctx(tmp_path, [drive])
        events: list[dict] = []
        ctx.add_listener(events.append)

        async def scenario():
            await ctx.start()
            await ctx.mount_queue.join()
            rows = get_entries(ctx.conn, drive.volume_uuid)
            volume = get_volume(ctx.conn, drive.volume_uuid)
            await ctx.stop()
            return rows, volume

        rows, volume = asyncio.run(scenario())

        assert {r["relative_path"] for r in rows} == {"Day1", "Day1/notes.txt", "readme.txt"}
        assert volume.last_scan_at is not None
        assert volume.mount_point_last == drive.mount_point
        assert all(e["cmd"] == "indexerProgress" and e["label"] == "READY" for e in events)
        assert events[0]["payload"]["stage"] == "scan_start"
        assert events[-1]["payload"]["stage"] == "scan_end"
        assert events[-1]["payload"]["volume_uuid"] == drive.volume_uuid

    def test_inactive_volume_is_not_scanned(self, tmp_path: Path):
        drive = make_drive(tmp_path)
        ctx = make_ctx(tmp_path, [drive])
        upsert_volume(ctx.conn, drive)
        update_volume_policy(ctx.conn, drive.volume_uuid, is_active=False)

        async def scenario():
            await ctx.start()
            status = ctx.status()
            await ctx.stop()
            return status

        status = asyncio.run(scenario())

        assert status["runningMount"] == 0
        assert status["queuedMount"] == 0

    def test_mount_without_identifier_is_tracked_not_indexed(self, tmp_path: Path):
        share = MountDescriptor(
            key="mount:/media/share",
            kind="mount",
            volume_uuid=None,
            volume_name="share",
            mount_point="/media/share",
        )
        ctx = make_ctx(tmp_path)

        async def scenario():
            await ctx.on_mounted(share)
            return ctx.status(), ctx.current_mounts()

        status, mounts = asyncio.run(scenario())
        ctx.db.close()

        assert status["runningMount"] == 0
        assert mounts == [share]

    def test_unmount_cancels_volume_and_roots_on_it(self, tmp_path: Path):
        drive = make_drive(tmp_path)
        ctx = make_ctx(tmp_path)
        reply_root = None

        async def scenario():
            nonlocal reply_root
            ctx.mounts[drive.key] = drive
            reply_root = await handle_command(
                ctx, {"cmd": "addManualRoot", "path": drive.mount_point + "/Day1"}
            )
            volume_job = waiting_job(drive.key)
            root_job = waiting_job(f"manual:{reply_root['root']['id']}")
            ctx.mount_queue.enqueue(volume_job)
            ctx.scheduled_queue.enqueue(root_job)

            await ctx.on_unmounted(drive)
            await ctx.mount_queue.join()
            await ctx.scheduled_queue.join()
            return volume_job.token.cancelled, root_job.token.cancelled, ctx.current_mounts()

        volume_cancelled, root_cancelled, mounts = asyncio.run(scenario())
        ctx.db.close()

        assert volume_cancelled
        assert root_cancelled
        assert mounts == []

    def test_due_volume_goes_to_scheduled_queue(self, tmp_path: Path):
        drive = make_drive(tmp_path)
        ctx = make_ctx(tmp_path)

        async def scenario():
            ctx.mounts[drive.key] = drive
            upsert_volume(ctx.conn, drive, default_interval_ms=1000)
            handed = await ctx.due_scheduler.sweep()
            await ctx.scheduled_queue.join()
            return handed, get_volume(ctx.conn, drive.volume_uuid)

        handed, volume = asyncio.run(scenario())
        ctx.db.close()

        assert handed == (1, 0)
        assert volume.last_scan_at is not None

    def test_remote_mode_streams_and_skips_local_entries(self, tmp_path: Path):
        drive = make_drive(tmp_path)
        remote = FakeRemote()
        ctx = make_ctx(tmp_path, [drive], remote=remote)

        async def scenario():
            await ctx.start()
            await ctx.mount_queue.join()
            rows = get_entries(ctx.conn, drive.volume_uuid)
            await ctx.stop()
            return rows

        rows = asyncio.run(scenario())

        assert rows == []
        assert remote.registered and remote.registered[0][0] == "m1"
        sent_files = [f for call in remote.upserts if call["files"] for f in call["files"]]
        assert {f["relative_path"] for f in sent_files} == {"Day1", "Day1/notes.txt", "readme.txt"}
        assert remote.upserts[-1]["volumes"][0]["file_count"] == 2


class TestCommands:
    def test_status_and_unknown(self, tmp_path: Path):
        ctx = make_ctx(tmp_path)

        async def scenario():
            return (
                await handle_command(ctx, {"cmd": "indexerStatus"}),
                await handle_command(ctx, {"cmd": "explode"}),
                await handle_command(ctx, {"cmd": "indexerCancelCurrent"}),
            )

        status, unknown, cancel = asyncio.run(scenario())
        ctx.db.close()

        assert status["cmd"] == "indexerStatus"
        assert set(status["status"]) == STATUS_KEYS
        assert all(value == 0 for value in status["status"].values())
        assert "at" in status
        assert unknown == {"ok": False, "error": "unknown_command"}
        assert cancel["cancelledKey"] is None

    def test_add_and_scan_manual_root(self, tmp_path: Path):
        folder = tmp_path / "projects"
        folder.mkdir()
        (folder / "edit.drp").write_text("x")
        ctx = make_ctx(tmp_path)

        async def scenario():
            added = await handle_command(
                ctx, {"cmd": "addManualRoot", "path": str(folder), "label": "Projects"}
            )
            payload = {"type": "manualRoot", "rootId": added["root"]["id"]}
            first = await handle_command(ctx, {"cmd": "manualScan", "payload": payload})
            second = await handle_command(ctx, {"cmd": "manualScan", "payload": payload})
            await ctx.scheduled_queue.join()
            rows = get_entries(ctx.conn, f"manual:{added['root']['id']}")
            return added, first, second, rows

        added, first, second, rows = asyncio.run(scenario())
        ctx.db.close()

        assert added["ok"] is True
        assert added["root"]["label"] == "Projects"
        assert first == {"cmd": "manualScanResult", "result": True, "at": first["at"]}
        assert second["result"] is False
        assert [r["name"] for r in rows] == ["edit.drp"]
        assert rows[0]["file_type"] == "project"

    def test_add_manual_root_requires_path(self, tmp_path: Path):
        ctx = make_ctx(tmp_path)

        reply = asyncio.run(handle_command(ctx, {"cmd": "addManualRoot"}))
        ctx.db.close()

        assert reply == {"cmd": "addManualRoot", "ok": False, "error": "missing_path"}

    def test_manual_scan_rejections(self, tmp_path: Path):
        ctx = make_ctx(tmp_path)

        async def scenario():
            results = []
            for payload in (
                {"type": "volume", "volumeUuid": "NOT-MOUNTED"},
                {"type": "manualRoot", "rootId": "abc"},
                {"type": "manualRoot", "rootId": 12345},
                {"type": "somethingElse"},
            ):
                reply = await handle_command(ctx, {"cmd": "manualScan", "payload": payload})
                results.append(reply["result"])
            return results

        results = asyncio.run(scenario())
        ctx.db.close()

        assert results == [False, False, False, False]

    def test_scan_all(self, tmp_path: Path):
        drive = make_drive(tmp_path)
        folder = tmp_path / "projects"
        folder.mkdir()
        offline_root = str(tmp_path / "media" / "OFFLINE" / "x")
        ctx = make_ctx(tmp_path)

        async def scenario():
            ctx.mounts[drive.key] = drive
            upsert_volume(ctx.conn, drive)
            await handle_command(ctx, {"cmd": "addManualRoot", "path": str(folder)})
            await handle_command(ctx, {"cmd": "addManualRoot", "path": offline_root})
            volumes_only = await handle_command(
                ctx, {"cmd": "manualScan", "payload": {"type": "scanAllMountedVolumes"}}
            )
            await ctx.mount_queue.join()
            everything = await handle_command(ctx, {"cmd": "manualScan", "payload": {"type": "scanAll"}})
            await ctx.mount_queue.join()
            await ctx.scheduled_queue.join()
            return volumes_only["result"], everything["result"]

        volumes_only, everything = asyncio.run(scenario())
        ctx.db.close()

        assert volumes_only == 1
        assert everything == 2

    def test_scan_single_volume(self, tmp_path: Path):
        drive = make_drive(tmp_path)
        ctx = make_ctx(tmp_path)

        async def scenario():
            ctx.mounts[drive.key] = drive
            upsert_volume(ctx.conn, drive)
            reply = await handle_command(
                ctx,
                {"cmd": "manualScan", "payload": {"type": "volume", "volumeUuid": drive.volume_uuid}},
            )
            await ctx.mount_queue.join()
            return reply["result"], get_entries(ctx.conn, drive.volume_uuid)

        result, rows = asyncio.run(scenario())
        ctx.db.close()

        assert result is True
        assert len(rows) == 3

    def test_remove_manual_root(self, tmp_path: Path):
        folder = tmp_path / "projects"
        folder.mkdir()
        ctx = make_ctx(tmp_path)

        async def scenario():
            added = await handle_command(ctx, {"cmd": "addManualRoot", "path": str(folder)})
            root_id = added["root"]["id"]
            return (
                await handle_command(ctx, {"cmd": "removeManualRoot", "rootId": "nope"}),
                await handle_command(ctx, {"cmd": "removeManualRoot", "rootId": root_id}),
                await handle_command(ctx, {"cmd": "removeManualRoot", "rootId": root_id}),
            )

        invalid, removed, again = asyncio.run(scenario())
        ctx.db.close()

        assert invalid == {"cmd": "removeManualRoot", "ok": False, "error": "invalid_root_id"}
        assert removed == {"cmd": "removeManualRoot", "ok": True}
        assert again == {"cmd": "removeManualRoot", "ok": False}

    def test_cancel_key_and_all(self, tmp_path: Path):
        ctx = make_ctx(tmp_path)

        async def scenario():
            ctx.mount_queue.enqueue(waiting_job("a"))
            ctx.scheduled_queue.enqueue(waiting_job("b"))
            ctx.scheduled_queue.enqueue(waiting_job("c"))
            after_key = await handle_command(ctx, {"cmd": "indexerCancelKey", "key": "a"})
            after_all = await handle_command(ctx, {"cmd": "indexerCancelAll"})
            await ctx.mount_queue.join()
            await ctx.scheduled_queue.join()
            return after_key["status"], after_all["status"]

        after_key, after_all = asyncio.run(scenario())
        ctx.db.close()

        assert after_key["runningMount"] == 0
        assert after_key["runningScheduled"] == 1
        assert after_key["queuedScheduled"] == 1
        assert after_all["runningTotal"] == 0
        assert after_all["queuedTotal"] == 0

    def test_merged_state_local(self, tmp_path: Path):
        drive = make_drive(tmp_path)
        ctx = make_ctx(tmp_path)
        upsert_volume(ctx.conn, drive)

        reply = asyncio.run(handle_command(ctx, {"cmd": "mergedState"}))
        ctx.db.close()

        assert reply["ok"] is True
        assert [d["volume_uuid"] for d in reply["state"]["drives"]] == [drive.volume_uuid]

    def test_merged_state_remote_failure(self, tmp_path: Path):
        ctx = make_ctx(tmp_path, remote=FakeRemote(fail=True))

        reply = asyncio.run(handle_command(ctx, {"cmd": "mergedState"}))
        ctx.db.close()

        assert reply == {"cmd": "mergedState", "ok": False, "error": "aggregator down"}


class TestChannels:
    def test_stdio_skips_bad_lines(self):
        stdin = io.StringIO('\nnot json\n[1, 2]\n{"cmd": "indexerStatus"}\n')
        channel = StdioChannel(stdin=stdin, stdout=io.StringIO())

        async def scenario():
            return await channel.receive(), await channel.receive()

        first, second = asyncio.run(scenario())

        assert first == {"cmd": "indexerStatus"}
        assert second is None

    def test_stdio_writes_json_lines(self):
        stdout = io.StringIO()
        channel = StdioChannel(stdin=io.StringIO(), stdout=stdout)

        async def scenario():
            await channel.send({"cmd": "indexerStatus", "status": {}})
            await channel.send({"ok": False})

        asyncio.run(scenario())

        lines = stdout.getvalue().splitlines()
        assert [json.loads(line) for line in lines] == [
            {"cmd": "indexerStatus", "status": {}},
            {"ok": False},
        ]


class TestRunWorker:
    def test_serves_commands_until_closed(self, tmp_path: Path):
        drive = make_drive(tmp_path)
        ctx = make_ctx(tmp_path, [drive])
        channel = MemoryChannel()
        channel.push({"cmd": "indexerStatus"})
        channel.push({"cmd": "explode"})
        channel.close()

        asyncio.run(run_worker(ctx, channel))

        replies = [m for m in channel.sent if m.get("cmd") != "indexerProgress"]
        progress = [m for m in channel.sent if m.get("cmd") == "indexerProgress"]
        assert replies[0]["cmd"] == "indexerStatus"
        assert replies[1] == {"ok": False, "error": "unknown_command"}
        assert progress
        assert all(m["label"] == "READY" for m in progress)
