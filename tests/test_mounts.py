"""Tests for mount enumeration and the mount watcher."""

import asyncio
import random
import shutil

import pytest

from volindex.platform.mounts import (
    DeviceLookupError,
    MountDescriptor,
    VolumeEnumerator,
    is_system_mount,
    run_findmnt,
)
from volindex.platform.watcher import MOUNTED, READY, UNMOUNTED, MountWatcher

FINDMNT_NODES = [
    {"target": "/", "source": "/dev/sda1", "fstype": "ext4", "size": "1000", "uuid": "ROOT", "label": None},
    {"target": "/proc", "source": "proc", "fstype": "proc", "size": None, "uuid": None, "label": None},
    {"target": "/media/user/SHOOT", "source": "/dev/sdb1", "fstype": "exfat", "size": "2048", "uuid": "AAAA-1111", "label": "SHOOT"},
    {"target": "/media/user/bind", "source": "/dev/sdb1", "fstype": "exfat", "size": "2048", "uuid": "AAAA-1111", "label": "SHOOT"},
    {"target": "/mnt/share", "source": "nas:/share", "fstype": "nfs", "size": "", "uuid": "", "label": ""},
    {"target": "/mnt/ram", "source": "tmpfs", "fstype": "tmpfs", "size": "10", "uuid": None, "label": None},
]


def descriptor(key: str, mount_point: str | None = None) -> MountDescriptor:
    return MountDescriptor(
        key=key,
        kind="volume",
        volume_uuid=key,
        volume_name=key,
        mount_point=mount_point or f"/media/{key}",
    )


class FakeEnumerator:
    """Returns queued snapshots; an exception instance is raised instead."""

    def __init__(self, snapshots):
        self.snapshots = list(snapshots)

    def snapshot(self):
        item = self.snapshots.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class TestVolumeEnumerator:
    def test_filters_system_and_pseudo_mounts(self):
        enumerator = VolumeEnumerator(("/media", "/mnt"), lister=lambda: FINDMNT_NODES)

        mounts = enumerator.snapshot()

        assert [m.mount_point for m in mounts] == ["/media/user/SHOOT", "/mnt/share"]

    def test_uuid_identifies_volume(self):
        enumerator = VolumeEnumerator(("/media", "/mnt"), lister=lambda: FINDMNT_NODES)

        shoot = enumerator.snapshot()[0]

        assert shoot.key == "AAAA-1111"
        assert shoot.is_volume
        assert shoot.volume_name == "SHOOT"
        assert shoot.size_bytes == 2048
        assert shoot.fs_type == "exfat"

    def test_mount_without_uuid_is_keyed_by_path(self):
        enumerator = VolumeEnumerator(("/media", "/mnt"), lister=lambda: FINDMNT_NODES)

        share = enumerator.snapshot()[1]

        assert share.key == "mount:/mnt/share"
        assert not share.is_volume
        assert share.volume_uuid is None
        assert share.volume_name == "share"
        assert share.size_bytes is None

    def test_is_system_mount(self):
        assert is_system_mount("/", "ext4", ("/media",))
        assert is_system_mount("/media/x", "tmpfs", ("/media",))
        assert is_system_mount("/home/user", "ext4", ("/media",))
        assert not is_system_mount("/media/x", "exfat", ("/media/",))

    def test_findmnt_missing_raises(self, monkeypatch):
        monkeypatch.setattr(shutil, "which", lambda name: None)

        with pytest.raises(DeviceLookupError):
            run_findmnt()


class TestMountWatcher:
    def test_first_snapshot_is_ready_then_diffs(self):
        a, b = descriptor("A"), descriptor("B")
        enumerator = FakeEnumerator([[a], [a, b], [b]])
        watcher = MountWatcher(enumerator)
        events: list = []
        watcher.on(READY, lambda mounts: events.append((READY, [m.key for m in mounts])))
        watcher.on(MOUNTED, lambda m: events.append((MOUNTED, m.key)))
        watcher.on(UNMOUNTED, lambda m: events.append((UNMOUNTED, m.key)))

        async def scenario():
            for _ in range(3):
                await watcher.tick()

        asyncio.run(scenario())

        assert events == [(READY, ["A"]), (MOUNTED, "B"), (UNMOUNTED, "A")]
        assert [m.key for m in watcher.current] == ["B"]

    def test_lookup_failure_keeps_previous_snapshot(self):
        a = descriptor("A")
        enumerator = FakeEnumerator([[a], DeviceLookupError("boom"), [a]])
        watcher = MountWatcher(enumerator)
        events: list = []
        watcher.on(MOUNTED, lambda m: events.append((MOUNTED, m.key)))
        watcher.on(UNMOUNTED, lambda m: events.append((UNMOUNTED, m.key)))

        async def scenario():
            for _ in range(3):
                await watcher.tick()

        asyncio.run(scenario())

        assert events == []
        assert [m.key for m in watcher.current] == ["A"]

    def test_async_handlers_and_failing_handler(self):
        enumerator = FakeEnumerator([[], [descriptor("A")]])
        watcher = MountWatcher(enumerator)
        seen: list = []

        async def record(mount):
            seen.append(mount.key)

        def explode(mount):
            raise RuntimeError("handler bug")

        watcher.on(MOUNTED, explode)
        watcher.on(MOUNTED, record)

        async def scenario():
            await watcher.tick()
            await watcher.tick()

        asyncio.run(scenario())

        assert seen == ["A"]

    def test_unknown_event_rejected(self):
        with pytest.raises(ValueError):
            MountWatcher(FakeEnumerator([])).on("exploded", print)

    def test_events_alternate_per_key(self):
        rng = random.Random(42)
        pool = [descriptor(k) for k in "ABCD"]
        snapshots = [[m for m in pool if rng.random() < 0.5] for _ in range(40)]
        watcher = MountWatcher(FakeEnumerator(snapshots))
        history: dict[str, list[str]] = {}

        def ready(mounts):
            for m in mounts:
                history.setdefault(m.key, []).append(MOUNTED)

        watcher.on(READY, ready)
        watcher.on(MOUNTED, lambda m: history.setdefault(m.key, []).append(MOUNTED))
        watcher.on(UNMOUNTED, lambda m: history.setdefault(m.key, []).append(UNMOUNTED))

        async def scenario():
            for _ in snapshots:
                await watcher.tick()

        asyncio.run(scenario())

        for key, events in history.items():
            assert events[0] == MOUNTED, key
            for previous, current in zip(events, events[1:]):
                assert previous != current, key

    def test_start_stop(self):
        enumerator = FakeEnumerator([[descriptor("A")]])
        watcher = MountWatcher(enumerator, interval_seconds=3600)
        ready: list = []
        watcher.on(READY, ready.append)

        async def scenario():
            await watcher.start()
            running = watcher.running
            await watcher.stop()
            return running

        assert asyncio.run(scenario()) is True
        assert watcher.running is False
        assert len(ready) == 1
