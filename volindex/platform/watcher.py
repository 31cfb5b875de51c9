"""Polling mount watcher emitting ready/mounted/unmounted lifecycle events."""

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable

from volindex.platform.mounts import DeviceLookupError, MountDescriptor, VolumeEnumerator

logger = logging.getLogger(__name__)

READY = "ready"
MOUNTED = "mounted"
UNMOUNTED = "unmounted"


class MountWatcher:
    """Diffs successive enumerator snapshots by key.

    The first snapshot is delivered once as ``ready`` with the full list;
    afterwards each tick emits ``mounted`` for new keys and ``unmounted``
    for keys that disappeared, so events for one key always alternate.
    """

    def __init__(self, enumerator: VolumeEnumerator, interval_seconds: float = 2.0):
        self.enumerator = enumerator
        self.interval_seconds = interval_seconds
        self._handlers: dict[str, list[Callable]] = defaultdict(list)
        self._last: dict[str, MountDescriptor] | None = None
        self._task: asyncio.Task | None = None

    def on(self, event: str, handler: Callable) -> None:
        if event not in (READY, MOUNTED, UNMOUNTED):
            raise ValueError(f"Unknown mount event: {event}")
        self._handlers[event].append(handler)

    @property
    def current(self) -> list[MountDescriptor]:
        return list((self._last or {}).values())

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        await self.tick()
        self._task = asyncio.get_running_loop().create_task(self._run_loop(), name="mount-watcher")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def tick(self) -> None:
        """Take one snapshot and emit lifecycle events for the difference."""
        try:
            mounts = await asyncio.to_thread(self.enumerator.snapshot)
        except DeviceLookupError as e:
            logger.warning("Mount enumeration failed, keeping previous snapshot: %s", e)
            return

        current = {m.key: m for m in mounts}

        if self._last is None:
            self._last = current
            await self._emit(READY, list(current.values()))
            return

        previous = self._last
        self._last = current

        for key, mount in current.items():
            if key not in previous:
                logger.info("Mounted %s at %s", mount.volume_name, mount.mount_point)
                await self._emit(MOUNTED, mount)

        for key, mount in previous.items():
            if key not in current:
                logger.info("Unmounted %s from %s", mount.volume_name, mount.mount_point)
                await self._emit(UNMOUNTED, mount)

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.tick()

    async def _emit(self, event: str, payload) -> None:
        for handler in list(self._handlers[event]):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Mount %s handler failed", event)
