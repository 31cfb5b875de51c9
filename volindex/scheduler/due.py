"""Due-scan selection and the periodic sweep that enqueues due targets."""

import asyncio
import inspect
import logging
from collections.abc import Callable, Iterable

from volindex.clock import now_ms, parse_iso_ms
from volindex.database.models import ManualRoot, Volume
from volindex.database.volumes import DEFAULT_VOLUME_INTERVAL_MS
from volindex.platform.mounts import DEFAULT_MOUNT_PREFIXES, MountDescriptor

logger = logging.getLogger(__name__)


def is_periodic(interval_ms: int | None) -> bool:
    """0 means on-mount only, negative means manual only."""
    return interval_ms is not None and interval_ms > 0


def is_due(interval_ms: int | None, last_scan_at: str | None, now: int) -> bool:
    if not is_periodic(interval_ms):
        return False
    return now - parse_iso_ms(last_scan_at) >= interval_ms


def get_due_volumes(
    volumes: Iterable[Volume],
    mounted_volume_uuids: Iterable[str],
    now: int | None = None,
    default_interval_ms: int = DEFAULT_VOLUME_INTERVAL_MS,
) -> list[Volume]:
    """Active, currently mounted volumes whose interval has elapsed, oldest scan first."""
    now = now_ms() if now is None else now
    mounted = set(mounted_volume_uuids)

    due = [
        v
        for v in volumes
        if v.is_active
        and v.volume_uuid in mounted
        and is_due(
            default_interval_ms if v.scan_interval_ms is None else v.scan_interval_ms,
            v.last_scan_at,
            now,
        )
    ]
    return sorted(due, key=lambda v: parse_iso_ms(v.last_scan_at))


def get_due_manual_roots(
    roots: Iterable[ManualRoot],
    mounted_mount_points: Iterable[str],
    now: int | None = None,
    removable_prefixes: tuple[str, ...] = DEFAULT_MOUNT_PREFIXES,
) -> list[ManualRoot]:
    """Active manual roots that are reachable and due, oldest scan first.

    A root below a removable mount location is only reachable while some
    mounted mount point contains it. Roots elsewhere are always eligible.
    Roots without an interval are never scheduled.
    """
    now = now_ms() if now is None else now
    mount_points = list(mounted_mount_points)

    due = [
        r
        for r in roots
        if r.is_active
        and is_root_reachable(r.path, mount_points, removable_prefixes)
        and is_due(r.scan_interval_ms, r.last_scan_at, now)
    ]
    return sorted(due, key=lambda r: parse_iso_ms(r.last_scan_at))


def is_root_reachable(
    path: str,
    mounted_mount_points: list[str],
    removable_prefixes: tuple[str, ...] = DEFAULT_MOUNT_PREFIXES,
) -> bool:
    if not any(is_within(path, prefix) for prefix in removable_prefixes):
        return True
    return any(is_within(path, mp) for mp in mounted_mount_points)


def is_within(path: str, parent: str) -> bool:
    parent = parent.rstrip("/")
    return path == parent or path.startswith(parent + "/")


class DueScheduler:
    """Runs a due sweep every ``interval_seconds``.

    ``load_targets`` returns ``(volumes, manual_roots)``; ``current_mounts``
    returns the latest mount snapshot. Due volumes are passed with their
    mount descriptor to ``on_due_volume``; due roots to ``on_due_root``.
    """

    def __init__(
        self,
        load_targets: Callable,
        current_mounts: Callable[[], list[MountDescriptor]],
        on_due_volume: Callable[[MountDescriptor, Volume], object],
        on_due_root: Callable[[ManualRoot], object],
        interval_seconds: float = 60.0,
        default_interval_ms: int = DEFAULT_VOLUME_INTERVAL_MS,
        removable_prefixes: tuple[str, ...] = DEFAULT_MOUNT_PREFIXES,
    ):
        self.load_targets = load_targets
        self.current_mounts = current_mounts
        self.on_due_volume = on_due_volume
        self.on_due_root = on_due_root
        self.interval_seconds = interval_seconds
        self.default_interval_ms = default_interval_ms
        self.removable_prefixes = removable_prefixes
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._run_loop(), name="due-scheduler")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def sweep(self) -> tuple[int, int]:
        """Enqueue every due target once. Returns (volumes, roots) handed off."""
        targets = self.load_targets()
        if inspect.isawaitable(targets):
            targets = await targets
        volumes, roots = targets

        mounts = self.current_mounts()
        by_uuid = {m.volume_uuid: m for m in mounts if m.is_volume and m.volume_uuid}

        due_volumes = get_due_volumes(
            volumes,
            by_uuid.keys(),
            default_interval_ms=self.default_interval_ms,
        )
        due_roots = get_due_manual_roots(
            roots,
            [m.mount_point for m in mounts],
            removable_prefixes=self.removable_prefixes,
        )

        for volume in due_volumes:
            self.on_due_volume(by_uuid[volume.volume_uuid], volume)
        for root in due_roots:
            self.on_due_root(root)

        if due_volumes or due_roots:
            logger.info(
                "Due sweep: %d volume(s), %d root(s) due",
                len(due_volumes),
                len(due_roots),
            )
        return len(due_volumes), len(due_roots)

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Due sweep failed")
