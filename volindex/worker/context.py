"""Process-wide worker state: queues, watcher, scheduler and store."""

import asyncio
import logging
import sqlite3
from collections.abc import Callable

from volindex.config import Config
from volindex.database.connection import Database
from volindex.database.models import ManualRoot, Volume
from volindex.database.scan_runs import fail_stale_runs
from volindex.database.volumes import list_manual_roots, list_volumes, upsert_volume
from volindex.platform.identity import get_machine_name
from volindex.platform.mounts import MountDescriptor, VolumeEnumerator
from volindex.platform.watcher import MOUNTED, READY, UNMOUNTED, MountWatcher
from volindex.remote import RemoteClient, RemoteError
from volindex.scanner.passes import MetadataPass, ThumbnailPass, TransferLogPass
from volindex.scanner.pipeline import ScanPipeline
from volindex.scanner.progress import progress_message
from volindex.scanner.sinks import LocalSink, RemoteSink
from volindex.scheduler.due import DueScheduler, is_within
from volindex.scheduler.queue import ScanQueue
from volindex.worker.jobs import create_manual_root_job, create_volume_job

logger = logging.getLogger(__name__)


class WorkerContext:
    """Owns everything the worker needs for its lifetime.

    Created once per process and handed to every component explicitly.
    """

    def __init__(
        self,
        config: Config,
        enumerator: VolumeEnumerator | None = None,
        remote: RemoteClient | None = None,
    ):
        self.config = config
        self.machine_id = config.resolved_machine_id()
        self.db = Database(config.database_path, machine_id=self.machine_id)

        sched = config.scheduler
        self.mount_queue = ScanQueue(sched.mount_concurrency, name="mount")
        self.scheduled_queue = ScanQueue(sched.scheduled_concurrency, name="scheduled")

        self.mounts: dict[str, MountDescriptor] = {}
        self.enumerator = enumerator or VolumeEnumerator(config.mount_prefixes)
        self.watcher = MountWatcher(self.enumerator, sched.mount_poll_seconds)
        self.watcher.on(READY, self.on_ready)
        self.watcher.on(MOUNTED, self.on_mounted)
        self.watcher.on(UNMOUNTED, self.on_unmounted)

        self.due_scheduler = DueScheduler(
            load_targets=self.load_targets,
            current_mounts=self.current_mounts,
            on_due_volume=self.enqueue_due_volume,
            on_due_root=self.enqueue_due_root,
            interval_seconds=sched.due_sweep_seconds,
            default_interval_ms=sched.default_volume_interval_ms,
            removable_prefixes=config.mount_prefixes,
        )

        if remote is None and config.remote.enabled:
            remote = RemoteClient(config.remote.url, config.remote.token, config.remote.timeout_seconds)
        self.remote = remote

        self._listeners: list[Callable[[dict], None]] = []

    @property
    def conn(self) -> sqlite3.Connection:
        return self.db.conn

    async def start(self) -> None:
        stale = fail_stale_runs(self.conn)
        if stale:
            logger.warning("Marked %d interrupted scan run(s) as error", stale)
        if self.remote is not None:
            try:
                await asyncio.to_thread(self.remote.register_device, self.machine_id, get_machine_name())
            except RemoteError as e:
                logger.warning("Device registration failed: %s", e)
        await self.watcher.start()
        await self.due_scheduler.start()
        logger.info("Worker started (machine %s)", self.machine_id)

    async def stop(self) -> None:
        await self.due_scheduler.stop()
        await self.watcher.stop()
        self.mount_queue.cancel_all()
        self.scheduled_queue.cancel_all()
        await self.mount_queue.join()
        await self.scheduled_queue.join()
        self.db.close()
        logger.info("Worker stopped")

    # Progress

    def add_listener(self, listener: Callable[[dict], None]) -> None:
        self._listeners.append(listener)

    def emit_progress(self, label: str, payload: dict) -> None:
        message = progress_message(label, payload)
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:
                logger.exception("Progress listener failed")

    # Mount lifecycle

    def current_mounts(self) -> list[MountDescriptor]:
        return list(self.mounts.values())

    def mounted_volume(self, volume_uuid: str) -> MountDescriptor | None:
        for mount in self.mounts.values():
            if mount.is_volume and mount.volume_uuid == volume_uuid:
                return mount
        return None

    async def on_ready(self, mounts: list[MountDescriptor]) -> None:
        queued = sum(1 for mount in mounts if self._record_mount(mount, "READY"))
        if queued:
            logger.info("Queued %d scan(s) for volumes mounted at startup", queued)

    async def on_mounted(self, mount: MountDescriptor) -> None:
        self._record_mount(mount, "MOUNT")

    async def on_unmounted(self, mount: MountDescriptor) -> None:
        self.mounts.pop(mount.key, None)
        self.cancel_key(mount.key)

        # Manual roots living on the departed mount.
        for root in list_manual_roots(self.conn):
            if is_within(root.path, mount.mount_point):
                self.cancel_key(root.target_id)

    def _record_mount(self, mount: MountDescriptor, label: str) -> bool:
        """Cache a mount, upsert its volume and queue an immediate scan if active."""
        self.mounts[mount.key] = mount
        if not mount.is_volume:
            logger.debug("Mount %s has no volume identifier, not indexing", mount.mount_point)
            return False

        volume = upsert_volume(
            self.conn,
            mount,
            self.config.scheduler.default_volume_interval_ms,
            device_id=self.machine_id,
        )
        if not volume.is_active:
            logger.info("Volume %s is inactive, not scanning", volume.volume_name)
            return False
        return self.mount_queue.enqueue(create_volume_job(self, mount, label))

    # Scheduling and control

    def load_targets(self) -> tuple[list[Volume], list[ManualRoot]]:
        return list_volumes(self.conn), list_manual_roots(self.conn)

    def enqueue_due_volume(self, mount: MountDescriptor, volume: Volume) -> bool:
        return self.scheduled_queue.enqueue(create_volume_job(self, mount, "SCHEDULED"))

    def enqueue_due_root(self, root: ManualRoot) -> bool:
        return self.scheduled_queue.enqueue(create_manual_root_job(self, root, "SCHEDULED"))

    def cancel_key(self, key: str) -> bool:
        cancelled_mount = self.mount_queue.cancel(key)
        cancelled_scheduled = self.scheduled_queue.cancel(key)
        return cancelled_mount or cancelled_scheduled

    def cancel_current(self) -> str | None:
        return self.scheduled_queue.cancel_current() or self.mount_queue.cancel_current()

    def cancel_all(self) -> None:
        self.mount_queue.cancel_all()
        self.scheduled_queue.cancel_all()

    def status(self) -> dict:
        mount_counts = self.mount_queue.counts()
        scheduled_counts = self.scheduled_queue.counts()
        return {
            "runningMount": mount_counts.running,
            "queuedMount": mount_counts.queued,
            "runningScheduled": scheduled_counts.running,
            "queuedScheduled": scheduled_counts.queued,
            "runningTotal": mount_counts.running + scheduled_counts.running,
            "queuedTotal": mount_counts.queued + scheduled_counts.queued,
        }

    def build_pipeline(self, label: str, generate_thumbs: bool | None = None) -> ScanPipeline:
        scanner = self.config.scanner
        if generate_thumbs is None:
            generate_thumbs = scanner.generate_thumbs

        if self.remote is not None:
            sink = RemoteSink(self.remote, self.machine_id, self.config.scheduler.default_volume_interval_ms)
            passes = []
        else:
            sink = LocalSink(self.conn)
            passes = [MetadataPass(self.conn)]
            if generate_thumbs:
                passes.append(ThumbnailPass(self.conn, self.config.thumbs_dir))
            passes.append(TransferLogPass(self.conn))

        return ScanPipeline(
            sink,
            config=scanner,
            passes=passes,
            progress=lambda event: self.emit_progress(label, event),
        )
