"""Destinations for scan output: the local store or a remote aggregator.

Both sinks expose the same coroutine interface so the pipeline has a
single code path. The remote sink keeps its scan run in memory, since
the local store is not written in remote mode.
"""

import asyncio
import logging
import sqlite3

from volindex.clock import now_iso, now_ms, parse_iso_ms
from volindex.database.files import mark_missing, purge_missing, upsert_entries
from volindex.database.models import FileEntry, ScanRun, ScanStatus, UpsertCounts
from volindex.database.scan_runs import finish_scan_run, start_scan_run, update_scan_run_stage
from volindex.database.volumes import (
    DEFAULT_VOLUME_INTERVAL_MS,
    mark_manual_root_scanned,
    mark_volume_scanned,
    set_signature_hint,
)
from volindex.remote import RemoteClient
from volindex.scanner.target import ScanTarget

logger = logging.getLogger(__name__)


class LocalSink:
    supports_passes = True

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    async def start_run(self, target: ScanTarget, started_at: str) -> ScanRun:
        return start_scan_run(
            self.conn,
            target.target_type.value,
            target.target_id,
            stage="walk",
            started_at=started_at,
        )

    async def set_stage(self, run: ScanRun, stage: str) -> None:
        update_scan_run_stage(self.conn, run, stage)

    async def write_batch(self, entries: list[FileEntry]) -> UpsertCounts:
        return upsert_entries(self.conn, entries)

    async def mark_missing(self, target: ScanTarget, seen_since: str, skip_dirs: list[str] | None = None) -> int:
        return mark_missing(self.conn, target.target_id, None, seen_since, skip_dirs)

    async def complete_target(self, target: ScanTarget, run: ScanRun, signature_hint: str) -> None:
        if target.is_volume:
            mark_volume_scanned(self.conn, target.target_id, run.started_at)
            set_signature_hint(self.conn, target.target_id, signature_hint)
            if target.auto_purge:
                purged = purge_missing(self.conn, target.target_id)
                if purged:
                    logger.info("Auto-purged %d missing entries from %s", purged, target.name)
        elif target.manual_root is not None:
            mark_manual_root_scanned(self.conn, target.manual_root.id, run.started_at)

    async def finish_run(self, run: ScanRun, status: ScanStatus, error: str | None = None) -> ScanRun:
        return finish_scan_run(self.conn, run, status, error)


class RemoteSink:
    supports_passes = False

    def __init__(
        self,
        client: RemoteClient,
        device_id: str,
        default_interval_ms: int = DEFAULT_VOLUME_INTERVAL_MS,
    ):
        self.client = client
        self.device_id = device_id
        self.default_interval_ms = default_interval_ms

    async def start_run(self, target: ScanTarget, started_at: str) -> ScanRun:
        await self._upsert_target(target, {})
        return ScanRun(
            id=None,
            target_type=target.target_type.value,
            target_id=target.target_id,
            started_at=started_at,
            stage="walk",
        )

    async def set_stage(self, run: ScanRun, stage: str) -> None:
        run.stage = stage

    async def write_batch(self, entries: list[FileEntry]) -> UpsertCounts:
        await asyncio.to_thread(
            self.client.upsert_state,
            self.device_id,
            files=[entry.to_row() for entry in entries],
        )
        # The aggregator does not report per-row outcomes.
        return UpsertCounts()

    async def mark_missing(self, target: ScanTarget, seen_since: str, skip_dirs: list[str] | None = None) -> int:
        logger.debug("Missing detection for %s is left to the aggregator", target.target_id)
        return 0

    async def complete_target(self, target: ScanTarget, run: ScanRun, signature_hint: str) -> None:
        extra = {
            "last_scan_at": run.started_at,
            "dir_count": run.total_dirs,
            "file_count": run.total_files,
            "total_bytes": run.total_bytes,
        }
        if target.is_volume:
            extra["signature_hint"] = signature_hint
        await self._upsert_target(target, extra)

    async def finish_run(self, run: ScanRun, status: ScanStatus, error: str | None = None) -> ScanRun:
        run.status = status
        run.finished_at = now_iso()
        run.duration_ms = max(0, now_ms() - parse_iso_ms(run.started_at))
        run.error = error
        return run

    async def _upsert_target(self, target: ScanTarget, extra: dict) -> None:
        volumes: list[dict] = []
        roots: list[dict] = []
        if target.volume is not None:
            volume = target.volume
            volumes.append(
                {
                    "volume_uuid": volume.volume_uuid,
                    "volume_name": volume.volume_name,
                    "mount_point_last": target.root_path,
                    "scan_interval_ms": (
                        self.default_interval_ms
                        if volume.scan_interval_ms is None
                        else volume.scan_interval_ms
                    ),
                    "is_active": 1 if volume.is_active else 0,
                    "auto_purge": 1 if volume.auto_purge else 0,
                    "device_id": self.device_id,
                    **extra,
                }
            )
        elif target.manual_root is not None:
            root = target.manual_root
            roots.append(
                {
                    "id": str(root.id),
                    "path": root.path,
                    "label": root.label or root.path,
                    "scan_interval_ms": root.scan_interval_ms,
                    "is_active": 1 if root.is_active else 0,
                    "device_id": self.device_id,
                    **extra,
                }
            )
        await asyncio.to_thread(
            self.client.upsert_state,
            self.device_id,
            volumes=volumes,
            manual_roots=roots,
        )
