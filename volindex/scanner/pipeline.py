"""The scan pipeline: walk a target, flush batches to a sink, retire missing entries."""

import json
import logging
import os
import sqlite3
from collections import Counter

from volindex.clock import now_iso
from volindex.config import ScannerConfig
from volindex.database.models import FileEntry, ScanRun, ScanStatus
from volindex.remote import RemoteError
from volindex.scanner import progress as stages
from volindex.scanner.filesystem import BreadthFirstWalker, classify_file_type, parse_filename
from volindex.scanner.progress import ProgressCallback, ScanStats
from volindex.scanner.target import ScanTarget
from volindex.scheduler.cancel import CancelToken

logger = logging.getLogger(__name__)

SIGNATURE_TOP_FOLDERS = 10


class TargetVanishedError(Exception):
    """Raised when a scan root is missing or not a directory."""


def build_signature_hint(top_folders: Counter, depth_limit: int) -> str:
    ranked = sorted(top_folders.items(), key=lambda item: (-item[1], item[0]))
    return json.dumps(
        {
            "depthLimit": depth_limit,
            "topFolders": [name for name, _ in ranked[:SIGNATURE_TOP_FOLDERS]],
        }
    )


class ScanPipeline:
    """Runs one scan of one target against a sink.

    Run lifecycle: a scan run is opened as ``running``, the tree is walked
    breadth first and flushed in batches, entries not seen in a complete
    walk become ``missing``, then the extension passes run. The run always
    ends ``success``, ``cancelled`` or ``error``; store failures end the
    run, they are not raised to the caller.
    """

    def __init__(
        self,
        sink,
        config: ScannerConfig | None = None,
        passes: list | None = None,
        progress: ProgressCallback | None = None,
    ):
        self.sink = sink
        self.config = config or ScannerConfig()
        self.passes = passes or []
        self.progress = progress

    async def run(self, target: ScanTarget, cancel_token: CancelToken | None = None) -> ScanRun:
        token = cancel_token or CancelToken()
        scan_ts = now_iso()
        stats = ScanStats()

        run = await self.sink.start_run(target, scan_ts)
        logger.info("Scan started: %s (%s)", target.name, target.root_path)
        self._emit(target, stages.SCAN_START, runId=run.id)

        try:
            self._check_root(target)
            signature_hint, unreadable_dirs = await self._walk(target, run, token, stats, scan_ts)

            if token.cancelled:
                return await self._finish(target, run, stats, ScanStatus.CANCELLED)

            self._check_root(target)
            await self.sink.set_stage(run, "missing")
            if unreadable_dirs:
                logger.warning(
                    "Keeping entries under %d unreadable director(ies) of %s",
                    len(unreadable_dirs),
                    target.name,
                )
            run.removed_entries = await self.sink.mark_missing(target, scan_ts, unreadable_dirs)
            self._emit(target, stages.MISSING_END, removed=run.removed_entries)

            await self.sink.complete_target(target, run, signature_hint)

            if self.sink.supports_passes:
                await self._run_passes(target, run, token)

            status = ScanStatus.CANCELLED if token.cancelled else ScanStatus.SUCCESS
            return await self._finish(target, run, stats, status)

        except TargetVanishedError as e:
            logger.warning("Scan of %s stopped: %s", target.name, e)
            return await self._finish(target, run, stats, ScanStatus.ERROR, str(e))
        except (sqlite3.Error, RemoteError) as e:
            logger.error("Store failure while scanning %s: %s", target.name, e)
            return await self._finish(target, run, stats, ScanStatus.ERROR, str(e))

    def _check_root(self, target: ScanTarget) -> None:
        if not os.path.isdir(target.root_path):
            raise TargetVanishedError(f"{target.root_path} no longer exists")

    async def _walk(
        self,
        target: ScanTarget,
        run: ScanRun,
        token: CancelToken,
        stats: ScanStats,
        scan_ts: str,
    ) -> tuple[str, list[str]]:
        cfg = self.config
        walker = BreadthFirstWalker(
            cancel_token=token,
            yield_every=cfg.yield_every,
            yield_ms=cfg.yield_ms,
            max_path_length=cfg.max_path_length,
        )
        top_folders: Counter = Counter()
        batch: list[FileEntry] = []

        async for item in walker.walk(target.root_path):
            extension = None if item.is_dir else parse_filename(item.name).extension
            batch.append(
                FileEntry(
                    target_id=target.target_id,
                    root_path=target.root_path,
                    relative_path=item.relative_path,
                    name=item.name,
                    ext=extension,
                    is_dir=item.is_dir,
                    file_type=classify_file_type(extension, item.is_dir).value,
                    size_bytes=item.size,
                    mtime=item.mtime,
                    ctime=item.ctime,
                    last_seen_at=scan_ts,
                )
            )

            if item.is_dir:
                stats.directories_scanned += 1
                if item.depth <= cfg.signature_depth:
                    top_folders[item.name] += 1
            else:
                stats.files_scanned += 1
                stats.total_bytes += item.size or 0

            if stats.entries % cfg.progress_interval == 0:
                self._emit(
                    target,
                    stages.WALK_PROGRESS,
                    files=stats.files_scanned,
                    dirs=stats.directories_scanned,
                )

            if len(batch) >= cfg.batch_size:
                await self._flush(run, batch)
                batch = []

        await self._flush(run, batch)

        stats.errors = walker.errors
        self._apply_stats(run, stats)
        self._emit(
            target,
            stages.WALK_END,
            files=stats.files_scanned,
            dirs=stats.directories_scanned,
            bytes=stats.total_bytes,
            errors=stats.errors,
        )
        return build_signature_hint(top_folders, cfg.signature_depth), walker.unreadable_dirs

    async def _flush(self, run: ScanRun, batch: list[FileEntry]) -> None:
        if not batch:
            return
        counts = await self.sink.write_batch(batch)
        run.new_entries += counts.new_entries
        run.changed_entries += counts.changed_entries

    async def _run_passes(self, target: ScanTarget, run: ScanRun, token: CancelToken) -> None:
        for extension_pass in self.passes:
            if token.cancelled:
                return
            await self.sink.set_stage(run, extension_pass.stage)
            self._emit(target, stages.PASS_START, **{"pass": extension_pass.name})
            processed = await extension_pass.run(target, token)
            self._emit(target, stages.PASS_END, processed=processed, **{"pass": extension_pass.name})

    async def _finish(
        self,
        target: ScanTarget,
        run: ScanRun,
        stats: ScanStats,
        status: ScanStatus,
        error: str | None = None,
    ) -> ScanRun:
        self._apply_stats(run, stats)
        try:
            await self.sink.finish_run(run, status, error)
        except (sqlite3.Error, RemoteError) as e:
            logger.error("Could not record end of scan %s: %s", run.id, e)
            run.status = status
            run.error = error

        counts = {
            "status": status.value,
            "files": run.total_files,
            "dirs": run.total_dirs,
            "bytes": run.total_bytes,
            "new": run.new_entries,
            "changed": run.changed_entries,
            "removed": run.removed_entries,
            "errors": run.errors,
            "durationMs": run.duration_ms,
            "runId": run.id,
        }
        if status is ScanStatus.CANCELLED:
            logger.info("Scan cancelled: %s after %d entries", target.name, stats.entries)
            self._emit(target, stages.CANCELLED, **counts)
        elif status is ScanStatus.ERROR:
            self._emit(target, stages.ERROR, error=error, **counts)
        else:
            logger.info(
                "Scan done: %s, %d files, %d dirs, %d new, %d changed, %d missing",
                target.name,
                run.total_files,
                run.total_dirs,
                run.new_entries,
                run.changed_entries,
                run.removed_entries,
            )
            self._emit(target, stages.SCAN_END, **counts)
        return run

    @staticmethod
    def _apply_stats(run: ScanRun, stats: ScanStats) -> None:
        run.total_files = stats.files_scanned
        run.total_dirs = stats.directories_scanned
        run.total_bytes = stats.total_bytes
        run.errors = stats.errors

    def _emit(self, target: ScanTarget, stage: str, **fields) -> None:
        if self.progress is None:
            return
        try:
            self.progress({"stage": stage, **target.describe(), **fields})
        except Exception:
            logger.exception("Progress callback failed on %s", stage)
