"""Media probe pass."""

import asyncio
import logging
import os
import sqlite3

from volindex.database.derived import files_needing_metadata, store_media_metadata
from volindex.scanner.target import ScanTarget
from volindex.scanner.throttle import maybe_yield
from volindex.scheduler.cancel import CancelToken
from volindex.tools.ffprobe import FfprobeRunner, ProbeNotFoundError

logger = logging.getLogger(__name__)


class MetadataPass:
    """Probes present audio/video entries that have no metadata row yet.

    A failed probe stores an all-null row so the file is not retried.
    """

    name = "metadata"
    stage = "metadata"

    def __init__(
        self,
        conn: sqlite3.Connection,
        runner: FfprobeRunner | None = None,
        timeout_seconds: float = 30.0,
        yield_every: int = 20,
    ):
        self.conn = conn
        self.runner = runner
        self.timeout_seconds = timeout_seconds
        self.yield_every = yield_every

    async def run(self, target: ScanTarget, cancel_token: CancelToken) -> int:
        try:
            runner = self.runner or FfprobeRunner(self.timeout_seconds)
        except ProbeNotFoundError as e:
            logger.warning("Skipping metadata pass: %s", e)
            return 0

        rows = files_needing_metadata(self.conn, target.target_id, target.root_path)
        processed = 0
        for row in rows:
            if cancel_token.cancelled:
                break
            path = os.path.join(target.root_path, row["relative_path"])
            metadata = await asyncio.to_thread(runner.probe, path)
            store_media_metadata(self.conn, row["id"], metadata)
            processed += 1
            await maybe_yield(processed, self.yield_every)

        if processed:
            logger.info("Probed %d media files on %s", processed, target.name)
        return processed
