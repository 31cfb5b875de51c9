"""Video thumbnail pass."""

import asyncio
import logging
import os
import sqlite3
from pathlib import Path

from volindex.database.derived import files_needing_thumbs, set_file_thumb
from volindex.scanner.filesystem import parse_filename
from volindex.scanner.target import ScanTarget
from volindex.scanner.throttle import maybe_yield
from volindex.scheduler.cancel import CancelToken
from volindex.tools.ffmpeg import ThumbnailExtractor, thumb_target
from volindex.tools.ffprobe import ProbeNotFoundError

logger = logging.getLogger(__name__)


class ThumbnailPass:
    name = "thumbs"
    stage = "thumbs"

    def __init__(
        self,
        conn: sqlite3.Connection,
        thumbs_dir: Path,
        extractor: ThumbnailExtractor | None = None,
        limit: int = 200,
    ):
        self.conn = conn
        self.thumbs_dir = thumbs_dir
        self.extractor = extractor
        self.limit = limit

    async def run(self, target: ScanTarget, cancel_token: CancelToken) -> int:
        try:
            extractor = self.extractor or ThumbnailExtractor()
        except ProbeNotFoundError as e:
            logger.warning("Skipping thumbnail pass: %s", e)
            return 0

        generated = 0
        rows = files_needing_thumbs(self.conn, target.target_id, target.root_path, self.limit)
        for i, row in enumerate(rows, start=1):
            if cancel_token.cancelled:
                break

            if not extractor.supports(parse_filename(row["name"]).extension):
                set_file_thumb(self.conn, row["id"], "")
                continue

            output = thumb_target(self.thumbs_dir, target.target_id, target.root_path, row["relative_path"])
            if output.exists():
                set_file_thumb(self.conn, row["id"], str(output))
                continue

            source = os.path.join(target.root_path, row["relative_path"])
            ok = await asyncio.to_thread(extractor.extract, source, output)
            set_file_thumb(self.conn, row["id"], str(output) if ok else "")
            if ok:
                generated += 1
            await maybe_yield(i, 10)

        if generated:
            logger.info("Generated %d thumbnails for %s", generated, target.name)
        return generated
