"""Transfer log ingestion pass."""

import asyncio
import logging
import os
import sqlite3

from volindex.database.derived import transfer_log_mtime, upsert_transfer_log
from volindex.scanner.target import ScanTarget
from volindex.scanner.throttle import maybe_yield
from volindex.scheduler.cancel import CancelToken
from volindex.tools.transfer_logs import find_transfer_log_dirs, list_txt_logs, parse_transfer_log

logger = logging.getLogger(__name__)


class TransferLogPass:
    """Parses copy reports found in ``Transfer Logs`` folders.

    Logs whose mtime matches the stored one are skipped.
    """

    name = "logs"
    stage = "logs"

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    async def run(self, target: ScanTarget, cancel_token: CancelToken) -> int:
        log_dirs = await asyncio.to_thread(find_transfer_log_dirs, target.root_path, cancel_token)
        parsed = 0
        seen = 0

        for log_dir in log_dirs:
            for log_path in list_txt_logs(log_dir):
                if cancel_token.cancelled:
                    return parsed
                seen += 1
                await maybe_yield(seen, 50)

                try:
                    mtime = int(os.stat(log_path).st_mtime)
                except OSError as e:
                    logger.warning("Cannot stat transfer log %s: %s", log_path, e)
                    continue
                if transfer_log_mtime(self.conn, log_path) == mtime:
                    continue

                try:
                    log = await asyncio.to_thread(parse_transfer_log, log_path)
                except OSError as e:
                    logger.warning("Cannot read transfer log %s: %s", log_path, e)
                    continue

                upsert_transfer_log(self.conn, target.target_id, log)
                parsed += 1

        if parsed:
            logger.info("Ingested %d transfer logs from %s", parsed, target.name)
        return parsed
