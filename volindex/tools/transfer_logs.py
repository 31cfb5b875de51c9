"""Discovery and parsing of copy-tool "Transfer Logs" text reports.

The reports are loosely structured ``Key: value`` lines. Parsing is best
effort: unknown lines are ignored, and any line mentioning an error,
failure or warning marks the log as ``warn`` and is kept as an excerpt.
"""

import hashlib
import logging
import os
from collections import deque

from volindex.scheduler.cancel import CancelToken

logger = logging.getLogger(__name__)

TRANSFER_LOGS_DIRNAME = "Transfer Logs"
MAX_EXCERPT_LINES = 8
MAX_ERROR_LINE_LENGTH = 500

_PROBLEM_WORDS = ("error", "failed", "warning")


def find_transfer_log_dirs(root: str, cancel_token: CancelToken | None = None) -> list[str]:
    """Breadth-first search for ``Transfer Logs`` directories below ``root``."""
    found: list[str] = []
    pending = deque([root])

    while pending:
        if cancel_token is not None and cancel_token.cancelled:
            break
        directory = pending.popleft()
        try:
            with os.scandir(directory) as it:
                subdirs = sorted(
                    (e for e in it if e.is_dir(follow_symlinks=False)),
                    key=lambda e: e.name,
                )
        except OSError as e:
            logger.debug("Cannot list %s: %s", directory, e)
            continue

        for entry in subdirs:
            if entry.name == TRANSFER_LOGS_DIRNAME:
                found.append(entry.path)
            else:
                pending.append(entry.path)

    return found


def list_txt_logs(directory: str) -> list[str]:
    try:
        with os.scandir(directory) as it:
            return sorted(
                e.path
                for e in it
                if e.is_file(follow_symlinks=False) and e.name.lower().endswith(".txt")
            )
    except OSError as e:
        logger.debug("Cannot list %s: %s", directory, e)
        return []


def _normalize_source_name(value: str) -> str | None:
    value = value.strip()
    if not value:
        return None
    return value[1:] if value.startswith("/") else value


def _volume_from_destination(value: str) -> str | None:
    value = value.strip()
    if not value:
        return None
    parts = [p for p in value.split("/") if p]
    return parts[0] if parts else value


def _value_after(line: str, prefix: str) -> str:
    return line[len(prefix) :].strip()


def parse_transfer_log_text(text: str, log_path: str) -> dict:
    log = {
        "log_path": log_path,
        "source_name": None,
        "dest_volume": None,
        "started_at": None,
        "finished_at": None,
        "total_files": None,
        "hash_type": None,
        "verification_mode": None,
        "status": "success",
        "error_count": 0,
        "error_excerpt": None,
    }
    problems: list[str] = []

    for raw_line in text.splitlines():
        line = raw_line.strip()

        if line.startswith("Source Name:"):
            log["source_name"] = _normalize_source_name(_value_after(line, "Source Name:"))
        elif line.startswith("Source:") and not log["source_name"]:
            log["source_name"] = _normalize_source_name(_value_after(line, "Source:"))
        elif line.startswith("Destination:"):
            log["dest_volume"] = _volume_from_destination(_value_after(line, "Destination:"))
        elif line.startswith("Started:"):
            log["started_at"] = _value_after(line, "Started:")
        elif line.startswith("Finished:"):
            log["finished_at"] = _value_after(line, "Finished:")
        elif line.startswith("Total Files Transferred:"):
            try:
                log["total_files"] = int(_value_after(line, "Total Files Transferred:"))
            except ValueError:
                log["total_files"] = None
        elif line.startswith("Hash type:"):
            log["hash_type"] = _value_after(line, "Hash type:")
        elif line.startswith("Verification Mode:"):
            log["verification_mode"] = _value_after(line, "Verification Mode:")

        lowered = line.lower()
        if 0 < len(line) < MAX_ERROR_LINE_LENGTH and any(w in lowered for w in _PROBLEM_WORDS):
            problems.append(line)

    if problems:
        log["status"] = "warn"
        log["error_count"] = len(problems)
        log["error_excerpt"] = "\n".join(problems[:MAX_EXCERPT_LINES])

    identity = "|".join(
        [log_path, log["started_at"] or "", log["source_name"] or "", log["dest_volume"] or ""]
    )
    log["id"] = hashlib.sha1(identity.encode()).hexdigest()
    return log


def parse_transfer_log(log_path: str) -> dict:
    """Parse one log file, adding its mtime and size. Raises OSError if unreadable."""
    with open(log_path, encoding="utf-8", errors="replace") as f:
        text = f.read()
    stat_result = os.stat(log_path)
    log = parse_transfer_log_text(text, log_path)
    log["log_mtime"] = int(stat_result.st_mtime)
    log["log_size"] = stat_result.st_size
    return log
