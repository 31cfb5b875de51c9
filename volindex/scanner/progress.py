"""Progress events emitted by the scan pipeline, and a stderr reporter."""

import sys
from collections.abc import Callable
from dataclasses import dataclass
from typing import TextIO

from volindex.clock import now_iso

SCAN_START = "scan_start"
WALK_PROGRESS = "walk_progress"
WALK_END = "walk_end"
MISSING_END = "missing_end"
PASS_START = "pass_start"
PASS_END = "pass_end"
SCAN_END = "scan_end"
CANCELLED = "cancelled"
ERROR = "error"

ProgressCallback = Callable[[dict], None]


@dataclass
class ScanStats:
    """Statistics for an ongoing scan operation."""

    files_scanned: int = 0
    directories_scanned: int = 0
    total_bytes: int = 0
    errors: int = 0

    @property
    def entries(self) -> int:
        return self.files_scanned + self.directories_scanned


def progress_message(label: str, payload: dict) -> dict:
    """Wrap a pipeline event for the host's progress stream."""
    return {"cmd": "indexerProgress", "label": label, "payload": payload, "at": now_iso()}


class ProgressReporter:
    """Prints pipeline progress events for an interactive scan."""

    def __init__(self, stream: TextIO | None = None):
        self.stream = stream or sys.stderr

    def __call__(self, event: dict) -> None:
        stage = event.get("stage")
        if stage == SCAN_START:
            self._print(f"Scanning {event.get('name')} ({event.get('rootPath')})")
        elif stage == WALK_PROGRESS:
            self._print(f"[{event.get('files', 0):,} files, {event.get('dirs', 0):,} dirs] Scanning...")
        elif stage == PASS_START:
            self._print(f"Running {event.get('pass')} pass...")
        elif stage == SCAN_END:
            self.report_completion(event)
        elif stage == CANCELLED:
            self._print(
                f"\nScan cancelled. Indexed so far: {event.get('files', 0):,} files in "
                f"{event.get('dirs', 0):,} directories"
            )
        elif stage == ERROR:
            self._print(f"\nScan failed: {event.get('error')}")

    def report_completion(self, event: dict) -> None:
        duration = _format_duration((event.get("durationMs") or 0) / 1000)
        self._print(
            f"\nScan complete: {event.get('files', 0):,} files in "
            f"{event.get('dirs', 0):,} directories ({duration})"
        )
        self._print(f"Total size: {_format_bytes(event.get('bytes') or 0)}")
        self._print(
            f"New: {event.get('new', 0):,}  Changed: {event.get('changed', 0):,}  "
            f"Missing: {event.get('removed', 0):,}  Errors: {event.get('errors', 0):,}"
        )

    def _print(self, message: str) -> None:
        print(message, file=self.stream)


def _format_duration(seconds: float) -> str:
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)

    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def _format_bytes(size: int) -> str:
    size_f = float(size)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_f < 1024:
            return f"{size_f:.2f} {unit}"
        size_f /= 1024
    return f"{size_f:.2f} PB"
