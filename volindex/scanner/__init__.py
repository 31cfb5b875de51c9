"""Tree walking, batching and the scan pipeline."""

from volindex.scanner.filesystem import (
    BreadthFirstWalker,
    WalkEntry,
    classify_file_type,
    parse_filename,
)
from volindex.scanner.pipeline import ScanPipeline, TargetVanishedError
from volindex.scanner.progress import ProgressReporter, ScanStats, progress_message
from volindex.scanner.sinks import LocalSink, RemoteSink
from volindex.scanner.target import ScanTarget

__all__ = [
    "BreadthFirstWalker",
    "LocalSink",
    "ProgressReporter",
    "RemoteSink",
    "ScanPipeline",
    "ScanStats",
    "ScanTarget",
    "TargetVanishedError",
    "WalkEntry",
    "classify_file_type",
    "parse_filename",
    "progress_message",
]
