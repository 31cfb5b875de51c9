"""Wrappers around external probes and log formats."""

from volindex.tools.ffmpeg import ThumbnailExtractor, thumb_target
from volindex.tools.ffprobe import FfprobeRunner, ProbeNotFoundError, parse_probe_output
from volindex.tools.transfer_logs import (
    find_transfer_log_dirs,
    list_txt_logs,
    parse_transfer_log,
)

__all__ = [
    "FfprobeRunner",
    "ProbeNotFoundError",
    "ThumbnailExtractor",
    "find_transfer_log_dirs",
    "list_txt_logs",
    "parse_probe_output",
    "parse_transfer_log",
    "thumb_target",
]
