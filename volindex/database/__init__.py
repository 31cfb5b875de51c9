"""Database module for volindex."""

from .connection import Database, open_readonly
from .models import (
    FileEntry,
    FileStatus,
    FileType,
    ManualRoot,
    MediaMetadata,
    ScanRun,
    ScanStatus,
    TargetStats,
    TargetType,
    UpsertCounts,
    Volume,
    manual_target_id,
)
from .schema import SCHEMA_VERSION, create_schema

__all__ = [
    "Database",
    "open_readonly",
    "create_schema",
    "SCHEMA_VERSION",
    "FileEntry",
    "FileStatus",
    "FileType",
    "ManualRoot",
    "MediaMetadata",
    "ScanRun",
    "ScanStatus",
    "TargetStats",
    "TargetType",
    "UpsertCounts",
    "Volume",
    "manual_target_id",
]
