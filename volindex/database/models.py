"""Data models for the database."""

from dataclasses import dataclass
from enum import Enum


class ScanStatus(Enum):
    """Status of a scan run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStatus.SUCCESS, ScanStatus.CANCELLED, ScanStatus.ERROR)


class FileStatus(Enum):
    PRESENT = "present"
    MISSING = "missing"


class TargetType(Enum):
    VOLUME = "volume"
    MANUAL_ROOT = "manualRoot"


class FileType(Enum):
    VIDEO = "video"
    AUDIO = "audio"
    IMAGE = "image"
    PROJECT = "project"
    OTHER = "other"
    DIR = "dir"


@dataclass
class Volume:
    """Represents a volume record."""

    volume_uuid: str
    volume_name: str | None = None
    mount_point_last: str | None = None
    size_bytes: int | None = None
    fs_type: str | None = None
    first_seen_at: str | None = None
    last_seen_at: str | None = None
    last_scan_at: str | None = None
    scan_interval_ms: int | None = None
    is_active: bool = True
    auto_purge: bool = False
    signature_hint: str | None = None


@dataclass
class ManualRoot:
    """Represents a user-designated folder."""

    id: int
    path: str
    label: str | None = None
    is_active: bool = True
    scan_interval_ms: int | None = None
    last_scan_at: str | None = None

    @property
    def target_id(self) -> str:
        return manual_target_id(self.id)

    @property
    def display_name(self) -> str:
        return self.label or self.path


@dataclass
class FileEntry:
    """One filesystem node observed by a scan."""

    target_id: str
    root_path: str
    relative_path: str
    name: str
    ext: str | None
    is_dir: bool
    file_type: str
    size_bytes: int | None = None
    mtime: int | None = None
    ctime: int | None = None
    last_seen_at: str | None = None
    status: str = FileStatus.PRESENT.value
    thumb_path: str | None = None

    def to_row(self) -> dict:
        return {
            "volume_uuid": self.target_id,
            "root_path": self.root_path,
            "relative_path": self.relative_path,
            "name": self.name,
            "ext": self.ext,
            "is_dir": 1 if self.is_dir else 0,
            "file_type": self.file_type,
            "size_bytes": self.size_bytes,
            "mtime": self.mtime,
            "ctime": self.ctime,
            "last_seen_at": self.last_seen_at,
            "status": self.status,
            "thumb_path": self.thumb_path,
        }


@dataclass
class ScanRun:
    """Represents one execution of the pipeline against one target."""

    id: int | None
    target_type: str
    target_id: str
    started_at: str
    finished_at: str | None = None
    duration_ms: int | None = None
    status: ScanStatus = ScanStatus.RUNNING
    stage: str | None = None
    total_files: int = 0
    total_dirs: int = 0
    total_bytes: int = 0
    new_entries: int = 0
    changed_entries: int = 0
    removed_entries: int = 0
    errors: int = 0
    error: str | None = None


@dataclass
class MediaMetadata:
    """Probe results for a media file. All-None payload marks a failed probe."""

    duration_sec: float | None = None
    width: int | None = None
    height: int | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    audio_sample_rate: int | None = None
    audio_channels: int | None = None
    bitrate: int | None = None
    format_name: str | None = None
    raw_json: str | None = None


@dataclass
class UpsertCounts:
    new_entries: int = 0
    changed_entries: int = 0


@dataclass
class ParsedFilename:
    """Parsed components of a filename."""

    full: str
    base: str
    extension: str | None


@dataclass
class TargetStats:
    file_count: int = 0
    dir_count: int = 0
    total_bytes: int = 0
    missing_count: int = 0


def manual_target_id(root_id: int | str) -> str:
    return f"manual:{root_id}"
