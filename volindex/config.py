"""Configuration module for volindex."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from volindex.platform.identity import get_machine_id
from volindex.platform.mounts import DEFAULT_MOUNT_PREFIXES


def _default_base_dir() -> Path:
    return Path.home() / "Documents" / "VolIndex"


@dataclass
class ScannerConfig:
    batch_size: int = 2000
    progress_interval: int = 1000
    yield_every: int = 500
    yield_ms: int = 10
    signature_depth: int = 2
    max_path_length: int = 4096
    generate_thumbs: bool = False


@dataclass
class SchedulerConfig:
    mount_poll_seconds: float = 2.0
    due_sweep_seconds: float = 60.0
    mount_concurrency: int = 4
    scheduled_concurrency: int = 1
    default_volume_interval_ms: int = 20 * 60 * 1000


@dataclass
class RemoteConfig:
    url: str | None = None
    token: str | None = None
    timeout_seconds: float = 30.0

    @property
    def enabled(self) -> bool:
        return bool(self.url)


@dataclass
class Config:
    base_dir: Path = field(default_factory=_default_base_dir)
    machine_id: str | None = None
    mount_prefixes: tuple[str, ...] = DEFAULT_MOUNT_PREFIXES
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a config from defaults, overridden by VOLINDEX_* variables."""
        config = cls()
        base_dir = os.environ.get("VOLINDEX_DIR", "").strip()
        if base_dir:
            config.base_dir = Path(base_dir).expanduser()
        machine_id = os.environ.get("VOLINDEX_MACHINE_ID", "").strip()
        if machine_id:
            config.machine_id = machine_id
        remote_url = os.environ.get("VOLINDEX_REMOTE_URL", "").strip()
        if remote_url:
            config.remote.url = remote_url.rstrip("/")
        remote_token = os.environ.get("VOLINDEX_REMOTE_TOKEN", "").strip()
        if remote_token:
            config.remote.token = remote_token
        return config

    def resolved_machine_id(self) -> str:
        if self.machine_id:
            return self.machine_id
        self.machine_id = get_machine_id()
        return self.machine_id

    @property
    def machine_dir(self) -> Path:
        return self.base_dir / self.resolved_machine_id()

    @property
    def database_path(self) -> Path:
        return self.machine_dir / "index.db"

    @property
    def thumbs_dir(self) -> Path:
        return self.base_dir / "thumbs"
