"""Platform integration: mounted volumes and machine identity."""

from .identity import get_machine_id, get_machine_name
from .mounts import (
    DEFAULT_MOUNT_PREFIXES,
    DeviceLookupError,
    MountDescriptor,
    VolumeEnumerator,
    mount_key_from_path,
)
from .watcher import MOUNTED, READY, UNMOUNTED, MountWatcher

__all__ = [
    "DEFAULT_MOUNT_PREFIXES",
    "DeviceLookupError",
    "MountDescriptor",
    "MountWatcher",
    "VolumeEnumerator",
    "get_machine_id",
    "get_machine_name",
    "mount_key_from_path",
    "MOUNTED",
    "READY",
    "UNMOUNTED",
]
