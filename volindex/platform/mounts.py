"""Mounted volume enumeration."""

import json
import logging
import os
import shutil
import subprocess
from dataclasses import asdict, dataclass

logger = logging.getLogger(__name__)

DEFAULT_MOUNT_PREFIXES = ("/media", "/run/media", "/mnt", "/Volumes")

PSEUDO_FS_TYPES = frozenset(
    {
        "autofs",
        "binfmt_misc",
        "cgroup",
        "cgroup2",
        "configfs",
        "debugfs",
        "devpts",
        "devtmpfs",
        "fusectl",
        "hugetlbfs",
        "mqueue",
        "nsfs",
        "overlay",
        "proc",
        "pstore",
        "ramfs",
        "securityfs",
        "squashfs",
        "sysfs",
        "tmpfs",
        "tracefs",
    }
)

FINDMNT_COLUMNS = "TARGET,SOURCE,FSTYPE,SIZE,UUID,LABEL"


class DeviceLookupError(Exception):
    """Raised when mounted devices cannot be enumerated."""


@dataclass(frozen=True)
class MountDescriptor:
    """One mounted volume or unidentified mount as seen by the enumerator."""

    key: str
    kind: str  # "volume" | "mount"
    volume_uuid: str | None
    volume_name: str
    mount_point: str
    size_bytes: int | None = None
    fs_type: str | None = None

    @property
    def is_volume(self) -> bool:
        return self.kind == "volume"

    def to_dict(self) -> dict:
        return asdict(self)


def mount_key_from_path(mount_point: str) -> str:
    return f"mount:{mount_point}"


def run_findmnt() -> list[dict]:
    """Return the flat filesystem list reported by ``findmnt``."""
    if not shutil.which("findmnt"):
        raise DeviceLookupError("findmnt is required to enumerate mounted volumes")

    result = subprocess.run(
        ["findmnt", "-J", "-b", "-l", "-o", FINDMNT_COLUMNS],
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        raise DeviceLookupError(f"findmnt failed: {result.stderr.strip() or result.returncode}")

    try:
        data = json.loads(result.stdout or "{}")
    except json.JSONDecodeError as e:
        raise DeviceLookupError(f"Could not parse findmnt output: {e}") from e

    return data.get("filesystems", [])


def is_system_mount(mount_point: str, fs_type: str | None, prefixes: tuple[str, ...]) -> bool:
    if not mount_point or mount_point == "/":
        return True
    if fs_type and fs_type in PSEUDO_FS_TYPES:
        return True
    return not any(
        mount_point.startswith(prefix.rstrip("/") + "/") for prefix in prefixes
    )


class VolumeEnumerator:
    """Lists user-visible mounts, keyed by filesystem UUID when one is known."""

    def __init__(self, prefixes: tuple[str, ...] = DEFAULT_MOUNT_PREFIXES, lister=run_findmnt):
        self.prefixes = prefixes
        self._lister = lister

    def snapshot(self) -> list[MountDescriptor]:
        mounts: dict[str, MountDescriptor] = {}

        for node in self._lister():
            mount_point = node.get("target") or ""
            fs_type = node.get("fstype") or None
            if is_system_mount(mount_point, fs_type, self.prefixes):
                continue

            descriptor = _descriptor_from_node(node, mount_point, fs_type)
            # Bind mounts of the same filesystem keep the first mount point.
            mounts.setdefault(descriptor.key, descriptor)

        return sorted(mounts.values(), key=lambda m: m.mount_point)


def _descriptor_from_node(node: dict, mount_point: str, fs_type: str | None) -> MountDescriptor:
    uuid = (node.get("uuid") or "").strip() or None
    label = (node.get("label") or "").strip()
    name = label or os.path.basename(mount_point.rstrip("/")) or mount_point
    size = _parse_size(node.get("size"))

    if uuid:
        return MountDescriptor(
            key=uuid,
            kind="volume",
            volume_uuid=uuid,
            volume_name=name,
            mount_point=mount_point,
            size_bytes=size,
            fs_type=fs_type,
        )

    # Network shares and other mounts without a filesystem UUID.
    return MountDescriptor(
        key=mount_key_from_path(mount_point),
        kind="mount",
        volume_uuid=None,
        volume_name=name,
        mount_point=mount_point,
        size_bytes=size,
        fs_type=fs_type,
    )


def _parse_size(value) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.debug("Unparseable findmnt size: %r", value)
        return None
