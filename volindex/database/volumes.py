"""Volume and manual root records."""

import hashlib
import logging
import sqlite3

from volindex.clock import now_iso
from volindex.database.models import ManualRoot, Volume, manual_target_id
from volindex.platform.mounts import MountDescriptor

logger = logging.getLogger(__name__)

DEFAULT_VOLUME_INTERVAL_MS = 20 * 60 * 1000

_MAX_ROOT_ID = 2**63 - 1


def upsert_volume(
    conn: sqlite3.Connection,
    mount: MountDescriptor,
    default_interval_ms: int = DEFAULT_VOLUME_INTERVAL_MS,
    device_id: str | None = None,
) -> Volume:
    """Record a mount observation, creating the volume on first sight."""
    if not mount.volume_uuid:
        raise ValueError(f"Mount {mount.mount_point} has no volume identifier")

    now = now_iso()
    conn.execute(
        """
        INSERT INTO volumes (
            volume_uuid, volume_name, device_id, size_bytes, fs_type,
            mount_point_last, first_seen_at, last_seen_at,
            scan_interval_ms, is_active, auto_added
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1, 1)
        ON CONFLICT(volume_uuid) DO UPDATE SET
            volume_name = excluded.volume_name,
            device_id = COALESCE(excluded.device_id, volumes.device_id),
            size_bytes = COALESCE(excluded.size_bytes, volumes.size_bytes),
            fs_type = COALESCE(excluded.fs_type, volumes.fs_type),
            mount_point_last = excluded.mount_point_last,
            last_seen_at = excluded.last_seen_at
        """,
        (
            mount.volume_uuid,
            mount.volume_name,
            device_id,
            mount.size_bytes,
            mount.fs_type,
            mount.mount_point,
            now,
            now,
            default_interval_ms,
        ),
    )
    conn.commit()
    volume = get_volume(conn, mount.volume_uuid)
    assert volume is not None
    return volume


def get_volume(conn: sqlite3.Connection, volume_uuid: str) -> Volume | None:
    row = conn.execute("SELECT * FROM volumes WHERE volume_uuid = ?", (volume_uuid,)).fetchone()
    return _volume_from_row(row) if row else None


def list_volumes(conn: sqlite3.Connection) -> list[Volume]:
    rows = conn.execute(
        "SELECT * FROM volumes ORDER BY COALESCE(last_scan_at, '') DESC, volume_uuid"
    ).fetchall()
    return [_volume_from_row(row) for row in rows]


def update_volume_policy(
    conn: sqlite3.Connection,
    volume_uuid: str,
    scan_interval_ms: int | None = None,
    is_active: bool | None = None,
    auto_purge: bool | None = None,
) -> Volume | None:
    updates: dict[str, object] = {}
    if scan_interval_ms is not None:
        updates["scan_interval_ms"] = scan_interval_ms
    if is_active is not None:
        updates["is_active"] = 1 if is_active else 0
    if auto_purge is not None:
        updates["auto_purge"] = 1 if auto_purge else 0

    if updates:
        assignments = ", ".join(f"{column} = ?" for column in updates)
        conn.execute(
            f"UPDATE volumes SET {assignments} WHERE volume_uuid = ?",
            (*updates.values(), volume_uuid),
        )
        conn.commit()
    return get_volume(conn, volume_uuid)


def set_signature_hint(conn: sqlite3.Connection, volume_uuid: str, hint_json: str) -> None:
    conn.execute(
        "UPDATE volumes SET signature_hint = ? WHERE volume_uuid = ?",
        (hint_json, volume_uuid),
    )
    conn.commit()


def mark_volume_scanned(conn: sqlite3.Connection, volume_uuid: str, at: str | None = None) -> None:
    conn.execute(
        "UPDATE volumes SET last_scan_at = ? WHERE volume_uuid = ?",
        (at or now_iso(), volume_uuid),
    )
    conn.commit()


def purge_volume(conn: sqlite3.Connection, volume_uuid: str) -> int:
    """Delete a volume and all of its file entries. Returns deleted file count."""
    cursor = conn.execute("DELETE FROM files WHERE volume_uuid = ?", (volume_uuid,))
    deleted = cursor.rowcount
    conn.execute("DELETE FROM volumes WHERE volume_uuid = ?", (volume_uuid,))
    conn.commit()
    logger.info("Purged volume %s (%d entries)", volume_uuid, deleted)
    return deleted


def manual_root_id(device_id: str, path: str) -> int:
    """Deterministic numeric id for a folder on a given device."""
    digest = hashlib.sha256(f"{device_id}::{path}".encode("utf-8")).hexdigest()
    value = int(digest[:16], 16) % _MAX_ROOT_ID
    return value or 1


def add_manual_root(
    conn: sqlite3.Connection,
    device_id: str,
    path: str,
    label: str | None = None,
    scan_interval_ms: int | None = None,
    is_active: bool = True,
) -> ManualRoot:
    """Register a folder, or refresh the root already registered for ``path``."""
    existing = conn.execute("SELECT id FROM manual_roots WHERE path = ?", (path,)).fetchone()
    root_id = existing[0] if existing else manual_root_id(device_id, path)
    conn.execute(
        """
        INSERT INTO manual_roots (id, path, label, is_active, scan_interval_ms)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            label = COALESCE(excluded.label, manual_roots.label),
            is_active = excluded.is_active,
            scan_interval_ms = COALESCE(excluded.scan_interval_ms, manual_roots.scan_interval_ms)
        """,
        (root_id, path, label, 1 if is_active else 0, scan_interval_ms),
    )
    conn.commit()
    root = get_manual_root(conn, root_id)
    assert root is not None
    return root


def get_manual_root(conn: sqlite3.Connection, root_id: int) -> ManualRoot | None:
    row = conn.execute("SELECT * FROM manual_roots WHERE id = ?", (root_id,)).fetchone()
    return _root_from_row(row) if row else None


def list_manual_roots(conn: sqlite3.Connection) -> list[ManualRoot]:
    rows = conn.execute(
        "SELECT * FROM manual_roots ORDER BY COALESCE(last_scan_at, '') DESC, path"
    ).fetchall()
    return [_root_from_row(row) for row in rows]


def update_manual_root_policy(
    conn: sqlite3.Connection,
    root_id: int,
    scan_interval_ms: int | None = None,
    is_active: bool | None = None,
) -> ManualRoot | None:
    if scan_interval_ms is not None:
        conn.execute(
            "UPDATE manual_roots SET scan_interval_ms = ? WHERE id = ?",
            (scan_interval_ms, root_id),
        )
    if is_active is not None:
        conn.execute(
            "UPDATE manual_roots SET is_active = ? WHERE id = ?",
            (1 if is_active else 0, root_id),
        )
    conn.commit()
    return get_manual_root(conn, root_id)


def mark_manual_root_scanned(conn: sqlite3.Connection, root_id: int, at: str | None = None) -> None:
    conn.execute(
        "UPDATE manual_roots SET last_scan_at = ? WHERE id = ?",
        (at or now_iso(), root_id),
    )
    conn.commit()


def remove_manual_root(conn: sqlite3.Connection, root_id: int) -> bool:
    conn.execute("DELETE FROM files WHERE volume_uuid = ?", (manual_target_id(root_id),))
    cursor = conn.execute("DELETE FROM manual_roots WHERE id = ?", (root_id,))
    conn.commit()
    return cursor.rowcount > 0


def _volume_from_row(row: sqlite3.Row) -> Volume:
    keys = row.keys()
    return Volume(
        volume_uuid=row["volume_uuid"],
        volume_name=row["volume_name"],
        mount_point_last=row["mount_point_last"],
        size_bytes=row["size_bytes"],
        fs_type=row["fs_type"],
        first_seen_at=row["first_seen_at"],
        last_seen_at=row["last_seen_at"],
        last_scan_at=row["last_scan_at"],
        scan_interval_ms=row["scan_interval_ms"],
        is_active=row["is_active"] != 0,
        auto_purge=bool(row["auto_purge"]) if "auto_purge" in keys else False,
        signature_hint=row["signature_hint"] if "signature_hint" in keys else None,
    )


def _root_from_row(row: sqlite3.Row) -> ManualRoot:
    return ManualRoot(
        id=row["id"],
        path=row["path"],
        label=row["label"],
        is_active=row["is_active"] != 0,
        scan_interval_ms=row["scan_interval_ms"],
        last_scan_at=row["last_scan_at"],
    )
