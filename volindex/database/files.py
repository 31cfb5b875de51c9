"""File entry upserts, missing detection and inventory queries."""

import sqlite3
from collections import defaultdict

from volindex.database.models import FileEntry, FileStatus, TargetStats, UpsertCounts

# Keeps IN (...) lists under SQLite's bound-parameter limit.
_LOOKUP_CHUNK = 500

UPSERT_SQL = """
INSERT INTO files (
    volume_uuid, root_path, relative_path,
    name, ext, is_dir, file_type,
    size_bytes, mtime, ctime,
    last_seen_at, status, thumb_path
) VALUES (
    :volume_uuid, :root_path, :relative_path,
    :name, :ext, :is_dir, :file_type,
    :size_bytes, :mtime, :ctime,
    :last_seen_at, :status, :thumb_path
)
ON CONFLICT(volume_uuid, root_path, relative_path) DO UPDATE SET
    name = excluded.name,
    ext = excluded.ext,
    is_dir = excluded.is_dir,
    file_type = excluded.file_type,
    size_bytes = excluded.size_bytes,
    mtime = excluded.mtime,
    ctime = excluded.ctime,
    last_seen_at = excluded.last_seen_at,
    status = 'present',
    thumb_path = COALESCE(excluded.thumb_path, files.thumb_path)
"""


def upsert_entries(conn: sqlite3.Connection, entries: list[FileEntry]) -> UpsertCounts:
    """Upsert a batch of entries in one transaction, counting new and changed rows."""
    counts = UpsertCounts()
    if not entries:
        return counts

    existing = _existing_rows(conn, entries)
    for entry in entries:
        previous = existing.get((entry.target_id, entry.root_path, entry.relative_path))
        if previous is None:
            counts.new_entries += 1
        elif (
            previous["status"] != FileStatus.PRESENT.value
            or previous["size_bytes"] != entry.size_bytes
            or previous["mtime"] != entry.mtime
        ):
            counts.changed_entries += 1

    with conn:
        conn.executemany(UPSERT_SQL, [entry.to_row() for entry in entries])
    return counts


def _existing_rows(
    conn: sqlite3.Connection, entries: list[FileEntry]
) -> dict[tuple[str, str, str], sqlite3.Row]:
    by_target: dict[tuple[str, str], list[str]] = defaultdict(list)
    for entry in entries:
        by_target[(entry.target_id, entry.root_path)].append(entry.relative_path)

    found: dict[tuple[str, str, str], sqlite3.Row] = {}
    for (target_id, root_path), rel_paths in by_target.items():
        for i in range(0, len(rel_paths), _LOOKUP_CHUNK):
            chunk = rel_paths[i : i + _LOOKUP_CHUNK]
            placeholders = ",".join("?" for _ in chunk)
            rows = conn.execute(
                f"""
                SELECT relative_path, size_bytes, mtime, status
                FROM files
                WHERE volume_uuid = ? AND root_path = ?
                  AND relative_path IN ({placeholders})
                """,
                (target_id, root_path, *chunk),
            ).fetchall()
            for row in rows:
                found[(target_id, root_path, row["relative_path"])] = row
    return found


def mark_missing(
    conn: sqlite3.Connection,
    target_id: str,
    root_path: str | None,
    seen_since: str,
    skip_dirs: list[str] | None = None,
) -> int:
    """Flag present entries not seen since ``seen_since`` as missing.

    With ``root_path=None`` every root of the target is considered, so rows
    recorded under a previous mount point are retired too. Rows below any
    relative directory in ``skip_dirs`` are left alone; an empty string
    there stands for the root and disables the update.
    """
    skip_dirs = skip_dirs or []
    if "" in skip_dirs:
        return 0

    query = """
        UPDATE files
        SET status = 'missing'
        WHERE volume_uuid = ?
          AND status = 'present'
          AND (last_seen_at IS NULL OR last_seen_at < ?)
    """
    params: list = [target_id, seen_since]
    if root_path is not None:
        query += " AND root_path = ?"
        params.append(root_path)
    for directory in skip_dirs:
        query += " AND relative_path NOT LIKE ? ESCAPE '\\'"
        params.append(f"{_escape_like(directory)}/%")

    with conn:
        cursor = conn.execute(query, params)
    return cursor.rowcount


def purge_missing(conn: sqlite3.Connection, target_id: str) -> int:
    with conn:
        cursor = conn.execute(
            "DELETE FROM files WHERE volume_uuid = ? AND status = 'missing'",
            (target_id,),
        )
    return cursor.rowcount


def target_stats(conn: sqlite3.Connection, target_id: str, root_path: str | None = None) -> TargetStats:
    query = """
        SELECT
            SUM(CASE WHEN is_dir = 0 AND status = 'present' THEN 1 ELSE 0 END) AS file_count,
            SUM(CASE WHEN is_dir = 1 AND status = 'present' THEN 1 ELSE 0 END) AS dir_count,
            SUM(CASE WHEN is_dir = 0 AND status = 'present'
                     THEN COALESCE(size_bytes, 0) ELSE 0 END) AS total_bytes,
            SUM(CASE WHEN status = 'missing' THEN 1 ELSE 0 END) AS missing_count
        FROM files
        WHERE volume_uuid = ?
    """
    params: tuple = (target_id,)
    if root_path is not None:
        query += " AND root_path = ?"
        params = (target_id, root_path)

    row = conn.execute(query, params).fetchone()
    return TargetStats(
        file_count=row["file_count"] or 0,
        dir_count=row["dir_count"] or 0,
        total_bytes=row["total_bytes"] or 0,
        missing_count=row["missing_count"] or 0,
    )


def get_entries(conn: sqlite3.Connection, target_id: str) -> list[sqlite3.Row]:
    return conn.execute(
        "SELECT * FROM files WHERE volume_uuid = ? ORDER BY relative_path",
        (target_id,),
    ).fetchall()


def find_files(
    conn: sqlite3.Connection,
    text: str,
    limit: int = 100,
    include_missing: bool = False,
) -> list[sqlite3.Row]:
    """Case-insensitive substring search over entry names."""
    statuses = [FileStatus.PRESENT.value]
    if include_missing:
        statuses.append(FileStatus.MISSING.value)
    placeholders = ",".join("?" for _ in statuses)
    return conn.execute(
        f"""
        SELECT f.*, v.volume_name
        FROM files f
        LEFT JOIN volumes v ON v.volume_uuid = f.volume_uuid
        WHERE f.name LIKE ? ESCAPE '\\' AND f.status IN ({placeholders})
        ORDER BY f.name
        LIMIT ?
        """,
        (f"%{_escape_like(text)}%", *statuses, limit),
    ).fetchall()


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
