"""Derived data written by the extension passes, plus key/value settings."""

import sqlite3

from volindex.clock import now_iso
from volindex.database.models import MediaMetadata

MEDIA_FILE_TYPES = ("video", "audio")


def files_needing_metadata(
    conn: sqlite3.Connection,
    target_id: str,
    root_path: str,
    limit: int | None = None,
) -> list[sqlite3.Row]:
    """Present media entries without a media_metadata row (probed or placeholder)."""
    query = """
        SELECT f.id, f.relative_path, f.name, f.file_type
        FROM files f
        LEFT JOIN media_metadata m ON f.id = m.file_id
        WHERE f.volume_uuid = ?
          AND f.root_path = ?
          AND f.is_dir = 0
          AND f.status = 'present'
          AND f.file_type IN (?, ?)
          AND m.id IS NULL
        ORDER BY f.id
    """
    params: list = [target_id, root_path, *MEDIA_FILE_TYPES]
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)
    return conn.execute(query, params).fetchall()


def store_media_metadata(
    conn: sqlite3.Connection,
    file_id: int,
    metadata: MediaMetadata | None,
) -> None:
    """Store probe results; ``None`` stores an all-null placeholder."""
    metadata = metadata or MediaMetadata()
    conn.execute(
        """
        INSERT INTO media_metadata (
            file_id, duration_sec, width, height, video_codec, audio_codec,
            audio_sample_rate, audio_channels, bitrate, format_name, raw_json, probed_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(file_id) DO UPDATE SET
            duration_sec = excluded.duration_sec,
            width = excluded.width,
            height = excluded.height,
            video_codec = excluded.video_codec,
            audio_codec = excluded.audio_codec,
            audio_sample_rate = excluded.audio_sample_rate,
            audio_channels = excluded.audio_channels,
            bitrate = excluded.bitrate,
            format_name = excluded.format_name,
            raw_json = excluded.raw_json,
            probed_at = excluded.probed_at
        """,
        (
            file_id,
            metadata.duration_sec,
            metadata.width,
            metadata.height,
            metadata.video_codec,
            metadata.audio_codec,
            metadata.audio_sample_rate,
            metadata.audio_channels,
            metadata.bitrate,
            metadata.format_name,
            metadata.raw_json,
            now_iso(),
        ),
    )
    conn.commit()


def get_media_metadata(conn: sqlite3.Connection, file_id: int) -> sqlite3.Row | None:
    return conn.execute("SELECT * FROM media_metadata WHERE file_id = ?", (file_id,)).fetchone()


def files_needing_thumbs(
    conn: sqlite3.Connection,
    target_id: str,
    root_path: str,
    limit: int = 200,
) -> list[sqlite3.Row]:
    """Present videos never attempted. An empty thumb_path marks a failed attempt."""
    return conn.execute(
        """
        SELECT id, volume_uuid, root_path, relative_path, name
        FROM files
        WHERE volume_uuid = ?
          AND root_path = ?
          AND is_dir = 0
          AND status = 'present'
          AND file_type = 'video'
          AND thumb_path IS NULL
        ORDER BY id
        LIMIT ?
        """,
        (target_id, root_path, limit),
    ).fetchall()


def set_file_thumb(conn: sqlite3.Connection, file_id: int, thumb_path: str) -> None:
    conn.execute("UPDATE files SET thumb_path = ? WHERE id = ?", (thumb_path, file_id))
    conn.commit()


def upsert_transfer_log(conn: sqlite3.Connection, target_id: str, log: dict) -> None:
    conn.execute(
        """
        INSERT INTO transfer_logs (
            id, volume_uuid, log_path, log_mtime, log_size,
            source_name, dest_volume, started_at, finished_at,
            total_files, hash_type, verification_mode,
            status, error_count, error_excerpt, last_parsed_at
        ) VALUES (
            :id, :volume_uuid, :log_path, :log_mtime, :log_size,
            :source_name, :dest_volume, :started_at, :finished_at,
            :total_files, :hash_type, :verification_mode,
            :status, :error_count, :error_excerpt, :last_parsed_at
        )
        ON CONFLICT(id) DO UPDATE SET
            log_mtime = excluded.log_mtime,
            log_size = excluded.log_size,
            source_name = excluded.source_name,
            dest_volume = excluded.dest_volume,
            started_at = excluded.started_at,
            finished_at = excluded.finished_at,
            total_files = excluded.total_files,
            hash_type = excluded.hash_type,
            verification_mode = excluded.verification_mode,
            status = excluded.status,
            error_count = excluded.error_count,
            error_excerpt = excluded.error_excerpt,
            last_parsed_at = excluded.last_parsed_at
        """,
        {**log, "volume_uuid": target_id, "last_parsed_at": now_iso()},
    )
    conn.commit()


def transfer_log_mtime(conn: sqlite3.Connection, log_path: str) -> int | None:
    row = conn.execute(
        "SELECT MAX(log_mtime) AS log_mtime FROM transfer_logs WHERE log_path = ?",
        (log_path,),
    ).fetchone()
    return row["log_mtime"] if row else None


def get_setting(conn: sqlite3.Connection, key: str) -> str | None:
    row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else None


def set_setting(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute(
        """
        INSERT INTO settings(key, value) VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """,
        (key, value),
    )
    conn.commit()
