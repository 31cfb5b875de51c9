"""Database schema definition."""

import logging
import sqlite3

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS settings (
    key   TEXT PRIMARY KEY,
    value TEXT
);

-- Physical or removable volumes, keyed by filesystem UUID
CREATE TABLE IF NOT EXISTS volumes (
    volume_uuid      TEXT PRIMARY KEY,
    volume_name      TEXT,
    device_id        TEXT,
    size_bytes       INTEGER,
    fs_type          TEXT,
    mount_point_last TEXT,
    first_seen_at    TEXT,
    last_seen_at     TEXT,
    last_scan_at     TEXT,
    scan_interval_ms INTEGER DEFAULT 1200000,
    is_active        INTEGER DEFAULT 1,
    auto_added       INTEGER DEFAULT 1,
    auto_purge       INTEGER DEFAULT 0,
    notes            TEXT,
    signature_hint   TEXT
);

-- User-designated folders
CREATE TABLE IF NOT EXISTS manual_roots (
    id               INTEGER PRIMARY KEY,
    path             TEXT UNIQUE NOT NULL,
    label            TEXT,
    is_active        INTEGER DEFAULT 1,
    scan_interval_ms INTEGER DEFAULT NULL,
    last_scan_at     TEXT,
    notes            TEXT
);

-- File inventory. volume_uuid holds the owning target id
-- (volume UUID or manual:<id>).
CREATE TABLE IF NOT EXISTS files (
    id            INTEGER PRIMARY KEY,
    volume_uuid   TEXT,
    root_path     TEXT NOT NULL,
    relative_path TEXT NOT NULL,
    name          TEXT NOT NULL,
    ext           TEXT,
    is_dir        INTEGER NOT NULL,
    size_bytes    INTEGER,
    mtime         INTEGER,
    ctime         INTEGER,
    file_type     TEXT,
    last_seen_at  TEXT,
    status        TEXT NOT NULL DEFAULT 'present',
    thumb_path    TEXT,
    UNIQUE(volume_uuid, root_path, relative_path)
);

CREATE INDEX IF NOT EXISTS files_name_idx ON files(name);
CREATE INDEX IF NOT EXISTS files_status_idx ON files(status);
CREATE INDEX IF NOT EXISTS files_target_idx ON files(volume_uuid, root_path);

CREATE TABLE IF NOT EXISTS scan_runs (
    id              INTEGER PRIMARY KEY,
    target_type     TEXT NOT NULL,
    target_id       TEXT NOT NULL,
    started_at      TEXT,
    finished_at     TEXT,
    duration_ms     INTEGER,
    status          TEXT,
    stage           TEXT,
    total_dirs      INTEGER,
    total_files     INTEGER,
    total_bytes     INTEGER,
    new_entries     INTEGER,
    changed_entries INTEGER,
    removed_entries INTEGER,
    errors          INTEGER,
    error           TEXT
);

CREATE INDEX IF NOT EXISTS scan_runs_target_idx ON scan_runs(target_type, target_id);

-- Probe results; a row with all-null payload means "probed but unsupported"
CREATE TABLE IF NOT EXISTS media_metadata (
    id                INTEGER PRIMARY KEY,
    file_id           INTEGER NOT NULL UNIQUE REFERENCES files(id) ON DELETE CASCADE,
    duration_sec      REAL,
    width             INTEGER,
    height            INTEGER,
    video_codec       TEXT,
    audio_codec       TEXT,
    audio_sample_rate INTEGER,
    audio_channels    INTEGER,
    bitrate           INTEGER,
    format_name       TEXT,
    raw_json          TEXT,
    probed_at         TEXT
);

CREATE TABLE IF NOT EXISTS transfer_logs (
    id                TEXT PRIMARY KEY,
    volume_uuid       TEXT,
    log_path          TEXT,
    log_mtime         INTEGER,
    log_size          INTEGER,
    source_name       TEXT,
    dest_volume       TEXT,
    started_at        TEXT,
    finished_at       TEXT,
    total_files       INTEGER,
    hash_type         TEXT,
    verification_mode TEXT,
    status            TEXT,
    error_count       INTEGER,
    error_excerpt     TEXT,
    last_parsed_at    TEXT
);
"""

# Columns added after the first released schema. Each is applied only when
# missing, so opening an old store is idempotent.
ADDED_COLUMNS: dict[str, list[tuple[str, str]]] = {
    "volumes": [
        ("auto_purge", "INTEGER DEFAULT 0"),
        ("signature_hint", "TEXT"),
    ],
    "files": [
        ("thumb_path", "TEXT"),
    ],
    "scan_runs": [
        ("duration_ms", "INTEGER"),
        ("total_bytes", "INTEGER"),
        ("errors", "INTEGER"),
    ],
}


def get_schema_version(conn: sqlite3.Connection) -> int:
    return conn.execute("PRAGMA user_version").fetchone()[0]


def create_schema(conn: sqlite3.Connection) -> None:
    """Create schema and run additive migrations."""
    version = get_schema_version(conn)

    if version > SCHEMA_VERSION:
        logger.warning(
            "Store schema version %d is newer than supported version %d",
            version,
            SCHEMA_VERSION,
        )

    # Existing tables first: CREATE INDEX below may reference added columns.
    migrate_add_columns(conn)

    conn.executescript(SCHEMA_SQL)

    if version < SCHEMA_VERSION:
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
    conn.commit()


def migrate_add_columns(conn: sqlite3.Connection) -> None:
    """Add columns introduced after an existing store was created."""
    for table, columns in ADDED_COLUMNS.items():
        existing_columns = _table_columns(conn, table)
        if not existing_columns:
            continue

        for col_name, col_type in columns:
            if col_name not in existing_columns:
                try:
                    conn.execute(f"ALTER TABLE {table} ADD COLUMN {col_name} {col_type}")
                    logger.info("Added column %s.%s", table, col_name)
                except sqlite3.OperationalError:
                    pass  # Column might already exist

    conn.commit()


def _table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    cursor = conn.execute(f"PRAGMA table_info({table})")
    return {row[1] for row in cursor.fetchall()}
