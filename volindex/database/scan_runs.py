"""Scan run bookkeeping."""

import sqlite3

from volindex.clock import now_iso, now_ms, parse_iso_ms
from volindex.database.models import ScanRun, ScanStatus


def start_scan_run(
    conn: sqlite3.Connection,
    target_type: str,
    target_id: str,
    stage: str | None = None,
    started_at: str | None = None,
) -> ScanRun:
    started = started_at or now_iso()
    cursor = conn.execute(
        """
        INSERT INTO scan_runs (target_type, target_id, started_at, status, stage)
        VALUES (?, ?, ?, ?, ?)
        """,
        (target_type, target_id, started, ScanStatus.RUNNING.value, stage),
    )
    conn.commit()
    assert cursor.lastrowid is not None
    return ScanRun(
        id=cursor.lastrowid,
        target_type=target_type,
        target_id=target_id,
        started_at=started,
        stage=stage,
    )


def update_scan_run_stage(conn: sqlite3.Connection, run: ScanRun, stage: str) -> None:
    run.stage = stage
    conn.execute("UPDATE scan_runs SET stage = ? WHERE id = ?", (stage, run.id))
    conn.commit()


def finish_scan_run(
    conn: sqlite3.Connection,
    run: ScanRun,
    status: ScanStatus,
    error: str | None = None,
) -> ScanRun:
    """Record a terminal status, duration and counts for a run."""
    if not status.is_terminal:
        raise ValueError(f"{status.value} is not a terminal scan status")

    run.status = status
    run.finished_at = now_iso()
    run.duration_ms = max(0, now_ms() - parse_iso_ms(run.started_at))
    run.error = error

    conn.execute(
        """
        UPDATE scan_runs
        SET finished_at = ?, duration_ms = ?, status = ?, stage = ?,
            total_dirs = ?, total_files = ?, total_bytes = ?,
            new_entries = ?, changed_entries = ?, removed_entries = ?,
            errors = ?, error = ?
        WHERE id = ?
        """,
        (
            run.finished_at,
            run.duration_ms,
            status.value,
            run.stage,
            run.total_dirs,
            run.total_files,
            run.total_bytes,
            run.new_entries,
            run.changed_entries,
            run.removed_entries,
            run.errors,
            error,
            run.id,
        ),
    )
    conn.commit()
    return run


def latest_scan_runs(conn: sqlite3.Connection) -> list[sqlite3.Row]:
    """Most recent run per (target_type, target_id)."""
    return conn.execute(
        """
        SELECT sr.*
        FROM scan_runs sr
        JOIN (
            SELECT target_type, target_id, MAX(id) AS max_id
            FROM scan_runs
            GROUP BY target_type, target_id
        ) latest ON sr.id = latest.max_id
        ORDER BY sr.id DESC
        """
    ).fetchall()


def recent_scan_runs(conn: sqlite3.Connection, limit: int = 20) -> list[sqlite3.Row]:
    return conn.execute(
        "SELECT * FROM scan_runs ORDER BY id DESC LIMIT ?",
        (limit,),
    ).fetchall()


def running_scan_runs(conn: sqlite3.Connection, target_id: str | None = None) -> list[sqlite3.Row]:
    query = "SELECT * FROM scan_runs WHERE status = ?"
    params: tuple = (ScanStatus.RUNNING.value,)
    if target_id is not None:
        query += " AND target_id = ?"
        params = (ScanStatus.RUNNING.value, target_id)
    return conn.execute(query, params).fetchall()


def fail_stale_runs(conn: sqlite3.Connection) -> int:
    """Close runs left ``running`` by a process that died mid-scan."""
    cursor = conn.execute(
        """
        UPDATE scan_runs
        SET status = ?, finished_at = ?, error = 'interrupted'
        WHERE status = ?
        """,
        (ScanStatus.ERROR.value, now_iso(), ScanStatus.RUNNING.value),
    )
    conn.commit()
    return cursor.rowcount
