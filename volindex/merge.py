"""Merged multi-machine view over the per-machine stores.

Each machine writes its own ``<base_dir>/<machine_id>/index.db``. This
module reads them all (read-only) and reduces them to one record per
volume UUID and one per manual root path:

- display fields come from the most recently scanned record, falling
  back to the most recently seen one on ties;
- file/dir counts and total bytes are the maximum across machines;
- ``per_machine`` keeps each machine's own policy and timestamps;
- the last run is the most recently finished run across machines.

Unreadable stores and missing tables are skipped, never raised.
"""

import logging
import sqlite3
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path

from volindex.clock import parse_iso_ms
from volindex.database.connection import open_readonly
from volindex.database.scan_runs import latest_scan_runs

logger = logging.getLogger(__name__)

COUNT_FIELDS = ("file_count", "dir_count", "total_bytes")

STORE_FILENAME = "index.db"


@dataclass
class RecordUpdate:
    """A partial view of one target. ``None`` means "not provided"."""

    name: str | None = None
    path: str | None = None
    size_bytes: int | None = None
    fs_type: str | None = None
    first_seen_at: str | None = None
    last_seen_at: str | None = None
    last_scan_at: str | None = None
    scan_interval_ms: int | None = None
    is_active: bool | None = None
    auto_purge: bool | None = None
    signature_hint: str | None = None
    file_count: int | None = None
    dir_count: int | None = None
    total_bytes: int | None = None


def apply_update(current: RecordUpdate, update: RecordUpdate) -> RecordUpdate:
    """Last write wins per provided field; counts keep the maximum."""
    changes = {}
    for f in fields(RecordUpdate):
        new = getattr(update, f.name)
        if new is None:
            continue
        old = getattr(current, f.name)
        if f.name in COUNT_FIELDS and old is not None:
            new = max(old, new)
        changes[f.name] = new
    return replace(current, **changes)


@dataclass
class RunInfo:
    status: str | None = None
    duration_ms: int | None = None
    finished_at: str | None = None


def newer_run(a: RunInfo | None, b: RunInfo | None) -> RunInfo | None:
    if a is None:
        return b
    if b is None:
        return a
    return b if parse_iso_ms(b.finished_at) > parse_iso_ms(a.finished_at) else a


@dataclass
class SourceRecord:
    """One target as recorded by one machine."""

    key: str
    machine_id: str
    machine_name: str
    update: RecordUpdate
    root_id: int | None = None
    last_run: RunInfo | None = None


@dataclass
class MachineSnapshot:
    machine_id: str
    machine_name: str
    volumes: list[SourceRecord] = field(default_factory=list)
    manual_roots: list[SourceRecord] = field(default_factory=list)


@dataclass
class MergedTarget:
    key: str
    kind: str
    record: RecordUpdate
    seen_on: list[str]
    per_machine: dict[str, dict]
    last_run: RunInfo = field(default_factory=RunInfo)

    @property
    def seen_count(self) -> int:
        return len(self.seen_on)

    def to_dict(self) -> dict:
        data = asdict(self.record)
        for name in COUNT_FIELDS:
            data[name] = data[name] or 0
        if self.kind == "volume":
            data["volume_uuid"] = self.key
            data["volume_name"] = data.pop("name")
            data["mount_point_last"] = data.pop("path")
        else:
            data["label"] = data.pop("name")
        data.update(
            last_run_status=self.last_run.status,
            last_run_duration_ms=self.last_run.duration_ms,
            last_run_finished_at=self.last_run.finished_at,
            seen_on=list(self.seen_on),
            seen_count=self.seen_count,
            per_machine=self.per_machine,
        )
        return data


@dataclass
class MergedState:
    volumes: list[MergedTarget] = field(default_factory=list)
    roots: list[MergedTarget] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "drives": [v.to_dict() for v in self.volumes],
            "roots": [r.to_dict() for r in self.roots],
        }


# --- Loading ---------------------------------------------------------------


def list_machine_db_paths(base_dir: Path) -> list[tuple[str, Path]]:
    """``(machine_id, db_path)`` for every machine directory holding a store."""
    try:
        children = sorted(p for p in Path(base_dir).iterdir() if p.is_dir())
    except OSError:
        return []
    return [(p.name, p / STORE_FILENAME) for p in children if (p / STORE_FILENAME).is_file()]


def load_machine_snapshot(machine_id: str, db_path: Path) -> MachineSnapshot | None:
    try:
        conn = open_readonly(db_path)
    except sqlite3.Error as e:
        logger.warning("Skipping unreadable store %s: %s", db_path, e)
        return None

    try:
        return _read_snapshot(conn, machine_id)
    except sqlite3.Error as e:
        logger.warning("Skipping unreadable store %s: %s", db_path, e)
        return None
    finally:
        conn.close()


def _read_snapshot(conn: sqlite3.Connection, machine_id: str) -> MachineSnapshot | None:
    tables = {
        row["name"]
        for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
    }
    if not {"volumes", "manual_roots"} <= tables:
        logger.warning("Store for %s has no target tables, skipping", machine_id)
        return None

    machine_name = _optional_setting(conn, tables, "machine_name") or machine_id
    snapshot = MachineSnapshot(machine_id=machine_id, machine_name=machine_name)

    volume_counts, root_counts = _file_aggregates(conn) if "files" in tables else ({}, {})
    volume_runs, root_runs = _latest_runs(conn) if "scan_runs" in tables else ({}, {})

    for row in conn.execute("SELECT * FROM volumes"):
        data = dict(row)
        uuid = data.get("volume_uuid")
        if not uuid:
            continue
        update = RecordUpdate(
            name=data.get("volume_name"),
            path=data.get("mount_point_last"),
            size_bytes=data.get("size_bytes"),
            fs_type=data.get("fs_type"),
            first_seen_at=data.get("first_seen_at"),
            last_seen_at=data.get("last_seen_at"),
            last_scan_at=data.get("last_scan_at"),
            scan_interval_ms=data.get("scan_interval_ms"),
            is_active=_to_bool(data.get("is_active")),
            auto_purge=_to_bool(data.get("auto_purge")),
            signature_hint=data.get("signature_hint"),
            **volume_counts.get(uuid, {}),
        )
        snapshot.volumes.append(
            SourceRecord(
                key=uuid,
                machine_id=machine_id,
                machine_name=machine_name,
                update=update,
                last_run=volume_runs.get(uuid),
            )
        )

    for row in conn.execute("SELECT * FROM manual_roots"):
        data = dict(row)
        path = data.get("path")
        if not path:
            continue
        update = RecordUpdate(
            name=data.get("label"),
            path=path,
            last_scan_at=data.get("last_scan_at"),
            scan_interval_ms=data.get("scan_interval_ms"),
            is_active=_to_bool(data.get("is_active")),
            **root_counts.get(path, {}),
        )
        snapshot.manual_roots.append(
            SourceRecord(
                key=path,
                machine_id=machine_id,
                machine_name=machine_name,
                update=update,
                root_id=data.get("id"),
                last_run=root_runs.get(str(data.get("id"))),
            )
        )

    return snapshot


def _optional_setting(conn: sqlite3.Connection, tables: set[str], key: str) -> str | None:
    if "settings" not in tables:
        return None
    row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else None


def _file_aggregates(conn: sqlite3.Connection) -> tuple[dict[str, dict], dict[str, dict]]:
    """Present-entry counts per volume UUID and per manual root path."""
    columns = """
        SUM(CASE WHEN is_dir = 0 THEN 1 ELSE 0 END) AS file_count,
        SUM(CASE WHEN is_dir = 1 THEN 1 ELSE 0 END) AS dir_count,
        SUM(CASE WHEN is_dir = 0 THEN COALESCE(size_bytes, 0) ELSE 0 END) AS total_bytes
    """
    volumes = {
        row["volume_uuid"]: _counts(row)
        for row in conn.execute(
            f"""
            SELECT volume_uuid, {columns}
            FROM files
            WHERE status = 'present' AND volume_uuid NOT LIKE 'manual:%'
            GROUP BY volume_uuid
            """
        )
    }
    roots = {
        row["root_path"]: _counts(row)
        for row in conn.execute(
            f"""
            SELECT root_path, {columns}
            FROM files
            WHERE status = 'present' AND volume_uuid LIKE 'manual:%'
            GROUP BY root_path
            """
        )
    }
    return volumes, roots


def _counts(row: sqlite3.Row) -> dict:
    return {name: row[name] or 0 for name in COUNT_FIELDS}


def _latest_runs(conn: sqlite3.Connection) -> tuple[dict[str, RunInfo], dict[str, RunInfo]]:
    """Latest run per volume UUID and per manual root id."""
    volumes: dict[str, RunInfo] = {}
    roots: dict[str, RunInfo] = {}
    for row in latest_scan_runs(conn):
        data = dict(row)
        info = RunInfo(
            status=data.get("status"),
            duration_ms=data.get("duration_ms"),
            finished_at=data.get("finished_at") or data.get("started_at"),
        )
        target_id = str(data.get("target_id") or "")
        if data.get("target_type") == "volume" and target_id:
            volumes[target_id] = info
        elif data.get("target_type") == "manualRoot" and target_id:
            roots[target_id.removeprefix("manual:")] = info
    return volumes, roots


def _to_bool(value) -> bool | None:
    return None if value is None else bool(value)


# --- Reduction -------------------------------------------------------------


def merge_snapshots(snapshots: list[MachineSnapshot]) -> MergedState:
    """Reduce per-machine snapshots into one record per volume and per root."""
    volume_groups: dict[str, list[SourceRecord]] = {}
    root_groups: dict[str, list[SourceRecord]] = {}
    for snapshot in snapshots:
        for source in snapshot.volumes:
            volume_groups.setdefault(source.key, []).append(source)
        for source in snapshot.manual_roots:
            root_groups.setdefault(source.key, []).append(source)

    state = MergedState(
        volumes=[_merge_group(key, "volume", group) for key, group in volume_groups.items()],
        roots=[_merge_group(key, "manualRoot", group) for key, group in root_groups.items()],
    )
    state.volumes.sort(key=lambda t: parse_iso_ms(t.record.last_scan_at), reverse=True)
    state.roots.sort(key=lambda t: parse_iso_ms(t.record.last_scan_at), reverse=True)
    return state


def _merge_group(key: str, kind: str, group: list[SourceRecord]) -> MergedTarget:
    # Oldest first, so the winning record is applied last.
    ordered = sorted(
        group,
        key=lambda s: (parse_iso_ms(s.update.last_scan_at), parse_iso_ms(s.update.last_seen_at)),
    )
    record = RecordUpdate()
    last_run: RunInfo | None = None
    for source in ordered:
        record = apply_update(record, source.update)
        last_run = newer_run(last_run, source.last_run)

    seen_on: list[str] = []
    per_machine: dict[str, dict] = {}
    for source in group:
        if source.machine_name not in seen_on:
            seen_on.append(source.machine_name)
        per_machine[source.machine_id] = _machine_entry(kind, source)

    return MergedTarget(
        key=key,
        kind=kind,
        record=record,
        seen_on=seen_on,
        per_machine=per_machine,
        last_run=last_run or RunInfo(),
    )


def _machine_entry(kind: str, source: SourceRecord) -> dict:
    update = source.update
    entry = {
        "machine_name": source.machine_name,
        "last_scan_at": update.last_scan_at,
        "is_active": update.is_active,
        "scan_interval_ms": update.scan_interval_ms,
        "status": source.last_run.status if source.last_run else None,
    }
    if kind == "volume":
        entry["last_seen_at"] = update.last_seen_at
        entry["mount_point_last"] = update.path
    else:
        entry["id"] = source.root_id
    return entry


def get_merged_state(base_dir: Path) -> MergedState:
    snapshots = []
    for machine_id, db_path in list_machine_db_paths(base_dir):
        snapshot = load_machine_snapshot(machine_id, db_path)
        if snapshot is not None:
            snapshots.append(snapshot)
    return merge_snapshots(snapshots)
