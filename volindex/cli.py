"""CLI interface for volindex."""

import asyncio
import json
import logging
import sys
from pathlib import Path

import click

from volindex.config import Config
from volindex.database import Database, ScanStatus
from volindex.database.files import find_files, target_stats
from volindex.database.scan_runs import recent_scan_runs
from volindex.database.volumes import (
    add_manual_root,
    get_volume,
    list_manual_roots,
    list_volumes,
    purge_volume,
    remove_manual_root,
    update_manual_root_policy,
    update_volume_policy,
)
from volindex.merge import get_merged_state
from volindex.platform.mounts import DeviceLookupError, VolumeEnumerator
from volindex.scanner import LocalSink, ProgressReporter, ScanPipeline, ScanTarget
from volindex.scanner.passes import MetadataPass, ThumbnailPass, TransferLogPass
from volindex.worker import StdioChannel, WorkerContext, run_worker


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = Config.from_env()


@cli.command()
@click.pass_context
def worker(ctx: click.Context) -> None:
    """Run the background worker, speaking JSON Lines on stdin/stdout."""
    config: Config = ctx.obj["config"]
    try:
        asyncio.run(run_worker(WorkerContext(config), StdioChannel()))
    except KeyboardInterrupt:
        sys.exit(130)


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--label", help="Display name for the folder")
@click.option("--thumbs", is_flag=True, help="Generate video thumbnails")
@click.pass_context
def scan(ctx: click.Context, path: Path, label: str | None, thumbs: bool) -> None:
    """Scan a folder once in the foreground, registering it as a manual root."""
    config: Config = ctx.obj["config"]
    root_path = str(path.resolve())

    try:
        with Database(config.database_path, config.resolved_machine_id()) as db:
            root = add_manual_root(db.conn, config.resolved_machine_id(), root_path, label=label)
            passes = [MetadataPass(db.conn)]
            if thumbs or config.scanner.generate_thumbs:
                passes.append(ThumbnailPass(db.conn, config.thumbs_dir))
            passes.append(TransferLogPass(db.conn))

            pipeline = ScanPipeline(
                LocalSink(db.conn),
                config=config.scanner,
                passes=passes,
                progress=ProgressReporter(),
            )
            run = asyncio.run(pipeline.run(ScanTarget.for_manual_root(root)))
    except KeyboardInterrupt:
        sys.exit(130)

    if run.status is not ScanStatus.SUCCESS:
        sys.exit(1)


@cli.command()
@click.pass_context
def mounts(ctx: click.Context) -> None:
    """Show currently mounted volumes."""
    config: Config = ctx.obj["config"]
    try:
        snapshot = VolumeEnumerator(config.mount_prefixes).snapshot()
    except DeviceLookupError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not snapshot:
        click.echo("No removable or user mounts found.")
        return

    for mount in snapshot:
        size = _format_bytes(mount.size_bytes)
        click.echo(f"{mount.volume_name:<24} {mount.mount_point:<32} {size:>10}  {mount.key}")


@cli.group()
def roots() -> None:
    """Manage manually added folders."""


@roots.command("add")
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--label", help="Display name for the folder")
@click.option("--interval-ms", type=int, help="Scan interval (0 = never scheduled, <0 = manual only)")
@click.pass_context
def roots_add(ctx: click.Context, path: Path, label: str | None, interval_ms: int | None) -> None:
    config: Config = ctx.obj["config"]
    with Database(config.database_path, config.resolved_machine_id()) as db:
        root = add_manual_root(
            db.conn,
            config.resolved_machine_id(),
            str(path.resolve()),
            label=label,
            scan_interval_ms=interval_ms,
        )
    click.echo(f"Added {root.display_name} (id {root.id})")


@roots.command("list")
@click.pass_context
def roots_list(ctx: click.Context) -> None:
    config: Config = ctx.obj["config"]
    if not config.database_path.exists():
        click.echo("No database found. Run 'volindex scan' first.")
        return

    with Database(config.database_path, config.resolved_machine_id()) as db:
        rows = list_manual_roots(db.conn)
        if not rows:
            click.echo("No manual roots.")
            return
        for root in rows:
            stats = target_stats(db.conn, root.target_id)
            state = "active" if root.is_active else "inactive"
            click.echo(
                f"{root.id:<20} {_truncate(root.display_name, 30):<30} {state:<9} "
                f"{stats.file_count:>10,} files  last scan {root.last_scan_at or 'never'}"
            )


@roots.command("remove")
@click.argument("root_id", type=int)
@click.pass_context
def roots_remove(ctx: click.Context, root_id: int) -> None:
    config: Config = ctx.obj["config"]
    with Database(config.database_path, config.resolved_machine_id()) as db:
        removed = remove_manual_root(db.conn, root_id)
    if not removed:
        click.echo(f"Error: no manual root with id {root_id}", err=True)
        sys.exit(1)
    click.echo(f"Removed manual root {root_id}")


@roots.command("policy")
@click.argument("root_id", type=int)
@click.option("--interval-ms", type=int, help="Scan interval (0 = never scheduled, <0 = manual only)")
@click.option("--active/--inactive", default=None, help="Enable or disable scanning")
@click.pass_context
def roots_policy(ctx: click.Context, root_id: int, interval_ms: int | None, active: bool | None) -> None:
    """Change the scan policy of a manual root."""
    config: Config = ctx.obj["config"]
    with Database(config.database_path, config.resolved_machine_id()) as db:
        root = update_manual_root_policy(db.conn, root_id, scan_interval_ms=interval_ms, is_active=active)
    if root is None:
        click.echo(f"Error: no manual root with id {root_id}", err=True)
        sys.exit(1)
    click.echo(
        f"{root.display_name}: interval {_format_interval(root.scan_interval_ms)}, "
        f"{'active' if root.is_active else 'inactive'}"
    )


@cli.command()
@click.pass_context
def volumes(ctx: click.Context) -> None:
    """List known volumes and their scan policy."""
    config: Config = ctx.obj["config"]
    if not config.database_path.exists():
        click.echo("No database found. Run 'volindex worker' first.")
        return

    with Database(config.database_path, config.resolved_machine_id()) as db:
        rows = list_volumes(db.conn)
        if not rows:
            click.echo("No volumes seen yet.")
            return

        header = "Volume".ljust(25) + "UUID".ljust(38) + "Interval".rjust(10) + "  Flags"
        click.echo(header)
        click.echo("-" * 90)
        for volume in rows:
            flags = []
            if not volume.is_active:
                flags.append("inactive")
            if volume.auto_purge:
                flags.append("auto-purge")
            click.echo(
                f"{_truncate(volume.volume_name or '', 24):<25}"
                f"{volume.volume_uuid:<38}"
                f"{_format_interval(volume.scan_interval_ms):>10}  "
                f"{' '.join(flags)}"
            )


@cli.command()
@click.argument("volume_uuid")
@click.option("--interval-ms", type=int, help="Scan interval (0 = on mount only, <0 = manual only)")
@click.option("--active/--inactive", default=None, help="Enable or disable scanning")
@click.option("--auto-purge/--no-auto-purge", default=None, help="Delete missing entries after scans")
@click.pass_context
def policy(
    ctx: click.Context,
    volume_uuid: str,
    interval_ms: int | None,
    active: bool | None,
    auto_purge: bool | None,
) -> None:
    """Change the scan policy of a volume."""
    config: Config = ctx.obj["config"]
    with Database(config.database_path, config.resolved_machine_id()) as db:
        volume = update_volume_policy(
            db.conn,
            volume_uuid,
            scan_interval_ms=interval_ms,
            is_active=active,
            auto_purge=auto_purge,
        )
    if volume is None:
        click.echo(f"Error: unknown volume {volume_uuid}", err=True)
        sys.exit(1)
    click.echo(
        f"{volume.volume_name}: interval {_format_interval(volume.scan_interval_ms)}, "
        f"{'active' if volume.is_active else 'inactive'}, "
        f"auto-purge {'on' if volume.auto_purge else 'off'}"
    )


@cli.command()
@click.argument("volume_uuid")
@click.confirmation_option(prompt="Delete this volume and all of its indexed entries?")
@click.pass_context
def purge(ctx: click.Context, volume_uuid: str) -> None:
    """Forget a volume and every entry indexed on it."""
    config: Config = ctx.obj["config"]
    with Database(config.database_path, config.resolved_machine_id()) as db:
        volume = get_volume(db.conn, volume_uuid)
        if volume is None:
            click.echo(f"Error: unknown volume {volume_uuid}", err=True)
            sys.exit(1)
        deleted = purge_volume(db.conn, volume_uuid)
    click.echo(f"Purged {volume.volume_name or volume_uuid} ({deleted:,} entries)")


@cli.command()
@click.option("--limit", type=int, default=20, help="Number of runs to show")
@click.pass_context
def status(ctx: click.Context, limit: int) -> None:
    """Show recent scan runs."""
    config: Config = ctx.obj["config"]
    if not config.database_path.exists():
        click.echo("No database found. Run 'volindex scan' first.")
        return

    with Database(config.database_path, config.resolved_machine_id()) as db:
        rows = recent_scan_runs(db.conn, limit)
        if not rows:
            click.echo("No scan runs found.")
            return

        click.echo("\nScan Runs:")
        click.echo("-" * 80)
        header = "Target".ljust(30) + "Status".ljust(11) + "Files".rjust(10)
        header += "New".rjust(8) + "Missing".rjust(9) + "  Started"
        click.echo(header)
        click.echo("-" * 80)
        for row in rows:
            click.echo(
                f"{_truncate(row['target_id'], 29):<30}"
                f"{row['status']:<11}"
                f"{row['total_files'] or 0:>10,}"
                f"{row['new_entries'] or 0:>8,}"
                f"{row['removed_entries'] or 0:>9,}"
                f"  {row['started_at']}"
            )


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print the merged view as JSON")
@click.pass_context
def merged(ctx: click.Context, as_json: bool) -> None:
    """Show the merged view across all machines."""
    config: Config = ctx.obj["config"]
    state = get_merged_state(config.base_dir)

    if as_json:
        click.echo(json.dumps(state.to_dict(), indent=2))
        return

    click.echo("Drives:")
    for drive in state.volumes:
        record = drive.record
        click.echo(
            f"  {_truncate(record.name or drive.key, 24):<25}"
            f"{record.file_count or 0:>10,} files {_format_bytes(record.total_bytes):>10}  "
            f"seen on {', '.join(drive.seen_on)}"
        )
    click.echo("Roots:")
    for root in state.roots:
        record = root.record
        click.echo(
            f"  {_truncate(root.key, 40):<41}"
            f"{record.file_count or 0:>10,} files  seen on {', '.join(root.seen_on)}"
        )


@cli.command()
@click.argument("text")
@click.option("--limit", type=int, default=50, help="Maximum results")
@click.option("--missing", is_flag=True, help="Include entries no longer present")
@click.pass_context
def find(ctx: click.Context, text: str, limit: int, missing: bool) -> None:
    """Search indexed entries by name."""
    config: Config = ctx.obj["config"]
    if not config.database_path.exists():
        click.echo("No database found. Run 'volindex scan' first.")
        return

    with Database(config.database_path, config.resolved_machine_id()) as db:
        rows = find_files(db.conn, text, limit=limit, include_missing=missing)
        if not rows:
            click.echo("No matches.")
            return
        for row in rows:
            where = row["volume_name"] or row["volume_uuid"]
            marker = " (missing)" if row["status"] == "missing" else ""
            click.echo(f"{where}: {row['root_path']}/{row['relative_path']}{marker}")


def _format_interval(interval_ms: int | None) -> str:
    if interval_ms is None:
        return "default"
    if interval_ms == 0:
        return "on mount"
    if interval_ms < 0:
        return "manual"
    minutes = interval_ms // 60000
    if minutes >= 60:
        return f"{minutes // 60}h{minutes % 60:02d}m"
    return f"{minutes}m"


def _format_bytes(size: int | None) -> str:
    if size is None:
        return "0 B"
    size_f = float(size)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_f < 1024:
            return f"{size_f:.1f} {unit}"
        size_f /= 1024
    return f"{size_f:.1f} PB"


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return "..." + text[-(max_len - 3) :]


def main() -> None:
    """Entry point for the CLI."""
    cli(standalone_mode=True)  # pylint: disable=no-value-for-parameter


if __name__ == "__main__":
    main()
