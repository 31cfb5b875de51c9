"""Control commands accepted by the worker."""

import asyncio
import logging

from volindex.clock import now_iso
from volindex.database.volumes import (
    add_manual_root,
    get_manual_root,
    get_volume,
    list_manual_roots,
    remove_manual_root,
)
from volindex.merge import get_merged_state
from volindex.remote import RemoteError
from volindex.scheduler.due import is_root_reachable
from volindex.worker.jobs import create_manual_root_job, create_volume_job

logger = logging.getLogger(__name__)


def manual_scan(ctx, payload: dict) -> int | bool:
    """Enqueue scans on request. Bulk types return a count, single targets a bool."""
    scan_type = payload.get("type")
    thumbs = payload.get("generateThumbs")

    if scan_type in ("scanAllMountedVolumes", "scanAll"):
        queued = 0
        for mount in ctx.current_mounts():
            if not mount.is_volume:
                continue
            volume = get_volume(ctx.conn, mount.volume_uuid)
            if volume is None or not volume.is_active:
                continue
            if ctx.mount_queue.enqueue(create_volume_job(ctx, mount, "MANUAL_ALL", thumbs)):
                queued += 1

        if scan_type == "scanAll":
            mount_points = [m.mount_point for m in ctx.current_mounts()]
            for root in list_manual_roots(ctx.conn):
                if not root.is_active:
                    continue
                if not is_root_reachable(root.path, mount_points, ctx.config.mount_prefixes):
                    continue
                if ctx.scheduled_queue.enqueue(create_manual_root_job(ctx, root, "MANUAL_ALL", thumbs)):
                    queued += 1

        logger.info("Manual scan %s queued %d job(s)", scan_type, queued)
        return queued

    if scan_type == "volume":
        mount = ctx.mounted_volume(payload.get("volumeUuid") or "")
        if mount is None:
            logger.info("Volume %s is not mounted", payload.get("volumeUuid"))
            return False
        return ctx.mount_queue.enqueue(create_volume_job(ctx, mount, "MANUAL", thumbs))

    if scan_type == "manualRoot":
        try:
            root_id = int(payload.get("rootId"))
        except (TypeError, ValueError):
            return False
        root = get_manual_root(ctx.conn, root_id)
        if root is None:
            return False
        return ctx.scheduled_queue.enqueue(create_manual_root_job(ctx, root, "MANUAL", thumbs))

    logger.warning("Unknown manual scan type: %r", scan_type)
    return False


async def merged_state(ctx) -> dict:
    if ctx.remote is not None:
        return await asyncio.to_thread(ctx.remote.fetch_state, ctx.machine_id)
    state = await asyncio.to_thread(get_merged_state, ctx.config.base_dir)
    return state.to_dict()


def _status_reply(ctx, **extra) -> dict:
    return {"cmd": "indexerStatus", "status": ctx.status(), **extra, "at": now_iso()}


async def handle_command(ctx, message: dict) -> dict:
    """Dispatch one command message and return the reply."""
    cmd = message.get("cmd") if isinstance(message, dict) else None

    if cmd == "manualScan":
        result = manual_scan(ctx, message.get("payload") or {})
        return {"cmd": "manualScanResult", "result": result, "at": now_iso()}

    if cmd == "indexerStatus":
        return _status_reply(ctx)

    if cmd == "indexerCancelAll":
        ctx.cancel_all()
        return _status_reply(ctx)

    if cmd == "indexerCancelKey":
        key = message.get("key")
        if key:
            ctx.cancel_key(key)
        return _status_reply(ctx)

    if cmd == "indexerCancelCurrent":
        cancelled_key = ctx.cancel_current()
        return _status_reply(ctx, cancelledKey=cancelled_key)

    if cmd == "addManualRoot":
        path = message.get("path")
        if not path:
            return {"cmd": "addManualRoot", "ok": False, "error": "missing_path"}
        root = add_manual_root(
            ctx.conn,
            ctx.machine_id,
            path,
            label=message.get("label"),
            scan_interval_ms=message.get("scanIntervalMs"),
        )
        return {
            "cmd": "addManualRoot",
            "ok": True,
            "root": {"id": root.id, "path": root.path, "label": root.label},
        }

    if cmd == "removeManualRoot":
        try:
            root_id = int(message.get("rootId"))
        except (TypeError, ValueError):
            return {"cmd": "removeManualRoot", "ok": False, "error": "invalid_root_id"}
        root = get_manual_root(ctx.conn, root_id)
        if root is not None:
            ctx.cancel_key(root.target_id)
        return {"cmd": "removeManualRoot", "ok": remove_manual_root(ctx.conn, root_id)}

    if cmd == "mergedState":
        try:
            state = await merged_state(ctx)
        except RemoteError as e:
            logger.warning("Merged state unavailable: %s", e)
            return {"cmd": "mergedState", "ok": False, "error": str(e)}
        return {"cmd": "mergedState", "ok": True, "state": state}

    logger.warning("Unknown command: %r", cmd)
    return {"ok": False, "error": "unknown_command"}
