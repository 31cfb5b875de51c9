"""Scan job factories for volumes and manual roots."""

import logging

from volindex.database.models import ManualRoot
from volindex.database.volumes import get_manual_root, get_volume
from volindex.platform.mounts import MountDescriptor
from volindex.scanner.target import ScanTarget
from volindex.scheduler.cancel import CancelToken
from volindex.scheduler.queue import ScanJob

logger = logging.getLogger(__name__)


def create_volume_job(ctx, mount: MountDescriptor, label: str, generate_thumbs: bool | None = None) -> ScanJob:
    """Job keyed by the mount key that scans the volume at its current mount point."""
    token = CancelToken()

    async def run() -> None:
        volume = get_volume(ctx.conn, mount.volume_uuid) if mount.volume_uuid else None
        if volume is None:
            logger.warning("No volume record for %s, skipping scan", mount.mount_point)
            return
        target = ScanTarget.for_volume(volume, mount.mount_point)
        pipeline = ctx.build_pipeline(label, generate_thumbs)
        logger.info("[%s] scanning volume %s", label, target.name)
        try:
            await pipeline.run(target, token)
        except Exception:
            logger.exception("Volume scan failed: %s", target.name)

    return ScanJob(key=mount.key, run=run, token=token, label=label)


def create_manual_root_job(ctx, root: ManualRoot, label: str, generate_thumbs: bool | None = None) -> ScanJob:
    token = CancelToken()

    async def run() -> None:
        current = get_manual_root(ctx.conn, root.id)
        if current is None:
            logger.warning("Manual root %s was removed, skipping scan", root.path)
            return
        target = ScanTarget.for_manual_root(current)
        pipeline = ctx.build_pipeline(label, generate_thumbs)
        logger.info("[%s] scanning folder %s", label, target.name)
        try:
            await pipeline.run(target, token)
        except Exception:
            logger.exception("Manual root scan failed: %s", target.name)

    return ScanJob(key=root.target_id, run=run, token=token, label=label)
