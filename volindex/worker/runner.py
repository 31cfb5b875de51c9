"""The worker loop: commands in, replies and progress events out."""

import asyncio
import logging

from volindex.worker.commands import handle_command
from volindex.worker.context import WorkerContext

logger = logging.getLogger(__name__)


async def run_worker(ctx: WorkerContext, channel) -> None:
    """Serve commands from ``channel`` until it closes, then shut down."""
    outbox: asyncio.Queue = asyncio.Queue()
    ctx.add_listener(outbox.put_nowait)

    async def forward_events() -> None:
        while True:
            message = await outbox.get()
            try:
                await channel.send(message)
            except Exception:
                logger.exception("Could not deliver progress event")

    forwarder = asyncio.get_running_loop().create_task(forward_events(), name="progress-forwarder")
    await ctx.start()
    try:
        while True:
            message = await channel.receive()
            if message is None:
                logger.info("Control channel closed")
                break
            try:
                reply = await handle_command(ctx, message)
            except Exception:
                logger.exception("Command failed: %r", message)
                reply = {"ok": False, "error": "internal_error"}
            await channel.send(reply)
    finally:
        await ctx.stop()
        while not outbox.empty():
            await channel.send(outbox.get_nowait())
        forwarder.cancel()
        try:
            await forwarder
        except asyncio.CancelledError:
            pass
