"""Cooperative yielding for long-running loops."""

import asyncio


async def maybe_yield(counter: int, every: int = 500, ms: int = 10) -> None:
    """Sleep briefly every ``every`` iterations so timers stay responsive."""
    if every > 0 and counter > 0 and counter % every == 0:
        await asyncio.sleep(ms / 1000)
