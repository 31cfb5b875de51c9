"""Message channels between the worker and its host.

A channel carries commands in and replies/events out. ``receive`` returns
``None`` once the host has gone away.
"""

import asyncio
import json
import logging
import sys
from typing import TextIO

logger = logging.getLogger(__name__)


class MemoryChannel:
    """In-process channel backed by asyncio queues."""

    def __init__(self) -> None:
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []

    def push(self, message: dict | None) -> None:
        """Deliver a command to the worker; ``None`` closes the channel."""
        self.inbox.put_nowait(message)

    def close(self) -> None:
        self.push(None)

    async def receive(self) -> dict | None:
        return await self.inbox.get()

    async def send(self, message: dict) -> None:
        self.sent.append(message)


class StdioChannel:
    """JSON Lines over a pair of text streams, one object per line."""

    def __init__(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout

    async def receive(self) -> dict | None:
        while True:
            line = await asyncio.to_thread(self.stdin.readline)
            if not line:
                return None
            line = line.strip()
            if not line:
                continue
            try:
                message = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("Ignoring malformed command line: %s", e)
                continue
            if isinstance(message, dict):
                return message
            logger.warning("Ignoring non-object command: %r", message)

    async def send(self, message: dict) -> None:
        self.stdout.write(json.dumps(message, default=str) + "\n")
        self.stdout.flush()
