"""Concurrency primitives for long-running probes.

Long scans (nmap, crawls, quantum handshakes) go through a bounded
gate so a poll cycle cannot launch an unbounded number of them.
Short probes are never gated.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class TaskGate:
    """Semaphore-backed gate with queue bookkeeping.

    Tracks how many callers are waiting and how many slots are busy so
    the collection can report backpressure.
    """

    def __init__(self, max_size: int = 100):
        """Initialize with the number of concurrent slots."""
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        self.max_size = max_size
        self.semaphore = asyncio.Semaphore(max_size)
        self.waiting = 0
        self.active = 0

    @property
    def slots_remaining(self) -> int:
        return self.max_size - self.active

    @asynccontextmanager
    async def acquire(self):
        """Wait for a free slot, hold it for the body, always release.

        Usage:
            async with gate.acquire():
                await probe.connect()
        """
        self.waiting += 1
        if self.waiting > self.max_size:
            logger.error(f"Waiting tasks ({self.waiting}) exceed gate capacity {self.max_size}")
        try:
            await self.semaphore.acquire()
        finally:
            self.waiting -= 1

        self.active += 1
        try:
            yield
        finally:
            self.active -= 1
            self.semaphore.release()
