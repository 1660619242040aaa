"""SMTP probe - connect, say HELO, expect a 220."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple

from util.time import now_utc, round_trip_ms
from util.types import ProbeConfig

from netmon.probes.base import BaseProbe, ProbeCancelled

logger = logging.getLogger(__name__)

DEFAULT_PORT = 25
READ_LIMIT = 1024

StreamOpener = Callable[[str, int], Awaitable[Tuple[asyncio.StreamReader, asyncio.StreamWriter]]]


class SMTPProbe(BaseProbe):
    """Talks just enough SMTP to get a greeting.

    The stream opener is injectable so tests can hand back fake
    reader/writer pairs.
    """

    def __init__(self, config: ProbeConfig, open_stream: Optional[StreamOpener] = None):
        super().__init__(config)
        self.open_stream = open_stream or asyncio.open_connection

    async def _run(self):
        config = self.config
        port = config.port or DEFAULT_PORT
        start = now_utc()
        try:
            response = await self.guarded(self._exchange(config.address, port))
        except (asyncio.TimeoutError, ProbeCancelled):
            self.process_exception("Timeout", "Timeout")
            return
        except Exception as e:
            self.log.debug(f"SMTP exchange with {config.address}:{port} failed: {e}")
            self.process_exception(str(e), "Exception")
            return

        if response.startswith("220 "):
            self.process_status("Connect Ok", round_trip_ms(start))
        else:
            self.process_exception(response, "Unexpected response from SMTP server: ")

    async def _exchange(self, address: str, port: int) -> str:
        reader, writer = await self.open_stream(address, port)
        try:
            writer.write(f"HELO {address} \r\n".encode())
            await writer.drain()
            data = await reader.read(READ_LIMIT)
            return data.decode(errors='replace')
        finally:
            writer.close()
