"""Raw connect probe - plain TCP connect, nothing else."""

import asyncio
import logging
from typing import Optional

from util.time import now_utc, round_trip_ms
from util.types import ProbeConfig

from netmon.collaborators import DNSResolver
from netmon.probes.base import BaseProbe, ProbeCancelled

logger = logging.getLogger(__name__)

DEFAULT_PORT = 443


class SocketProbe(BaseProbe):
    """Resolve the host, then open (and immediately close) a TCP connection."""

    def __init__(self, config: ProbeConfig, resolver: Optional[DNSResolver] = None):
        super().__init__(config)
        self.resolver = resolver or DNSResolver()

    async def _run(self):
        config = self.config
        port = config.port or DEFAULT_PORT
        try:
            addresses = await self.guarded(self.resolver.resolve(config.address, self.cancel_scope.token))
            if not addresses:
                self.process_exception("Unable to resolve domain.", "Unable to resolve domain.")
                return

            start = now_utc()
            reader, writer = await self.guarded(asyncio.open_connection(addresses[0], port))
            elapsed = round_trip_ms(start)
            writer.close()
            await writer.wait_closed()
            self.process_status("Connected", elapsed)
        except (asyncio.TimeoutError, ProbeCancelled):
            self.process_exception("Connection timed out.", "Connection timed out.")
        except Exception as e:
            self.log.debug(f"Connect to {config.address}:{port} failed: {e}")
            self.process_exception(str(e), "Exception")
