"""DNS probe - can we even resolve it?

Resolution goes through an injectable resolver so tests never touch
real name servers.
"""

import asyncio
import logging
from typing import Optional

import dns.exception

from util.time import now_utc, round_trip_ms
from util.types import ProbeConfig

from netmon.collaborators import DNSResolver
from netmon.probes.base import BaseProbe, ProbeCancelled

logger = logging.getLogger(__name__)


class DNSProbe(BaseProbe):
    """Resolve the configured host and list the addresses found."""

    def __init__(self, config: ProbeConfig, resolver: Optional[DNSResolver] = None):
        super().__init__(config)
        self.resolver = resolver or DNSResolver()

    async def _run(self):
        host = self.config.address
        start = now_utc()
        try:
            addresses = await self.guarded(self.resolver.resolve(host, self.cancel_scope.token))
        except (asyncio.TimeoutError, ProbeCancelled):
            self.process_exception(f"Timeout while resolving {host}", "Timeout")
            return
        except dns.exception.DNSException as e:
            self.log.debug(f"DNS error for {host}: {e}")
            self.process_exception(str(e) or type(e).__name__, "Exception")
            return
        except Exception as e:
            self.log.warning(f"DNS error for {host}: {e}")
            self.process_exception(str(e), "Exception")
            return

        if not addresses:
            self.process_exception("No IP addresses found for host", "Exception")
            return

        self.process_status("Found IP Addresses", round_trip_ms(start), ": " + ", ".join(addresses))
