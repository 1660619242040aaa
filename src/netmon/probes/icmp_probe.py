"""ICMP probe - one echo request per run."""

import asyncio
import logging
from typing import Optional

from util.types import ProbeConfig

from netmon.collaborators import SystemPinger
from netmon.probes.base import BaseProbe, ProbeCancelled

logger = logging.getLogger(__name__)


class ICMPProbe(BaseProbe):
    """Simple ping.

    The pinger is injectable; the default shells out to the system
    ping binary.
    """

    def __init__(self, config: ProbeConfig, pinger: Optional[SystemPinger] = None):
        super().__init__(config)
        self.pinger = pinger or SystemPinger()

    async def _run(self):
        config = self.config
        try:
            reply = await self.guarded(self.pinger.ping(config.address, config.timeout))
        except asyncio.TimeoutError:
            self.process_exception("Ping Reply Null", "Ping Reply Null")
            return
        except ProbeCancelled:
            self.process_exception("Ping Canceled", "Ping Canceled")
            return
        except Exception as e:
            self.log.debug(f"Ping failed: {e}")
            self.process_exception(str(e), "Exception")
            return

        if reply is None:
            self.process_exception("Ping Reply Null", "Ping Reply Null")
        elif reply.status == "Success":
            self.process_status(reply.status, reply.round_trip_time)
        else:
            self.process_exception(reply.status, "Exception")
