"""Base for probes that delegate to an external command processor.

Nmap scans, site crawls, BLE tools and keep-alive pokes all follow the
same shape: look up a named processor, build an argument string, await
the processor's text result and classify it.
"""

import asyncio
import logging
from typing import Optional, Tuple

from util.time import now_utc, round_trip_ms
from util.types import CommandResult, ProbeConfig

from netmon.collaborators import CommandProcessorProvider
from netmon.probes.base import BaseProbe, ProbeCancelled

logger = logging.getLogger(__name__)


def strip_http_scheme(address: str) -> str:
    for prefix in ('https://', 'http://'):
        if address.startswith(prefix):
            return address[len(prefix):]
    return address


class CommandProbe(BaseProbe):
    """Probe backed by a named command processor.

    Subclasses set processor_name, implement build_arguments() and
    handle_result(), and may override validate() to reject a config
    before the processor is invoked.
    """

    processor_name = ""
    long_running = True
    error_status = "Exception"

    def __init__(self, config: ProbeConfig,
                 processor_provider: Optional[CommandProcessorProvider] = None,
                 base_args: str = ""):
        super().__init__(config)
        self.processor_provider = processor_provider
        self.base_args = base_args

    def validate(self) -> Optional[Tuple[str, str]]:
        """Return (message, status) when the config cannot be run."""
        return None

    def build_arguments(self) -> str:
        raise NotImplementedError

    def handle_result(self, result: CommandResult, elapsed_ms: int):
        raise NotImplementedError

    async def _run(self):
        processor = None
        if self.processor_provider is not None:
            processor = self.processor_provider.get_processor(self.processor_name)
        if processor is None:
            self.process_exception("No Command Processor Available", "Error")
            return

        problem = self.validate()
        if problem is not None:
            self.process_exception(*problem)
            return

        arguments = self.build_arguments()
        self.log.debug(f"{self.processor_name} {arguments}")
        start = now_utc()
        try:
            result = await self.guarded(processor.run(self.cancel_scope.token, arguments))
        except (asyncio.TimeoutError, ProbeCancelled):
            self.process_exception(f"Timed out after {self.effective_timeout_ms()} ms", "Timeout")
            return
        except Exception as e:
            self.log.warning(f"{self.processor_name} failed: {e}")
            self.process_exception(str(e), "Exception")
            return

        self.handle_result(result, round_trip_ms(start))
