"""External collaborators the probes talk to.

Probes never shell out or resolve names directly: they go through the
narrow interfaces here so tests can swap in doubles. Default
implementations cover DNS (dnspython), ICMP (system ping) and running
an external binary as a command processor.
"""

import asyncio
import logging
import re
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

import dns.asyncresolver
import dns.resolver

from util.types import CommandResult

logger = logging.getLogger(__name__)


class CancelToken:
    """Cooperative cancellation flag shared between a probe and its collaborators."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        self._event.set()

    async def wait(self):
        await self._event.wait()


class CommandProcessor(ABC):
    """Runs one kind of external command (nmap, crawler, BLE tool...)."""

    @abstractmethod
    async def run(self, cancel: CancelToken, arguments: str) -> CommandResult:
        """Run with space separated CLI-style arguments."""


class CommandProcessorProvider:
    """Name -> processor lookup.

    Missing names return None; callers treat that as a reportable
    condition, not an error.
    """

    def __init__(self, processors: Optional[Dict[str, CommandProcessor]] = None):
        self._processors: Dict[str, CommandProcessor] = dict(processors or {})

    def register(self, name: str, processor: CommandProcessor):
        self._processors[name] = processor

    def get_processor(self, name: str) -> Optional[CommandProcessor]:
        return self._processors.get(name)

    def names(self) -> List[str]:
        return sorted(self._processors)


class SubprocessCommandProcessor(CommandProcessor):
    """Command processor backed by a local executable.

    Arguments are split shell-style and appended to the executable.
    Success means exit code 0; the message is stdout (plus stderr on
    failure).
    """

    def __init__(self, executable: str, base_args: Optional[List[str]] = None):
        self.executable = executable
        self.base_args = list(base_args or [])

    async def run(self, cancel: CancelToken, arguments: str) -> CommandResult:
        argv = [self.executable] + self.base_args + shlex.split(arguments)
        logger.debug(f"Running command: {' '.join(argv)}")
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
        communicate = asyncio.ensure_future(proc.communicate())
        cancelled = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({communicate, cancelled}, return_when=asyncio.FIRST_COMPLETED)
            if communicate not in done:
                proc.kill()
                await communicate
                return CommandResult(success=False, message=f"Command {self.executable} was cancelled")
            stdout, stderr = communicate.result()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
            raise
        finally:
            cancelled.cancel()

        output = stdout.decode(errors='replace')
        if proc.returncode == 0:
            return CommandResult(success=True, message=output)
        error = stderr.decode(errors='replace')
        return CommandResult(success=False, message=f"Error: {error.strip()} {output}".strip())


PageFunc = Callable[[object], Awaitable[str]]


class BrowserHost(ABC):
    """Headless browser wrapper used for full page loads and content hashing."""

    @abstractmethod
    async def run_with_page(self, page_func: PageFunc, cancel: CancelToken) -> str:
        """Open a page, hand it to page_func and return what it returns."""


class DNSResolver:
    """Async resolver using dnspython.

    Queries A and AAAA in parallel. Missing records of one family are
    not an error; a host with neither gives an empty list.
    """

    def __init__(self, nameservers: Optional[List[str]] = None):
        self.nameservers = nameservers
        self._resolver: Optional[dns.asyncresolver.Resolver] = None

    @property
    def resolver(self) -> dns.asyncresolver.Resolver:
        # built on first use so constructing probes never reads resolv.conf
        if self._resolver is None:
            self._resolver = dns.asyncresolver.Resolver()
            if self.nameservers:
                self._resolver.nameservers = self.nameservers
        return self._resolver

    async def resolve(self, host: str, cancel: Optional[CancelToken] = None) -> List[str]:
        """Return unique addresses for host (IPv4 first)."""
        answers = await asyncio.gather(
            self.resolver.resolve(host, 'A'),
            self.resolver.resolve(host, 'AAAA'),
            return_exceptions=True
        )

        addresses: List[str] = []
        errors = []
        for answer in answers:
            if isinstance(answer, (dns.resolver.NoAnswer, dns.resolver.NXDOMAIN)):
                continue
            if isinstance(answer, Exception):
                errors.append(answer)
                continue
            for rdata in answer:
                text = rdata.to_text()
                if text not in addresses:
                    addresses.append(text)

        if not addresses and errors:
            raise errors[0]
        return addresses


@dataclass
class PingReply:
    status: str
    round_trip_time: int = 0


_PING_TIME = re.compile(r'time[=<]\s*([\d.]+)\s*ms')


class SystemPinger:
    """ICMP echo through the system ping binary.

    Returns None when no reply came back at all.
    """

    def __init__(self, executable: str = 'ping'):
        self.executable = executable

    async def ping(self, address: str, timeout_ms: int) -> Optional[PingReply]:
        wait_seconds = max(1, -(-timeout_ms // 1000))
        proc = await asyncio.create_subprocess_exec(
            self.executable, '-c', '1', '-W', str(wait_seconds), address,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
            raise

        output = stdout.decode(errors='replace')
        if proc.returncode == 0:
            match = _PING_TIME.search(output)
            rtt = int(float(match.group(1))) if match else 0
            return PingReply(status="Success", round_trip_time=rtt)

        if 'unreachable' in output.lower():
            return PingReply(status="DestinationHostUnreachable")
        if proc.returncode == 1:
            return None

        error = stderr.decode(errors='replace').strip()
        return PingReply(status=error or f"ping exited with {proc.returncode}")
