"""Probe contract shared by every endpoint type.

A probe is the runtime handle for one monitored entity: its config
snapshot, the result of its latest run and the run-state flags the
collection looks at. Each run goes Idle -> Running -> Idle through
pre_connect, the protocol specific _run and post_connect; connect()
wires those together and guarantees the result always ends in a
terminal state.
"""

import asyncio
import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Optional

from util.log import ProbeLoggerAdapter
from util.time import now_utc, clamp_round_trip
from util.types import ProbeConfig, ProbeResult, StatusSnapshot, ROUND_TRIP_MAX

from netmon.collaborators import CancelToken

logger = logging.getLogger(__name__)

MAX_MESSAGE_DETAIL = 255

_PARENTHESISED = re.compile(r'\(.*\)')


class ProbeCancelled(Exception):
    """The run was cancelled through its token before the exchange finished."""


class CancelScope:
    """Deadline plus cancel token for one run.

    Every awaited exchange goes through run(), so expiry or an explicit
    cancel stops in-flight I/O instead of leaving the probe hanging.
    """

    def __init__(self, timeout_ms: int):
        self.timeout_ms = timeout_ms
        self.token = CancelToken()
        self._deadline = time.monotonic() + timeout_ms / 1000
        self.closed = False

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def remaining(self) -> float:
        """Seconds left before the deadline (never negative)."""
        return max(0.0, self._deadline - time.monotonic())

    def cancel(self):
        self.token.cancel()

    async def run(self, awaitable: Awaitable) -> Any:
        """Await inside the scope.

        Raises asyncio.TimeoutError when the deadline passes and
        ProbeCancelled when the token fires first.
        """
        task = asyncio.ensure_future(awaitable)
        if self.cancelled:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise ProbeCancelled("Run cancelled")

        waiter = asyncio.ensure_future(self.token.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done and not task.cancelled():
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        if self.cancelled:
            raise ProbeCancelled("Run cancelled")
        raise asyncio.TimeoutError()

    def close(self):
        self.closed = True


class BaseProbe(ABC):
    """Abstract probe: state machine plus status reporting helpers.

    Subclasses implement _run() and finish every path by calling either
    process_status() or process_exception(). Anything that still
    escapes is caught by connect() and reported as "Exception".

    Class attributes a variant may override:
      long_running: run through the collection's concurrency gate
      extend_timeout: multiply the configured timeout for slow probes
      extend_timeout_multiplier: the factor used when extend_timeout is set
    """

    long_running = False
    extend_timeout = False
    extend_timeout_multiplier = 10

    def __init__(self, config: ProbeConfig):
        self._config = config
        self._config_lock = threading.Lock()
        self.result = ProbeResult()
        self.is_running = False
        self.is_queued = False
        self.is_enabled = True
        self.is_long_running = self.long_running
        self.run_id = 0
        self.cancel_scope: Optional[CancelScope] = None
        self.last_connect_time = None
        self._resolved = False
        self.log = ProbeLoggerAdapter(logger, {'probe': self})

    # ----- config snapshot -----

    @property
    def config(self) -> ProbeConfig:
        # single reference load, never a torn read
        return self._config

    @property
    def monitor_ip_id(self) -> int:
        return self._config.monitor_ip_id

    def update_config(self, **changes) -> ProbeConfig:
        """Swap in a new snapshot with the given fields changed.

        Writers serialize on a lock so concurrent updates are not lost;
        readers never take it.
        """
        with self._config_lock:
            self._config = self._config.with_changes(**changes)
            return self._config

    def replace_config(self, config: ProbeConfig):
        with self._config_lock:
            self._config = config

    def set_site_hash(self, site_hash: str):
        """Store a content hash on both the result and the config."""
        self.result.site_hash = site_hash
        self.update_config(site_hash=site_hash)

    # ----- lifecycle -----

    def effective_timeout_ms(self) -> int:
        timeout = self._config.timeout
        if self.extend_timeout:
            timeout *= self.extend_timeout_multiplier
        return timeout

    def pre_connect(self):
        """Mark running, start a fresh result and open the cancel scope."""
        self.is_running = True
        self.run_id += 1
        self._resolved = False
        now = now_utc()
        self.last_connect_time = now
        config = self._config
        self.result = ProbeResult(
            event_time=now,
            site_hash=config.site_hash,
            ping_info=StatusSnapshot(
                status_id=self.run_id,
                monitor_ping_info_id=config.monitor_ip_id,
                date_sent=now
            )
        )
        self.cancel_scope = CancelScope(self.effective_timeout_ms())

    def post_connect(self):
        self.is_running = False
        if self.cancel_scope is not None:
            self.cancel_scope.close()
            self.cancel_scope = None

    async def connect(self):
        """Run one full check. Never raises past this boundary."""
        self.pre_connect()
        try:
            await self._run()
            if not self._resolved:
                self.process_exception("No result returned", "Exception")
        except Exception as e:
            self.log.warning(f"Unhandled probe error: {e}")
            self.process_exception(str(e), "Exception")
        finally:
            self.post_connect()

    @abstractmethod
    async def _run(self):
        """Protocol exchange for this endpoint type."""

    def cancel(self):
        """Cancel the in-flight run, if any."""
        if self.cancel_scope is not None:
            self.cancel_scope.cancel()

    async def guarded(self, awaitable: Awaitable) -> Any:
        """Await under the current run's cancel scope."""
        return await self.cancel_scope.run(awaitable)

    # ----- status helpers -----

    def process_status(self, reply: str, round_trip_ms: float, extra: str = ""):
        """Record an "up" outcome."""
        self._resolved = True
        message = f"{reply} {extra}".strip() if extra else reply
        self.result.message = message
        self.result.is_up = True
        self.result.event_time = now_utc()
        self.result.ping_info.status = reply
        self.result.ping_info.round_trip_time = clamp_round_trip(round_trip_ms)

    def process_exception(self, message: str, short_status: str):
        """Record a "down" outcome with a prefixed, truncated message."""
        self._resolved = True
        detail = _PARENTHESISED.sub('', message or '')
        if len(detail) > MAX_MESSAGE_DETAIL:
            detail = detail[:MAX_MESSAGE_DETAIL]
        self.result.message = f"{self._config.endpoint_type.upper()}: Failed to connect: {detail}"
        self.result.is_up = False
        self.result.event_time = now_utc()
        self.result.ping_info.status = short_status
        self.result.ping_info.round_trip_time = ROUND_TRIP_MAX
        self.log.debug(f"{short_status}: {detail}")

    def __repr__(self) -> str:
        return (f"{type(self).__name__}(id={self.monitor_ip_id}, type={self._config.endpoint_type}, "
                f"enabled={self.is_enabled}, running={self.is_running})")
