"""Probe collection - the registry the scheduler polls.

Holds one probe per monitored entity, picks the working set for each
cycle through the filter strategy and runs long-running probes through
a bounded gate. A probe that is already running or queued is never
started a second time.
"""

import asyncio
import logging
from typing import Callable, Iterable, List, Optional

from util.concurrency import TaskGate
from util.time import now_utc
from util.types import PingParams, ProbeConfig, ProbeResult

from netmon.factory import ConnectFactory
from netmon.filters import FilterStrategy
from netmon.probes.base import BaseProbe

logger = logging.getLogger(__name__)

# merge(result, monitor_ip_id) - hands a finished result back to the caller
MergeCallback = Callable[[ProbeResult, int], None]


class ProbeCollection:
    """Registry of probes keyed by monitored id."""

    def __init__(self, factory: ConnectFactory,
                 filter_strategy: Optional[FilterStrategy] = None,
                 max_task_queue_size: int = 100,
                 params: Optional[PingParams] = None):
        self.factory = factory
        self.params = params or PingParams()
        self.probes: List[BaseProbe] = []
        self._lock = asyncio.Lock()
        self.set_config(max_task_queue_size, filter_strategy)

    def set_config(self, max_task_queue_size: int, filter_strategy: Optional[FilterStrategy] = None):
        self.filter_strategy = filter_strategy or FilterStrategy()
        self.gate = TaskGate(max_task_queue_size)
        logger.info(f"Collection configured: filter={type(self.filter_strategy).__name__} "
                    f"max_task_queue_size={max_task_queue_size}")

    def __len__(self) -> int:
        return len(self.probes)

    def __getitem__(self, index: int) -> BaseProbe:
        return self.probes[index]

    def _find(self, monitor_ip_id: int, enabled_only: bool = False) -> Optional[BaseProbe]:
        # newest enabled entry wins; remove_and_add leaves disabled ones behind
        fallback = None
        for probe in reversed(self.probes):
            if probe.monitor_ip_id != monitor_ip_id:
                continue
            if probe.is_enabled:
                return probe
            if fallback is None and not enabled_only:
                fallback = probe
        return fallback

    # ----- selection -----

    def get_filtered(self) -> List[BaseProbe]:
        """Probes due this cycle: passed the filter and enabled."""
        probes = list(self.probes)
        self.filter_strategy.set_total_endpoints(probes)
        # the filter sees every probe, disabled ones included, so counters stay aligned
        selected = [p for p in probes if self.filter_strategy.should_include(p)]
        return [p for p in selected if p.is_enabled and p.config.enabled]

    def get_non_long_running(self) -> List[BaseProbe]:
        return [p for p in self.probes if not p.is_long_running]

    # ----- membership -----

    def add(self, config: ProbeConfig) -> BaseProbe:
        """Build a new probe for config and register it (always enabled)."""
        probe = self.factory.create(config, self.params)
        self.probes.append(probe)
        return probe

    def get_instance(self, config: ProbeConfig) -> BaseProbe:
        """Build a probe without registering it."""
        return self.factory.create(config, self.params)

    def update_or_add(self, config: ProbeConfig) -> BaseProbe:
        probe = self._find(config.monitor_ip_id)
        if probe is None:
            return self.add(config)
        if (config.endpoint_type or "").strip():
            if self.factory.resolve_type(config.endpoint_type) != probe.config.endpoint_type:
                return self.remove_and_add(config)
        self.factory.update_probe(probe, config, self.params)
        return probe

    def remove_and_add(self, config: ProbeConfig) -> BaseProbe:
        """Disable the current entry for this id and register a fresh one."""
        probe = self._find(config.monitor_ip_id, enabled_only=True)
        if probe is not None:
            probe.is_enabled = False
        return self.add(config)

    def disable_all(self, monitor_ip_id: int):
        for probe in self.probes:
            if probe.monitor_ip_id == monitor_ip_id:
                probe.is_enabled = False

    def reset_site_hash(self, monitor_ip_id: int):
        probe = self._find(monitor_ip_id)
        if probe is None:
            logger.warning(f"Unable to find probe with monitor id {monitor_ip_id}")
            return
        probe.update_config(site_hash="")

    def is_running(self, monitor_ip_id: int) -> bool:
        probe = self._find(monitor_ip_id)
        return probe is not None and probe.is_running

    async def net_connect_factory(self, configs: Iterable[ProbeConfig], params: Optional[PingParams] = None,
                                  is_init: bool = False, is_disable: bool = False):
        """Bulk seed or refresh.

        is_init starts from an empty registry; is_disable disables every
        current entry and re-adds the supplied ones (add re-enables).
        """
        async with self._lock:
            if params is not None:
                self.params = params
            if is_init:
                self.probes = []
            if is_disable:
                for probe in self.probes:
                    probe.is_enabled = False
            for config in configs:
                try:
                    if is_disable:
                        self.add(config)
                    else:
                        self.update_or_add(config)
                except Exception as e:
                    logger.error(f"Failed to register monitor id {config.monitor_ip_id}: {e}")

    # ----- execution -----

    def _merge(self, probe: BaseProbe, merge: MergeCallback):
        if probe.is_enabled:
            merge(probe.result, probe.monitor_ip_id)

    async def handle_long_running_task(self, probe: BaseProbe, merge: MergeCallback):
        """Run a long-running probe through the gate, at most once at a time."""
        endpoint_type = probe.config.endpoint_type
        if probe.is_running:
            logger.warning(f"The long running {endpoint_type} task for {probe.monitor_ip_id} is already running")
            return
        if not probe.is_enabled:
            logger.warning(f"Monitor id {probe.monitor_ip_id} is disabled at start of long running task")
            return
        if probe.is_queued:
            logger.warning(f"Rejecting {endpoint_type} task for {probe.monitor_ip_id}: already queued")
            return

        probe.is_queued = True
        try:
            async with self.gate.acquire():
                probe.is_queued = False
                logger.debug(f"Starting {endpoint_type} task for {probe.monitor_ip_id}")
                try:
                    await probe.connect()
                except Exception as e:
                    logger.error(f"{endpoint_type} task for {probe.monitor_ip_id} failed: {e}")
        finally:
            probe.is_queued = False
            self._merge(probe, merge)
            logger.debug(f"Finished {endpoint_type} task for {probe.monitor_ip_id}")

    async def handle_short_running_task(self, probe: BaseProbe, merge: MergeCallback):
        endpoint_type = probe.config.endpoint_type
        if probe.is_running:
            logger.warning(f"The short running {endpoint_type} task for {probe.monitor_ip_id} is already running")
            return
        if not probe.is_enabled:
            logger.warning(f"Monitor id {probe.monitor_ip_id} is disabled at start of short running task")
            return
        try:
            await probe.connect()
        except Exception as e:
            logger.error(f"{endpoint_type} task for {probe.monitor_ip_id} failed: {e}")
        finally:
            self._merge(probe, merge)

    async def wait_all_tasks(self, poll_seconds: float = 1.0, timeout: Optional[float] = None):
        """Block until no probe reports running (or timeout seconds pass)."""
        start = now_utc()
        while True:
            running = sum(1 for p in list(self.probes) if p.is_running)
            if running == 0:
                break
            elapsed = (now_utc() - start).total_seconds()
            if timeout is not None and elapsed >= timeout:
                logger.warning(f"Gave up waiting after {elapsed:.0f}s with {running} probes still running")
                break
            logger.debug(f"Tasks waiting {elapsed:.0f}s, running={running}, queued={self.gate.waiting}")
            await asyncio.sleep(poll_seconds)

    def log_info(self) -> str:
        message = f"Gate tasks waiting: {self.gate.waiting}. Slots remaining {self.gate.slots_remaining}."
        logger.info(message)
        return message
