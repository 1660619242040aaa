"""Poll cycle filter strategies.

A strategy decides, per probe, whether it runs this cycle. Each one
only looks at probes whose endpoint type matches its names; anything
else passes through. Counter strategies spread N same-type probes over
N cycles; daily strategies give each probe one slot per day.

Counter rule: include when (counter + offset) % every == 0, then
advance; when the counter wraps past the number of matching probes it
resets and the offset rotates, so every probe gets its turn.
"""

import logging
import random
import threading
import zlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from util.time import minute_of_day, now_utc

logger = logging.getLogger(__name__)

MODE_COUNTER = "counter"
MODE_RANDOMIZED_COUNTER = "randomizedcounter"
MODE_DAILY_SLOT = "dailyslot"

MINUTES_PER_DAY = 1440

# Endpoint type fragments each legacy strategy name applies to
LEGACY_MATCHES: Dict[str, List[str]] = {
    "smtp": ["smtp"],
    "quantum": ["quantum"],
    "cmd": ["nmap", "crawlsite"],
    "randomcmd": ["crawlsite"],
    "daily": ["daily"],
}


def stable_slot(monitor_ip_id: int, slots: int) -> int:
    """Slot for an id that does not change between runs (unlike hash())."""
    return zlib.crc32(str(monitor_ip_id).encode()) % slots


def _matches(probe, names: Sequence[str]) -> bool:
    endpoint_type = (probe.config.endpoint_type or "").lower()
    return any(name in endpoint_type for name in names)


class FilterStrategy:
    """Base strategy: include everything."""

    def set_total_endpoints(self, probes: Sequence) -> None:
        pass

    def should_include(self, probe) -> bool:
        return True


class _Counter:
    """Counter/offset state for one strategy."""

    def __init__(self, every: int, offset: int = 0):
        self.every = max(1, every)
        self.offset = offset % self.every
        self.counter = 0
        self.total = 1
        self.lock = threading.Lock()

    def set_total(self, total: int):
        with self.lock:
            self.total = max(1, total)
            if self.counter >= self.total:
                self.counter %= self.total

    def next(self) -> bool:
        with self.lock:
            include = (self.counter + self.offset) % self.every == 0
            self.counter += 1
            if self.counter >= self.total:
                self.counter = 0
                self.offset = (self.offset + 1) % self.every
            return include


def _start_offset(every: int, start: int) -> int:
    # offset that makes the probe at position `start` the first one picked
    every = max(1, every)
    return (every - start % every) % every


class CounterFilterStrategy(FilterStrategy):
    """Runs one in every `skip` matching probes per cycle, starting at `start`."""

    def __init__(self, skip: int, start: int = 0, matching_names: Optional[Sequence[str]] = None):
        skip = skip or 1
        self.matching_names = list(matching_names or [])
        self.state = _Counter(skip, _start_offset(skip, start))

    def set_total_endpoints(self, probes: Sequence) -> None:
        self.state.set_total(sum(1 for p in probes if _matches(p, self.matching_names)))

    def should_include(self, probe) -> bool:
        if not _matches(probe, self.matching_names):
            return True
        return self.state.next()


class RandomCounterFilterStrategy(CounterFilterStrategy):
    """Counter strategy whose picks then only run with the given probability."""

    def __init__(self, skip: int, start: int = 0, matching_names: Optional[Sequence[str]] = None,
                 probability: float = 0.5, rng: Optional[random.Random] = None):
        super().__init__(skip, start, matching_names)
        self.probability = probability
        self.rng = rng or random.Random()

    def should_include(self, probe) -> bool:
        if not _matches(probe, self.matching_names):
            return True
        if not self.state.next():
            return False
        include = self.rng.random() < self.probability
        logger.debug(f"Random filter decision for {probe.config.endpoint_type}:{probe.monitor_ip_id}: {include}")
        return include


class DailyFilterStrategy(FilterStrategy):
    """Each matching probe runs once a day, inside its own slot of the day."""

    def __init__(self, matching_names: Optional[Sequence[str]] = None, slots_per_day: int = 24,
                 clock: Callable[[], datetime] = now_utc):
        self.matching_names = list(matching_names or LEGACY_MATCHES["daily"])
        self.slots_per_day = max(1, min(MINUTES_PER_DAY, slots_per_day))
        self.clock = clock
        self._last_runs: Dict[int, datetime] = {}
        self._lock = threading.Lock()

    def should_include(self, probe) -> bool:
        if not _matches(probe, self.matching_names):
            return True
        now = self.clock()
        minutes_per_slot = MINUTES_PER_DAY / self.slots_per_day
        current_slot = int(minute_of_day(now) / minutes_per_slot)
        if stable_slot(probe.monitor_ip_id, self.slots_per_day) != current_slot:
            return False
        with self._lock:
            last = self._last_runs.get(probe.monitor_ip_id)
            if last is None or last.date() < now.date():
                self._last_runs[probe.monitor_ip_id] = now
                return True
            return False


class CompositeFilterStrategy(FilterStrategy):
    """Logical AND of its strategies."""

    def __init__(self, *strategies: FilterStrategy):
        self.strategies = list(strategies)

    def set_total_endpoints(self, probes: Sequence) -> None:
        for strategy in self.strategies:
            strategy.set_total_endpoints(probes)

    def should_include(self, probe) -> bool:
        # every strategy sees the probe so counters advance consistently
        results = [strategy.should_include(probe) for strategy in self.strategies]
        return all(results)


@dataclass
class FilterStrategyConfig:
    """One configured filter.

    endpoint_type_contains defaults to the legacy mapping for
    strategy_name (or the name itself).
    """
    strategy_name: str
    filter_skip: int = 1
    filter_start: int = 0
    mode: str = MODE_COUNTER
    endpoint_type_contains: List[str] = field(default_factory=list)
    probability: float = 0.5
    slots_per_day: int = 24

    def __post_init__(self):
        self.strategy_name = (self.strategy_name or "").strip().lower()
        self.mode = (self.mode or MODE_COUNTER).replace("_", "").lower()
        if self.mode not in (MODE_COUNTER, MODE_RANDOMIZED_COUNTER, MODE_DAILY_SLOT):
            raise ValueError(f"Unknown filter mode: {self.mode}")
        if not self.endpoint_type_contains:
            self.endpoint_type_contains = list(LEGACY_MATCHES.get(self.strategy_name, [self.strategy_name]))
        self.endpoint_type_contains = [n.lower() for n in self.endpoint_type_contains if n]
        self.filter_skip = max(1, int(self.filter_skip or 1))
        self.probability = min(1.0, max(0.0, float(self.probability)))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FilterStrategyConfig":
        return cls(
            strategy_name=data.get("strategy_name", ""),
            filter_skip=data.get("filter_skip", 1),
            filter_start=data.get("filter_start", 0),
            mode=data.get("mode", MODE_COUNTER),
            endpoint_type_contains=list(data.get("endpoint_type_contains") or []),
            probability=data.get("probability", 0.5),
            slots_per_day=data.get("slots_per_day", 24),
        )

    @classmethod
    def parse(cls, text: str) -> "FilterStrategyConfig":
        """Parse the "name:skip[:start]" shorthand."""
        parts = [p.strip() for p in text.split(":")]
        try:
            skip = int(parts[1]) if len(parts) > 1 and parts[1] else 1
            start = int(parts[2]) if len(parts) > 2 and parts[2] else 0
        except ValueError:
            raise ValueError(f"Invalid filter shorthand: {text!r}")
        mode = MODE_DAILY_SLOT if parts[0].lower() == "daily" else MODE_COUNTER
        if parts[0].lower() == "randomcmd":
            mode = MODE_RANDOMIZED_COUNTER
        return cls(strategy_name=parts[0], filter_skip=skip, filter_start=start, mode=mode)

    def is_match(self, probe) -> bool:
        return _matches(probe, self.endpoint_type_contains)


class ConfigurableFilterStrategy(FilterStrategy):
    """Filter driven entirely by a list of FilterStrategyConfig."""

    def __init__(self, configs: Iterable[FilterStrategyConfig],
                 rng: Optional[random.Random] = None, clock: Callable[[], datetime] = now_utc):
        self.configs = list(configs)
        self.rng = rng or random.Random()
        self._counters: Dict[int, _Counter] = {}
        self._daily: Dict[int, DailyFilterStrategy] = {}
        for index, config in enumerate(self.configs):
            if config.mode == MODE_DAILY_SLOT:
                self._daily[index] = DailyFilterStrategy(config.endpoint_type_contains,
                                                         config.slots_per_day, clock)
            else:
                self._counters[index] = _Counter(
                    config.filter_skip, _start_offset(config.filter_skip, config.filter_start)
                )

    def set_total_endpoints(self, probes: Sequence) -> None:
        for index, state in self._counters.items():
            config = self.configs[index]
            state.set_total(sum(1 for p in probes if config.is_match(p)))

    def should_include(self, probe) -> bool:
        for index, config in enumerate(self.configs):
            if not config.is_match(probe):
                continue
            if config.mode == MODE_DAILY_SLOT:
                include = self._daily[index].should_include(probe)
            elif config.mode == MODE_RANDOMIZED_COUNTER:
                include = self._counters[index].next() and self.rng.random() < config.probability
            else:
                include = self._counters[index].next()
            if not include:
                return False
        return True

    def describe(self) -> List[str]:
        return [
            f"{c.strategy_name}: mode={c.mode} skip={c.filter_skip} start={c.filter_start} "
            f"types={','.join(c.endpoint_type_contains)}"
            for c in self.configs
        ]


def create_strategy(name: str, skip: int, start: int = 0) -> FilterStrategy:
    """Build one of the named legacy strategies."""
    name = (name or "").lower()
    if name in ("smtp", "quantum", "cmd"):
        return CounterFilterStrategy(skip, start, LEGACY_MATCHES[name])
    if name == "randomcmd":
        return RandomCounterFilterStrategy(skip, start, LEGACY_MATCHES[name])
    if name == "daily":
        return DailyFilterStrategy()
    raise ValueError(f"Unknown strategy name: {name}")


def build_filter_configs(filter_strategies: Iterable[Dict[str, Any]],
                         enabled_filters: Iterable[str]) -> List[FilterStrategyConfig]:
    """Merge JSON strategy dicts and "name:skip[:start]" shorthands."""
    configs = [FilterStrategyConfig.from_dict(d) for d in filter_strategies]
    configs += [FilterStrategyConfig.parse(text) for text in enabled_filters]
    return configs
