"""BLE probes - decrypt a device broadcast, or just listen.

blebroadcast needs the device address and its key (kept in the
password field) and can pull a numeric metric out of the decoded
advertisement. blebroadcastlisten scans without an address filter.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from util.time import clamp_round_trip
from util.types import CommandResult

from netmon.probes.command_probe import CommandProbe

logger = logging.getLogger(__name__)

DEFAULT_METRIC = "pv_power"

_METRIC_ARG = re.compile(r'--metric(?:=|\s+)(?P<value>\S+)', re.IGNORECASE)


@dataclass(frozen=True)
class Metric:
    name: str
    pattern: str
    scale: float
    unit: str
    decimals: int


_METRICS = (
    Metric("pv_power", r'PV power:\s*(?P<val>[-+]?\d+)', 1, "W", 0),
    Metric("battery_voltage", r'Battery voltage:\s*(?P<val>[-+]?\d+(\.\d+)?)', 100, "V", 2),
    Metric("battery_current", r'Battery current:\s*(?P<val>[-+]?\d+(\.\d+)?)', 10, "A", 1),
    Metric("load_current", r'Load current:\s*(?P<val>[-+]?\d+(\.\d+)?)', 10, "A", 1),
    Metric("yield_today", r'Yield today:\s*(?P<val>[-+]?\d+(\.\d+)?)', 100, "kWh", 2),
)

_ALIASES: Dict[str, str] = {
    "pv_power": "pv_power", "pvpower": "pv_power", "pv": "pv_power",
    "battery_voltage": "battery_voltage", "battery_voltage_v": "battery_voltage", "battery_v": "battery_voltage",
    "battery_current": "battery_current", "battery_current_a": "battery_current", "battery_a": "battery_current",
    "load_current": "load_current", "load_current_a": "load_current", "load_a": "load_current",
    "yield_today": "yield_today", "yield": "yield_today", "yield_today_kwh": "yield_today",
}


def metric_from_args(args: str) -> str:
    if not args or not args.strip():
        return DEFAULT_METRIC
    match = _METRIC_ARG.search(args)
    if match:
        return match.group('value').strip().lower()
    return DEFAULT_METRIC


def extract_metric(output: str, metric: str) -> Optional[Tuple[int, str]]:
    """Find metric in decoded output. Returns (slot value, label) or None."""
    name = _ALIASES.get(metric.strip().lower())
    if name is None:
        return None
    info = next(m for m in _METRICS if m.name == name)
    match = re.search(info.pattern, output or "", re.IGNORECASE)
    if not match:
        return None
    number = float(match.group('val'))
    # round half away from zero
    scaled = int(abs(number) * info.scale + 0.5) * (1 if number >= 0 else -1)
    value = clamp_round_trip(scaled)
    if info.decimals == 0:
        label = f"{info.name}={value}{info.unit}"
    else:
        label = f"{info.name}={number:.{info.decimals}f}{info.unit}"
    return value, label


class BleBroadcastProbe(CommandProbe):
    """Decode a BLE broadcast for one device."""

    processor_name = "BleBroadcast"
    extend_timeout = True
    error_status = "BLE Error"

    def _extra_args(self) -> str:
        config = self.config
        extra = (config.args or "").strip()
        if not extra:
            extra = (config.username or "").strip()
        return extra

    def validate(self):
        config = self.config
        if not (config.address or "").strip():
            return "Missing BLE address", "Error"
        if not (config.password or "").strip():
            return "Missing BLE key (use Password field)", "Error"
        return None

    def build_arguments(self) -> str:
        config = self.config
        arguments = f'--address "{config.address.strip()}" --key "{config.password.strip()}"'
        extra = self._extra_args()
        if extra:
            arguments += f" {extra}"
        return arguments

    def handle_result(self, result: CommandResult, elapsed_ms: int):
        if not result.success:
            self.process_exception(result.message, self.error_status)
            return
        extracted = extract_metric(result.message, metric_from_args(self._extra_args()))
        if extracted is not None:
            value, label = extracted
            self.process_status(f"BLE {label}", value, result.message)
        else:
            self.process_status("BLE broadcast received", elapsed_ms, result.message)


class BleBroadcastListenProbe(BleBroadcastProbe):
    """Listen for any broadcast; key optional, address never sent."""

    processor_name = "BleBroadcastListen"

    def validate(self):
        return None

    def build_arguments(self) -> str:
        parts = []
        key = (self.config.password or "").strip()
        if key:
            parts.append(f'--key "{key}"')
        extra = self._extra_args()
        if extra:
            parts.append(extra)
        return " ".join(parts)

    def handle_result(self, result: CommandResult, elapsed_ms: int):
        if result.success:
            self.process_status("BLE listen complete", elapsed_ms, result.message)
        else:
            self.process_exception(result.message, self.error_status)
