"""Core data types shared by the probe core.

Config snapshots, per-run results and the records produced by the
quantum-safe handshake check all live here so probes, the collection
and the analyzer agree on field names.
"""

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Dict, Any, Optional


# Round trip time reported for failed runs (largest value a status slot holds)
ROUND_TRIP_MAX = 65535

DEFAULT_TIMEOUT_MS = 59000


@dataclass(frozen=True)
class ProbeConfig:
    """Static settings for one monitored entity.

    Frozen on purpose: an update builds a new snapshot and swaps the
    reference, so a reader always sees either the old or the new set
    of fields, never a mix.
    """
    address: str = ""
    port: int = 0
    endpoint_type: str = "icmp"
    timeout: int = DEFAULT_TIMEOUT_MS  # milliseconds
    username: str = ""
    password: str = ""
    args: str = ""
    monitor_ip_id: int = 0
    enabled: bool = True
    site_hash: str = ""

    def with_changes(self, **changes) -> "ProbeConfig":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProbeConfig":
        """Build a config from a loosely typed dict (JSON endpoint files).

        Unknown keys are ignored. Port, timeout and id are coerced to int.
        """
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        for key in ('port', 'timeout', 'monitor_ip_id'):
            if key in values and values[key] is not None:
                values[key] = int(values[key])
        if 'endpoint_type' in values and values['endpoint_type']:
            values['endpoint_type'] = str(values['endpoint_type']).lower()
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class PingParams:
    """Global probe defaults handed to the factory."""
    timeout: int = DEFAULT_TIMEOUT_MS  # milliseconds, also the upper bound per probe
    extend_timeout_multiplier: int = 10


@dataclass
class StatusSnapshot:
    """Status of a single run: text, round trip time and run identifiers."""
    status: str = ""
    round_trip_time: int = 0
    status_id: int = 0  # run id
    monitor_ping_info_id: int = 0
    date_sent: Optional[datetime] = None


@dataclass
class ProbeResult:
    """Outcome of one probe run.

    Created fresh by pre_connect, populated by connect, read by the
    caller once post_connect has returned.
    """
    message: str = ""
    is_up: bool = False
    event_time: Optional[datetime] = None
    site_hash: str = ""
    ping_info: StatusSnapshot = field(default_factory=StatusSnapshot)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON output."""
        return {
            'message': self.message,
            'is_up': self.is_up,
            'event_time': self.event_time.isoformat() if self.event_time else None,
            'site_hash': self.site_hash,
            'status': self.ping_info.status,
            'round_trip_time': self.ping_info.round_trip_time,
            'status_id': self.ping_info.status_id,
            'monitor_ping_info_id': self.ping_info.monitor_ping_info_id,
            'date_sent': self.ping_info.date_sent.isoformat() if self.ping_info.date_sent else None,
        }


@dataclass
class CommandResult:
    """What an external command processor hands back."""
    success: bool
    message: str = ""
    data: Any = None


@dataclass
class AlgorithmInfo:
    """A candidate key exchange group for the quantum handshake check."""
    algorithm_name: str
    default_id: int = 0
    enabled: bool = True
    environment_variable: str = ""
    add_env: bool = False  # inject environment_variable=default_id into the handshake command
    description: str = ""
    key_size: int = 0
    security_level: int = 0


@dataclass
class KemExtension:
    """Decoded key_share data from a ServerHello.

    The defaults are the "nothing recognised" answer: not quantum safe,
    group 0.
    """
    group_hex_string_id: str = "0x0000"
    group_id: int = 0
    key_share_length: int = 0
    data: bytes = b""
    is_quantum_safe: bool = False
    long_server_hello: bool = False
