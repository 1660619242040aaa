"""ServerHello / key_share decoding for the quantum-safe handshake check.

Input is the transcript printed by ``openssl s_client -msg``: a line
mentioning ServerHello followed by hex dump lines, ended by the next
``<<<``/``>>>`` record header. Decoding never raises; anything that
does not parse gives the default KemExtension (not quantum safe,
group 0).
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from util.types import AlgorithmInfo, KemExtension

logger = logging.getLogger(__name__)

KEY_SHARE_EXTENSION = 0x0033
HANDSHAKE_SERVER_HELLO = 0x02
LONG_SERVER_HELLO_BYTES = 100

# RFC 8446 4.1.3: a HelloRetryRequest carries this fixed "random"
HRR_RANDOM = bytes.fromhex("cf21ad74e59a6111be1d8c021e65b891c2a211167abb8c5e079e09e2c8a8339c")

NEGOTIATED_GROUP_PREFIX = "negotiated tls1.3 group:"


class ServerHelloParseError(ValueError):
    """Raised internally for a block that is not a well formed ServerHello."""


@dataclass(frozen=True)
class GroupTable:
    """Versioned lookup of post-quantum / hybrid key exchange groups.

    Group assignments move over time, so the table is data: build one
    from an algorithm list, or use the built-in default.
    """
    groups: Dict[int, str]
    version: str = "builtin"

    @classmethod
    def from_algorithms(cls, algorithms: Iterable[AlgorithmInfo], version: str = "algorithm-table") -> "GroupTable":
        groups: Dict[int, str] = {}
        for algo in algorithms:
            # id 0 means the table row had no usable hex id
            if algo.default_id:
                groups.setdefault(algo.default_id, algo.algorithm_name)
        return cls(groups=groups, version=version)

    def name_for(self, group_id: int) -> Optional[str]:
        return self.groups.get(group_id)

    def __contains__(self, group_id: int) -> bool:
        return group_id in self.groups

    def id_for_name(self, name: str) -> Optional[int]:
        """Exact (case-insensitive) name match, then a best-effort match for ML-KEM names."""
        if not name or not name.strip():
            return None
        key = name.strip().lower()
        by_name = {}
        for group_id, group_name in self.groups.items():
            if group_name and group_name.strip():
                by_name.setdefault(group_name.strip().lower(), group_id)
        if key in by_name:
            return by_name[key]
        if "mlkem" in key and by_name:
            # most shared characters wins
            best = max(by_name, key=lambda k: len(set(k) & set(key)))
            if len(set(best) & set(key)) > 0:
                return by_name[best]
        return None


DEFAULT_GROUP_TABLE = GroupTable(
    groups={
        0x11EB: "SecP256r1MLKEM768",
        0x11EC: "X25519MLKEM768",
        0x11ED: "SecP384r1MLKEM1024",
        0x11EE: "SecP521r1MLKEM1024",
    },
    version="builtin-mlkem-hybrids",
)


@dataclass
class ServerHello:
    version: int
    random: bytes
    session_id: bytes
    cipher_suite: int
    compression: int
    extensions: List[Tuple[int, bytes]] = field(default_factory=list)

    @property
    def is_hello_retry_request(self) -> bool:
        return self.random == HRR_RANDOM


def extract_server_hello_message(handshake: bytes) -> bytes:
    """Strip the 4 byte handshake header (type 0x02 + 24-bit length)."""
    if len(handshake) < 4:
        raise ServerHelloParseError("Truncated TLS handshake buffer.")
    if handshake[0] != HANDSHAKE_SERVER_HELLO:
        raise ServerHelloParseError("Invalid TLS handshake type (expected ServerHello).")
    length = int.from_bytes(handshake[1:4], 'big')
    if length + 4 != len(handshake):
        raise ServerHelloParseError("Invalid TLS handshake length.")
    return handshake[4:]


def parse_server_hello(body: bytes) -> ServerHello:
    """Parse a ServerHello body (after the handshake header)."""
    pos = 0

    def take(count: int) -> bytes:
        nonlocal pos
        if pos + count > len(body):
            raise ServerHelloParseError(f"ServerHello truncated at offset {pos}")
        chunk = body[pos:pos + count]
        pos += count
        return chunk

    version = int.from_bytes(take(2), 'big')
    random = take(32)
    session_id = take(take(1)[0])
    cipher_suite = int.from_bytes(take(2), 'big')
    compression = take(1)[0]

    extensions: List[Tuple[int, bytes]] = []
    if pos < len(body):
        ext_total = int.from_bytes(take(2), 'big')
        end = pos + ext_total
        if end > len(body):
            raise ServerHelloParseError("Extensions length exceeds ServerHello body")
        while pos < end:
            ext_type = int.from_bytes(take(2), 'big')
            ext_len = int.from_bytes(take(2), 'big')
            if pos + ext_len > end:
                raise ServerHelloParseError(f"Extension 0x{ext_type:04X} overruns extensions block")
            extensions.append((ext_type, take(ext_len)))

    return ServerHello(version, random, session_id, cipher_suite, compression, extensions)


def collect_server_hello_hex(lines: List[str]) -> List[str]:
    """Gather every hex block that follows a ServerHello marker line."""
    blocks: List[str] = []
    collecting = False
    current: List[str] = []

    for raw in lines:
        line = raw.strip()
        if "serverhello" in line.lower():
            if collecting and current:
                blocks.append("".join(current))
                current = []
            collecting = True
            continue
        if collecting and (line.startswith("<<<") or line.startswith(">>>")):
            if current:
                blocks.append("".join(current))
                current = []
            collecting = False
            continue
        if collecting:
            hex_part = line.replace(" ", "")
            if hex_part:
                current.append(hex_part)

    if collecting and current:
        blocks.append("".join(current))
    return blocks


class ServerHelloParser:
    """Finds the negotiated key exchange group in an openssl transcript.

    Keeps a running diagnostics log of what it saw; useful when a long
    (multi-record) ServerHello may have been mis-parsed.
    """

    def __init__(self, table: Optional[GroupTable] = None, algorithms: Optional[Iterable[AlgorithmInfo]] = None):
        if table is None:
            table = GroupTable.from_algorithms(algorithms) if algorithms is not None else DEFAULT_GROUP_TABLE
        self.table = table
        self.diagnostics: List[str] = []

    def diagnostic_text(self) -> str:
        return "\n".join(self.diagnostics)

    def find_server_hello(self, text: str) -> KemExtension:
        lines = (text or "").splitlines()

        fast = self._from_negotiated_line(lines)
        if fast is not None:
            return fast

        blocks = collect_server_hello_hex(lines)
        if not blocks:
            self.diagnostics.append("No ServerHello found.")
            return KemExtension()

        last_seen = KemExtension()
        for block in blocks:
            self.diagnostics.append(f"ServerHello hex: {block}")
            try:
                body = extract_server_hello_message(bytes.fromhex(block))
                hello = parse_server_hello(body)
            except ValueError as e:
                # ServerHelloParseError and bad hex both land here
                self.diagnostics.append(f"Failed to parse a ServerHello block: {e}")
                continue

            is_hrr = hello.is_hello_retry_request
            self.diagnostics.append(
                f"version=0x{hello.version:04X} cipher=0x{hello.cipher_suite:04X} "
                f"extensions={[f'0x{t:04X}' for t, _ in hello.extensions]} hrr={is_hrr}"
            )

            this_kem = KemExtension()
            for extension in hello.extensions:
                decoded = self.decode_key_share_extension(extension)
                if not decoded.is_quantum_safe:
                    continue
                if len(body) > LONG_SERVER_HELLO_BYTES:
                    decoded.long_server_hello = True
                if not is_hrr:
                    return decoded
                # HRR picked a PQ group; the final ServerHello decides
                this_kem = decoded
                self.diagnostics.append("HRR indicated PQ/hybrid group; continuing to final ServerHello.")
                break

            if not this_kem.is_quantum_safe and len(body) > LONG_SERVER_HELLO_BYTES:
                this_kem.long_server_hello = True
            last_seen = this_kem

        return last_seen

    def decode_key_share_extension(self, extension: Tuple[int, bytes]) -> KemExtension:
        """Decode one (type, payload) extension; only key_share yields a group."""
        ext_type, data = extension
        kem = KemExtension()
        if ext_type != KEY_SHARE_EXTENSION:
            return kem
        if data is None or len(data) < 2:
            return kem

        kem.group_id = (data[0] << 8) | data[1]
        kem.group_hex_string_id = f"0x{data[0]:02X}{data[1]:02X}"
        kem.is_quantum_safe = kem.group_id in self.table

        if len(data) >= 4:
            kem.key_share_length = (data[2] << 8) | data[3]
            kem.data = bytes(data[4:4 + min(kem.key_share_length, len(data) - 4)])
        self.diagnostics.append(
            f"key_share group={kem.group_hex_string_id} quantum_safe={kem.is_quantum_safe} "
            f"key_share_length={kem.key_share_length}"
        )
        return kem

    def _from_negotiated_line(self, lines: List[str]) -> Optional[KemExtension]:
        for line in lines:
            if line.lower().startswith(NEGOTIATED_GROUP_PREFIX):
                name = line.split(":", 1)[1].strip()
                group_id = self.table.id_for_name(name)
                if group_id is None:
                    self.diagnostics.append(f"Negotiated group not in table {self.table.version}: {name}")
                    return None
                self.diagnostics.append(f"OpenSSL reports negotiated group {name} -> 0x{group_id:04X}")
                return KemExtension(
                    group_hex_string_id=f"0x{group_id:04X}",
                    group_id=group_id,
                    is_quantum_safe=True,
                )
        return None
