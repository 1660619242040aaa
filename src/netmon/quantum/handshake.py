"""Quantum-safe handshake orchestration.

Offers candidate key exchange groups to a host through an OpenSSL
runner and inspects the ServerHello to see whether one of them was
negotiated. Groups that need no environment tweak are offered together
first; groups that need an environment variable (draft code points)
are then tried one at a time. First success wins.
"""

import logging
from typing import Dict, List, Optional

from util.types import AlgorithmInfo, CommandResult

from netmon.collaborators import CancelToken
from netmon.quantum.openssl import OpenSSLRunner
from netmon.quantum.server_hello import DEFAULT_GROUP_TABLE, GroupTable, ServerHelloParser

logger = logging.getLogger(__name__)

HANDSHAKE_MARKERS = ("ServerHello", "Certificate")
NO_ALGORITHMS = "No algorithms to test"
NOT_NEGOTIATED = "Could not negotiate quantum safe handshake"


class QuantumHandshakeChecker:
    """Runs the modern-then-legacy handshake sequence for one host."""

    def __init__(self, algorithms: List[AlgorithmInfo], runner: OpenSSLRunner,
                 table: Optional[GroupTable] = None):
        self.algorithms = list(algorithms)
        self.runner = runner
        if table is None:
            table = GroupTable.from_algorithms(self.algorithms) if self.algorithms else DEFAULT_GROUP_TABLE
            if not table.groups:
                table = DEFAULT_GROUP_TABLE
        self.table = table

    def _name_for(self, group_id: int, candidates: List[AlgorithmInfo]) -> str:
        for algo in candidates or self.algorithms:
            if algo.default_id == group_id:
                return algo.algorithm_name
        return "unknown"

    async def _offer(self, curves: str, candidates: List[AlgorithmInfo], address: str, port: int,
                     env: Optional[Dict[str, str]], cancel: Optional[CancelToken]) -> CommandResult:
        output = await self.runner.handshake(address, port, curves, env=env, cancel=cancel)

        if all(marker in output for marker in HANDSHAKE_MARKERS):
            parser = ServerHelloParser(table=self.table)
            kem = parser.find_server_hello(output)
            tried = {algo.default_id for algo in candidates if algo.default_id}
            if kem.is_quantum_safe and (not tried or kem.group_id in tried):
                name = self._name_for(kem.group_id, candidates)
                logger.info(f"Success : {address} : {name}")
                return CommandResult(success=True, message=f"Negotiated quantum-safe algorithm: {name}", data=name)
            if kem.long_server_hello:
                logger.error(f"Fail with long ServerHello : {address} : {curves} Log is : {parser.diagnostic_text()}")

        if "connect:errno" in output:
            return CommandResult(success=False, message=" connect:errno ", data=curves)

        alerts = [line for line in output.splitlines() if "Alert" in line]
        for line in alerts:
            logger.debug(f"- {line}")
        return CommandResult(success=False, message="".join(alerts))

    async def process_algorithm(self, algorithm: AlgorithmInfo, address: str, port: int,
                                cancel: Optional[CancelToken] = None) -> CommandResult:
        """Offer a single algorithm, setting its environment variable when it needs one."""
        env = None
        if algorithm.add_env and algorithm.environment_variable:
            env = {algorithm.environment_variable: str(algorithm.default_id)}
        return await self._offer(algorithm.algorithm_name, [algorithm], address, port, env, cancel)

    async def process_batch_algorithms(self, algorithms: List[AlgorithmInfo], address: str, port: int,
                                       cancel: Optional[CancelToken] = None) -> CommandResult:
        if not algorithms:
            return CommandResult(success=False, message=NO_ALGORITHMS)

        modern = [a for a in algorithms if not a.add_env]
        if modern:
            curves = ":".join(a.algorithm_name for a in modern)
            result = await self._offer(curves, modern, address, port, None, cancel)
            if result.success:
                return result

        for algorithm in (a for a in algorithms if a.add_env):
            result = await self.process_algorithm(algorithm, address, port, cancel)
            if result.success:
                return result

        logger.warning(f"No quantum-safe algorithm negotiated for {address}")
        return CommandResult(success=False, message=NOT_NEGOTIATED)

    async def is_quantum_safe(self, address: str, port: int,
                              cancel: Optional[CancelToken] = None) -> CommandResult:
        """Try every enabled algorithm; an empty enabled list is a plain failure."""
        enabled = [a for a in self.algorithms if a.enabled]
        if not enabled:
            return CommandResult(success=False, message=NOT_NEGOTIATED)
        return await self.process_batch_algorithms(enabled, address, port, cancel)
