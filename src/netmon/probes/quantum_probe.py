"""Quantum readiness probes.

quantum checks whether the host will negotiate a post-quantum or hybrid
key exchange group; quantumcert checks whether its certificate is
signed with, or carries, a post-quantum algorithm. Both shell out to an
OQS-enabled openssl and can take a while, so both are long-running.
"""

import asyncio
import logging
from typing import Dict, Optional

from util.time import now_utc, round_trip_ms
from util.types import ProbeConfig

from netmon.probes.base import BaseProbe, ProbeCancelled
from netmon.quantum.cert_analyzer import try_build_summary
from netmon.quantum.handshake import QuantumHandshakeChecker
from netmon.quantum.openssl import OpenSSLRunner

logger = logging.getLogger(__name__)

DEFAULT_PORT = 443
NOT_NEGOTIATED_STATUS = "Could not negotiate quantum safe handshake"
NOT_QUANTUM_SAFE_CERT = "Certificate not quantum-safe"
NO_CERT_SUMMARY = "Certificate summary not found in handshake output."


class QuantumProbe(BaseProbe):
    """Handshake check through a QuantumHandshakeChecker."""

    long_running = True

    def __init__(self, config: ProbeConfig, checker: Optional[QuantumHandshakeChecker] = None):
        super().__init__(config)
        self.checker = checker

    async def _run(self):
        if self.checker is None:
            self.process_exception("No quantum handshake checker available", "Error")
            return

        config = self.config
        port = config.port or DEFAULT_PORT
        start = now_utc()
        try:
            result = await self.guarded(
                self.checker.is_quantum_safe(config.address, port, self.cancel_scope.token)
            )
        except (asyncio.TimeoutError, ProbeCancelled):
            self.process_exception("Timeout", "Timeout")
            return
        except Exception as e:
            self.log.warning(f"Quantum handshake check failed: {e}")
            self.process_exception(str(e), "Exception")
            return

        if result.success:
            self.process_status("Using quantum safe handshake", round_trip_ms(start), f": {result.data}")
        else:
            self.process_exception(NOT_NEGOTIATED_STATUS, NOT_NEGOTIATED_STATUS)


class QuantumCertProbe(BaseProbe):
    """Certificate chain check on openssl -showcerts output."""

    long_running = True

    def __init__(self, config: ProbeConfig, runner: Optional[OpenSSLRunner] = None,
                 allowed_oids: Optional[Dict[str, str]] = None):
        super().__init__(config)
        self.runner = runner
        self.allowed_oids = allowed_oids

    async def _run(self):
        if self.runner is None:
            self.process_exception("No openssl runner available", "Error")
            return

        config = self.config
        port = config.port or DEFAULT_PORT
        start = now_utc()
        try:
            output = await self.guarded(self.runner.show_certs(config.address, port, self.cancel_scope.token))
        except (asyncio.TimeoutError, ProbeCancelled):
            self.process_exception("Timeout", "Timeout")
            return
        except Exception as e:
            self.log.error(f"Quantum certificate check failed: {e}")
            self.process_exception(str(e), "Exception")
            return

        found, summary = try_build_summary(output, self.allowed_oids)
        if not found:
            self.process_exception(NO_CERT_SUMMARY, NOT_QUANTUM_SAFE_CERT)
        elif summary.is_quantum_safe_certificate:
            self.process_status("Quantum-safe certificate detected", round_trip_ms(start),
                                f": {summary.to_summary_string()}")
        else:
            self.process_exception(summary.to_summary_string(), NOT_QUANTUM_SAFE_CERT)
