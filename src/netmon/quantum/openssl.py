"""OpenSSL s_client runner used by the quantum probes.

Drives an OQS-enabled openssl binary: one call for a handshake limited
to given key exchange groups (``-msg`` so the ServerHello bytes are
printed), one for fetching the certificate chain (``-showcerts``).
"""

import asyncio
import ipaddress
import logging
import os
from pathlib import Path
from typing import Dict, Optional

from netmon.collaborators import CancelToken

logger = logging.getLogger(__name__)


def is_ip_address(address: str) -> bool:
    try:
        ipaddress.ip_address(address)
        return True
    except ValueError:
        return False


class OpenSSLRunner:
    """Runs openssl s_client against host:port and returns its combined output.

    Output is ``"{stderr} : {stdout}"``; parsing is left to the caller.
    """

    def __init__(self, command_path: str = "", oqs_provider_path: str = "",
                 executable: str = "openssl"):
        self.command_path = command_path
        self.oqs_provider_path = oqs_provider_path
        self.executable = str(Path(command_path) / executable) if command_path else executable

    def _provider_args(self):
        return [
            "-provider-path", self.oqs_provider_path,
            "-provider", "oqsprovider",
            "-provider", "default",
        ]

    def _environment(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        env = dict(os.environ)
        if self.oqs_provider_path:
            env["LD_LIBRARY_PATH"] = self.oqs_provider_path
        if extra:
            env.update(extra)
        return env

    async def handshake(self, address: str, port: int, curves: str,
                        env: Optional[Dict[str, str]] = None,
                        cancel: Optional[CancelToken] = None) -> str:
        """Handshake offering only the colon separated groups in curves."""
        args = ["s_client", "-curves", curves, "-connect", f"{address}:{port}"]
        args += self._provider_args() + ["-msg"]
        return await self._run(args, env, cancel)

    async def show_certs(self, address: str, port: int,
                         cancel: Optional[CancelToken] = None) -> str:
        args = ["s_client", "-connect", f"{address}:{port}", "-showcerts"] + self._provider_args()
        if not is_ip_address(address):
            args += ["-servername", address]
        return await self._run(args, None, cancel)

    async def _run(self, args, env: Optional[Dict[str, str]], cancel: Optional[CancelToken]) -> str:
        logger.debug(f"Running {self.executable} {' '.join(args)}")
        proc = await asyncio.create_subprocess_exec(
            self.executable, *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=self._environment(env)
        )
        communicate = asyncio.ensure_future(proc.communicate())
        waiters = {communicate}
        cancelled = None
        if cancel is not None:
            cancelled = asyncio.ensure_future(cancel.wait())
            waiters.add(cancelled)
        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            if communicate not in done:
                proc.kill()
                await communicate
                raise asyncio.CancelledError()
            stdout, stderr = communicate.result()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
            raise
        finally:
            if cancelled is not None:
                cancelled.cancel()

        return f"{stderr.decode(errors='replace')} : {stdout.decode(errors='replace')}"
