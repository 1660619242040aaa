"""HTTP probe family - http, https, httphtml and httpfull.

Plain mode only needs a response, html mode reads the whole body and
reports its size, full mode hands the page to a headless browser.
The https variant also refuses certificates that are expired or about
to expire.
"""

import asyncio
import logging
import ssl
from datetime import datetime, timedelta, timezone
from http import HTTPStatus
from typing import Callable, Optional
from urllib.parse import urlsplit, urlunsplit

import aiohttp

from util.time import now_utc, round_trip_ms
from util.types import ProbeConfig

from netmon.collaborators import BrowserHost
from netmon.probes.base import BaseProbe, ProbeCancelled

logger = logging.getLogger(__name__)

USER_AGENT = 'netmon-probe/1.0 (+uptime monitoring)'

CERT_EXPIRY_WARNING = timedelta(days=7)

MODE_PLAIN = 'plain'
MODE_HTML = 'html'
MODE_FULL = 'full'


class CertificateCheckError(aiohttp.ClientError):
    """Certificate failed verification, is expired or expires within the warning window."""


def build_url(address: str, port: int, default_scheme: str = 'http') -> str:
    """Turn a configured address (with or without scheme) into a URL.

    A non-zero port replaces whatever port the address carried.
    """
    if not address.startswith(('http://', 'https://')):
        address = f"{default_scheme}://{address}"
    parts = urlsplit(address)
    netloc = parts.netloc
    if port:
        host = parts.hostname or ''
        if ':' in host:
            host = f"[{host}]"
        netloc = f"{host}:{port}"
    path = parts.path or '/'
    return urlunsplit((parts.scheme, netloc, path, parts.query, parts.fragment))


def status_text(code: int) -> str:
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return str(code)


class HTTPProbe(BaseProbe):
    """GET the configured URL with aiohttp.

    session_factory builds the ClientSession for a run; tests inject a
    fake. browser_host is only used in full mode.
    """

    def __init__(self, config: ProbeConfig, mode: str = MODE_PLAIN,
                 browser_host: Optional[BrowserHost] = None,
                 check_certificate: bool = False,
                 session_factory: Optional[Callable[[float], aiohttp.ClientSession]] = None):
        super().__init__(config)
        self.mode = mode
        self.browser_host = browser_host
        self.check_certificate = check_certificate
        self.session_factory = session_factory or self._create_session

    def _create_session(self, timeout: float) -> aiohttp.ClientSession:
        """Session with a bounded pool, created per run."""
        return aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=timeout),
            connector=aiohttp.TCPConnector(limit=100, limit_per_host=10),
            headers={'User-Agent': USER_AGENT}
        )

    async def _run(self):
        config = self.config
        default_scheme = 'https' if self.check_certificate else 'http'
        url = build_url(config.address, config.port, default_scheme)

        if self.mode == MODE_FULL and self.browser_host is None:
            self.process_exception("Browser is missing, can not run a full page load", "Browser Missing")
            return

        start = now_utc()
        try:
            if self.mode == MODE_FULL:
                status = await self.guarded(self._load_in_browser(url))
                self.process_status(status, round_trip_ms(start))
                return

            if self.check_certificate:
                await self.guarded(self._check_certificate(url))

            code, size = await self.guarded(self._get(url, read_body=self.mode == MODE_HTML))
            elapsed = round_trip_ms(start)
            if self.mode == MODE_HTML:
                self.process_status(status_text(code), elapsed, f": {size} bytes read")
            else:
                self.process_status(status_text(code), elapsed)

        except (asyncio.TimeoutError, ProbeCancelled):
            self.process_exception(f"Timed out after {config.timeout}", "Timeout")
        except aiohttp.ClientError as e:
            self.log.debug(f"HTTP request error for {url}: {e}")
            self.process_exception(self._error_chain(e), "HttpRequestException")
        except Exception as e:
            self.log.warning(f"HTTP error for {url}: {e}")
            self.process_exception(str(e), "Exception")

    async def _get(self, url: str, read_body: bool):
        """GET without following redirects. Returns (status, bytes read)."""
        async with self.session_factory(self.cancel_scope.remaining()) as session:
            async with session.get(url, allow_redirects=False, ssl=self.check_certificate) as resp:
                size = 0
                if read_body:
                    body = await resp.read()
                    size = len(body)
                return resp.status, size

    async def _load_in_browser(self, url: str) -> str:
        async def load(page):
            response = await page.goto(url)
            return str(response.status) if response is not None else "No Response"

        return await self.browser_host.run_with_page(load, self.cancel_scope.token)

    async def _check_certificate(self, url: str):
        """Handshake with a verifying context and inspect notAfter."""
        parts = urlsplit(url)
        if parts.scheme != 'https':
            return
        host = parts.hostname
        port = parts.port or 443
        not_after = await self._fetch_certificate_expiry(host, port)
        if not_after is None:
            return
        remaining = not_after - now_utc()
        if remaining <= timedelta(0):
            raise CertificateCheckError(f"Certificate for {host} expired on {not_after:%Y-%m-%d}")
        if remaining <= CERT_EXPIRY_WARNING:
            raise CertificateCheckError(f"Certificate for {host} expires on {not_after:%Y-%m-%d}")

    async def _fetch_certificate_expiry(self, host: str, port: int) -> Optional[datetime]:
        context = ssl.create_default_context()
        try:
            reader, writer = await asyncio.open_connection(host, port, ssl=context, server_hostname=host)
        except ssl.SSLError as e:
            raise CertificateCheckError(f"Certificate check failed for {host}") from e
        try:
            ssl_obj = writer.get_extra_info('ssl_object')
            cert = ssl_obj.getpeercert() if ssl_obj else None
        finally:
            writer.close()
        if not cert or 'notAfter' not in cert:
            return None
        return datetime.fromtimestamp(ssl.cert_time_to_seconds(cert['notAfter']), tz=timezone.utc)

    @staticmethod
    def _error_chain(error: BaseException) -> str:
        """Innermost causes joined with " -> "."""
        messages = [str(error) or type(error).__name__]
        inner = error.__cause__ or error.__context__
        while inner is not None:
            messages.append(str(inner) or type(inner).__name__)
            inner = inner.__cause__ or inner.__context__
        if len(messages) > 1:
            messages = messages[1:]
        return " -> ".join(messages)
