"""Probe factory - endpoint type string to protocol variant.

The type map is built once per factory from the collaborators it was
given. Unknown or empty types fall back to ICMP.
"""

import logging
from typing import Callable, Dict, List, Optional

from util.types import AlgorithmInfo, PingParams, ProbeConfig

from netmon.collaborators import BrowserHost, CommandProcessorProvider, DNSResolver, SystemPinger
from netmon.probes.base import BaseProbe
from netmon.probes.ble_probe import BleBroadcastListenProbe, BleBroadcastProbe
from netmon.probes.crawl_probe import CRAWL_ARGS, DAILY_CRAWL_ARGS, CrawlSiteProbe
from netmon.probes.dns_probe import DNSProbe
from netmon.probes.http_probe import MODE_FULL, MODE_HTML, MODE_PLAIN, HTTPProbe
from netmon.probes.hug_probe import HugSpaceKeepAliveProbe, HugSpaceWakeProbe
from netmon.probes.icmp_probe import ICMPProbe
from netmon.probes.nmap_probe import SERVICE_SCAN_ARGS, VULN_SCAN_ARGS, NmapProbe
from netmon.probes.quantum_probe import QuantumCertProbe, QuantumProbe
from netmon.probes.site_hash_probe import SiteHashProbe
from netmon.probes.smtp_probe import SMTPProbe
from netmon.probes.socket_probe import SocketProbe
from netmon.quantum.handshake import QuantumHandshakeChecker
from netmon.quantum.openssl import OpenSSLRunner

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT_TYPE = "icmp"

# Types whose address is used as a URL; the rest want a bare host
URL_TYPES = ("http", "httpfull", "httphtml")

ProbeBuilder = Callable[[ProbeConfig], BaseProbe]


def filter_address(address: str, endpoint_type: Optional[str]) -> str:
    """Add https:// for URL types, strip any http(s):// for the others."""
    address = address or ""
    lowered = address.lower()
    if endpoint_type in URL_TYPES:
        if not lowered.startswith(("https://", "http://")):
            return "https://" + address
        return address
    for prefix in ("https://", "http://"):
        if lowered.startswith(prefix):
            return address[len(prefix):]
    return address


class ConnectFactory:
    """Builds and updates probes for monitored entities."""

    def __init__(self, processor_provider: Optional[CommandProcessorProvider] = None,
                 browser_host: Optional[BrowserHost] = None,
                 algorithms: Optional[List[AlgorithmInfo]] = None,
                 openssl_runner: Optional[OpenSSLRunner] = None,
                 resolver: Optional[DNSResolver] = None,
                 pinger: Optional[SystemPinger] = None,
                 session_factory=None):
        self.processor_provider = processor_provider
        self.browser_host = browser_host
        self.algorithms = list(algorithms or [])
        self.openssl_runner = openssl_runner or OpenSSLRunner()
        self.resolver = resolver or DNSResolver()
        self.pinger = pinger or SystemPinger()
        self.session_factory = session_factory
        if not self.algorithms:
            logger.warning("Algorithm table is empty; quantum probes will use the built-in group table only")
        self._builders = self._build_type_map()

    def _build_type_map(self) -> Dict[str, ProbeBuilder]:
        provider = self.processor_provider
        browser = self.browser_host
        sessions = self.session_factory

        def http(mode, check_certificate=False):
            return lambda c: HTTPProbe(c, mode=mode, browser_host=browser,
                                       check_certificate=check_certificate, session_factory=sessions)

        return {
            "icmp": lambda c: ICMPProbe(c, pinger=self.pinger),
            "http": http(MODE_PLAIN),
            "https": http(MODE_PLAIN, check_certificate=True),
            "httphtml": http(MODE_HTML),
            "httpfull": http(MODE_FULL),
            "sitehash": lambda c: SiteHashProbe(c, browser_host=browser),
            "dns": lambda c: DNSProbe(c, resolver=self.resolver),
            "smtp": lambda c: SMTPProbe(c),
            "quantum": lambda c: QuantumProbe(c, checker=QuantumHandshakeChecker(self.algorithms, self.openssl_runner)),
            "quantumcert": lambda c: QuantumCertProbe(c, runner=self.openssl_runner),
            "rawconnect": lambda c: SocketProbe(c, resolver=self.resolver),
            "blebroadcast": lambda c: BleBroadcastProbe(c, provider),
            "blebroadcastlisten": lambda c: BleBroadcastListenProbe(c, provider),
            "nmap": lambda c: NmapProbe(c, provider, SERVICE_SCAN_ARGS),
            "nmapvuln": lambda c: NmapProbe(c, provider, VULN_SCAN_ARGS),
            "crawlsite": lambda c: CrawlSiteProbe(c, provider, CRAWL_ARGS),
            "dailycrawl": lambda c: CrawlSiteProbe(c, provider, DAILY_CRAWL_ARGS),
            "dailyhugkeepalive": lambda c: HugSpaceKeepAliveProbe(c, provider, ""),
            "hugwake": lambda c: HugSpaceWakeProbe(c, provider, ""),
        }

    @property
    def endpoint_types(self) -> List[str]:
        return list(self._builders)

    def resolve_type(self, endpoint_type: Optional[str]) -> str:
        """Normalized type key; empty or unknown types become icmp."""
        endpoint_type = (endpoint_type or "").strip().lower() or DEFAULT_ENDPOINT_TYPE
        if endpoint_type not in self._builders:
            return DEFAULT_ENDPOINT_TYPE
        return endpoint_type

    @staticmethod
    def clamp_timeout(timeout: int, params: PingParams) -> int:
        if timeout == 0 or timeout > params.timeout:
            return params.timeout
        return timeout

    def create(self, config: ProbeConfig, params: PingParams) -> BaseProbe:
        """New probe for config, with timeout clamped and address normalized."""
        endpoint_type = self.resolve_type(config.endpoint_type)
        requested = (config.endpoint_type or "").strip().lower()
        if requested and requested != endpoint_type:
            logger.warning(f"Unknown endpoint type '{config.endpoint_type}' for {config.monitor_ip_id}, using icmp")
        builder = self._builders[endpoint_type]

        snapshot = config.with_changes(
            endpoint_type=endpoint_type,
            timeout=self.clamp_timeout(config.timeout, params),
            address=filter_address(config.address, endpoint_type),
        )
        probe = builder(snapshot)
        if type(probe).extend_timeout_multiplier == BaseProbe.extend_timeout_multiplier:
            probe.extend_timeout_multiplier = params.extend_timeout_multiplier
        return probe

    def update_probe(self, probe: BaseProbe, config: ProbeConfig, params: Optional[PingParams] = None):
        """Refresh an existing probe's settings in place (same variant).

        An empty type keeps the probe's current one. With params the
        timeout is clamped the same way create() does it.
        """
        endpoint_type = probe.config.endpoint_type
        if (config.endpoint_type or "").strip():
            endpoint_type = self.resolve_type(config.endpoint_type)
        changes = dict(endpoint_type=endpoint_type, address=filter_address(config.address, endpoint_type))
        if params is not None:
            changes["timeout"] = self.clamp_timeout(config.timeout, params)
        probe.replace_config(config.with_changes(**changes))
