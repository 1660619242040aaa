"""Endpoint type catalogue.

Friendly names, icons, processing estimates and response time bands
for each endpoint type. Built once at import; consumers get the shared
registry and never mutate it.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

logger = logging.getLogger(__name__)

# Every type the factory can build, including ones not shown in the catalogue
CORE_TYPES = (
    "icmp", "http", "https", "httphtml", "httpfull", "sitehash", "dns", "smtp", "quantum",
    "quantumcert", "rawconnect", "blebroadcast", "blebroadcastlisten", "nmap", "nmapvuln",
    "crawlsite", "dailycrawl", "dailyhugkeepalive", "hugwake",
)


@dataclass(frozen=True)
class EndpointType:
    internal_type: str
    icon: str
    name: str
    description: str


@dataclass(frozen=True)
class ThresholdValues:
    excellent: int
    good: int
    fair: int


@dataclass(frozen=True)
class ResponseTimeThreshold:
    """Bands for "all ports" (port 0) and for a specific port."""
    all_ports: ThresholdValues
    specific_port: ThresholdValues

    def get_thresholds(self, port: int) -> ThresholdValues:
        return self.all_ports if port == 0 else self.specific_port


def _same(excellent: int, good: int, fair: int) -> ResponseTimeThreshold:
    values = ThresholdValues(excellent, good, fair)
    return ResponseTimeThreshold(values, values)


ENDPOINT_TYPES = (
    EndpointType("icmp", "PingIcon", "ICMP (Simple Ping)", "Simple ICMP Ping"),
    EndpointType("http", "HttpIcon", "Http (Website Ping)", "Ping a website via HTTP"),
    EndpointType("https", "HttpsIcon", "HttpSSL (SSL Certificate Check)", "Check SSL certificates via HTTPS"),
    EndpointType("httphtml", "HtmlIcon", "HttpHtml (Load Website HTML)", "Load website HTML content, no javascript"),
    EndpointType("httpfull", "LanguageIcon", "HttpFull (Load All Website Content)",
                 "Load full website content inc javascript"),
    EndpointType("sitehash", "HashIcon", "SiteHash (Website Content Hash Check)",
                 "Load full website content in a headless browser, hash the rendered text and "
                 "compare to a stored value for change detection."),
    EndpointType("dns", "DnsIcon", "DNS (Domain Lookup)", "Perform DNS lookups"),
    EndpointType("smtp", "EmailIcon", "SMTP (Email Ping)", "Ping email via SMTP"),
    EndpointType("quantum", "QuantumIcon", "Quantum (Quantum Ready Check)", "Quantum readiness checks"),
    EndpointType("rawconnect", "LinkIcon", "Raw Connect (Socket Connection)", "Establish raw socket connections"),
    EndpointType("nmap", "NmapIcon", "NmapScan (Service Scan)", "Perform Nmap service scans"),
    EndpointType("nmapvuln", "NmapVulnIcon", "NmapVuln (Vulnerability Scan)", "Perform Nmap vulnerability scans"),
    EndpointType("crawlsite", "CrawlSiteIcon", "CrawlSite (Traffic Generator)", "Generate traffic by crawling sites"),
    EndpointType("dailycrawl", "CrawlSiteIcon", "Daily CrawlSite {Low Traffic Generator}",
                 "Generate once daily traffic by crawling sites"),
    EndpointType("dailyhugkeepalive", "HugIcon", "Daily HuggingFace Keep Alive {Traffic Generator}",
                 "Generate once daily traffic to keep alive a huggingface space"),
    EndpointType("hugwake", "HugIcon", "Hourly HuggingFace Wake Up {Click Restart}",
                 "Searches for and clicks restart on a huggingface space"),
)

# Command-backed types report 0 bands: their "round trip" is a scan duration
RESPONSE_TIME_THRESHOLDS: Dict[str, ResponseTimeThreshold] = {
    "icmp": _same(50, 100, 200),
    "http": _same(150, 300, 500),
    "httphtml": _same(250, 500, 800),
    "httpfull": _same(2000, 4000, 8000),
    "sitehash": _same(2000, 4000, 8000),
    "dns": _same(100, 300, 600),
    "smtp": _same(200, 400, 700),
    "quantum": _same(800, 1500, 3000),
    "rawconnect": _same(100, 200, 400),
    "nmap": _same(0, 0, 0),
    "nmapvuln": _same(0, 0, 0),
    "crawlsite": _same(0, 0, 0),
    "dailycrawl": _same(0, 0, 0),
    "dailyhugkeepalive": _same(0, 0, 0),
    "hugwake": _same(0, 0, 0),
}


class EndpointTypeRegistry:
    """Read-only lookups over the endpoint type catalogue."""

    def __init__(self, endpoint_types: Iterable[EndpointType] = ENDPOINT_TYPES,
                 thresholds: Optional[Mapping[str, ResponseTimeThreshold]] = None):
        self._types = tuple(endpoint_types)
        self._by_internal = {t.internal_type.lower(): t for t in self._types}
        self._by_name = {t.name.lower(): t for t in self._types}
        self.thresholds = MappingProxyType(dict(RESPONSE_TIME_THRESHOLDS if thresholds is None else thresholds))

    def get_endpoint_types(self) -> List[EndpointType]:
        return list(self._types)

    def get_internal_types(self) -> List[str]:
        return [t.internal_type for t in self._types]

    def get_friendly_names(self) -> List[str]:
        return [t.name for t in self._types]

    def get_core_types(self) -> List[str]:
        return list(CORE_TYPES)

    def get_friendly_name(self, internal_type: str) -> str:
        endpoint = self._by_internal.get((internal_type or "").lower())
        return endpoint.name if endpoint else "Unknown"

    def get_internal_type(self, friendly_name: str) -> str:
        endpoint = self._by_name.get((friendly_name or "").lower())
        if endpoint is None:
            raise ValueError("Invalid friendly name provided.")
        return endpoint.internal_type

    def get_endpoint_type(self, internal_type: str) -> EndpointType:
        endpoint = self._by_internal.get((internal_type or "").lower())
        if endpoint is None:
            raise ValueError("Invalid internal type provided.")
        return endpoint

    def get_endpoint_type_by_name(self, friendly_name: str) -> EndpointType:
        endpoint = self._by_name.get((friendly_name or "").lower())
        if endpoint is None:
            raise ValueError("Invalid friendly name provided.")
        return endpoint

    def get_enabled_endpoints(self, disabled: Iterable[str]) -> List[str]:
        blocked = {d.lower() for d in disabled}
        return [t for t in self.get_internal_types() if t.lower() not in blocked]

    def get_thresholds(self, internal_type: str, port: int = 0) -> Optional[ThresholdValues]:
        threshold = self.thresholds.get((internal_type or "").lower())
        return threshold.get_thresholds(port) if threshold else None

    @staticmethod
    def get_processing_time_estimate(endpoint_type: Optional[str]) -> str:
        endpoint_type = (endpoint_type or "").lower()
        if "daily" in endpoint_type:
            return "One day (daily only runs once a day)"
        if "nmap" in endpoint_type:
            return "15-30 minutes (comprehensive network scans take longer)"
        if "crawlsite" in endpoint_type:
            return "30-60 minutes (website crawling is resource intensive)"
        if "smtp" in endpoint_type or "quantum" in endpoint_type:
            return "5-10 minutes"
        if "http" in endpoint_type:
            return "2-5 minutes"
        if "ping" in endpoint_type:
            return "1-2 minutes"
        return "2-10 minutes"


registry = EndpointTypeRegistry()
