"""Nmap probes - service scan (nmap) and vulnerability scan (nmapvuln)."""

import logging
import re
from typing import Tuple

from util.types import CommandResult

from netmon.probes.command_probe import CommandProbe, strip_http_scheme

logger = logging.getLogger(__name__)

SERVICE_SCAN_ARGS = "-sV"
VULN_SCAN_ARGS = "--script vuln"

_REPORT_HEADER = re.compile(r'Nmap scan report for .+?\)(.*)', re.DOTALL)
_SUBMIT_FOOTER = re.compile(
    r'(.*?)(?:Please report any incorrect results at https://nmap\.org/submit/ \. )(.*)', re.DOTALL
)
_HOST_UP = re.compile(r'Host is up', re.IGNORECASE)
_HOST_DOWN = re.compile(r'Host seems down|0 hosts up', re.IGNORECASE)
_VULN_POSITIVE = re.compile(r'\bVULNERABLE\b|Risk factor: High|CVE:\s*[A-Z0-9-]+', re.IGNORECASE)
_VULN_NEGATIVE = re.compile(r"Couldn't find|NOT VULNERABLE", re.IGNORECASE)


def extract_nmap_output(text: str) -> str:
    """Drop the banner up to the scan report line and the submit footer."""
    match = _REPORT_HEADER.search(text)
    output = match.group(1).strip() if match else text

    footer = _SUBMIT_FOOTER.search(output)
    if footer:
        output = footer.group(1).strip() + " " + footer.group(2).strip()
    return output


def host_status(text: str) -> Tuple[bool, str]:
    if _HOST_UP.search(text):
        return True, "Port/s open"
    if _HOST_DOWN.search(text):
        return False, "Port/s closed"
    return False, "Host status unknown"


def vulnerability_status(text: str) -> Tuple[bool, str]:
    for line in text.splitlines():
        if _VULN_NEGATIVE.search(line):
            continue
        if _VULN_POSITIVE.search(line):
            return True, "vulnerabilities found"
    return False, "no vulnerabilities detected"


class NmapProbe(CommandProbe):
    """Runs nmap through the "Nmap" processor.

    base_args picks the scan kind; a vuln scan additionally fails the
    probe when the output reports vulnerabilities.
    """

    processor_name = "Nmap"
    extend_timeout = True
    extend_timeout_multiplier = 10

    def build_arguments(self) -> str:
        config = self.config
        address = strip_http_scheme(config.address)
        if config.port:
            return f"{self.base_args} --system-dns -p {config.port} {address}"
        return f"{self.base_args} --system-dns {address}"

    def handle_result(self, result: CommandResult, elapsed_ms: int):
        filtered = extract_nmap_output(result.message or "")
        is_host_up, status = host_status(filtered)
        is_up = is_host_up

        if is_host_up and VULN_SCAN_ARGS in self.base_args:
            found, vuln_status = vulnerability_status(filtered)
            status += "; " + vuln_status
            if found:
                is_up = False

        if is_up:
            self.process_status(status, elapsed_ms, filtered)
        else:
            self.process_exception(filtered, status)
