"""Keep-alive probes for hosted apps that go to sleep.

dailyhugkeepalive visits the app once a day, hugwake clicks restart
when it has been put to sleep. Both report failure when the tool says
the app never came back.
"""

import logging
from urllib.parse import urlsplit, urlunsplit

from util.types import CommandResult

from netmon.probes.command_probe import CommandProbe, strip_http_scheme

logger = logging.getLogger(__name__)

NEGATIVE_PHRASES = ("did not become ready", "Error")


def build_space_url(address: str, port: int) -> str:
    """https URL for the space with the port placed on the host part."""
    url = f"https://{strip_http_scheme(address)}"
    if not port:
        return url
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, f"{parts.hostname}:{port}", parts.path, parts.query, parts.fragment))


class HugSpaceKeepAliveProbe(CommandProbe):
    """Visit the space so it stays warm."""

    processor_name = "HugSpaceKeepAlive"
    extend_timeout = True
    extend_timeout_multiplier = 20

    def build_arguments(self) -> str:
        url = build_space_url(self.config.address, self.config.port)
        return f"--url {url} {self.base_args.strip()}".rstrip()

    def handle_result(self, result: CommandResult, elapsed_ms: int):
        output = result.message or ""
        negative = any(phrase in output for phrase in NEGATIVE_PHRASES)
        if result.success and not negative:
            self.process_status("Hug Space is Alive", elapsed_ms, output)
        else:
            self.process_exception(output, "Hug Space Keep Alive Failed")


class HugSpaceWakeProbe(HugSpaceKeepAliveProbe):
    """Wake a sleeping space through its restart button."""

    processor_name = "HugSpaceWake"
