"""Site crawl probes - crawlsite and dailycrawl traffic generators."""

import logging

from util.types import CommandResult

from netmon.probes.command_probe import CommandProbe, strip_http_scheme

logger = logging.getLogger(__name__)

CRAWL_ARGS = " --max_depth 3 --max_pages 10"
DAILY_CRAWL_ARGS = " --max_depth 4 --max_pages 20"


class CrawlSiteProbe(CommandProbe):
    """Crawl a site through the "CrawlSite" processor.

    Any successful run counts as up unless the output carries an
    "Error:" marker.
    """

    processor_name = "CrawlSite"
    extend_timeout = True
    extend_timeout_multiplier = 20

    def build_arguments(self) -> str:
        config = self.config
        url = f"https://{strip_http_scheme(config.address)}"
        if config.port:
            url = f"{url}:{config.port}"
        return f"--url {url} {self.base_args.strip()}".rstrip()

    def handle_result(self, result: CommandResult, elapsed_ms: int):
        output = result.message or ""
        if result.success and "Error:" not in output:
            self.process_status("Site Crawl Complete", elapsed_ms, output)
        else:
            self.process_exception(output, "Crawl Failed")
