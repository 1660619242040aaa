"""SiteHash probe - detect content changes on a page.

Takes a normalized text snapshot of the rendered page through the
browser host, hashes it and compares with the stored hash. The first
run only records the hash.
"""

import asyncio
import hashlib
import logging
from typing import Optional

from util.time import now_utc, round_trip_ms
from util.types import ProbeConfig

from netmon.collaborators import BrowserHost
from netmon.probes.base import BaseProbe, ProbeCancelled
from netmon.probes.http_probe import build_url

logger = logging.getLogger(__name__)

# Volatile nodes are dropped and whitespace collapsed before hashing
SNAPSHOT_SCRIPT = """() => {
    try {
        const sel = 'script,style,noscript,template,iframe,svg,canvas,meta,link[rel="preload"],link[rel="prefetch"]';
        document.querySelectorAll(sel).forEach(n => n.remove());
        const text = document.body?.innerText ?? '';
        return text.replace(/\\s+/g, ' ').trim();
    } catch (e) {
        return '';
    }
}"""

SETTLE_MS = 750


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode('utf-8')).hexdigest()


class SiteHashProbe(BaseProbe):
    """Content hash check backed by a headless browser."""

    def __init__(self, config: ProbeConfig, browser_host: Optional[BrowserHost] = None):
        super().__init__(config)
        self.browser_host = browser_host

    async def _run(self):
        if self.browser_host is None:
            self.process_exception("BrowserHost is missing, check the browser installation", "Browser Missing")
            return

        config = self.config
        url = build_url(config.address, config.port)
        timeout_ms = max(0, config.timeout)

        async def snapshot(page) -> str:
            await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
            await page.wait_for_timeout(SETTLE_MS)
            return await page.evaluate(SNAPSHOT_SCRIPT) or ""

        start = now_utc()
        try:
            text = await self.guarded(self.browser_host.run_with_page(snapshot, self.cancel_scope.token))
        except (asyncio.TimeoutError, ProbeCancelled):
            self.process_exception(f"Timed out after {config.timeout}", "Timeout")
            return
        except Exception as e:
            self.log.warning(f"Snapshot of {url} failed: {e}")
            self.process_exception(str(e), "Exception")
            return

        elapsed = round_trip_ms(start)
        digest = sha256_hex(text)
        stored = self.result.site_hash

        if not stored or not stored.strip():
            self.set_site_hash(digest)
            self.process_status("SiteHash initialized", elapsed, f"Hash: {digest}")
        elif digest.lower() == stored.lower():
            self.process_status("SiteHash OK", elapsed, f"Hash: {digest}")
        else:
            self.process_exception(f"SiteHash mismatch. Expected: {stored}, Got: {digest}", "SiteHash Mismatch")
