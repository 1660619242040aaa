"""
Unit Tests for command-processor backed probes (nmap, crawl, hug, BLE)
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from util.types import CommandResult, ProbeConfig
from netmon.collaborators import CommandProcessorProvider
from netmon.probes.ble_probe import BleBroadcastListenProbe, BleBroadcastProbe, extract_metric, metric_from_args
from netmon.probes.crawl_probe import CRAWL_ARGS, CrawlSiteProbe
from netmon.probes.hug_probe import HugSpaceKeepAliveProbe, HugSpaceWakeProbe, build_space_url
from netmon.probes.nmap_probe import (
    SERVICE_SCAN_ARGS, VULN_SCAN_ARGS, NmapProbe, extract_nmap_output, host_status
)

NMAP_UP = """Starting Nmap 7.94 ( https://nmap.org ) at 2024-05-01 10:00 UTC
Nmap scan report for example.com (93.184.216.34)
Host is up (0.010s latency).
PORT    STATE SERVICE VERSION
443/tcp open  https
"""

NMAP_DOWN = """Starting Nmap 7.94 ( https://nmap.org ) at 2024-05-01 10:00 UTC
Note: Host seems down. If it is really up, but blocking our ping probes, try -Pn
Nmap done: 1 IP address (0 hosts up) scanned in 3.05 seconds
"""

NMAP_VULN = NMAP_UP + """| http-vuln-cve2017-5638:
|   VULNERABLE:
|     State: VULNERABLE
"""


def make_config(**kwargs):
    defaults = dict(address="example.com", timeout=2000, monitor_ip_id=3)
    defaults.update(kwargs)
    return ProbeConfig(**defaults)


def provider_for(name, result=None, side_effect=None):
    processor = Mock(run=AsyncMock(return_value=result, side_effect=side_effect))
    return CommandProcessorProvider({name: processor}), processor


class TestMissingProcessor:
    """Every command variant reports a missing processor the same way"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("probe_class,endpoint_type", [
        (NmapProbe, "nmap"),
        (CrawlSiteProbe, "crawlsite"),
        (HugSpaceKeepAliveProbe, "dailyhugkeepalive"),
        (HugSpaceWakeProbe, "hugwake"),
        (BleBroadcastProbe, "blebroadcast"),
        (BleBroadcastListenProbe, "blebroadcastlisten"),
    ])
    async def test_no_processor(self, probe_class, endpoint_type):
        probe = probe_class(make_config(endpoint_type=endpoint_type), CommandProcessorProvider())

        await probe.connect()

        assert probe.result.is_up is False
        assert probe.result.ping_info.status == "Error"
        assert "No Command Processor Available" in probe.result.message

    @pytest.mark.asyncio
    async def test_no_provider(self):
        probe = NmapProbe(make_config(endpoint_type="nmap"), None, SERVICE_SCAN_ARGS)

        await probe.connect()

        assert probe.result.ping_info.status == "Error"


class TestNmapProbe:
    """Test suite for NmapProbe"""

    def test_arguments_with_port(self):
        probe = NmapProbe(make_config(endpoint_type="nmap", port=443), None, SERVICE_SCAN_ARGS)
        assert probe.build_arguments() == "-sV --system-dns -p 443 example.com"

    def test_arguments_strip_scheme(self):
        probe = NmapProbe(make_config(endpoint_type="nmapvuln", address="https://example.com"), None,
                          VULN_SCAN_ARGS)
        assert probe.build_arguments() == "--script vuln --system-dns example.com"

    def test_extract_output_drops_banner(self):
        output = extract_nmap_output(NMAP_UP)

        assert output.startswith("Host is up")
        assert "Starting Nmap" not in output

    def test_host_status(self):
        assert host_status("Host is up (0.01s latency)") == (True, "Port/s open")
        assert host_status("Note: Host seems down.") == (False, "Port/s closed")
        assert host_status("garbage") == (False, "Host status unknown")

    @pytest.mark.asyncio
    async def test_host_up(self):
        provider, processor = provider_for("Nmap", CommandResult(True, NMAP_UP))
        probe = NmapProbe(make_config(endpoint_type="nmap", port=443), provider, SERVICE_SCAN_ARGS)

        await probe.connect()

        assert probe.result.is_up is True
        assert probe.result.ping_info.status == "Port/s open"
        assert "443/tcp open" in probe.result.message
        token, arguments = processor.run.call_args.args
        assert arguments == "-sV --system-dns -p 443 example.com"

    @pytest.mark.asyncio
    async def test_host_down(self):
        provider, _ = provider_for("Nmap", CommandResult(True, NMAP_DOWN))
        probe = NmapProbe(make_config(endpoint_type="nmap"), provider, SERVICE_SCAN_ARGS)

        await probe.connect()

        assert probe.result.is_up is False
        assert probe.result.ping_info.status == "Port/s closed"

    @pytest.mark.asyncio
    async def test_vulnerabilities_fail_the_probe(self):
        provider, _ = provider_for("Nmap", CommandResult(True, NMAP_VULN))
        probe = NmapProbe(make_config(endpoint_type="nmapvuln"), provider, VULN_SCAN_ARGS)

        await probe.connect()

        assert probe.result.is_up is False
        assert probe.result.ping_info.status == "Port/s open; vulnerabilities found"

    @pytest.mark.asyncio
    async def test_timeout_uses_extended_window(self):
        async def hang(token, arguments):
            await asyncio.sleep(5)

        provider, _ = provider_for("Nmap", side_effect=hang)
        probe = NmapProbe(make_config(endpoint_type="nmap", timeout=20), provider, SERVICE_SCAN_ARGS)

        await probe.connect()

        assert probe.result.ping_info.status == "Timeout"
        assert "200 ms" in probe.result.message


class TestCrawlSiteProbe:

    def test_arguments(self):
        probe = CrawlSiteProbe(make_config(endpoint_type="crawlsite", address="https://example.com", port=8080),
                               None, CRAWL_ARGS)
        assert probe.build_arguments() == "--url https://example.com:8080 --max_depth 3 --max_pages 10"

    @pytest.mark.asyncio
    async def test_complete(self):
        provider, _ = provider_for("CrawlSite", CommandResult(True, "Crawled 10 pages"))
        probe = CrawlSiteProbe(make_config(endpoint_type="crawlsite"), provider, CRAWL_ARGS)

        await probe.connect()

        assert probe.result.is_up is True
        assert probe.result.message == "Site Crawl Complete Crawled 10 pages"

    @pytest.mark.asyncio
    async def test_error_marker(self):
        provider, _ = provider_for("CrawlSite", CommandResult(True, "Error: could not load page"))
        probe = CrawlSiteProbe(make_config(endpoint_type="crawlsite"), provider, CRAWL_ARGS)

        await probe.connect()

        assert probe.result.ping_info.status == "Crawl Failed"


class TestHugSpaceProbes:

    def test_space_url_places_port_on_host(self):
        assert build_space_url("hf.space/myspace", 8080) == "https://hf.space:8080/myspace"
        assert build_space_url("https://hf.space/myspace", 0) == "https://hf.space/myspace"

    def test_arguments(self):
        probe = HugSpaceWakeProbe(make_config(endpoint_type="hugwake", address="hf.space/myspace", port=8080),
                                  None, "")
        assert probe.build_arguments() == "--url https://hf.space:8080/myspace"

    @pytest.mark.asyncio
    async def test_alive(self):
        provider, _ = provider_for("HugSpaceKeepAlive", CommandResult(True, "Space is running"))
        probe = HugSpaceKeepAliveProbe(make_config(endpoint_type="dailyhugkeepalive"), provider, "")

        await probe.connect()

        assert probe.result.is_up is True
        assert probe.result.ping_info.status == "Hug Space is Alive"

    @pytest.mark.asyncio
    async def test_negative_phrase_fails(self):
        provider, _ = provider_for("HugSpaceWake", CommandResult(True, "Space did not become ready in 300s"))
        probe = HugSpaceWakeProbe(make_config(endpoint_type="hugwake"), provider, "")

        await probe.connect()

        assert probe.result.is_up is False
        assert probe.result.ping_info.status == "Hug Space Keep Alive Failed"


class TestBleProbes:
    """Test suite for BLE broadcast probes"""

    def test_metric_from_args(self):
        assert metric_from_args("") == "pv_power"
        assert metric_from_args("--metric battery_voltage") == "battery_voltage"
        assert metric_from_args("--metric=Yield") == "yield"

    def test_extract_metric(self):
        assert extract_metric("PV power: 350 W", "pv") == (350, "pv_power=350W")
        assert extract_metric("Battery voltage: 12.84", "battery_voltage") == (1284, "battery_voltage=12.84V")
        assert extract_metric("nothing here", "pv_power") is None
        assert extract_metric("PV power: 350", "humidity") is None

    def test_arguments(self):
        probe = BleBroadcastProbe(make_config(endpoint_type="blebroadcast", address="AA:BB:CC:DD:EE:FF",
                                              password="0011", args="--metric battery_voltage"), None)
        assert probe.build_arguments() == '--address "AA:BB:CC:DD:EE:FF" --key "0011" --metric battery_voltage'

    def test_listen_arguments_skip_address(self):
        probe = BleBroadcastListenProbe(make_config(endpoint_type="blebroadcastlisten", password="0011"), None)
        assert probe.build_arguments() == '--key "0011"'

    @pytest.mark.asyncio
    async def test_missing_key(self):
        provider, processor = provider_for("BleBroadcast", CommandResult(True, ""))
        probe = BleBroadcastProbe(make_config(endpoint_type="blebroadcast", address="AA:BB"), provider)

        await probe.connect()

        assert probe.result.ping_info.status == "Error"
        assert "Missing BLE key" in probe.result.message
        processor.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_metric_becomes_round_trip(self):
        provider, _ = provider_for("BleBroadcast", CommandResult(True, "PV power: 412\nYield today: 1.5"))
        probe = BleBroadcastProbe(make_config(endpoint_type="blebroadcast", address="AA:BB", password="k"),
                                  provider)

        await probe.connect()

        assert probe.result.is_up is True
        assert probe.result.ping_info.status == "BLE pv_power=412W"
        assert probe.result.ping_info.round_trip_time == 412

    @pytest.mark.asyncio
    async def test_processor_failure(self):
        provider, _ = provider_for("BleBroadcast", CommandResult(False, "adapter not found"))
        probe = BleBroadcastProbe(make_config(endpoint_type="blebroadcast", address="AA:BB", password="k"),
                                  provider)

        await probe.connect()

        assert probe.result.ping_info.status == "BLE Error"
