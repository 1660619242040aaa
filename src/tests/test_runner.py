"""
Unit Tests for the monitor runner and CLI entry point
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

import pytest

from util.types import PingParams, ProbeConfig
from netmon.collaborators import PingReply
from netmon.collection import ProbeCollection
from netmon.factory import ConnectFactory
from netmon.runner import MonitorRunner, load_endpoints, main


def runner_config(**kwargs):
    values = dict(default_timeout_ms=2000, extend_timeout_multiplier=10, poll_interval_seconds=0)
    values.update(kwargs)
    return SimpleNamespace(**values)


class TestLoadEndpoints:

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_endpoints(tmp_path / "endpoints.json")

    def test_not_a_list(self, tmp_path):
        path = tmp_path / "endpoints.json"
        path.write_text('{"address": "a.com"}')

        with pytest.raises(ValueError):
            load_endpoints(path)

    def test_loads_configs(self, tmp_path):
        path = tmp_path / "endpoints.json"
        path.write_text(json.dumps([
            {"address": "a.com", "endpoint_type": "icmp", "monitor_ip_id": 1},
            {"address": "b.com", "endpoint_type": "Http", "monitor_ip_id": "2", "port": "8080"},
        ]))

        endpoints = load_endpoints(path)

        assert endpoints[1] == ProbeConfig(address="b.com", endpoint_type="http", monitor_ip_id=2, port=8080)


class TestMonitorRunner:
    """Test suite for MonitorRunner cycles"""

    @pytest.fixture
    def pinger(self):
        return Mock(ping=AsyncMock(return_value=PingReply(status="Success", round_trip_time=3)))

    @pytest.fixture
    def runner(self, pinger):
        collection = ProbeCollection(ConnectFactory(pinger=pinger), params=PingParams(timeout=2000))
        return MonitorRunner(runner_config(), collection=collection)

    @pytest.mark.asyncio
    async def test_run_merges_results(self, runner, pinger):
        endpoints = [ProbeConfig(address="a.com", monitor_ip_id=1), ProbeConfig(address="b.com", monitor_ip_id=2)]

        results = await runner.run(endpoints, cycles=2)

        assert sorted(results) == [1, 2]
        assert all(r["is_up"] for r in results.values())
        assert results[1]["status_id"] == 2
        assert pinger.ping.await_count == 4

    @pytest.mark.asyncio
    async def test_long_running_go_through_gate(self, runner):
        await runner.seed([ProbeConfig(address="10.0.0.1", endpoint_type="nmap", monitor_ip_id=5)])

        started = await runner.run_cycle()

        assert started == 1
        # no Nmap processor registered in this factory
        assert runner.results[5]["status"] == "Error"
        assert runner.collection.gate.slots_remaining == runner.collection.gate.max_size


class TestMain:
    """Test suite for the CLI entry point"""

    @patch("netmon.runner.setup_logging")
    def test_missing_endpoint_file(self, mock_logging, tmp_path, capsys):
        assert main(["--endpoints", str(tmp_path / "none.json")]) == 1
        assert "Configuration error" in capsys.readouterr().out

    @patch("netmon.runner.setup_logging")
    @patch("netmon.runner.MonitorRunner")
    def test_writes_output(self, mock_runner, mock_logging, tmp_path):
        endpoints = tmp_path / "endpoints.json"
        endpoints.write_text(json.dumps([{"address": "a.com", "monitor_ip_id": 1}]))
        output = tmp_path / "out" / "results.json"
        mock_runner.return_value.run = AsyncMock(return_value={1: {"is_up": True, "message": "Success"}})

        code = main(["--endpoints", str(endpoints), "--output", str(output), "--cycles", "0"])

        assert code == 0
        assert json.loads(output.read_text()) == [{"monitor_ip_id": 1, "is_up": True, "message": "Success"}]
        configs, cycles = mock_runner.return_value.run.call_args.args
        assert cycles == 1
        assert configs[0].address == "a.com"
