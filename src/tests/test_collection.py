"""
Unit Tests for ProbeCollection
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from util.types import PingParams, ProbeConfig
from netmon.collection import ProbeCollection
from netmon.factory import ConnectFactory
from netmon.filters import create_strategy
from netmon.probes.http_probe import HTTPProbe
from netmon.probes.icmp_probe import ICMPProbe


def nmap_config(monitor_ip_id):
    return ProbeConfig(address="10.0.0.%d" % monitor_ip_id, endpoint_type="nmap", monitor_ip_id=monitor_ip_id)


@pytest.fixture
def factory():
    return ConnectFactory()


class TestFilteredSelection:
    """Test suite for get_filtered"""

    def test_filter_then_enabled(self, factory):
        collection = ProbeCollection(factory, create_strategy("cmd", 2))
        for i in range(6):
            collection.add(nmap_config(i))
        collection.disable_all(4)
        collection.disable_all(5)

        selected = collection.get_filtered()

        assert {p.monitor_ip_id for p in selected} == {0, 2}

    def test_config_disabled_is_skipped(self, factory):
        collection = ProbeCollection(factory)
        collection.add(ProbeConfig(address="a.com", monitor_ip_id=1))
        collection.add(ProbeConfig(address="b.com", monitor_ip_id=2, enabled=False))

        assert [p.monitor_ip_id for p in collection.get_filtered()] == [1]

    def test_non_long_running(self, factory):
        collection = ProbeCollection(factory)
        collection.add(ProbeConfig(address="a.com", endpoint_type="icmp", monitor_ip_id=1))
        collection.add(nmap_config(2))

        assert [p.monitor_ip_id for p in collection.get_non_long_running()] == [1]


class TestMembership:
    """Test suite for add / update / remove"""

    def test_add_after_disable_is_enabled(self, factory):
        collection = ProbeCollection(factory)
        collection.add(nmap_config(1))
        collection.disable_all(1)

        probe = collection.add(nmap_config(1))

        assert probe.is_enabled is True
        assert collection.is_running(1) is False

    def test_update_same_type_keeps_probe(self, factory):
        collection = ProbeCollection(factory)
        probe = collection.add(ProbeConfig(address="a.com", endpoint_type="http", monitor_ip_id=1))

        updated = collection.update_or_add(ProbeConfig(address="b.com", endpoint_type="http", monitor_ip_id=1))

        assert updated is probe
        assert len(collection) == 1
        assert probe.config.address == "https://b.com"

    def test_update_changed_type_replaces_probe(self, factory):
        collection = ProbeCollection(factory)
        old = collection.add(ProbeConfig(address="a.com", endpoint_type="icmp", monitor_ip_id=1))

        new = collection.update_or_add(ProbeConfig(address="a.com", endpoint_type="http", monitor_ip_id=1))

        assert isinstance(new, HTTPProbe)
        assert old.is_enabled is False
        assert len(collection) == 2

    def test_update_unknown_id_adds(self, factory):
        collection = ProbeCollection(factory)
        probe = collection.update_or_add(ProbeConfig(address="a.com", monitor_ip_id=5))

        assert isinstance(probe, ICMPProbe)
        assert len(collection) == 1

    def test_get_instance_does_not_register(self, factory):
        collection = ProbeCollection(factory)
        collection.get_instance(nmap_config(1))
        assert len(collection) == 0

    def test_reset_site_hash(self, factory):
        collection = ProbeCollection(factory)
        probe = collection.add(ProbeConfig(address="a.com", endpoint_type="sitehash", monitor_ip_id=1,
                                           site_hash="abc"))

        collection.reset_site_hash(1)
        collection.reset_site_hash(99)

        assert probe.config.site_hash == ""

    @pytest.mark.asyncio
    async def test_refreshing_unknown_type_keeps_one_entry(self, factory):
        collection = ProbeCollection(factory)
        config = ProbeConfig(address="a.com", endpoint_type="ftp", monitor_ip_id=7)
        await collection.net_connect_factory([config], is_init=True)
        original = collection[0]

        for _ in range(5):
            await collection.net_connect_factory([config])

        assert len(collection) == 1
        assert collection[0] is original
        assert original.is_enabled is True
        assert isinstance(original, ICMPProbe)

    def test_update_clamps_timeout(self, factory):
        collection = ProbeCollection(factory, params=PingParams(timeout=5000))
        probe = collection.add(ProbeConfig(address="a.com", monitor_ip_id=1, timeout=1000))

        updated = collection.update_or_add(ProbeConfig(address="a.com", monitor_ip_id=1, timeout=0))

        assert updated is probe
        assert probe.config.timeout == 5000

    @pytest.mark.asyncio
    async def test_net_connect_factory_init(self, factory):
        collection = ProbeCollection(factory)
        collection.add(nmap_config(1))

        await collection.net_connect_factory([nmap_config(2), nmap_config(3)], is_init=True)

        assert [p.monitor_ip_id for p in collection.probes] == [2, 3]

    @pytest.mark.asyncio
    async def test_net_connect_factory_disable(self, factory):
        collection = ProbeCollection(factory)
        first = collection.add(nmap_config(1))
        second = collection.add(nmap_config(2))

        await collection.net_connect_factory([nmap_config(2)], is_disable=True)

        enabled = [p for p in collection.probes if p.is_enabled]
        assert first.is_enabled is False
        assert second.is_enabled is False
        assert [p.monitor_ip_id for p in enabled] == [2]

    @pytest.mark.asyncio
    async def test_net_connect_factory_params(self, factory):
        collection = ProbeCollection(factory)

        await collection.net_connect_factory([ProbeConfig(address="a.com", monitor_ip_id=1, timeout=90000)],
                                             PingParams(timeout=5000), is_init=True)

        assert collection[0].config.timeout == 5000


class TestExecution:
    """Test suite for the long/short running task handlers"""

    @pytest.mark.asyncio
    async def test_single_flight(self, factory):
        collection = ProbeCollection(factory)
        probe = collection.add(nmap_config(1))

        async def slow():
            # mirrors pre_connect/post_connect
            probe.is_running = True
            await asyncio.sleep(0.05)
            probe.is_running = False

        probe.connect = AsyncMock(side_effect=slow)
        merge = Mock()

        await asyncio.gather(
            collection.handle_long_running_task(probe, merge),
            collection.handle_long_running_task(probe, merge),
        )

        assert probe.connect.await_count == 1
        merge.assert_called_once_with(probe.result, 1)
        assert probe.is_queued is False

    @pytest.mark.asyncio
    async def test_running_probe_rejected(self, factory):
        collection = ProbeCollection(factory)
        probe = collection.add(nmap_config(1))
        probe.is_running = True
        probe.connect = AsyncMock()

        await collection.handle_long_running_task(probe, Mock())
        await collection.handle_short_running_task(probe, Mock())

        probe.connect.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gate_limits_concurrency(self, factory):
        collection = ProbeCollection(factory, max_task_queue_size=2)
        state = {"active": 0, "peak": 0}

        async def tracked():
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
            await asyncio.sleep(0.02)
            state["active"] -= 1

        probes = [collection.add(nmap_config(i)) for i in range(5)]
        for probe in probes:
            probe.connect = AsyncMock(side_effect=tracked)

        await asyncio.gather(*(collection.handle_long_running_task(p, Mock()) for p in probes))

        assert state["peak"] == 2
        assert all(p.connect.await_count == 1 for p in probes)
        assert collection.gate.slots_remaining == 2

    @pytest.mark.asyncio
    async def test_disabled_during_run_is_not_merged(self, factory):
        collection = ProbeCollection(factory)
        probe = collection.add(nmap_config(1))

        async def disable():
            probe.is_enabled = False

        probe.connect = AsyncMock(side_effect=disable)
        merge = Mock()

        await collection.handle_long_running_task(probe, merge)

        merge.assert_not_called()

    @pytest.mark.asyncio
    async def test_short_task_merges(self, factory):
        collection = ProbeCollection(factory)
        probe = collection.add(ProbeConfig(address="a.com", monitor_ip_id=4))
        probe.connect = AsyncMock()
        merge = Mock()

        await collection.handle_short_running_task(probe, merge)

        merge.assert_called_once_with(probe.result, 4)

    @pytest.mark.asyncio
    async def test_wait_all_tasks_timeout(self, factory):
        collection = ProbeCollection(factory)
        probe = collection.add(nmap_config(1))
        probe.is_running = True

        await collection.wait_all_tasks(poll_seconds=0.01, timeout=0.05)

        assert probe.is_running is True

    def test_log_info(self, factory):
        collection = ProbeCollection(factory, max_task_queue_size=3)
        assert collection.log_info() == "Gate tasks waiting: 0. Slots remaining 3."
