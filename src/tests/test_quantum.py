"""
Unit Tests for the quantum handshake checker, quantum probes and algorithm table
"""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest

from util.types import AlgorithmInfo, CommandResult, ProbeConfig
from netmon.probes.quantum_probe import QuantumCertProbe, QuantumProbe
from netmon.quantum.algorithms import (
    CSV_HEADER, format_algorithm_rows, load_algorithms, parse_algorithm_rows, parse_hex_id,
)
from netmon.quantum.handshake import NO_ALGORITHMS, NOT_NEGOTIATED, QuantumHandshakeChecker
from netmon.quantum.openssl import OpenSSLRunner, is_ip_address

PQ_HELLO = "0200002E" + "0303" + "0" * 64 + "00" + "1301" + "00" + "0006" + "0033000211EC"
CLASSIC_HELLO = "0200002E" + "0303" + "0" * 64 + "00" + "1301" + "00" + "0006" + "003300020017"


def handshake_output(hello_hex):
    return (
        "depth=0 CN = example.com : CONNECTED(00000003)\n"
        "<<< TLS 1.3, Handshake [length 002e], ServerHello\n"
        f"{hello_hex}\n"
        "<<< TLS 1.3, Handshake [length 0a12], Certificate\n"
        "0b 00 0a 0e\n"
    )


def algorithms():
    return [
        AlgorithmInfo("X25519MLKEM768", default_id=0x11EC, enabled=True),
        AlgorithmInfo("SecP256r1MLKEM768", default_id=0x11EB, enabled=True),
        AlgorithmInfo("p256_kyber768", default_id=0x2F3C, enabled=True,
                      environment_variable="OQS_CODEPOINT_P256_KYBER768", add_env=True),
    ]


class TestQuantumHandshakeChecker:
    """Test suite for QuantumHandshakeChecker"""

    @pytest.fixture
    def runner(self):
        return Mock(handshake=AsyncMock())

    @pytest.mark.asyncio
    async def test_empty_batch(self, runner):
        checker = QuantumHandshakeChecker(algorithms(), runner)

        result = await checker.process_batch_algorithms([], "example.com", 443)

        assert result.success is False
        assert result.message == NO_ALGORITHMS
        runner.handshake.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_modern_batch_success(self, runner):
        runner.handshake.return_value = handshake_output(PQ_HELLO)
        checker = QuantumHandshakeChecker(algorithms(), runner)

        result = await checker.is_quantum_safe("example.com", 443)

        assert result.success is True
        assert result.data == "X25519MLKEM768"
        assert result.message == "Negotiated quantum-safe algorithm: X25519MLKEM768"
        address, port, curves = runner.handshake.call_args.args
        assert curves == "X25519MLKEM768:SecP256r1MLKEM768"
        assert runner.handshake.call_args.kwargs["env"] is None

    @pytest.mark.asyncio
    async def test_markers_missing(self, runner):
        runner.handshake.return_value = "ServerHello\n<<< end\n"
        checker = QuantumHandshakeChecker(algorithms(), runner)

        result = await checker.process_algorithm(algorithms()[0], "example.com", 443)

        assert result.success is False

    @pytest.mark.asyncio
    async def test_classic_group_not_negotiated(self, runner):
        runner.handshake.return_value = handshake_output(CLASSIC_HELLO)
        checker = QuantumHandshakeChecker(algorithms(), runner)

        result = await checker.is_quantum_safe("example.com", 443)

        assert result.success is False
        assert result.message == NOT_NEGOTIATED
        # modern batch, then the one env-driven algorithm
        assert runner.handshake.await_count == 2

    @pytest.mark.asyncio
    async def test_env_algorithm_sets_variable(self, runner):
        runner.handshake.return_value = handshake_output(PQ_HELLO.replace("11EC", "2F3C"))
        checker = QuantumHandshakeChecker(algorithms(), runner)

        result = await checker.process_algorithm(algorithms()[2], "example.com", 443)

        assert result.success is True
        assert result.data == "p256_kyber768"
        env = runner.handshake.call_args.kwargs["env"]
        assert env == {"OQS_CODEPOINT_P256_KYBER768": str(0x2F3C)}

    @pytest.mark.asyncio
    async def test_group_outside_offer_is_rejected(self, runner):
        runner.handshake.return_value = handshake_output(PQ_HELLO)
        checker = QuantumHandshakeChecker(algorithms(), runner)

        result = await checker.process_algorithm(algorithms()[1], "example.com", 443)

        assert result.success is False

    @pytest.mark.asyncio
    async def test_connect_error(self, runner):
        runner.handshake.return_value = "connect:errno=111 : "
        checker = QuantumHandshakeChecker(algorithms(), runner)

        result = await checker.process_algorithm(algorithms()[0], "example.com", 443)

        assert result.success is False
        assert result.message == " connect:errno "
        assert result.data == "X25519MLKEM768"

    @pytest.mark.asyncio
    async def test_alerts_collected(self, runner):
        runner.handshake.return_value = ">>> TLS 1.3, Alert [length 0002], fatal handshake_failure\n"
        checker = QuantumHandshakeChecker(algorithms(), runner)

        result = await checker.process_algorithm(algorithms()[0], "example.com", 443)

        assert "handshake_failure" in result.message

    @pytest.mark.asyncio
    async def test_nothing_enabled(self, runner):
        disabled = [AlgorithmInfo("X25519MLKEM768", default_id=0x11EC, enabled=False)]
        checker = QuantumHandshakeChecker(disabled, runner)

        result = await checker.is_quantum_safe("example.com", 443)

        assert result.message == NOT_NEGOTIATED
        runner.handshake.assert_not_awaited()


class TestQuantumProbes:
    """Test suite for QuantumProbe and QuantumCertProbe"""

    def config(self, endpoint_type):
        return ProbeConfig(address="example.com", endpoint_type=endpoint_type, timeout=2000, monitor_ip_id=9)

    @pytest.mark.asyncio
    async def test_quantum_up(self):
        checker = Mock(is_quantum_safe=AsyncMock(return_value=CommandResult(True, "ok", data="X25519MLKEM768")))
        probe = QuantumProbe(self.config("quantum"), checker=checker)

        await probe.connect()

        assert probe.result.is_up is True
        assert probe.result.message == "Using quantum safe handshake : X25519MLKEM768"
        assert checker.is_quantum_safe.call_args.args[:2] == ("example.com", 443)

    @pytest.mark.asyncio
    async def test_quantum_down(self):
        checker = Mock(is_quantum_safe=AsyncMock(return_value=CommandResult(False, NOT_NEGOTIATED)))
        probe = QuantumProbe(self.config("quantum"), checker=checker)

        await probe.connect()

        assert probe.result.is_up is False
        assert probe.result.ping_info.status == "Could not negotiate quantum safe handshake"

    @pytest.mark.asyncio
    async def test_quantum_timeout(self):
        async def hang(*args):
            await asyncio.sleep(5)

        checker = Mock(is_quantum_safe=AsyncMock(side_effect=hang))
        probe = QuantumProbe(self.config("quantum").with_changes(timeout=20), checker=checker)

        await probe.connect()

        assert probe.result.ping_info.status == "Timeout"

    @pytest.mark.asyncio
    async def test_quantum_without_checker(self):
        probe = QuantumProbe(self.config("quantum"))

        await probe.connect()

        assert probe.result.ping_info.status == "Error"

    def test_quantum_probes_are_long_running(self):
        assert QuantumProbe(self.config("quantum")).is_long_running is True
        assert QuantumCertProbe(self.config("quantumcert")).is_long_running is True

    @pytest.mark.asyncio
    async def test_cert_not_found(self):
        runner = Mock(show_certs=AsyncMock(return_value="no peer certificate available"))
        probe = QuantumCertProbe(self.config("quantumcert"), runner=runner)

        await probe.connect()

        assert probe.result.is_up is False
        assert probe.result.ping_info.status == "Certificate not quantum-safe"
        assert "Certificate summary not found" in probe.result.message

    @pytest.mark.asyncio
    async def test_cert_quantum_safe(self):
        summary = Mock(is_quantum_safe_certificate=True)
        summary.to_summary_string.return_value = "Certificate PQC: yes"
        runner = Mock(show_certs=AsyncMock(return_value="pem"))
        probe = QuantumCertProbe(self.config("quantumcert"), runner=runner)

        with patch("netmon.probes.quantum_probe.try_build_summary", return_value=(True, summary)):
            await probe.connect()

        assert probe.result.is_up is True
        assert probe.result.message == "Quantum-safe certificate detected : Certificate PQC: yes"


class TestOpenSSLRunner:

    def test_is_ip_address(self):
        assert is_ip_address("10.0.0.1") is True
        assert is_ip_address("::1") is True
        assert is_ip_address("example.com") is False

    @pytest.mark.asyncio
    async def test_show_certs_adds_servername(self):
        runner = OpenSSLRunner(oqs_provider_path="/opt/oqs")
        with patch.object(OpenSSLRunner, "_run", AsyncMock(return_value="out")) as run:
            await runner.show_certs("example.com", 443)
            await runner.show_certs("10.0.0.1", 443)

        first_args = run.call_args_list[0].args[0]
        second_args = run.call_args_list[1].args[0]
        assert first_args[-2:] == ["-servername", "example.com"]
        assert "-servername" not in second_args
        assert "-showcerts" in first_args

    @pytest.mark.asyncio
    async def test_handshake_arguments(self):
        runner = OpenSSLRunner(oqs_provider_path="/opt/oqs")
        with patch.object(OpenSSLRunner, "_run", AsyncMock(return_value="out")) as run:
            await runner.handshake("example.com", 8443, "X25519MLKEM768", env={"A": "1"})

        args, env, cancel = run.call_args.args
        assert args[:5] == ["s_client", "-curves", "X25519MLKEM768", "-connect", "example.com:8443"]
        assert args[-1] == "-msg"
        assert env == {"A": "1"}

    def test_environment_sets_library_path(self):
        env = OpenSSLRunner(oqs_provider_path="/opt/oqs")._environment({"EXTRA": "1"})
        assert env["LD_LIBRARY_PATH"] == "/opt/oqs"
        assert env["EXTRA"] == "1"


class TestAlgorithmTable:
    """Test suite for the algorithm CSV loader"""

    def test_parse_hex_id(self):
        assert parse_hex_id("0x11EC") == 0x11EC
        assert parse_hex_id("2f3c") == 0x2F3C
        assert parse_hex_id("zz") == 0

    def test_parse_rows(self):
        rows = [
            ["X25519MLKEM768", "0x11EC", "yes", "", "no"],
            ["p256_kyber768", "0x2F3C", "YES", "OQS_CODEPOINT_P256_KYBER768", "yes"],
            ["short", "0x1"],
        ]
        parsed = parse_algorithm_rows(rows)

        assert [a.algorithm_name for a in parsed] == ["X25519MLKEM768", "p256_kyber768"]
        assert parsed[1].enabled is True
        assert parsed[1].add_env is True
        assert parsed[0].add_env is False

    def test_load_with_curves(self, tmp_path):
        table = tmp_path / "AlgoTable.csv"
        table.write_text(CSV_HEADER + "\nX25519MLKEM768,0x11EC,no,,no\nkyber512,0x023A,yes,,no\n")
        curves = tmp_path / "curves"
        curves.write_text("X25519MLKEM768\n")

        loaded = load_algorithms(table, curves)

        assert [(a.algorithm_name, a.enabled) for a in loaded] == [("X25519MLKEM768", True), ("kyber512", False)]

    def test_missing_curves_file_keeps_flags(self, tmp_path):
        table = tmp_path / "AlgoTable.csv"
        table.write_text(CSV_HEADER + "\nkyber512,0x023A,yes,,no\n")

        loaded = load_algorithms(table, tmp_path / "missing")

        assert loaded[0].enabled is True

    def test_format_rows(self):
        lines = format_algorithm_rows([AlgorithmInfo("kyber512", default_id=0x023A, enabled=True)])
        assert lines == [CSV_HEADER, "kyber512,0x23a,yes,,no"]
