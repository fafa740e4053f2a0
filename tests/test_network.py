"""Tests for network module."""

import errno
import socket
from unittest import mock

import pytest

from testnode.network import NetworkScanner, PortProber, PortState, ProbeResult, parse_scan_output
from testnode.process import CommandResult


class TestPortProber:
    def test_default_timeout_from_config(self):
        assert PortProber().timeout == 10.0

    def test_open_port(self):
        with mock.patch("socket.create_connection") as mock_connect:
            result = PortProber(timeout=5).probe("10.0.0.5", "22")

        assert result.state is PortState.OPEN
        assert result.is_open
        mock_connect.assert_called_once_with(("10.0.0.5", 22), timeout=5)

    def test_connection_refused(self):
        with mock.patch("socket.create_connection", side_effect=ConnectionRefusedError()):
            result = PortProber().probe("10.0.0.5", 22)

        assert result.state is PortState.CLOSED
        assert not result.is_open

    def test_host_unreachable(self):
        error = OSError(errno.EHOSTUNREACH, "No route to host")
        with mock.patch("socket.create_connection", side_effect=error):
            result = PortProber().probe("10.0.0.5", 22)

        assert result.state is PortState.CLOSED

    def test_timeout(self):
        with mock.patch("socket.create_connection", side_effect=socket.timeout("timed out")):
            result = PortProber().probe("10.0.0.5", 22)

        assert result.state is PortState.TIMED_OUT
        assert result.error is None

    def test_other_errors_are_classified_with_cause(self):
        error = socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        with mock.patch("socket.create_connection", side_effect=error):
            result = PortProber().probe("no-such-host", 22)

        assert result.state is PortState.ERROR
        assert result.error is error

    def test_probe_result_defaults(self):
        assert ProbeResult(PortState.CLOSED).error is None


class TestParseScanOutput:
    def test_maps_mac_to_preceding_report(self, sample_nmap_output):
        mapping = parse_scan_output(sample_nmap_output)

        assert mapping == {
            "00:1A:2B:3C:4D:5E": "153.15.248.1",
            "52:54:00:AA:BB:CC": "153.15.250.17",
        }

    def test_lowercase_mac_is_normalized(self):
        output = "Nmap scan report for 10.0.0.9\nHost is up.\nMAC Address: 52:54:00:aa:bb:cc (QEMU)\n"

        assert parse_scan_output(output) == {"52:54:00:AA:BB:CC": "10.0.0.9"}

    def test_report_with_hostname(self):
        output = "Nmap scan report for vm1.lab (10.0.0.7)\nHost is up.\nMAC Address: 52:54:00:00:00:01 (QEMU)\n"

        assert parse_scan_output(output) == {"52:54:00:00:00:01": "10.0.0.7"}

    def test_empty_output(self):
        assert parse_scan_output("") == {}


class TestNetworkScanner:
    def test_scan_without_sudo(self, sample_nmap_output):
        runner = mock.MagicMock()
        runner.run.return_value = CommandResult(args=[], returncode=0, stdout=sample_nmap_output)

        scanner = NetworkScanner(runner, subnet="10.0.0.0/24")

        assert scanner.find_ip("52:54:00:aa:bb:cc") == "153.15.250.17"
        args, kwargs = runner.run.call_args
        assert args[0] == ["nmap", "-sn", "-n", "10.0.0.0/24"]
        assert kwargs["input"] is None

    def test_scan_with_sudo_password_on_stdin(self, sample_nmap_output):
        runner = mock.MagicMock()
        runner.run.return_value = CommandResult(args=[], returncode=0, stdout=sample_nmap_output)

        scanner = NetworkScanner(runner, sudo_password="hunter2")
        scanner.scan()

        args, kwargs = runner.run.call_args
        assert args[0] == ["sudo", "-S", "-p", "", "nmap", "-sn", "-n", "153.15.248.0/21"]
        assert kwargs["input"] == "hunter2\n"
        assert "hunter2" not in args[0]

    def test_failed_scan_returns_nothing(self):
        runner = mock.MagicMock()
        runner.run.return_value = CommandResult(args=[], returncode=1, stderr="sudo: incorrect password")

        scanner = NetworkScanner(runner)

        assert scanner.scan() == {}
        assert scanner.find_ip("52:54:00:AA:BB:CC") is None

    @pytest.mark.parametrize("mac", ["52:54:00:AA:BB:CC", "52:54:00:aa:bb:cc"])
    def test_find_ip_case_insensitive(self, mac, sample_nmap_output):
        runner = mock.MagicMock()
        runner.run.return_value = CommandResult(args=[], returncode=0, stdout=sample_nmap_output)

        assert NetworkScanner(runner).find_ip(mac) == "153.15.250.17"
