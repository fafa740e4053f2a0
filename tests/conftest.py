"""Shared test fixtures and configuration for testnode tests."""

from dataclasses import replace
from typing import Dict, List, Optional, Tuple
from unittest import mock

import pytest

from testnode.config import Config
from testnode.directory import DirectoryResult, VMDirectory
from testnode.models import Template, VMRecord
from testnode.network import NetworkScanner, PortProber, PortState, ProbeResult
from testnode.process import CommandResult, ProcessRunner

TEST_MAC = "52:54:00:AA:BB:CC"


class FakeDirectory(VMDirectory):
    """In-memory VM directory with scriptable failures and state sequences."""

    def __init__(self, templates: Optional[List[Template]] = None, mac: Optional[str] = TEST_MAC) -> None:
        self.templates = templates if templates is not None else [Template(1, "ubuntu-test", "pve")]
        self.mac = mac
        self.vms: Dict[int, VMRecord] = {}
        self.next_id = 100
        # (state, lcm_state) pairs applied on successive find_vm calls
        self.states: List[Tuple[int, int]] = []
        self.lookup_ips: Dict[int, str] = {}
        self.fail_templates: Optional[str] = None
        self.fail_listing: Optional[str] = None
        self.fail_finalize: Optional[str] = None
        self.fail_instantiate = 0
        self.ghost_instances = 0
        self.instantiated: List[str] = []
        self.finalized: List[int] = []

    def list_templates(self) -> DirectoryResult[List[Template]]:
        if self.fail_templates:
            return DirectoryResult.failure(self.fail_templates)
        return DirectoryResult.success(list(self.templates))

    def instantiate(self, template: Template, name: str) -> DirectoryResult[int]:
        self.instantiated.append(name)
        if self.fail_instantiate:
            self.fail_instantiate -= 1
            return DirectoryResult.failure("clone of template ubuntu-test failed: storage full")

        vmid = self.next_id
        self.next_id += 1
        if self.ghost_instances:
            # id handed out, but the VM never shows up in listings
            self.ghost_instances -= 1
            return DirectoryResult.success(vmid)

        self.vms[vmid] = VMRecord(vmid=vmid, name=name, state=3, lcm_state=3, mac=self.mac, node="pve")
        return DirectoryResult.success(vmid)

    def list_vms(self) -> DirectoryResult[List[VMRecord]]:
        if self.fail_listing:
            return DirectoryResult.failure(self.fail_listing)
        return DirectoryResult.success(list(self.vms.values()))

    def find_vm(self, vmid: int) -> DirectoryResult[VMRecord]:
        result = super().find_vm(vmid)
        if result.ok and result.value is not None and self.states:
            state, lcm = self.states.pop(0)
            self.vms[vmid] = replace(result.value, state=state, lcm_state=lcm)
            return DirectoryResult.success(self.vms[vmid])
        return result

    def finalize(self, vmid: int) -> DirectoryResult[None]:
        self.finalized.append(vmid)
        if self.fail_finalize:
            return DirectoryResult.failure(self.fail_finalize)
        if vmid not in self.vms:
            return DirectoryResult.failure(f"VM {vmid} not found")
        del self.vms[vmid]
        return DirectoryResult.success(None)

    def lookup_ip(self, record: VMRecord) -> DirectoryResult[str]:
        return DirectoryResult.success(self.lookup_ips.get(record.vmid))


@pytest.fixture(autouse=True)
def pinned_config(monkeypatch):
    """Pin configuration to known values regardless of the local .env."""
    values = {
        "API_TOKEN": "testuser@pve!testtoken=secretvalue",
        "PROXMOX_HOST": "pve",
        "VERIFY_SSL": False,
        "PROXMOX_CLONE_TIMEOUT": 300,
        "LOCAL_SUDO_PASS": None,
        "DEFAULT_SSH_PASS": "default-pass",
        "KNIFE_BIN": "knife",
        "KNIFE_CONFIG": None,
        "NMAP_BIN": "nmap",
        "SCAN_SUBNET": "153.15.248.0/21",
        "SCAN_ATTEMPTS": 20,
        "PORT_TIMEOUT": 10.0,
        "SSH_WAIT_ATTEMPTS": 30,
        "SSH_WAIT_INTERVAL": 15.0,
        "HEALTH_POLL_INTERVAL": 10.0,
        "HEALTH_POLL_ATTEMPTS": 90,
        "CREATE_MAX_RETRIES": 5,
        "CREATE_BACKOFF_BASE": 2.0,
        "CREATE_BACKOFF_MAX": 60.0,
    }
    for key, value in values.items():
        monkeypatch.setattr(Config, key, value)
    return values


@pytest.fixture
def mock_sleep():
    """Patch out blocking sleeps."""
    with mock.patch("time.sleep") as sleep:
        yield sleep


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def runner():
    """Mock process runner where every command succeeds."""
    runner = mock.MagicMock(spec=ProcessRunner)
    runner.run.return_value = CommandResult(args=[], returncode=0)
    return runner


@pytest.fixture
def prober():
    """Mock port prober reporting every port open."""
    prober = mock.MagicMock(spec=PortProber)
    prober.probe.return_value = ProbeResult(PortState.OPEN)
    return prober


@pytest.fixture
def scanner():
    """Mock network scanner that finds the test VM."""
    scanner = mock.MagicMock(spec=NetworkScanner)
    scanner.find_ip.return_value = "153.15.250.17"
    return scanner


@pytest.fixture
def make_node(directory, runner, prober, scanner, mock_sleep):
    """Factory creating a TestNode wired to the fakes above."""
    from testnode.node import TestNode

    def _make(name: str = "web", template_name: str = "ubuntu-test", **kwargs):
        kwargs.setdefault("directory", directory)
        kwargs.setdefault("runner", runner)
        kwargs.setdefault("prober", prober)
        kwargs.setdefault("scanner", scanner)
        return TestNode(name, template_name, **kwargs)

    return _make


@pytest.fixture
def sample_nmap_output() -> str:
    """Output of `nmap -sn -n` run with privileges."""
    return """Starting Nmap 7.94 ( https://nmap.org ) at 2026-10-17 10:00 UTC
Nmap scan report for 153.15.248.1
Host is up (0.00031s latency).
MAC Address: 00:1A:2B:3C:4D:5E (Cisco Systems)
Nmap scan report for 153.15.250.17
Host is up (0.00045s latency).
MAC Address: 52:54:00:AA:BB:CC (QEMU virtual NIC)
Nmap scan report for 153.15.248.10
Host is up.
Nmap done: 2048 IP addresses (3 hosts up) scanned in 12.50 seconds
"""
