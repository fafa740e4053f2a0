"""Network reachability checks and MAC to IP discovery."""

import errno
import logging
import re
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from testnode.config import Config
from testnode.process import ProcessRunner

logger = logging.getLogger(__name__)

REPORT_RE = re.compile(r"Nmap scan report for .*?(\d+\.\d+\.\d+\.\d+)")
MAC_LINE_RE = re.compile(r"MAC Address: ([0-9A-Fa-f:]{17})")

# connect() errors that mean "nothing listening there (yet)"
UNREACHABLE_ERRNOS = {errno.ECONNREFUSED, errno.EHOSTUNREACH}


class PortState(Enum):
    """Outcome of a TCP connect attempt."""

    OPEN = "open"
    CLOSED = "closed"
    TIMED_OUT = "timed_out"
    ERROR = "error"


@dataclass(frozen=True)
class ProbeResult:
    """Classified result of probing one host and port."""

    state: PortState
    error: Optional[OSError] = None

    @property
    def is_open(self) -> bool:
        return self.state is PortState.OPEN


class PortProber:
    """TCP connect checks with a fixed timeout."""

    def __init__(self, timeout: Optional[float] = None) -> None:
        self.timeout = Config.PORT_TIMEOUT if timeout is None else timeout

    def probe(self, host: str, port: int) -> ProbeResult:
        try:
            with socket.create_connection((host, int(port)), timeout=self.timeout):
                return ProbeResult(PortState.OPEN)
        except socket.timeout:
            return ProbeResult(PortState.TIMED_OUT)
        except ConnectionRefusedError:
            return ProbeResult(PortState.CLOSED)
        except OSError as e:
            if e.errno in UNREACHABLE_ERRNOS:
                return ProbeResult(PortState.CLOSED)
            return ProbeResult(PortState.ERROR, error=e)


def parse_scan_output(output: str) -> Dict[str, str]:
    """Parse `nmap -sn` output into a MAC -> IP mapping.

    Each 'MAC Address:' line belongs to the most recent
    'Nmap scan report for' line above it.
    """
    mac_to_ip: Dict[str, str] = {}
    current_ip = None

    for line in output.splitlines():
        ip_match = REPORT_RE.search(line)
        if ip_match:
            current_ip = ip_match.group(1)
            continue

        mac_match = MAC_LINE_RE.search(line)
        if mac_match and current_ip:
            mac_to_ip[mac_match.group(1).upper()] = current_ip
            current_ip = None

    return mac_to_ip


class NetworkScanner:
    """Finds hosts on a subnet by MAC address using an nmap ping scan.

    nmap only reports MAC addresses when run with privileges, so the scan
    goes through `sudo -S` when a local sudo password is configured.
    """

    def __init__(
        self,
        runner: Optional[ProcessRunner] = None,
        subnet: Optional[str] = None,
        sudo_password: Optional[str] = None,
    ) -> None:
        self.runner = runner or ProcessRunner()
        self.subnet = subnet or Config.SCAN_SUBNET
        self.sudo_password = sudo_password if sudo_password is not None else Config.LOCAL_SUDO_PASS

    def scan(self) -> Dict[str, str]:
        """Run one ping scan over the subnet; empty mapping on failure."""
        args = [Config.NMAP_BIN, "-sn", "-n", self.subnet]
        stdin = None
        if self.sudo_password:
            args = ["sudo", "-S", "-p", ""] + args
            stdin = self.sudo_password + "\n"

        result = self.runner.run(args, input=stdin, timeout=Config.SCAN_TIMEOUT)
        if not result.ok:
            logger.warning(f"Network scan of {self.subnet} failed (exit {result.returncode})")
            return {}
        return parse_scan_output(result.stdout)

    def find_ip(self, mac: str) -> Optional[str]:
        return self.scan().get(mac.upper())
