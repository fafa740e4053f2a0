"""
src/testnode/node.py

A single ephemeral test VM: create it from a template, find its address,
bootstrap chef-client on it through knife, and drive its screen.
"""

import json
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Sequence, Union

from testnode.config import Config
from testnode.directory import VMDirectory
from testnode.exceptions import (
    DirectoryError,
    NoVM,
    NotFound,
    OperationCancelled,
    RetriesExhausted,
    TemplateNotFound,
    TestNodeError,
    TimeoutExceeded,
)
from testnode.models import Template, VMRecord
from testnode.network import NetworkScanner, PortProber, PortState, ProbeResult
from testnode.process import ProcessRunner, format_command
from testnode.screen import ScreenActions, ScreenClient

logger = logging.getLogger(__name__)

SSH_PORT = 22


class TestNode(ScreenActions):
    """Ephemeral VM used as a test target, registered as a Chef node.

    The node owns at most one VM handle. Every call blocks; an instance
    must not be shared between threads.
    """

    __test__ = False

    def __init__(
        self,
        name: str,
        template_name: str,
        directory: Optional[VMDirectory] = None,
        runner: Optional[ProcessRunner] = None,
        prober: Optional[PortProber] = None,
        scanner: Optional[NetworkScanner] = None,
        screen: Optional[ScreenClient] = None,
        keep_vm_alive: bool = False,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """Instantiate `template_name` and wait until the new VM shows up.

        Args:
            name: Node name; first part of the VM name and of the Chef node name
            template_name: Exact name of the template to instantiate
            directory: VM directory client, Proxmox from Config when omitted
            runner: Runs knife and nmap
            prober: TCP port checks
            scanner: MAC to IP discovery
            screen: Optional screen automation session
            keep_vm_alive: Leave the VM in place when used as a context manager
            cancel: Event that aborts any wait when set

        Raises:
            DirectoryError: If templates cannot be listed
            TemplateNotFound: If no template has that name
            RetriesExhausted: If no VM could be created within the retry cap
        """
        self._wire(name, directory, runner, prober, scanner, screen, keep_vm_alive, cancel)
        template = self._find_template(template_name)
        self._vm = self._create_vm(template)

    @classmethod
    def attach(
        cls,
        name: str,
        vm_id: int,
        directory: Optional[VMDirectory] = None,
        runner: Optional[ProcessRunner] = None,
        prober: Optional[PortProber] = None,
        scanner: Optional[NetworkScanner] = None,
        screen: Optional[ScreenClient] = None,
        keep_vm_alive: bool = False,
        cancel: Optional[threading.Event] = None,
    ) -> "TestNode":
        """Build a node around a VM that already exists."""
        node = cls.__new__(cls)
        node._wire(name, directory, runner, prober, scanner, screen, keep_vm_alive, cancel)
        node._vm = node.locate(vm_id)
        return node

    def _wire(
        self,
        name: str,
        directory: Optional[VMDirectory],
        runner: Optional[ProcessRunner],
        prober: Optional[PortProber],
        scanner: Optional[NetworkScanner],
        screen: Optional[ScreenClient],
        keep_vm_alive: bool,
        cancel: Optional[threading.Event],
    ) -> None:
        if directory is None:
            from testnode.proxmox_api import ProxmoxDirectory

            directory = ProxmoxDirectory.from_config()
        self.name = name
        self.keep_vm_alive = keep_vm_alive
        self._directory = directory
        self._runner = runner or ProcessRunner()
        self._prober = prober or PortProber()
        self._scanner = scanner or NetworkScanner(self._runner)
        self._screen = screen
        self._cancel = cancel
        self._vm: Optional[VMRecord] = None
        self._ip: Optional[str] = None

    def __enter__(self) -> "TestNode":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if self.keep_vm_alive:
            return
        if exc_type is None:
            self.delete()
            return
        # Keep the exception raised inside the block
        try:
            self.delete()
        except TestNodeError as e:
            logger.error(f"Could not delete VM of node {self.name} after failure: {e}")

    def __repr__(self) -> str:
        vmid = self._vm.vmid if self._vm else None
        return f"TestNode(name={self.name!r}, vmid={vmid})"

    # -- waiting ---------------------------------------------------------

    def _sleep(self, seconds: float, cancel: Optional[threading.Event] = None) -> None:
        cancel = cancel if cancel is not None else self._cancel
        if cancel is None:
            time.sleep(seconds)
        elif cancel.wait(seconds):
            raise OperationCancelled(f"{self.name}: cancelled while waiting")

    def _check_cancel(self, cancel: Optional[threading.Event] = None) -> None:
        cancel = cancel if cancel is not None else self._cancel
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"{self.name}: cancelled")

    # -- directory -------------------------------------------------------

    def _find_template(self, template_name: str) -> Template:
        try:
            template = self._directory.find_template_by_name(template_name).unwrap()
        except DirectoryError as e:
            logger.error(f"Error listing templates: {e.message}")
            raise
        if template is None:
            logger.error(f"Template not found: {template_name}")
            raise TemplateNotFound(template_name)
        return template

    def _create_vm(self, template: Template) -> VMRecord:
        """Instantiate the template until the resulting VM can be located."""
        retries = Config.CREATE_MAX_RETRIES
        last_error: Optional[str] = None

        for attempt in range(1, retries + 1):
            vm_name = f"{self.name}-{datetime.now(timezone.utc):%Y%m%d%H%M%S}"
            result = self._directory.instantiate(template, vm_name)
            if not result.ok:
                last_error = result.message
                logger.error(
                    f"Problem instantiating template {template.name} (attempt {attempt}/{retries}): {result.message}"
                )
            else:
                vmid = int(result.value)
                try:
                    vm = self.locate(vmid)
                    logger.info(f"Created VM {vmid} ({vm_name}) from template {template.name}")
                    return vm
                except (NotFound, DirectoryError) as e:
                    last_error = str(e)
                    self._discard(vmid)

            if attempt < retries:
                delay = Config.backoff_delay(attempt)
                logger.info(f"Retrying instantiation of {template.name} in {delay:.0f}s")
                self._sleep(delay)

        raise RetriesExhausted(retries, last_error)

    def _discard(self, vmid: int) -> None:
        result = self._directory.finalize(vmid)
        if not result.ok:
            logger.warning(f"Could not remove partial VM {vmid}: {result.message}")

    def _require_vm(self) -> VMRecord:
        if self._vm is None:
            raise NoVM(f"No VM assigned to node {self.name}")
        return self._vm

    def locate(self, vm_id: int) -> VMRecord:
        """Get a fresh record of a VM by its id.

        Raises:
            DirectoryError: If VMs cannot be listed
            NotFound: If no VM has that id
        """
        try:
            vm = self._directory.find_vm(vm_id).unwrap()
        except DirectoryError as e:
            logger.error(f"Error listing VMs: {e.message}")
            raise
        if vm is None:
            logger.error(f"VM not found: {vm_id}")
            raise NotFound(f"VM not found: {vm_id}")
        return vm

    def refresh_info(self) -> VMRecord:
        """Re-read the node's VM from the directory and keep the new record."""
        vm = self._require_vm()
        self._vm = self.locate(vm.vmid)
        return self._vm

    @property
    def has_vm(self) -> bool:
        return self._vm is not None

    def vm_id(self) -> int:
        return self.refresh_info().vmid

    def external_name(self) -> str:
        """Name of the Chef node associated with this test node."""
        return f"{self.name}_{self.vm_id()}"

    # -- addressing ------------------------------------------------------

    def discover_ip(self, cancel: Optional[threading.Event] = None) -> Optional[str]:
        """Find the VM's IPv4 address from its NIC MAC.

        Asks the directory first, then falls back to scanning the subnet.

        Returns:
            IP address or None if it couldn't be found
        """
        record = self.refresh_info()
        if not record.mac:
            logger.warning(f"VM {record.vmid} has no NIC MAC address")
            return None

        lookup = self._directory.lookup_ip(record)
        if lookup.ok and lookup.value:
            logger.info(f"VM {record.vmid} has IP {lookup.value} (reported by directory)")
            return lookup.value

        for attempt in range(1, Config.SCAN_ATTEMPTS + 1):
            self._check_cancel(cancel)
            logger.debug(f"Trying to get IP of {record.mac} (attempt {attempt}/{Config.SCAN_ATTEMPTS})...")
            ip = self._scanner.find_ip(record.mac)
            if ip:
                logger.info(f"VM {record.vmid} has IP {ip}")
                return ip

        logger.warning(f"Can't locate IP of VM {record.vmid}")
        return None

    def ip(self, cancel: Optional[threading.Event] = None) -> Optional[str]:
        """IP address of the node, discovered once and cached."""
        self._require_vm()
        if self._ip is None:
            self._ip = self.discover_ip(cancel)
        return self._ip

    def probe_port(self, ip: str, port: int) -> ProbeResult:
        return self._prober.probe(ip, port)

    def is_port_open(self, ip: str, port: int) -> bool:
        """Check if a TCP port accepts connections.

        Refused, unreachable and timed out connections count as closed;
        any other socket error is raised.
        """
        result = self.probe_port(ip, port)
        if result.state is PortState.ERROR and result.error is not None:
            raise result.error
        return result.is_open

    # -- lifecycle -------------------------------------------------------

    def delete(self) -> bool:
        """Remove the Chef node and the VM.

        A VM that is already gone from the directory counts as deleted.

        Returns:
            True if a VM was deleted, False if none was assigned

        Raises:
            DirectoryError: If the VM still exists and could not be finalized
        """
        if self._vm is None:
            logger.info("No VM assigned, nothing to delete")
            return False

        vmid = self._vm.vmid
        self._runner.run(self._knife("node", "delete", f"{self.name}_{vmid}", "-y"))

        result = self._directory.finalize(vmid)
        if not result.ok:
            if not self._vm_vanished(vmid):
                logger.error(f"Could not finalize VM {vmid}: {result.message}")
                raise DirectoryError(result.message)
            logger.warning(f"VM {vmid} was already removed from the directory")

        logger.info(f"Deleted VM {vmid} of node {self.name}")
        self._vm = None
        self._ip = None
        return True

    def _vm_vanished(self, vmid: int) -> bool:
        found = self._directory.find_vm(vmid)
        return found.ok and found.value is None

    def is_healthy(self, cancel: Optional[threading.Event] = None) -> bool:
        """Wait for the VM to finish starting, then check that it runs.

        Raises:
            TimeoutExceeded: If the VM is still starting after HEALTH_POLL_ATTEMPTS polls
        """
        if self._vm is None:
            logger.warning("No VM initialized")
            return False

        record = self.refresh_info()
        polls = 0
        while record.is_starting:
            if polls >= Config.HEALTH_POLL_ATTEMPTS:
                raise TimeoutExceeded(
                    f"VM {record.vmid} still starting ({record.state_name()}) after {polls} polls"
                )
            self._sleep(Config.HEALTH_POLL_INTERVAL, cancel)
            record = self.refresh_info()
            polls += 1

        if not record.is_running:
            logger.warning(f"VM {record.vmid} ended up in state {record.state_name()}")
        return record.is_running

    # -- chef ------------------------------------------------------------

    def _knife(self, *args: str, config: Optional[str] = None) -> List[str]:
        cmd = [Config.KNIFE_BIN, *args]
        config = config or Config.KNIFE_CONFIG
        if config:
            cmd += ["--config", config]
        return cmd

    def bootstrap_command(
        self,
        run_list: Optional[Union[str, Sequence[str]]] = None,
        data: Optional[Union[str, Mapping[str, Any]]] = None,
        ssh_password: Optional[str] = None,
        config: Optional[str] = None,
    ) -> List[str]:
        """Build the knife bootstrap argument vector for this node.

        Optional fragments appear only for supplied values, except that
        `config` falls back to Config.KNIFE_CONFIG (the KNIFE_CONFIG env
        var): when that is set, `--config` is always present.

        Raises:
            NotFound: If the node's IP address cannot be discovered
        """
        ip = self.ip()
        if not ip:
            raise NotFound(f"IP address of node {self.name} is unknown")

        cmd = [Config.KNIFE_BIN, "bootstrap", ip, "-P", ssh_password or Config.DEFAULT_SSH_PASS,
               "-N", self.external_name()]
        config = config or Config.KNIFE_CONFIG
        if config:
            cmd += ["--config", config]
        if run_list:
            cmd += ["-r", run_list if isinstance(run_list, str) else ",".join(run_list)]
        if data:
            cmd += ["-j", data if isinstance(data, str) else json.dumps(data)]
        return cmd

    def _wait_for_ssh(self, ip: str, cancel: Optional[threading.Event] = None) -> None:
        attempts = Config.SSH_WAIT_ATTEMPTS
        for attempt in range(1, attempts + 1):
            if self.is_port_open(ip, SSH_PORT):
                return
            logger.debug(f"SSH on {ip} not open yet ({attempt}/{attempts})")
            if attempt < attempts:
                self._sleep(Config.SSH_WAIT_INTERVAL, cancel)
        raise TimeoutExceeded(f"SSH port on {ip} did not open after {attempts} attempts")

    def bootstrap(
        self,
        run_list: Optional[Union[str, Sequence[str]]] = None,
        data: Optional[Union[str, Mapping[str, Any]]] = None,
        ssh_password: Optional[str] = None,
        config: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> bool:
        """Bootstrap chef-client on the node.

        Args:
            run_list: Run list passed to chef
            data: JSON attributes passed to chef (string or mapping)
            ssh_password: SSH password on the target machine
            config: Path to knife config file

        Returns:
            True if the node bootstrapped successfully, False otherwise

        Raises:
            TimeoutExceeded: If SSH never became reachable
        """
        if self._vm is None:
            logger.warning("No VM assigned to bootstrap chef-client")
            return False

        logger.debug(f"Bootstrapping {self.name}...")
        ip = self.ip(cancel)
        if not ip:
            logger.error(f"Can't bootstrap {self.name}: IP address unknown")
            return False

        self._wait_for_ssh(ip, cancel)
        command = self.bootstrap_command(run_list=run_list, data=data, ssh_password=ssh_password, config=config)
        logger.info(f"Running {format_command(command)}")
        result = self._runner.run(command, capture=False)
        if not result.ok:
            logger.error(f"Some error during bootstrapping {self.name} (exit {result.returncode})")
        return result.ok

    def update_run_list(self, run_list: Union[str, Sequence[str]], config: Optional[str] = None) -> bool:
        """Replace the Chef run list of the bootstrapped node."""
        if self._vm is None:
            logger.warning("No VM assigned to update run list")
            return False

        entries = run_list if isinstance(run_list, str) else ",".join(run_list)
        result = self._runner.run(self._knife("node", "run_list", "set", self.external_name(), entries, config=config))
        if not result.ok:
            logger.error(f"Could not set run list of {self.external_name()}: {result.stderr.strip()}")
        return result.ok
