import logging
import re
import time
from typing import Any, Dict, List, Optional, Tuple

import requests
from proxmoxer import ProxmoxAPI
from proxmoxer.core import ResourceException
from proxmoxer.tools import Tasks

from testnode.config import Config
from testnode.directory import DirectoryResult, VMDirectory
from testnode.models import LcmState, Template, VMRecord, VMState

logger = logging.getLogger(__name__)

# Errors proxmoxer can surface for a single API call
API_ERRORS = (ResourceException, requests.exceptions.RequestException)

# Locks held while Proxmox is still materializing the guest
PROVISIONING_LOCKS = {"clone", "create", "rollback", "copy"}

MAC_RE = re.compile(r"([0-9A-Fa-f]{2}(?::[0-9A-Fa-f]{2}){5})")


def classify_status(status: Dict[str, Any]) -> Tuple[VMState, LcmState]:
    """Map a Proxmox qemu status payload onto (state, lifecycle state)."""
    if status.get("lock") in PROVISIONING_LOCKS:
        return VMState.PENDING, LcmState.PROLOG

    vm_status = status.get("status", "unknown")
    if vm_status == "running":
        qmp = status.get("qmpstatus", "running")
        if qmp == "prelaunch":
            return VMState.ACTIVE, LcmState.BOOT
        if qmp in ("paused", "suspended"):
            return VMState.SUSPENDED, LcmState.LCM_INIT
        return VMState.ACTIVE, LcmState.RUNNING
    if vm_status == "stopped":
        return VMState.POWEROFF, LcmState.LCM_INIT
    return VMState.INIT, LcmState.LCM_INIT


def parse_mac(vm_config: Dict[str, Any]) -> Optional[str]:
    """Extract the MAC of the first NIC from a qemu config ('net0': 'virtio=AA:..,bridge=vmbr0')."""
    net0 = vm_config.get("net0")
    if not net0:
        return None
    match = MAC_RE.search(str(net0))
    return match.group(1).upper() if match else None


class ProxmoxDirectory(VMDirectory):
    """VM directory backed by the Proxmox VE API."""

    def __init__(self, host: str, verify_ssl: bool = False, api_token: Optional[str] = None) -> None:
        self.host = host
        self.user, self.token_name, self.api_token = Config.parse_api_token(api_token or Config.API_TOKEN)
        self.proxmox = ProxmoxAPI(
            host, user=self.user, token_name=self.token_name, token_value=self.api_token, verify_ssl=verify_ssl
        )

    @classmethod
    def from_config(cls) -> "ProxmoxDirectory":
        return cls(Config.PROXMOX_HOST, verify_ssl=Config.VERIFY_SSL)

    def _qemu(self, node: str, vmid: int) -> Any:
        return self.proxmox.nodes(node).qemu(vmid)

    def _resources(self) -> List[Dict[str, Any]]:
        return [r for r in self.proxmox.cluster.resources.get(type="vm") if r.get("type", "qemu") == "qemu"]

    def list_templates(self) -> DirectoryResult[List[Template]]:
        try:
            resources = self._resources()
        except API_ERRORS as e:
            logger.error(f"Error listing templates on {self.host}: {e}")
            return DirectoryResult.failure(str(e))
        templates = [
            Template(template_id=int(r["vmid"]), name=r.get("name", ""), node=r.get("node"))
            for r in resources
            if int(r.get("template", 0)) == 1
        ]
        return DirectoryResult.success(templates)

    def list_vms(self) -> DirectoryResult[List[VMRecord]]:
        try:
            resources = self._resources()
        except API_ERRORS as e:
            logger.error(f"Error listing VMs on {self.host}: {e}")
            return DirectoryResult.failure(str(e))
        vms = []
        for r in resources:
            if int(r.get("template", 0)) == 1:
                continue
            state, lcm = classify_status(r)
            vms.append(
                VMRecord(
                    vmid=int(r["vmid"]),
                    name=r.get("name", ""),
                    state=int(state),
                    lcm_state=int(lcm),
                    node=r.get("node"),
                )
            )
        return DirectoryResult.success(vms)

    def find_vm(self, vmid: int) -> DirectoryResult[VMRecord]:
        """Locate a VM in the cluster listing, then read its live status and NIC."""
        listing = self.list_vms()
        if not listing.ok:
            return listing  # type: ignore[return-value]
        summary = next((vm for vm in listing.value or [] if vm.vmid == vmid), None)
        if summary is None:
            return DirectoryResult.success(None)

        try:
            qemu = self._qemu(summary.node, vmid)
            status = qemu.status.current.get()
            vm_config = qemu.config.get()
        except API_ERRORS as e:
            logger.error(f"Error reading VM {vmid} on {summary.node}: {e}")
            return DirectoryResult.failure(str(e))

        state, lcm = classify_status(status)
        return DirectoryResult.success(
            VMRecord(
                vmid=vmid,
                name=status.get("name", summary.name),
                state=int(state),
                lcm_state=int(lcm),
                mac=parse_mac(vm_config),
                node=summary.node,
            )
        )

    def instantiate(self, template: Template, name: str) -> DirectoryResult[int]:
        """Full-clone the template, wait for the clone task and boot the copy.

        Once the clone has been requested, any later failure removes the
        partial VM before reporting.
        """
        node = template.node or self.host
        try:
            vmid = int(self.proxmox.cluster.nextid.get())
            logger.info(f"Cloning template {template.name} ({template.template_id}) into VM {vmid} as {name!r}")
            upid = self._qemu(node, template.template_id).clone.post(newid=vmid, name=name, full=1)
        except API_ERRORS as e:
            logger.error(f"Error instantiating template {template.name}: {e}")
            return DirectoryResult.failure(str(e))

        try:
            task = Tasks.blocking_status(self.proxmox, upid, timeout=Config.PROXMOX_CLONE_TIMEOUT)
            if not task or task.get("exitstatus") != "OK":
                exitstatus = task.get("exitstatus") if task else "timeout"
                logger.error(f"Clone task for VM {vmid} did not succeed: {exitstatus}")
                self._purge(node, vmid)
                return DirectoryResult.failure(f"clone of template {template.name} failed: {exitstatus}")
            self._qemu(node, vmid).status.start.post()
        except API_ERRORS as e:
            logger.error(f"Error instantiating template {template.name}: {e}")
            self._purge(node, vmid)
            return DirectoryResult.failure(str(e))
        return DirectoryResult.success(vmid)

    def _purge(self, node: str, vmid: int) -> None:
        """Stop and delete a half-created VM, logging what cannot be removed."""
        qemu = self._qemu(node, vmid)
        try:
            qemu.status.stop.post()
        except API_ERRORS as e:
            # Stopped or never started
            logger.debug(f"Could not stop partial VM {vmid}: {e}")
        try:
            qemu.delete(purge=1)
            logger.info(f"Removed partial VM {vmid}")
        except API_ERRORS as e:
            logger.warning(f"Could not remove partial VM {vmid}: {e}")

    def finalize(self, vmid: int) -> DirectoryResult[None]:
        """Stop the VM if needed and delete it together with its disks."""
        found = self.find_vm(vmid)
        if not found.ok:
            return DirectoryResult.failure(found.message)
        if found.value is None:
            return DirectoryResult.failure(f"VM {vmid} not found")

        record = found.value
        try:
            qemu = self._qemu(record.node, vmid)
            if record.state != VMState.POWEROFF:
                logger.info(f"Stopping VM {vmid}")
                qemu.status.stop.post()

                # Wait for VM to stop (max 30 seconds)
                timeout = time.time() + 30
                while time.time() < timeout:
                    if qemu.status.current.get().get("status") == "stopped":
                        break
                    time.sleep(2)

            logger.info(f"Deleting VM {vmid}")
            qemu.delete(purge=1)
        except API_ERRORS as e:
            logger.error(f"Error finalizing VM {vmid}: {e}")
            return DirectoryResult.failure(str(e))
        return DirectoryResult.success(None)

    def lookup_ip(self, record: VMRecord) -> DirectoryResult[str]:
        """Ask the QEMU guest agent which IPv4 address sits on the VM's MAC."""
        if not record.mac or not record.node:
            return DirectoryResult.success(None)
        try:
            reply = self._qemu(record.node, record.vmid).agent("network-get-interfaces").get()
        except API_ERRORS as e:
            # Guest agent not running yet, or not installed in the image
            logger.debug(f"Guest agent lookup failed for VM {record.vmid}: {e}")
            return DirectoryResult.success(None)

        for iface in reply.get("result", []):
            if iface.get("hardware-address", "").upper() != record.mac.upper():
                continue
            for addr in iface.get("ip-addresses", []):
                if addr.get("ip-address-type") == "ipv4":
                    return DirectoryResult.success(addr.get("ip-address"))
        return DirectoryResult.success(None)
