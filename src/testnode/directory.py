"""VM directory interface.

A directory lists templates and VMs, instantiates templates and finalizes
VMs. Backends never raise at this boundary: every call returns a
DirectoryResult carrying either a value or the provider's error message.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, List, Optional, TypeVar

from testnode.exceptions import DirectoryError
from testnode.models import Template, VMRecord

T = TypeVar("T")


@dataclass(frozen=True)
class DirectoryResult(Generic[T]):
    """Tagged result of a directory call."""

    ok: bool
    value: Optional[T] = None
    message: str = ""

    @classmethod
    def success(cls, value: Optional[T] = None) -> "DirectoryResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, message: str) -> "DirectoryResult[T]":
        return cls(ok=False, message=message)

    def unwrap(self) -> Optional[T]:
        """Return the value or raise DirectoryError with the provider message."""
        if not self.ok:
            raise DirectoryError(self.message)
        return self.value


class VMDirectory(ABC):
    """Lists and manipulates templates and VM instances on a platform."""

    @abstractmethod
    def list_templates(self) -> DirectoryResult[List[Template]]:
        """List every template visible to the client."""

    @abstractmethod
    def instantiate(self, template: Template, name: str) -> DirectoryResult[int]:
        """Create a VM from a template; the value is the new VM id."""

    @abstractmethod
    def list_vms(self) -> DirectoryResult[List[VMRecord]]:
        """List every VM visible to the client."""

    @abstractmethod
    def finalize(self, vmid: int) -> DirectoryResult[None]:
        """Destroy a VM for good."""

    def find_template_by_name(self, name: str) -> DirectoryResult[Template]:
        """Exact name match over list_templates(); value is None when absent."""
        result = self.list_templates()
        if not result.ok:
            return DirectoryResult.failure(result.message)
        for template in result.value or []:
            if template.name == name:
                return DirectoryResult.success(template)
        return DirectoryResult.success(None)

    def find_vm(self, vmid: int) -> DirectoryResult[VMRecord]:
        """Id match over list_vms(); value is None when absent."""
        result = self.list_vms()
        if not result.ok:
            return DirectoryResult.failure(result.message)
        for vm in result.value or []:
            if vm.vmid == vmid:
                return DirectoryResult.success(vm)
        return DirectoryResult.success(None)

    def lookup_ip(self, record: VMRecord) -> DirectoryResult[str]:
        """Structured MAC to IP lookup, if the platform offers one."""
        return DirectoryResult.success(None)
