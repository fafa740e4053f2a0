"""Data models for test node provisioning."""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional


class VMState(IntEnum):
    """Coarse VM status codes."""

    INIT = 0
    PENDING = 1
    HOLD = 2
    ACTIVE = 3  # VM is running
    STOPPED = 4
    SUSPENDED = 5
    DONE = 6
    FAILED = 7
    POWEROFF = 8
    UNDEPLOYED = 9


class LcmState(IntEnum):
    """Fine-grained lifecycle codes, meaningful while the VM is ACTIVE."""

    LCM_INIT = 0
    PROLOG = 1
    BOOT = 2
    RUNNING = 3
    MIGRATE = 4
    SAVE_STOP = 5
    SAVE_SUSPEND = 6
    SAVE_MIGRATE = 7
    PROLOG_MIGRATE = 8
    PROLOG_RESUME = 9
    EPILOG_STOP = 10
    EPILOG = 11
    SHUTDOWN = 12
    CLEANUP_RESUBMIT = 15
    UNKNOWN = 16
    BOOT_FAILURE = 36
    PROLOG_FAILURE = 39
    EPILOG_FAILURE = 40


# Lifecycle codes during which the VM is still coming up
STARTING_LCM_STATES = frozenset({LcmState.LCM_INIT, LcmState.PROLOG, LcmState.BOOT})

# Coarse states from which the VM can still reach ACTIVE without intervention
STARTING_STATES = frozenset({VMState.INIT, VMState.PENDING, VMState.ACTIVE})


@dataclass(frozen=True)
class Template:
    """Provider-side blueprint used to instantiate VMs."""

    template_id: int
    name: str
    node: Optional[str] = None


@dataclass(frozen=True)
class VMRecord:
    """Snapshot of a VM as reported by the directory."""

    vmid: int
    name: str
    state: int
    lcm_state: int
    mac: Optional[str] = None
    node: Optional[str] = None

    @property
    def is_starting(self) -> bool:
        """Check if the VM is still on its way to running."""
        return self.state in STARTING_STATES and self.lcm_state in STARTING_LCM_STATES

    @property
    def is_running(self) -> bool:
        """Check if the VM reached the running state."""
        return self.state == VMState.ACTIVE

    def state_name(self) -> str:
        """Readable 'STATE/LCM_STATE' label for logs and tables."""
        try:
            state = VMState(self.state).name
        except ValueError:
            state = str(self.state)
        try:
            lcm = LcmState(self.lcm_state).name
        except ValueError:
            lcm = str(self.lcm_state)
        return f"{state}/{lcm}"
