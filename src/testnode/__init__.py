"""Ephemeral test VM provisioning and chef bootstrap."""

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
from testnode.node import TestNode

__all__ = [
    "DirectoryError",
    "NoVM",
    "NotFound",
    "OperationCancelled",
    "RetriesExhausted",
    "TemplateNotFound",
    "TestNode",
    "TestNodeError",
    "TimeoutExceeded",
]
