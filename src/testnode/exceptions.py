"""Exceptions raised by the test node controller."""

from typing import Optional


class TestNodeError(RuntimeError):
    """Base class for all test node failures."""

    __test__ = False


class DirectoryError(TestNodeError):
    """The VM directory reported a failure (listing, instantiate, finalize)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFound(TestNodeError):
    """A template, VM or address could not be found."""


class TemplateNotFound(NotFound):
    """No template with the requested name exists in the directory."""

    def __init__(self, template_name: str) -> None:
        self.template_name = template_name
        super().__init__(f"Template not found: {template_name}")


class NoVM(TestNodeError):
    """The operation needs a VM handle but the node holds none."""


class TimeoutExceeded(TestNodeError):
    """A polling loop exhausted its bound."""


class RetriesExhausted(TestNodeError):
    """VM instantiation kept failing until the retry cap was reached."""

    def __init__(self, attempts: int, last_error: Optional[str] = None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        message = f"Could not instantiate VM after {attempts} attempts"
        if last_error:
            message += f": {last_error}"
        super().__init__(message)


class OperationCancelled(TestNodeError):
    """A caller-supplied cancel event was set while waiting."""
