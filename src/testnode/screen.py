"""Screen automation actions exposed on a test node.

The actual automation engine (VNC, image matching, input injection) is an
external client. A node only forwards a fixed set of actions to whichever
client has been attached to it.
"""

import logging
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)


class ScreenClient(Protocol):
    """Actions a screen automation client must provide."""

    def click(self, target: Any, modifiers: int = 0) -> Any: ...

    def double_click(self, target: Any, modifiers: int = 0) -> Any: ...

    def right_click(self, target: Any, modifiers: int = 0) -> Any: ...

    def hover(self, target: Any) -> Any: ...

    def drag_drop(self, source: Any, destination: Any) -> Any: ...

    def type(self, text: str, modifiers: int = 0) -> Any: ...

    def paste(self, text: str) -> Any: ...

    def key_down(self, keys: str) -> Any: ...

    def key_up(self, keys: str) -> Any: ...

    def wait(self, target: Any, timeout: Optional[float] = None) -> Any: ...

    def wait_vanish(self, target: Any, timeout: Optional[float] = None) -> Any: ...

    def exists(self, target: Any, timeout: Optional[float] = None) -> Any: ...

    def find(self, target: Any) -> Any: ...

    def capture(self) -> Any: ...


SCREEN_ACTIONS = (
    "click",
    "double_click",
    "right_click",
    "hover",
    "drag_drop",
    "type",
    "paste",
    "key_down",
    "key_up",
    "wait",
    "wait_vanish",
    "exists",
    "find",
    "capture",
)


class ScreenActions:
    """Mixin forwarding screen actions to an attached ScreenClient."""

    _screen: Optional[ScreenClient] = None

    @property
    def screen(self) -> Optional[ScreenClient]:
        return self._screen

    def attach_screen(self, screen: ScreenClient) -> None:
        self._screen = screen

    def detach_screen(self) -> None:
        self._screen = None

    def _on_screen(self, action: str, *args: Any, **kwargs: Any) -> Any:
        if self._screen is None:
            logger.warning(f"No screen session attached, ignoring {action}")
            return None
        return getattr(self._screen, action)(*args, **kwargs)

    def click(self, target: Any, modifiers: int = 0) -> Any:
        return self._on_screen("click", target, modifiers)

    def double_click(self, target: Any, modifiers: int = 0) -> Any:
        return self._on_screen("double_click", target, modifiers)

    def right_click(self, target: Any, modifiers: int = 0) -> Any:
        return self._on_screen("right_click", target, modifiers)

    def hover(self, target: Any) -> Any:
        return self._on_screen("hover", target)

    def drag_drop(self, source: Any, destination: Any) -> Any:
        return self._on_screen("drag_drop", source, destination)

    def type(self, text: str, modifiers: int = 0) -> Any:
        return self._on_screen("type", text, modifiers)

    def paste(self, text: str) -> Any:
        return self._on_screen("paste", text)

    def key_down(self, keys: str) -> Any:
        return self._on_screen("key_down", keys)

    def key_up(self, keys: str) -> Any:
        return self._on_screen("key_up", keys)

    def wait(self, target: Any, timeout: Optional[float] = None) -> Any:
        return self._on_screen("wait", target, timeout)

    def wait_vanish(self, target: Any, timeout: Optional[float] = None) -> Any:
        return self._on_screen("wait_vanish", target, timeout)

    def exists(self, target: Any, timeout: Optional[float] = None) -> Any:
        return self._on_screen("exists", target, timeout)

    def find(self, target: Any) -> Any:
        return self._on_screen("find", target)

    def capture(self) -> Any:
        return self._on_screen("capture")
