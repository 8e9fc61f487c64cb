"""
Host interfaces the automation engine talks through.

The engine never reaches for a browser directly: a transport, a page script
bridge and two event sources are handed to it at construction time.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from tabpilot.core.models import BoundingBox, TabInfo

DetachListener = Callable[[str, str], None]
TabClosedListener = Callable[[str], None]


@runtime_checkable
class DebuggerTransport(Protocol):
    """Raw remote-debugging access to a tab."""
    
    async def attach(self, tab_id: str) -> None: ...
    
    async def detach(self, tab_id: str) -> None: ...
    
    async def send(self, tab_id: str, method: str, params: Dict[str, Any]) -> Dict[str, Any]: ...
    
    async def get_tab_info(self, tab_id: str) -> Optional[TabInfo]: ...


@runtime_checkable
class ScriptBridge(Protocol):
    """Runs a function declaration in the page, with or without a debugging session."""
    
    async def execute_script(self, tab_id: str, function: str, args: List[Any]) -> Any: ...


@runtime_checkable
class MessageBridge(Protocol):
    """Delivers a message envelope to the page-side content handler."""
    
    async def send_message(self, tab_id: str, message: Dict[str, Any]) -> Optional[Dict[str, Any]]: ...


@runtime_checkable
class DetachEventSource(Protocol):
    """Reports debugging sessions lost outside of our control."""
    
    def add_detach_listener(self, listener: DetachListener) -> None: ...


@runtime_checkable
class TabEventSource(Protocol):
    """Reports closed tabs."""
    
    def add_tab_closed_listener(self, listener: TabClosedListener) -> None: ...


@runtime_checkable
class ElementLocator(Protocol):
    """Actions on one snapshot element, resolved against the live page at call time."""
    
    async def bounding_box(self) -> Optional[BoundingBox]: ...
    
    async def click(self, count: int = 1) -> None: ...
    
    async def fill(self, value: str) -> None: ...
    
    async def hover(self) -> None: ...
    
    async def get_editor_value(self) -> Optional[str]: ...
    
    async def dispose(self) -> None: ...


@runtime_checkable
class ElementHandle(Protocol):
    """Owner of a locator; disposing releases whatever the locator holds."""
    
    def as_locator(self) -> ElementLocator: ...
    
    async def dispose(self) -> None: ...
