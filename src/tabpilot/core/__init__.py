"""
Core module - data models, error types, host interfaces and page scripts.
"""
from tabpilot.core.errors import (
    ActionError,
    ActionTimeoutError,
    AttachFailedError,
    CDPConnectionError,
    CDPProtocolError,
    CommandAbortedError,
    CommandTimeoutError,
    ElementNotFoundError,
    FillTargetMismatchError,
    NotVisibleError,
    SnapshotError,
    TabPilotError,
)
from tabpilot.core.models import (
    AccessibilityTree,
    ActionResult,
    AXNode,
    BoundingBox,
    FrameTree,
    PageSnapshot,
    Snapshot,
    SnapshotNode,
    TabInfo,
)
from tabpilot.core.types import (
    DebuggerTransport,
    DetachEventSource,
    ElementHandle,
    ElementLocator,
    MessageBridge,
    ScriptBridge,
    TabEventSource,
)

__all__ = [
    # Errors
    "TabPilotError",
    "CDPConnectionError",
    "CDPProtocolError",
    "CommandTimeoutError",
    "CommandAbortedError",
    "AttachFailedError",
    "SnapshotError",
    "ElementNotFoundError",
    "NotVisibleError",
    "ActionTimeoutError",
    "FillTargetMismatchError",
    "ActionError",
    # Models
    "AXNode",
    "AccessibilityTree",
    "SnapshotNode",
    "Snapshot",
    "BoundingBox",
    "FrameTree",
    "TabInfo",
    "PageSnapshot",
    "ActionResult",
    # Host interfaces
    "DebuggerTransport",
    "ScriptBridge",
    "MessageBridge",
    "DetachEventSource",
    "TabEventSource",
    "ElementLocator",
    "ElementHandle",
]
