"""
tabpilot - Snapshot-driven Chrome tab automation over the DevTools Protocol.

Usage:
    from tabpilot import Automation
    
    async with Automation() as automation:
        tabs = await automation.list_tabs()
        page = await automation.take_snapshot(tabs[0].tab_id)
        print(page.text)
        print(await automation.search_elements(tabs[0].tab_id, "button"))
        result = await automation.click(tabs[0].tab_id, "a1b2c3d4")
        print(result.to_message())
"""

from tabpilot.automation import Automation
from tabpilot.config import ActionTimings, AutomationConfig, setup_logging
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
    ActionResult,
    BoundingBox,
    PageSnapshot,
    Snapshot,
    SnapshotNode,
    TabInfo,
)
from tabpilot.cdp import ChromeTransport, CommandChannel, FrameTreeResolver, SessionRegistry
from tabpilot.snapshot import (
    SnapshotBuilder,
    SnapshotProvider,
    format_search_results,
    format_snapshot,
    search_snapshot_text,
)
from tabpilot.locator import DomLocator, SmartLocator

__all__ = [
    # Main API
    "Automation",
    "AutomationConfig",
    "ActionTimings",
    "setup_logging",
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
    "ActionResult",
    "BoundingBox",
    "PageSnapshot",
    "Snapshot",
    "SnapshotNode",
    "TabInfo",
    # Components
    "ChromeTransport",
    "CommandChannel",
    "SessionRegistry",
    "FrameTreeResolver",
    "SnapshotBuilder",
    "SnapshotProvider",
    "SmartLocator",
    "DomLocator",
    # Snapshot text
    "format_snapshot",
    "search_snapshot_text",
    "format_search_results",
]

__version__ = "0.1.0"
