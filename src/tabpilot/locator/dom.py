"""
DOM-only locator: actions addressed by the id marker, without a debugging session.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from tabpilot.config import AutomationConfig
from tabpilot.core.errors import (
    ActionError,
    ActionTimeoutError,
    ElementNotFoundError,
    FillTargetMismatchError,
    TabPilotError,
)
from tabpilot.core.models import BoundingBox, SnapshotNode
from tabpilot.core.scripts import RUN_DOM_ACTION
from tabpilot.core.types import ScriptBridge

logger = logging.getLogger("tabpilot")

DOM_ACTIONS = frozenset({"click", "fill", "hover", "bounding-box", "value", "editor-value"})


class DomLocator:
    """Runs every action through one injected page function."""
    
    def __init__(self, tab_id: str, node: SnapshotNode, bridge: ScriptBridge,
                 config: Optional[AutomationConfig] = None):
        self.tab_id = tab_id
        self.node = node
        self._bridge = bridge
        self.config = config or AutomationConfig()
    
    async def run_dom_action(self, action: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """
        Execute one action and return its ``data`` field.
        
        Raises:
            ElementNotFoundError: No element carries this node's id marker.
            FillTargetMismatchError: A fill targeted a non-editable element.
            ActionError: Any other page-side failure.
        """
        if action not in DOM_ACTIONS:
            raise ValueError(f"Unknown DOM action: {action}")
        timeout = self.config.action_timeout
        try:
            response = await asyncio.wait_for(
                self._bridge.execute_script(
                    self.tab_id,
                    RUN_DOM_ACTION,
                    [self.config.node_id_attribute, self.node.id, action, payload or {}],
                ),
                timeout,
            )
        except asyncio.TimeoutError as e:
            raise ActionTimeoutError(
                f"Operation '{action}' timed out after {int(timeout * 1000)}ms",
                timeout=timeout,
                tab_id=self.tab_id,
                method=action,
            ) from e
        except TabPilotError:
            raise
        except Exception as e:
            raise ActionError(f"DOM action '{action}' failed: {e}", tab_id=self.tab_id, method=action) from e
        
        if not isinstance(response, dict):
            raise ActionError(f"DOM action '{action}' returned no result", tab_id=self.tab_id, method=action)
        if response.get("success"):
            return response.get("data")
        
        message = response.get("error") or f"DOM action '{action}' failed"
        error_type = response.get("errorType")
        if error_type == "not-found":
            raise ElementNotFoundError(message, uid=self.node.id, tab_id=self.tab_id)
        if error_type == "fill-target-mismatch":
            raise FillTargetMismatchError(message, tab_id=self.tab_id, method=action)
        raise ActionError(message, tab_id=self.tab_id, method=action)
    
    async def bounding_box(self) -> Optional[BoundingBox]:
        try:
            data = await self.run_dom_action("bounding-box")
        except TabPilotError as e:
            logger.debug(f"DOM bounding box unavailable: {e}", extra={"tab_id": self.tab_id})
            return None
        if not isinstance(data, dict):
            return None
        return BoundingBox(data["x"], data["y"], data["width"], data["height"])
    
    async def click(self, count: int = 1) -> None:
        if count < 1:
            raise ValueError("count must be at least 1")
        await self.run_dom_action("click", {"count": count})
    
    async def fill(self, value: str) -> None:
        if not isinstance(value, str):
            raise ValueError("fill value must be a string")
        await self.run_dom_action("fill", {"value": value})
    
    async def hover(self) -> None:
        await self.run_dom_action("hover")
    
    async def get_value(self) -> Optional[str]:
        try:
            value = await self.run_dom_action("value")
        except TabPilotError:
            return None
        return value if isinstance(value, str) else None
    
    async def get_editor_value(self) -> Optional[str]:
        try:
            value = await self.run_dom_action("editor-value")
        except TabPilotError:
            return None
        return value if isinstance(value, str) else None
    
    async def dispose(self) -> None:
        """Nothing to release: no session is held."""


class DomElementHandle:
    """Handle returned for a snapshot element in DOM-only mode."""
    
    def __init__(self, locator: DomLocator):
        self._locator = locator
    
    def as_locator(self) -> DomLocator:
        return self._locator
    
    async def dispose(self) -> None:
        await self._locator.dispose()
    
    async def __aenter__(self) -> DomElementHandle:
        return self
    
    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.dispose()
