"""
Smart Locator - CDP-driven actions on one snapshot element.

Geometry is resolved across iframe boundaries, input is synthesized at the
element's center, and whenever the center is covered by something else the
action falls back to scripted DOM events.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from tabpilot.cdp.commander import CommandChannel
from tabpilot.cdp.frames import FrameTreeResolver
from tabpilot.cdp.session import SessionRegistry
from tabpilot.config import AutomationConfig
from tabpilot.core.errors import (
    ActionError,
    ActionTimeoutError,
    AttachFailedError,
    CDPProtocolError,
    CommandAbortedError,
    ElementNotFoundError,
    FillTargetMismatchError,
    NotVisibleError,
    TabPilotError,
)
from tabpilot.core.models import BoundingBox, FrameTree, SnapshotNode
from tabpilot.core.scripts import (
    CONTAINS_NODE,
    DISPATCH_COMMIT_EVENTS,
    FILL_EDITOR,
    GET_EDITOR_VALUE,
    HIGHLIGHT_ELEMENT,
    IS_FILL_TARGET,
    IS_MAC_PLATFORM,
    REMOVE_HIGHLIGHT,
    SCRIPTED_CLICK,
    SCRIPTED_HOVER,
)

logger = logging.getLogger("tabpilot")

T = TypeVar("T")

OBJECT_GROUP = "tabpilot-locator"

# Input.dispatchKeyEvent modifier bits
MODIFIER_CONTROL = 2
MODIFIER_META = 8

CONTROL_KEY = {"key": "Control", "code": "ControlLeft", "windowsVirtualKeyCode": 17}
META_KEY = {"key": "Meta", "code": "MetaLeft", "windowsVirtualKeyCode": 91}
A_KEY = {"key": "a", "code": "KeyA", "windowsVirtualKeyCode": 65}


class SmartLocator:
    """
    Click, fill, hover and read one element through the debugging session.
    
    Every action attaches (or reuses) the tab's session, scrolls the element
    into view and then runs under one global deadline.
    """
    
    def __init__(
        self,
        tab_id: str,
        node: SnapshotNode,
        registry: SessionRegistry,
        channel: CommandChannel,
        frames: FrameTreeResolver,
        config: Optional[AutomationConfig] = None,
    ):
        self.tab_id = tab_id
        self.node = node
        self.backend_node_id = node.backend_node_id
        self._registry = registry
        self._channel = channel
        self._frames = frames
        self.config = config or AutomationConfig()
        self._frame_tree: Optional[FrameTree] = None
        self._frame_owner_rects: Dict[str, Optional[BoundingBox]] = {}
    
    # =========================================================================
    # Public actions
    # =========================================================================
    
    async def bounding_box(self) -> Optional[BoundingBox]:
        """
        Page-global bounding box of the element, or None when it has no geometry.
        
        Never raises for protocol failures.
        """
        try:
            if not await self._registry.attach(self.tab_id):
                return None
            await self._send("DOM.enable")
            box = await self._compute_bounding_box()
            if box is not None and self.config.highlight:
                await self._highlight()
            return box
        except TabPilotError as e:
            logger.debug(
                f"Bounding box unavailable: {e}",
                extra={"tab_id": self.tab_id, "uid": self.node.id},
            )
            return None
    
    async def click(self, count: int = 1) -> None:
        """
        Click the element ``count`` times.
        
        Raises:
            NotVisibleError: The element has zero size.
            ActionTimeoutError: The whole action exceeded its deadline.
        """
        if count < 1:
            raise ValueError("count must be at least 1")
        await self._run_action("click", lambda: self._click(count))
    
    async def fill(self, value: str) -> None:
        """Replace the element's value, preferring an embedded editor's own API."""
        if not isinstance(value, str):
            raise ValueError("fill value must be a string")
        await self._run_action("fill", lambda: self._fill(value))
    
    async def hover(self) -> None:
        await self._run_action("hover", self._hover)
    
    async def get_editor_value(self) -> Optional[str]:
        """
        Current value of the element.
        
        Looks at embedded code editors first, then ``.value``, then the text of
        a contenteditable element. None when nothing applies or on failure.
        """
        try:
            if not await self._registry.attach(self.tab_id):
                return None
            await self._send("DOM.enable")
            object_id = await self._resolve_object(self.backend_node_id)
            if object_id is None:
                return None
            value = await self._call_function(object_id, GET_EDITOR_VALUE)
        except TabPilotError as e:
            logger.debug(
                f"Editor value unavailable: {e}",
                extra={"tab_id": self.tab_id, "uid": self.node.id},
            )
            return None
        return value if isinstance(value, str) else None
    
    async def dispose(self) -> None:
        """Release page objects and detach the tab's session right away."""
        try:
            await self._send("Runtime.releaseObjectGroup", {"objectGroup": OBJECT_GROUP})
        except TabPilotError as e:
            logger.debug(f"releaseObjectGroup failed: {e}", extra={"tab_id": self.tab_id})
        try:
            await self._registry.detach(self.tab_id, immediate=True)
        except Exception as e:
            logger.debug(f"Detach on dispose failed: {e}", extra={"tab_id": self.tab_id})
    
    # =========================================================================
    # Action plumbing
    # =========================================================================
    
    async def _run_action(self, action: str, operation: Callable[[], Awaitable[T]]) -> T:
        timeout = self.config.action_timeout
        try:
            return await asyncio.wait_for(self._prepare_and_run(operation), timeout)
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
            logger.error(
                f"Action {action} failed: {e}",
                extra={"tab_id": self.tab_id, "uid": self.node.id, "error_type": type(e).__name__},
            )
            raise ActionError(f"CDP execution error: {e}", tab_id=self.tab_id, method=action) from e
    
    async def _prepare_and_run(self, operation: Callable[[], Awaitable[T]]) -> T:
        if self.backend_node_id is None:
            raise ElementNotFoundError(
                "Element has no DOM node to act on", uid=self.node.id, tab_id=self.tab_id
            )
        if not await self._registry.attach(self.tab_id):
            raise AttachFailedError("Failed to attach debugger", tab_id=self.tab_id)
        await self._send("DOM.enable")
        try:
            await self._send("DOM.scrollIntoViewIfNeeded", {"backendNodeId": self.backend_node_id})
        except CDPProtocolError as e:
            logger.debug(
                f"scrollIntoViewIfNeeded failed, continuing: {e}",
                extra={"tab_id": self.tab_id, "backend_node_id": self.backend_node_id},
            )
        return await operation()
    
    async def _click(self, count: int) -> None:
        box = await self._compute_bounding_box()
        if box is None:
            await self._scripted(SCRIPTED_CLICK, [count])
            return
        if box.is_empty():
            raise NotVisibleError("Element not visible or has zero size", tab_id=self.tab_id)
        if self.config.highlight:
            await self._highlight()
        
        x, y = box.center()
        timings = self.config.timings
        for i in range(count):
            if await self._is_covered_at_point(x, y):
                logger.debug(
                    "Click target is covered, dispatching scripted click",
                    extra={"tab_id": self.tab_id, "uid": self.node.id},
                )
                await self._scripted(SCRIPTED_CLICK, [count - i])
                return
            await self._dispatch_mouse("mousePressed", x, y, click_count=i + 1)
            await asyncio.sleep(timings.click_hold)
            await self._dispatch_mouse("mouseReleased", x, y, click_count=i + 1)
            if i < count - 1:
                await asyncio.sleep(timings.click_interval)
    
    async def _fill(self, value: str) -> None:
        object_id = await self._resolve_object(self.backend_node_id)
        if object_id is None:
            raise ElementNotFoundError("Failed to resolve element", uid=self.node.id, tab_id=self.tab_id)
        if self.config.highlight:
            await self._highlight(object_id)
        try:
            if await self._fill_editor(object_id, value):
                logger.debug("Filled embedded editor", extra={"tab_id": self.tab_id, "uid": self.node.id})
                return
            if await self._call_function(object_id, IS_FILL_TARGET) is False:
                raise FillTargetMismatchError(
                    "Element is not an input, textarea, select or contenteditable element.",
                    tab_id=self.tab_id,
                    method="fill",
                )
            await self._fill_with_select_all(object_id, value)
        finally:
            if self.config.highlight:
                await self._remove_highlight(object_id)
    
    async def _fill_editor(self, object_id: str, value: str) -> bool:
        try:
            return await self._call_function(object_id, FILL_EDITOR, [value]) is True
        except CDPProtocolError as e:
            logger.debug(f"Editor fill not available: {e}", extra={"tab_id": self.tab_id})
            return False
    
    async def _fill_with_select_all(self, object_id: str, value: str) -> None:
        timings = self.config.timings
        await self._send("DOM.focus", {"backendNodeId": self.backend_node_id})
        await asyncio.sleep(timings.focus_settle)
        
        is_mac = await self._is_mac()
        modifier_key = META_KEY if is_mac else CONTROL_KEY
        modifiers = MODIFIER_META if is_mac else MODIFIER_CONTROL
        await self._key_event("rawKeyDown", modifier_key, modifiers)
        await self._key_event("rawKeyDown", A_KEY, modifiers, commands=["selectAll"])
        await self._key_event("keyUp", A_KEY, modifiers)
        await self._key_event("keyUp", modifier_key, 0)
        await asyncio.sleep(timings.select_all_settle)
        
        await self._send("Input.insertText", {"text": value})
        await asyncio.sleep(timings.insert_settle)
        await self._call_function(object_id, DISPATCH_COMMIT_EVENTS)
    
    async def _hover(self) -> None:
        box = await self._compute_bounding_box()
        if box is None:
            await self._scripted(SCRIPTED_HOVER, [])
            return
        if box.is_empty():
            raise NotVisibleError("Element not visible or has zero size", tab_id=self.tab_id)
        x, y = box.center()
        await self._dispatch_mouse("mouseMoved", x, y)
    
    # =========================================================================
    # Geometry
    # =========================================================================
    
    async def _compute_bounding_box(self) -> Optional[BoundingBox]:
        base = await self._content_rect(self.backend_node_id)
        if base is None:
            return None
        frame_id = self.node.frame_id
        if not frame_id:
            return base
        
        center_x, center_y = base.center()
        if not await self._is_covered_at_point(center_x, center_y):
            return base
        
        offset = await self._frame_offset(frame_id)
        if offset is None:
            return base
        return base.translate(*offset)
    
    async def _frame_offset(self, frame_id: str) -> Optional[Tuple[float, float]]:
        """Summed origin of every iframe owner between frame_id and the main frame."""
        tree = await self._ensure_frame_tree()
        if frame_id == tree.main_frame_id:
            return None
        dx = dy = 0.0
        for ancestor_id in tree.ancestors(frame_id):
            rect = await self._frame_owner_rect(ancestor_id)
            if rect is None:
                break
            dx += rect.x
            dy += rect.y
        if dx == 0 and dy == 0:
            return None
        return dx, dy
    
    async def _ensure_frame_tree(self) -> FrameTree:
        if self._frame_tree is None:
            self._frame_tree = await self._frames.get_frame_tree(self.tab_id)
        return self._frame_tree
    
    async def _frame_owner_rect(self, frame_id: str) -> Optional[BoundingBox]:
        if frame_id not in self._frame_owner_rects:
            rect = None
            try:
                owner = await self._frames.get_frame_owner(self.tab_id, frame_id)
                if owner is not None:
                    rect = await self._content_rect(owner)
            except CDPProtocolError as e:
                logger.debug(f"Frame owner lookup failed: {e}", extra={"frame_id": frame_id})
            self._frame_owner_rects[frame_id] = rect
        return self._frame_owner_rects[frame_id]
    
    async def _content_rect(self, backend_node_id: int) -> Optional[BoundingBox]:
        try:
            result = await self._send("DOM.getContentQuads", {"backendNodeId": backend_node_id})
            boxes = [BoundingBox.from_quad(quad) for quad in result.get("quads") or [] if len(quad) >= 8]
            if boxes:
                return BoundingBox.union(boxes)
        except CDPProtocolError as e:
            logger.debug(f"getContentQuads failed: {e}", extra={"backend_node_id": backend_node_id})
        try:
            result = await self._send("DOM.getBoxModel", {"backendNodeId": backend_node_id})
            content = (result.get("model") or {}).get("content")
            if content and len(content) >= 8:
                return BoundingBox.from_quad(content)
        except CDPProtocolError as e:
            logger.debug(f"getBoxModel failed: {e}", extra={"backend_node_id": backend_node_id})
        return None
    
    async def _is_covered_at_point(self, x: float, y: float) -> bool:
        """
        True when the topmost element at (x, y) is neither the target nor inside it.
        
        Lookup failures count as covered so callers take the scripted path.
        """
        try:
            hit = await self._send("DOM.getNodeForLocation", {
                "x": round(x),
                "y": round(y),
                "includeUserAgentShadowDOM": True,
                "ignorePointerEventsNone": True,
            })
            hit_frame_id = hit.get("frameId")
            if self.node.frame_id and hit_frame_id and hit_frame_id != self.node.frame_id:
                return True
            
            target_object = await self._resolve_object(self.backend_node_id)
            if target_object is None:
                return True
            hit_backend_id = hit.get("backendNodeId")
            hit_object = await self._resolve_object(hit_backend_id) if hit_backend_id is not None else None
            if hit_object is None:
                return False
            contains = await self._call_function(target_object, CONTAINS_NODE, [{"objectId": hit_object}])
            return contains is not True
        except CommandAbortedError:
            raise
        except TabPilotError as e:
            logger.debug(f"Hit test failed: {e}", extra={"tab_id": self.tab_id})
            return True
    
    # =========================================================================
    # Protocol helpers
    # =========================================================================
    
    async def _send(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self._channel.send_command(
            self.tab_id, method, params, timeout=self.config.command_timeout
        )
    
    async def _resolve_object(self, backend_node_id: Optional[int]) -> Optional[str]:
        if backend_node_id is None:
            return None
        try:
            result = await self._send("DOM.resolveNode", {
                "backendNodeId": backend_node_id,
                "objectGroup": OBJECT_GROUP,
            })
        except CDPProtocolError as e:
            logger.debug(f"resolveNode failed: {e}", extra={"backend_node_id": backend_node_id})
            return None
        return (result.get("object") or {}).get("objectId")
    
    async def _call_function(self, object_id: str, function: str, args: Optional[List[Any]] = None) -> Any:
        arguments = []
        for arg in args or []:
            if isinstance(arg, dict) and "objectId" in arg:
                arguments.append(arg)
            else:
                arguments.append({"value": arg})
        result = await self._send("Runtime.callFunctionOn", {
            "objectId": object_id,
            "functionDeclaration": function,
            "arguments": arguments,
            "returnByValue": True,
            "awaitPromise": True,
        })
        if result.get("exceptionDetails"):
            details = result["exceptionDetails"]
            raise CDPProtocolError(
                f"Page function threw: {details.get('text', 'exception')}",
                cdp_error=details,
                tab_id=self.tab_id,
                method="Runtime.callFunctionOn",
            )
        return (result.get("result") or {}).get("value")
    
    async def _scripted(self, function: str, args: List[Any]) -> None:
        object_id = await self._resolve_object(self.backend_node_id)
        if object_id is None:
            raise ElementNotFoundError("Failed to resolve element", uid=self.node.id, tab_id=self.tab_id)
        await self._call_function(object_id, function, args)
    
    async def _dispatch_mouse(self, event_type: str, x: float, y: float, click_count: int = 1) -> None:
        params: Dict[str, Any] = {"type": event_type, "x": x, "y": y}
        if event_type != "mouseMoved":
            params["button"] = "left"
            params["clickCount"] = click_count
        await self._send("Input.dispatchMouseEvent", params)
    
    async def _key_event(self, event_type: str, key: Dict[str, Any], modifiers: int,
                         commands: Optional[List[str]] = None) -> None:
        params = dict(key, type=event_type, modifiers=modifiers)
        if commands:
            params["commands"] = commands
        await self._send("Input.dispatchKeyEvent", params)
    
    async def _is_mac(self) -> bool:
        try:
            result = await self._send("Runtime.evaluate", {
                "expression": IS_MAC_PLATFORM,
                "returnByValue": True,
            })
        except CDPProtocolError:
            return False
        return (result.get("result") or {}).get("value") is True
    
    async def _highlight(self, object_id: Optional[str] = None) -> None:
        await self._best_effort_style(HIGHLIGHT_ELEMENT, object_id)
    
    async def _remove_highlight(self, object_id: Optional[str] = None) -> None:
        await self._best_effort_style(REMOVE_HIGHLIGHT, object_id)
    
    async def _best_effort_style(self, function: str, object_id: Optional[str]) -> None:
        try:
            if object_id is None:
                object_id = await self._resolve_object(self.backend_node_id)
            if object_id is not None:
                await self._call_function(object_id, function, [self.config.highlight_attribute])
        except CommandAbortedError:
            raise
        except TabPilotError as e:
            logger.debug(f"Highlight update failed: {e}", extra={"tab_id": self.tab_id})


class SmartElementHandle:
    """
    Handle returned for a snapshot element in CDP mode.
    
    Usage:
        async with SmartElementHandle(locator) as handle:
            await handle.as_locator().click()
    """
    
    def __init__(self, locator: SmartLocator):
        self._locator = locator
    
    def as_locator(self) -> SmartLocator:
        return self._locator
    
    async def dispose(self) -> None:
        await self._locator.dispose()
    
    async def __aenter__(self) -> SmartElementHandle:
        return self
    
    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.dispose()
