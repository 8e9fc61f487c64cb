"""
Automation - High-level async interface for snapshot-driven page automation.

This module provides the main user-facing API. It wires the transport,
command channel, session registry, snapshot strategies and locators
together, and turns expected failures into ActionResult values.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from tabpilot.cdp.client import ChromeTransport
from tabpilot.cdp.commander import CommandChannel
from tabpilot.cdp.frames import FrameTreeResolver
from tabpilot.cdp.session import SessionRegistry
from tabpilot.config import AutomationConfig
from tabpilot.core.errors import ElementNotFoundError, TabPilotError
from tabpilot.core.models import ActionResult, PageSnapshot, TabInfo
from tabpilot.core.types import (
    DebuggerTransport,
    DetachEventSource,
    ElementHandle,
    ElementLocator,
    MessageBridge,
    ScriptBridge,
    TabEventSource,
)
from tabpilot.snapshot.builder import SnapshotBuilder
from tabpilot.snapshot.dom import DomSnapshotCollector
from tabpilot.snapshot.formatter import format_snapshot
from tabpilot.snapshot.provider import CdpSnapshotStrategy, DomSnapshotStrategy, SnapshotProvider
from tabpilot.snapshot.query import format_search_results, search_snapshot_text

logger = logging.getLogger("tabpilot")

ELEMENT_NOT_FOUND_MESSAGE = (
    "No such element found in the snapshot, the page content may have changed, "
    "please call search_elements again to get a fresh snapshot"
)

FormField = Union[Tuple[str, str], Dict[str, str]]


class Automation:
    """
    Snapshot-driven automation of browser tabs.
    
    Usage:
        async with Automation() as automation:
            tabs = await automation.list_tabs()
            page = await automation.take_snapshot(tabs[0].tab_id)
            print(page.text)
            result = await automation.click(tabs[0].tab_id, "a1b2c3d4")
            print(result.to_message())
    """
    
    def __init__(self, config: Optional[AutomationConfig] = None,
                 transport: Optional[DebuggerTransport] = None):
        """
        Args:
            config: Automation configuration. Uses defaults if not provided.
            transport: Debugger transport. A ChromeTransport for
                ``config.host:config.port`` is created on start() if omitted.
        """
        self.config = config or AutomationConfig()
        self._transport = transport
        self._owns_transport = transport is None
        self.channel: Optional[CommandChannel] = None
        self.registry: Optional[SessionRegistry] = None
        self.frames: Optional[FrameTreeResolver] = None
        self.builder: Optional[SnapshotBuilder] = None
        self.provider: Optional[SnapshotProvider] = None
        if transport is not None:
            self._wire(transport)
    
    async def __aenter__(self) -> Automation:
        await self.start()
        return self
    
    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
    
    async def start(self) -> None:
        """Connect to Chrome unless a transport was supplied."""
        if self.provider is not None:
            return
        transport = ChromeTransport(self.config.host, self.config.port, debug=self.config.debug)
        # Fail fast when nothing listens on the debugging port
        await transport.list_tabs()
        logger.info(f"Connected to Chrome at {self.config.host}:{self.config.port}")
        self._transport = transport
        self._wire(transport)
    
    async def stop(self) -> None:
        """Detach every session and close an owned transport."""
        if self.registry is not None:
            await self.registry.close()
        if self.provider is not None:
            self.provider.clear_all_snapshots()
        if self._owns_transport and self._transport is not None:
            await self._transport.close()
            self._transport = None
            self.provider = None
            self.registry = None
    
    def _wire(self, transport: DebuggerTransport) -> None:
        config = self.config
        self.channel = CommandChannel(transport, config.command_timeout, debug=config.debug)
        self.registry = SessionRegistry.from_config(
            transport,
            self.channel,
            config,
            scripts=transport if isinstance(transport, ScriptBridge) else None,
            detach_events=transport if isinstance(transport, DetachEventSource) else None,
            tab_events=transport if isinstance(transport, TabEventSource) else None,
        )
        self.frames = FrameTreeResolver(self.channel)
        self.builder = SnapshotBuilder.from_config(self.registry, self.channel, self.frames, config)
        
        strategies = [CdpSnapshotStrategy(self.builder, self.registry, self.channel, self.frames, config)]
        if isinstance(transport, MessageBridge) and isinstance(transport, ScriptBridge):
            strategies.append(DomSnapshotStrategy(DomSnapshotCollector(transport), transport, config))
        self.provider = SnapshotProvider(strategies)
    
    def _require_provider(self) -> SnapshotProvider:
        if self.provider is None:
            raise TabPilotError("Automation not started. Call start() first.")
        return self.provider
    
    # =========================================================================
    # Tabs and snapshots
    # =========================================================================
    
    async def list_tabs(self) -> List[TabInfo]:
        self._require_provider()
        return await self._transport.list_tabs()
    
    async def take_snapshot(self, tab_id: str, mode: Optional[str] = None) -> PageSnapshot:
        """
        Capture and format a fresh snapshot of the tab.
        
        Raises:
            SnapshotError: The snapshot could not be created.
        """
        provider = self._require_provider()
        mode = mode or self.config.default_mode
        snapshot = await provider.create_snapshot(tab_id, mode)
        
        title, url = snapshot.title or "", snapshot.url or ""
        if not title and not url:
            try:
                info = await self._transport.get_tab_info(tab_id)
            except TabPilotError as e:
                logger.debug(f"Tab info unavailable: {e}", extra={"tab_id": tab_id})
                info = None
            if info is not None:
                title, url = info.title, info.url
        
        return PageSnapshot(
            tab_id=tab_id,
            text=format_snapshot(snapshot),
            mode=mode,
            title=title,
            url=url,
            element_count=len(snapshot.index),
        )
    
    async def search_elements(
        self,
        tab_id: str,
        query: str,
        context_levels: int = 1,
        case_sensitive: bool = False,
        use_glob: Optional[bool] = None,
        mode: Optional[str] = None,
    ) -> str:
        """Take a fresh snapshot and return matching lines grouped with context."""
        provider = self._require_provider()
        snapshot = await provider.create_snapshot(tab_id, mode or self.config.default_mode)
        text = format_snapshot(snapshot)
        result = search_snapshot_text(
            text, query,
            context_levels=context_levels,
            case_sensitive=case_sensitive,
            use_glob=use_glob,
        )
        return format_search_results(text, result, query)
    
    def get_element(self, tab_id: str, uid: str) -> ElementHandle:
        """
        Handle for a node of the tab's current snapshot.
        
        Raises:
            ElementNotFoundError: No cached snapshot contains uid.
        """
        found = self._require_provider().find_node(tab_id, uid)
        if found is None:
            raise ElementNotFoundError(ELEMENT_NOT_FOUND_MESSAGE, uid=uid, tab_id=tab_id)
        strategy, node = found
        return strategy.resolve_element(tab_id, node)
    
    def is_valid_uid(self, tab_id: str, uid: str) -> bool:
        return self._require_provider().find_node(tab_id, uid) is not None
    
    def clear_snapshot(self, tab_id: str) -> None:
        self._require_provider().clear_snapshot(tab_id)
    
    # =========================================================================
    # Actions
    # =========================================================================
    
    async def click(self, tab_id: str, uid: str, double: bool = False) -> ActionResult:
        message = f"Element {'double ' if double else ''}clicked successfully"
        return await self._run_on_element(
            tab_id, uid, "click", lambda locator: locator.click(2 if double else 1), message
        )
    
    async def fill(self, tab_id: str, uid: str, value: str) -> ActionResult:
        return await self._run_on_element(
            tab_id, uid, "fill", lambda locator: locator.fill(value), "Element filled successfully"
        )
    
    async def hover(self, tab_id: str, uid: str) -> ActionResult:
        return await self._run_on_element(
            tab_id, uid, "hover", lambda locator: locator.hover(), "Element hovered successfully"
        )
    
    async def fill_form(self, tab_id: str, fields: Iterable[FormField]) -> ActionResult:
        """
        Fill several elements in order.
        
        Args:
            fields: (uid, value) pairs or {"uid": ..., "value": ...} dicts.
            
        Returns:
            Success when at least one element was filled.
        """
        pairs = [self._field_pair(field) for field in fields]
        if not pairs:
            raise ValueError("fill_form needs at least one field")
        
        failures = []
        for uid, value in pairs:
            result = await self.fill(tab_id, uid, value)
            if not result.success:
                failures.append(f"{uid}: {result.error_message}")
        
        filled = len(pairs) - len(failures)
        message = f"Filled {filled}/{len(pairs)} elements successfully"
        if failures:
            message += ". Failed: " + "; ".join(failures)
        if filled == 0:
            return ActionResult.error("fill_form", message)
        return ActionResult.ok("fill_form", extracted_content=message)
    
    async def get_editor_value(self, tab_id: str, uid: str) -> ActionResult:
        async def _read(locator: ElementLocator) -> Optional[str]:
            value = await locator.get_editor_value()
            if value is None:
                raise TabPilotError("Element has no readable value", tab_id=tab_id)
            return value
        return await self._run_on_element(tab_id, uid, "get_editor_value", _read, None, settle=False)
    
    async def _run_on_element(
        self,
        tab_id: str,
        uid: str,
        action: str,
        operation: Callable[[ElementLocator], Awaitable[Any]],
        success_message: Optional[str],
        settle: bool = True,
    ) -> ActionResult:
        try:
            handle = self.get_element(tab_id, uid)
        except ElementNotFoundError as e:
            return ActionResult.error(action, e.message, uid=uid)
        
        try:
            value = await operation(handle.as_locator())
            if settle:
                await asyncio.sleep(self.config.timings.post_action)
        except TabPilotError as e:
            logger.warning(
                f"{action} failed: {e.message}",
                extra={"tab_id": tab_id, "uid": uid, "error_type": type(e).__name__},
            )
            return ActionResult.error(action, e.message, uid=uid)
        finally:
            await handle.dispose()
        
        return ActionResult.ok(
            action, uid=uid,
            extracted_content=success_message if success_message is not None else value,
        )
    
    @staticmethod
    def _field_pair(field: FormField) -> Tuple[str, str]:
        if isinstance(field, dict):
            return field["uid"], field["value"]
        uid, value = field
        return uid, value
