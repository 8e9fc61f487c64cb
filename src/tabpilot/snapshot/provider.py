"""
Snapshot strategies and the provider that selects between them.

A strategy bundles snapshot creation, node lookup and element resolution for
one collection mode. Callers pick the mode per call; nothing reads it from
global state.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Protocol, Tuple, runtime_checkable

from tabpilot.cdp.commander import CommandChannel
from tabpilot.cdp.frames import FrameTreeResolver
from tabpilot.cdp.session import SessionRegistry
from tabpilot.config import MODE_CDP, MODE_DOM, AutomationConfig
from tabpilot.core.models import Snapshot, SnapshotNode
from tabpilot.core.types import ElementHandle, ScriptBridge
from tabpilot.locator.dom import DomElementHandle, DomLocator
from tabpilot.locator.smart import SmartElementHandle, SmartLocator
from tabpilot.snapshot.builder import SnapshotBuilder
from tabpilot.snapshot.dom import DomSnapshotCollector

logger = logging.getLogger("tabpilot")


@runtime_checkable
class SnapshotStrategy(Protocol):
    mode: str
    
    async def create_snapshot(self, tab_id: str) -> Snapshot: ...
    
    def get_snapshot(self, tab_id: str) -> Optional[Snapshot]: ...
    
    def get_node(self, tab_id: str, uid: str) -> Optional[SnapshotNode]: ...
    
    def resolve_element(self, tab_id: str, node: SnapshotNode) -> ElementHandle: ...
    
    def clear_snapshot(self, tab_id: str) -> None: ...
    
    def clear_all_snapshots(self) -> None: ...


class CdpSnapshotStrategy:
    """Accessibility-tree snapshots and SmartLocator handles."""
    
    mode = MODE_CDP
    
    def __init__(self, builder: SnapshotBuilder, registry: SessionRegistry,
                 channel: CommandChannel, frames: FrameTreeResolver, config: AutomationConfig):
        self.builder = builder
        self._registry = registry
        self._channel = channel
        self._frames = frames
        self._config = config
    
    async def create_snapshot(self, tab_id: str) -> Snapshot:
        return await self.builder.create_snapshot(tab_id)
    
    def get_snapshot(self, tab_id: str) -> Optional[Snapshot]:
        return self.builder.get_snapshot(tab_id)
    
    def get_node(self, tab_id: str, uid: str) -> Optional[SnapshotNode]:
        return self.builder.get_node(tab_id, uid)
    
    def resolve_element(self, tab_id: str, node: SnapshotNode) -> SmartElementHandle:
        locator = SmartLocator(tab_id, node, self._registry, self._channel, self._frames, self._config)
        return SmartElementHandle(locator)
    
    def clear_snapshot(self, tab_id: str) -> None:
        self.builder.clear_snapshot(tab_id)
    
    def clear_all_snapshots(self) -> None:
        self.builder.clear_all_snapshots()


class DomSnapshotStrategy:
    """Content-script snapshots and marker-addressed DomLocator handles."""
    
    mode = MODE_DOM
    
    def __init__(self, collector: DomSnapshotCollector, bridge: ScriptBridge, config: AutomationConfig):
        self.collector = collector
        self._bridge = bridge
        self._config = config
    
    async def create_snapshot(self, tab_id: str) -> Snapshot:
        return await self.collector.create_snapshot(tab_id)
    
    def get_snapshot(self, tab_id: str) -> Optional[Snapshot]:
        return self.collector.get_snapshot(tab_id)
    
    def get_node(self, tab_id: str, uid: str) -> Optional[SnapshotNode]:
        return self.collector.get_node(tab_id, uid)
    
    def resolve_element(self, tab_id: str, node: SnapshotNode) -> DomElementHandle:
        return DomElementHandle(DomLocator(tab_id, node, self._bridge, self._config))
    
    def clear_snapshot(self, tab_id: str) -> None:
        self.collector.clear_snapshot(tab_id)
    
    def clear_all_snapshots(self) -> None:
        self.collector.clear_all_snapshots()


class SnapshotProvider:
    """
    Holds one strategy per mode and keeps their caches mutually exclusive per tab.
    
    Creating a snapshot in one mode drops the tab's entry in every other mode,
    so lookups never hit a stale snapshot from a previous mode.
    """
    
    def __init__(self, strategies: Iterable[SnapshotStrategy]):
        self._strategies: Dict[str, SnapshotStrategy] = {s.mode: s for s in strategies}
        if not self._strategies:
            raise ValueError("SnapshotProvider needs at least one strategy")
    
    @property
    def modes(self) -> Tuple[str, ...]:
        return tuple(self._strategies)
    
    def strategy(self, mode: str) -> SnapshotStrategy:
        try:
            return self._strategies[mode]
        except KeyError:
            raise ValueError(f"Unknown snapshot mode: {mode!r}") from None
    
    async def create_snapshot(self, tab_id: str, mode: str) -> Snapshot:
        strategy = self.strategy(mode)
        for other in self._strategies.values():
            if other is not strategy:
                other.clear_snapshot(tab_id)
        return await strategy.create_snapshot(tab_id)
    
    def find_node(self, tab_id: str, uid: str) -> Optional[Tuple[SnapshotStrategy, SnapshotNode]]:
        """Node and owning strategy, DOM-only cache first."""
        for strategy in self._ordered():
            node = strategy.get_node(tab_id, uid)
            if node is not None:
                return strategy, node
        return None
    
    def get_snapshot(self, tab_id: str) -> Optional[Snapshot]:
        for strategy in self._ordered():
            snapshot = strategy.get_snapshot(tab_id)
            if snapshot is not None:
                return snapshot
        return None
    
    def clear_snapshot(self, tab_id: str) -> None:
        for strategy in self._strategies.values():
            strategy.clear_snapshot(tab_id)
    
    def clear_all_snapshots(self) -> None:
        for strategy in self._strategies.values():
            strategy.clear_all_snapshots()
    
    def _ordered(self):
        if MODE_DOM in self._strategies:
            yield self._strategies[MODE_DOM]
        for mode, strategy in self._strategies.items():
            if mode != MODE_DOM:
                yield strategy
