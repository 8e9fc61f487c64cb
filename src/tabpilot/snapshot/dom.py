"""
DOM-only snapshot strategy for tabs without a debugging session.

The page-side collector answers a ``collect-dom-snapshot`` message with a
serialized tree that already carries the id markers; this module only
validates the envelope and converts it into a Snapshot.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from tabpilot.core.errors import SnapshotError
from tabpilot.core.models import Snapshot, SnapshotNode
from tabpilot.core.types import MessageBridge

logger = logging.getLogger("tabpilot")

DOM_SNAPSHOT_MESSAGE = "collect-dom-snapshot"

NO_RESPONSE_ERROR = (
    "No response received from DOM snapshot handler. "
    "The content script may not be loaded on this tab."
)

# Serialized key -> SnapshotNode attribute
_COPIED_FIELDS = {
    "value": "value",
    "description": "description",
    "tagName": "tag_name",
    "focused": "focused",
    "disabled": "disabled",
    "expanded": "expanded",
    "selected": "selected",
    "checked": "checked",
    "pressed": "pressed",
    "level": "level",
    "readonly": "readonly",
    "required": "required",
}


def _convert_one(data: Dict[str, Any]) -> SnapshotNode:
    node = SnapshotNode(
        id=str(data["id"]),
        role=data.get("role") or "generic",
        name=data.get("name") or "",
    )
    for key, attribute in _COPIED_FIELDS.items():
        if data.get(key) is not None:
            setattr(node, attribute, data[key])
    if data.get("placeholder"):
        node.valuetext = data["placeholder"]
    if data.get("href"):
        node.href = data["href"]
    if data.get("title"):
        node.title = data["title"]
    return node


def convert_dom_node(data: Dict[str, Any]) -> SnapshotNode:
    """Convert one serialized DOM snapshot node (and its subtree)."""
    root = _convert_one(data)
    stack = [(child, root) for child in reversed(data.get("children") or [])]
    while stack:
        child_data, parent = stack.pop()
        node = _convert_one(child_data)
        parent.children.append(node)
        for grandchild in reversed(child_data.get("children") or []):
            stack.append((grandchild, node))
    return root


def convert_dom_snapshot(data: Dict[str, Any], tab_id: str) -> Snapshot:
    """
    Build a Snapshot from a SerializedDomSnapshot payload.
    
    The index is rebuilt from the converted tree so every indexed node is
    the one reachable from the root.
    """
    if not isinstance(data.get("root"), dict):
        raise SnapshotError("DOM snapshot payload has no root", tab_id=tab_id)
    root = convert_dom_node(data["root"])
    index: Dict[str, SnapshotNode] = {}
    for node in root.iter_nodes():
        if node.id in index:
            raise SnapshotError(f"Duplicate node id in DOM snapshot: {node.id}", tab_id=tab_id)
        index[node.id] = node
    metadata = data.get("metadata") or {}
    return Snapshot(
        root=root,
        index=index,
        tab_id=tab_id,
        source="dom",
        title=metadata.get("title"),
        url=metadata.get("url"),
    )


class DomSnapshotCollector:
    """
    Requests, converts and caches DOM-only snapshots.
    
    Usage:
        collector = DomSnapshotCollector(bridge)
        snapshot = await collector.create_snapshot(tab_id)
    """
    
    def __init__(self, bridge: MessageBridge, options: Optional[Dict[str, Any]] = None):
        self._bridge = bridge
        self.options = options or {}
        self._snapshots: Dict[str, Snapshot] = {}
    
    async def create_snapshot(self, tab_id: str) -> Snapshot:
        try:
            data = await self._request(tab_id)
            snapshot = convert_dom_snapshot(data, tab_id)
        except Exception as e:
            message = getattr(e, "message", None) or str(e)
            logger.error(
                f"DOM snapshot failed: {message}",
                extra={"tab_id": tab_id, "error_type": type(e).__name__},
            )
            raise SnapshotError(
                f"Failed to create DOM snapshot in background mode: {message}",
                tab_id=tab_id,
            ) from e
        
        self._snapshots[tab_id] = snapshot
        logger.info(
            f"DOM snapshot created with {len(snapshot.index)} nodes",
            extra={"tab_id": tab_id, "node_count": len(snapshot.index)},
        )
        return snapshot
    
    async def _request(self, tab_id: str) -> Dict[str, Any]:
        response = await self._bridge.send_message(
            tab_id, {"type": DOM_SNAPSHOT_MESSAGE, "options": self.options}
        )
        if not response:
            raise SnapshotError(NO_RESPONSE_ERROR, tab_id=tab_id)
        if not response.get("success") or not response.get("data"):
            raise SnapshotError(
                response.get("error")
                or "Failed to collect DOM snapshot. The content script may not be ready.",
                tab_id=tab_id,
            )
        return response["data"]
    
    def get_snapshot(self, tab_id: str) -> Optional[Snapshot]:
        return self._snapshots.get(tab_id)
    
    def get_node(self, tab_id: str, uid: str) -> Optional[SnapshotNode]:
        snapshot = self._snapshots.get(tab_id)
        return snapshot.get_node(uid) if snapshot is not None else None
    
    def clear_snapshot(self, tab_id: str) -> None:
        self._snapshots.pop(tab_id, None)
    
    def clear_all_snapshots(self) -> None:
        self._snapshots.clear()
