"""
TabPilot Models - Data classes for accessibility trees, snapshots and action results.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


def _ax_value(raw: Dict[str, Any], key: str) -> Any:
    value = raw.get(key)
    if isinstance(value, dict):
        return value.get("value")
    return None


@dataclass
class AXNode:
    """
    One node of a raw accessibility tree as returned by Accessibility.getFullAXTree.
    
    Only lives for one conversion pass; snapshots never keep these around.
    """
    
    node_id: str
    role: str = ""
    chrome_role: Any = None
    name: Optional[str] = None
    value: Any = None
    description: Optional[str] = None
    parent_id: Optional[str] = None
    child_ids: List[str] = field(default_factory=list)
    backend_node_id: Optional[int] = None
    frame_id: Optional[str] = None
    ignored: bool = False
    properties: List[Tuple[str, Any]] = field(default_factory=list)
    
    @classmethod
    def from_cdp(cls, raw: Dict[str, Any]) -> AXNode:
        """Build a node from the CDP wire representation."""
        properties = []
        for prop in raw.get("properties") or []:
            properties.append((prop.get("name"), _ax_value(prop, "value")))
        parent_id = raw.get("parentId")
        return cls(
            node_id=str(raw.get("nodeId")),
            role=_ax_value(raw, "role") or "",
            chrome_role=_ax_value(raw, "chromeRole"),
            name=_ax_value(raw, "name"),
            value=_ax_value(raw, "value"),
            description=_ax_value(raw, "description"),
            parent_id=str(parent_id) if parent_id is not None else None,
            child_ids=[str(child) for child in raw.get("childIds") or []],
            backend_node_id=raw.get("backendDOMNodeId"),
            frame_id=raw.get("frameId"),
            ignored=bool(raw.get("ignored", False)),
            properties=properties,
        )
    
    def get_property(self, name: str) -> Any:
        for prop_name, prop_value in self.properties:
            if prop_name == name:
                return prop_value
        return None


@dataclass
class AccessibilityTree:
    """Flat node list of a raw accessibility tree."""
    
    nodes: List[AXNode] = field(default_factory=list)
    
    @classmethod
    def from_cdp(cls, result: Dict[str, Any]) -> AccessibilityTree:
        return cls(nodes=[AXNode.from_cdp(raw) for raw in result.get("nodes") or []])
    
    def by_id(self) -> Dict[str, AXNode]:
        return {node.node_id: node for node in self.nodes}
    
    def root(self) -> Optional[AXNode]:
        """The first node without a parent."""
        for node in self.nodes:
            if node.parent_id is None:
                return node
        return None
    
    def __len__(self) -> int:
        return len(self.nodes)


@dataclass
class SnapshotNode:
    """
    A node of a filtered snapshot tree.
    
    The id is short and stable: when the same DOM element already carries an
    injected marker from an earlier snapshot, that id is reused.
    """
    
    id: str
    role: str
    name: Optional[str] = None
    children: List[SnapshotNode] = field(default_factory=list)
    value: Any = None
    description: Optional[str] = None
    tag_name: Optional[str] = None
    frame_id: Optional[str] = None
    backend_node_id: Optional[int] = None
    # Accessibility state mirrored from the raw property list
    focused: Optional[bool] = None
    disabled: Optional[bool] = None
    expanded: Any = None
    selected: Optional[bool] = None
    checked: Any = None
    pressed: Any = None
    level: Any = None
    valuemin: Any = None
    valuemax: Any = None
    valuetext: Any = None
    autocomplete: Any = None
    haspopup: Any = None
    invalid: Any = None
    orientation: Any = None
    modal: Optional[bool] = None
    readonly: Optional[bool] = None
    required: Optional[bool] = None
    # DOM-only collection extras
    href: Optional[str] = None
    title: Optional[str] = None
    
    def iter_nodes(self):
        """Yield this node and all descendants in document order."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))


@dataclass
class Snapshot:
    """A filtered snapshot of one tab plus its flat id index."""
    
    root: SnapshotNode
    index: Dict[str, SnapshotNode]
    tab_id: str
    source: str = "cdp"
    title: Optional[str] = None
    url: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    
    def get_node(self, uid: str) -> Optional[SnapshotNode]:
        return self.index.get(uid)
    
    def __len__(self) -> int:
        return len(self.index)


@dataclass
class BoundingBox:
    """Axis-aligned rectangle in CSS pixels."""
    
    x: float
    y: float
    width: float
    height: float
    
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)
    
    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0
    
    def translate(self, dx: float, dy: float) -> BoundingBox:
        return BoundingBox(self.x + dx, self.y + dy, self.width, self.height)
    
    @classmethod
    def from_quad(cls, quad: List[float]) -> BoundingBox:
        """Bounding rectangle of a CDP quad (four x/y pairs)."""
        xs = quad[0::2]
        ys = quad[1::2]
        return cls(min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys))
    
    @classmethod
    def union(cls, boxes: List[BoundingBox]) -> Optional[BoundingBox]:
        if not boxes:
            return None
        left = min(box.x for box in boxes)
        top = min(box.y for box in boxes)
        right = max(box.x + box.width for box in boxes)
        bottom = max(box.y + box.height for box in boxes)
        return cls(left, top, right - left, bottom - top)
    
    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass
class FrameTree:
    """Frame hierarchy of a page, reduced to what geometry lookups need."""
    
    main_frame_id: Optional[str] = None
    parent_by_frame_id: Dict[str, Optional[str]] = field(default_factory=dict)
    
    def ancestors(self, frame_id: str) -> List[str]:
        """Frame ids from frame_id (inclusive) up to, but excluding, the main frame."""
        chain = []
        current: Optional[str] = frame_id
        seen = set()
        while current and current != self.main_frame_id and current not in seen:
            seen.add(current)
            chain.append(current)
            current = self.parent_by_frame_id.get(current)
        return chain


@dataclass
class TabInfo:
    """Information about a debuggable page target."""
    
    tab_id: str
    type: str = "page"
    url: str = ""
    title: str = ""
    ws_url: Optional[str] = None


@dataclass
class PageSnapshot:
    """
    A formatted snapshot ready for an LLM prompt or a terminal.
    """
    
    tab_id: str
    text: str
    mode: str = "cdp"
    title: str = ""
    url: str = ""
    element_count: int = 0
    
    def to_prompt(self) -> str:
        lines = [
            f"URL: {self.url}",
            f"Title: {self.title}",
            f"Elements: {self.element_count}",
            "",
            "=== Page Snapshot ===",
            self.text,
        ]
        return "\n".join(lines)


@dataclass
class ActionResult:
    """
    Result of a page action (click, fill, hover, ...).
    
    Expected failures such as a stale uid or an invisible element are
    reported here instead of being raised.
    """
    
    success: bool
    action_type: str
    uid: Optional[str] = None
    error_message: Optional[str] = None
    extracted_content: Optional[str] = None
    
    @classmethod
    def ok(
        cls,
        action_type: str,
        uid: Optional[str] = None,
        extracted_content: Optional[str] = None,
    ) -> ActionResult:
        """Create a successful action result."""
        return cls(
            success=True,
            action_type=action_type,
            uid=uid,
            extracted_content=extracted_content,
        )
    
    @classmethod
    def error(
        cls,
        action_type: str,
        message: str,
        uid: Optional[str] = None,
    ) -> ActionResult:
        """Create a failed action result."""
        return cls(
            success=False,
            action_type=action_type,
            uid=uid,
            error_message=message,
        )
    
    def to_message(self) -> str:
        """Format the result as a message for the LLM."""
        if self.success:
            msg = f"✓ {self.action_type}"
            if self.uid is not None:
                msg += f" on element [{self.uid}]"
            if self.extracted_content:
                msg += f": {self.extracted_content}"
            return msg
        else:
            msg = f"✗ {self.action_type} failed"
            if self.uid is not None:
                msg += f" on element [{self.uid}]"
            if self.error_message:
                msg += f": {self.error_message}"
            return msg
