"""
Snapshot Builder - turns a raw accessibility tree into a filtered, id-stable snapshot.

The conversion is a two-pass algorithm:

1. Collect "interesting" nodes: the root, interactive controls, images,
   meaningful text and any other role carrying content. Everything below a
   control counts as interesting once it is a leaf, so composite widgets keep
   their parts.
2. Serialize children first. A non-interesting node disappears when nothing
   below it survived, hands its single surviving child up in its place, or
   becomes a container when two or more children survived.

Ids are short and reused: the builder reads the marker attribute each element
already carries from an earlier snapshot and only writes markers that changed.
"""
from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from functools import partial
from typing import Callable, Dict, List, Optional, Set, Tuple

from tabpilot.cdp.commander import CommandChannel
from tabpilot.cdp.frames import FrameTreeResolver
from tabpilot.cdp.session import SessionRegistry
from tabpilot.config import AutomationConfig
from tabpilot.core.errors import (
    AttachFailedError,
    CommandAbortedError,
    SnapshotError,
    TabPilotError,
)
from tabpilot.core.models import AccessibilityTree, AXNode, Snapshot, SnapshotNode
from tabpilot.core.scripts import READ_NODE_MARKER, WRITE_NODE_MARKER
from tabpilot.snapshot.formatter import format_snapshot
from tabpilot.snapshot.query import format_search_results, search_snapshot_text
from tabpilot.utils.concurrency import gather_limited

logger = logging.getLogger("tabpilot")

# Roles treated as leaves: their descendants are widget internals
CONTROL_ROLES = frozenset({
    "button", "checkbox", "ColorWell", "combobox", "DisclosureTriangle",
    "listbox", "menu", "menubar", "menuitem", "menuitemcheckbox",
    "menuitemradio", "radio", "scrollbar", "searchbox", "slider",
    "spinbutton", "switch", "tab", "textbox", "tree", "TreeItem",
})

INTERACTIVE_ROLES = frozenset({
    "button", "link", "textbox", "combobox", "checkbox", "radio",
    "menuitem", "tab", "slider", "spinbutton", "searchbox",
})

IMAGE_ROLES = frozenset({"image", "img"})

LAYOUT_ROLES = frozenset({
    "generic", "none", "group", "main", "navigation", "contentinfo",
    "search", "banner", "complementary", "region", "article", "section",
})

# Bare layout tags that make a generic node's name meaningless
LAYOUT_TAG_NAMES = frozenset({
    "div", "span", "section", "article", "header", "footer", "nav", "main", "aside",
})

# Truthy-only state properties
FLAG_PROPERTIES = ("focused", "disabled", "selected", "modal", "readonly", "required")

# Copied verbatim when present
COPIED_PROPERTIES = (
    "expanded", "checked", "pressed", "level", "valuemin", "valuemax",
    "valuetext", "autocomplete", "haspopup", "invalid", "orientation",
)

_URL_RE = re.compile(r"https?://\S+")


def new_uid() -> str:
    """Fresh short snapshot id."""
    return uuid.uuid4().hex[:8]


@dataclass
class ExistingMarker:
    """Marker attribute and tag name read from a live element."""
    uid: Optional[str] = None
    tag_name: Optional[str] = None


# =============================================================================
# Node classification
# =============================================================================

def _trimmed(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def is_control(node: AXNode) -> bool:
    return node.role in CONTROL_ROLES


def is_leaf(node: AXNode) -> bool:
    return not node.child_ids or is_control(node)


def has_text_content(node: AXNode) -> bool:
    return any(len(_trimmed(text)) > 1 for text in (node.name, node.value, node.description))


def is_interesting(node: AXNode, inside_control: bool = False) -> bool:
    if inside_control and is_leaf(node):
        return True
    role = node.role
    if role == "RootWebArea":
        return True
    if role in INTERACTIVE_ROLES:
        return True
    if role in IMAGE_ROLES:
        return True
    if role == "StaticText":
        return len(_trimmed(node.name)) >= 2
    if role in LAYOUT_ROLES:
        return has_text_content(node)
    if role and role != "generic":
        return has_text_content(node)
    return False


def collect_interesting_nodes(by_id: Dict[str, AXNode], root_id: str) -> Set[str]:
    """Pass one: ids of every interesting node reachable from root_id."""
    interesting: Set[str] = set()
    visited: Set[str] = set()
    stack: List[Tuple[str, bool]] = [(root_id, False)]
    while stack:
        node_id, inside_control = stack.pop()
        if node_id in visited:
            continue
        visited.add(node_id)
        node = by_id.get(node_id)
        if node is None:
            continue
        if is_interesting(node, inside_control):
            interesting.add(node_id)
        child_inside = inside_control or is_control(node)
        for child_id in node.child_ids:
            stack.append((child_id, child_inside))
    
    for node_id in list(interesting):
        node = by_id[node_id]
        if node.role != "generic":
            continue
        name = _trimmed(node.name)
        if not has_text_content(node) and not _has_interesting_descendant(by_id, node, interesting):
            interesting.discard(node_id)
        elif len(name) < 2 or name.lower() in LAYOUT_TAG_NAMES:
            interesting.discard(node_id)
    return interesting


def _has_interesting_descendant(by_id: Dict[str, AXNode], node: AXNode, interesting: Set[str]) -> bool:
    stack = list(node.child_ids)
    seen: Set[str] = set()
    while stack:
        node_id = stack.pop()
        if node_id in seen:
            continue
        seen.add(node_id)
        if node_id in interesting:
            return True
        child = by_id.get(node_id)
        if child is not None:
            stack.extend(child.child_ids)
    return False


def dedupe_link_name(name: Optional[str]) -> Optional[str]:
    """
    Collapse link names that repeat their text before a URL.
    
    "Docs Docs https://example.com" becomes "Docs https://example.com".
    """
    if not name:
        return name
    match = _URL_RE.search(name)
    if not match:
        return name
    words = name[:match.start()].strip().split()
    half = len(words) // 2
    if half and len(words) % 2 == 0 and words[:half] == words[half:]:
        return " ".join(words[:half]) + " " + match.group(0)
    return name


# =============================================================================
# Serialization
# =============================================================================

class AccessibilityTreeConverter:
    """Pass two: serialize the interesting nodes of one tree into SnapshotNodes."""
    
    def __init__(self, existing: Optional[Dict[int, ExistingMarker]] = None,
                 id_factory: Callable[[], str] = new_uid):
        self._existing = existing or {}
        self._id_factory = id_factory
        self._used_ids: Set[str] = set()
    
    def convert(self, tree: AccessibilityTree) -> Optional[Tuple[SnapshotNode, Dict[str, SnapshotNode]]]:
        """
        Returns:
            (root, index) or None when nothing survived filtering.
        """
        root = tree.root()
        if root is None:
            return None
        by_id = tree.by_id()
        interesting = collect_interesting_nodes(by_id, root.node_id)
        
        # Pre-order walk with single ownership, then build bottom-up
        order: List[str] = []
        owner: Dict[str, str] = {}
        stack = [root.node_id]
        visited: Set[str] = set()
        while stack:
            node_id = stack.pop()
            if node_id in visited or node_id not in by_id:
                continue
            visited.add(node_id)
            order.append(node_id)
            for child_id in reversed(by_id[node_id].child_ids):
                if child_id not in visited and child_id not in owner:
                    owner[child_id] = node_id
                    stack.append(child_id)
        
        built: Dict[str, Optional[SnapshotNode]] = {}
        for node_id in reversed(order):
            node = by_id[node_id]
            children = [
                built[child_id] for child_id in node.child_ids
                if owner.get(child_id) == node_id and built.get(child_id) is not None
            ]
            built[node_id] = self._serialize(node, children, node_id in interesting)
        
        result = built.get(root.node_id)
        if result is None:
            return None
        index = {snap.id: snap for snap in result.iter_nodes()}
        return result, index
    
    def _serialize(self, node: AXNode, children: List[SnapshotNode],
                   interesting: bool) -> Optional[SnapshotNode]:
        if not interesting:
            if not children:
                return None
            if len(children) == 1:
                return children[0]
            chrome_role = node.chrome_role if isinstance(node.chrome_role, str) else None
            return SnapshotNode(
                id=self._assign_id(node),
                role=node.role or chrome_role or "generic",
                name=node.name,
                children=children,
                tag_name=self._tag_name(node),
                frame_id=node.frame_id,
                backend_node_id=node.backend_node_id,
            )
        
        name = dedupe_link_name(node.name) if node.role == "link" else node.name
        snap = SnapshotNode(
            id=self._assign_id(node),
            role=node.role,
            name=name,
            children=children,
            tag_name=self._tag_name(node),
            frame_id=node.frame_id,
            backend_node_id=node.backend_node_id,
        )
        if node.value:
            snap.value = node.value
        if node.description:
            snap.description = node.description
        for prop_name, prop_value in node.properties:
            if prop_name in FLAG_PROPERTIES:
                if prop_value:
                    setattr(snap, prop_name, True)
            elif prop_name in COPIED_PROPERTIES:
                setattr(snap, prop_name, prop_value)
        return snap
    
    def _assign_id(self, node: AXNode) -> str:
        marker = self._existing.get(node.backend_node_id) if node.backend_node_id is not None else None
        uid = marker.uid if marker is not None else None
        if not uid or uid in self._used_ids:
            uid = self._id_factory()
            while uid in self._used_ids:
                uid = self._id_factory()
        self._used_ids.add(uid)
        return uid
    
    def _tag_name(self, node: AXNode) -> Optional[str]:
        if node.backend_node_id is None:
            return None
        marker = self._existing.get(node.backend_node_id)
        return marker.tag_name if marker is not None else None


def convert_accessibility_tree(
    tree: AccessibilityTree,
    existing: Optional[Dict[int, ExistingMarker]] = None,
    id_factory: Callable[[], str] = new_uid,
) -> Optional[Tuple[SnapshotNode, Dict[str, SnapshotNode]]]:
    return AccessibilityTreeConverter(existing, id_factory).convert(tree)


# =============================================================================
# Builder
# =============================================================================

class SnapshotBuilder:
    """
    Builds and caches one accessibility snapshot per tab.
    
    Usage:
        builder = SnapshotBuilder(registry, channel, FrameTreeResolver(channel))
        snapshot = await builder.create_snapshot(tab_id)
        node = builder.get_node(tab_id, "a1b2c3d4")
    """
    
    def __init__(
        self,
        registry: SessionRegistry,
        channel: CommandChannel,
        frames: Optional[FrameTreeResolver] = None,
        *,
        node_id_attribute: str = "data-tabpilot-nodeid",
        lookup_concurrency: int = 50,
        id_factory: Callable[[], str] = new_uid,
    ):
        self._registry = registry
        self._channel = channel
        self._frames = frames
        self.node_id_attribute = node_id_attribute
        self.lookup_concurrency = lookup_concurrency
        self._id_factory = id_factory
        self._snapshots: Dict[str, Snapshot] = {}
    
    @classmethod
    def from_config(cls, registry: SessionRegistry, channel: CommandChannel,
                    frames: Optional[FrameTreeResolver], config: AutomationConfig) -> SnapshotBuilder:
        return cls(
            registry,
            channel,
            frames,
            node_id_attribute=config.node_id_attribute,
            lookup_concurrency=config.lookup_concurrency,
        )
    
    async def create_snapshot(self, tab_id: str) -> Snapshot:
        """
        Capture a fresh snapshot of the tab and cache it, replacing any previous one.
        
        Raises:
            SnapshotError: Attaching failed, the page had no accessibility
                nodes, or nothing survived filtering.
        """
        try:
            snapshot = await self._build(tab_id)
        except Exception as e:
            message = getattr(e, "message", None) or str(e)
            logger.error(
                f"Failed to create snapshot: {message}",
                extra={"tab_id": tab_id, "error_type": type(e).__name__},
            )
            raise SnapshotError(f"Failed to create snapshot: {message}", tab_id=tab_id) from e
        
        self._snapshots[tab_id] = snapshot
        logger.info(
            f"Snapshot created with {len(snapshot.index)} nodes",
            extra={"tab_id": tab_id, "node_count": len(snapshot.index)},
        )
        return snapshot
    
    async def _build(self, tab_id: str) -> Snapshot:
        if not await self._registry.attach(tab_id):
            raise AttachFailedError("Failed to attach debugger", tab_id=tab_id)
        
        try:
            tree = await self._fetch_accessibility_tree(tab_id)
            if not tree.nodes:
                raise SnapshotError("No accessibility nodes found", tab_id=tab_id)
            if self._frames is not None:
                tree = await self._frames.merge_iframes(tab_id, tree)
            
            existing = await self._fetch_existing_markers(tab_id, tree)
            converted = convert_accessibility_tree(tree, existing, self._id_factory)
            if converted is None:
                raise SnapshotError("Failed to convert accessibility tree to snapshot", tab_id=tab_id)
            root, index = converted
            
            await self._inject_markers(tab_id, index, existing)
        finally:
            await self._registry.detach(tab_id)
        
        return Snapshot(root=root, index=index, tab_id=tab_id, source="cdp")
    
    async def _fetch_accessibility_tree(self, tab_id: str) -> AccessibilityTree:
        await self._channel.send_command(tab_id, "Accessibility.enable")
        result = await self._channel.send_command(tab_id, "Accessibility.getFullAXTree")
        return AccessibilityTree.from_cdp(result)
    
    async def _fetch_existing_markers(self, tab_id: str,
                                      tree: AccessibilityTree) -> Dict[int, ExistingMarker]:
        backend_ids = list(dict.fromkeys(
            node.backend_node_id for node in tree.nodes if node.backend_node_id is not None
        ))
        if not backend_ids:
            return {}
        
        try:
            await self._channel.send_command(tab_id, "DOM.enable")
            await self._channel.send_command(tab_id, "DOM.getDocument", {"depth": 0})
        except CommandAbortedError:
            raise
        except TabPilotError as e:
            logger.warning(
                f"Existing node id lookup unavailable: {e}",
                extra={"tab_id": tab_id},
            )
            return {}
        
        results = await gather_limited(
            [partial(self._read_marker, tab_id, backend_id) for backend_id in backend_ids],
            self.lookup_concurrency,
        )
        return {
            backend_id: marker
            for backend_id, marker in zip(backend_ids, results)
            if marker is not None
        }
    
    async def _read_marker(self, tab_id: str, backend_node_id: int) -> Optional[ExistingMarker]:
        try:
            result = await self._call_on_node(
                tab_id, backend_node_id, READ_NODE_MARKER, [self.node_id_attribute]
            )
        except CommandAbortedError:
            raise
        except TabPilotError as e:
            logger.debug(
                f"Skipping marker lookup: {e}",
                extra={"tab_id": tab_id, "backend_node_id": backend_node_id},
            )
            return None
        if not isinstance(result, dict):
            return None
        existing_id = result.get("existingId")
        return ExistingMarker(
            uid=existing_id if isinstance(existing_id, str) and existing_id else None,
            tag_name=result.get("tagName"),
        )
    
    async def _inject_markers(self, tab_id: str, index: Dict[str, SnapshotNode],
                              existing: Dict[int, ExistingMarker]) -> None:
        stale = []
        for uid, node in index.items():
            if node.backend_node_id is None:
                continue
            marker = existing.get(node.backend_node_id)
            if marker is not None and marker.uid == uid:
                continue
            stale.append((uid, node.backend_node_id))
        
        if not stale:
            return
        await gather_limited(
            [partial(self._write_marker, tab_id, backend_id, uid) for uid, backend_id in stale],
            self.lookup_concurrency,
        )
        logger.debug(
            f"Injected {len(stale)} node id markers",
            extra={"tab_id": tab_id, "node_count": len(stale)},
        )
    
    async def _write_marker(self, tab_id: str, backend_node_id: int, uid: str) -> None:
        try:
            await self._call_on_node(
                tab_id, backend_node_id, WRITE_NODE_MARKER, [self.node_id_attribute, uid]
            )
        except CommandAbortedError:
            raise
        except TabPilotError as e:
            logger.debug(
                f"Skipping marker injection: {e}",
                extra={"tab_id": tab_id, "backend_node_id": backend_node_id},
            )
    
    async def _call_on_node(self, tab_id: str, backend_node_id: int, function: str, args: list):
        resolved = await self._channel.send_command(
            tab_id, "DOM.resolveNode", {"backendNodeId": backend_node_id}
        )
        object_id = (resolved.get("object") or {}).get("objectId")
        if not object_id:
            return None
        try:
            result = await self._channel.send_command(tab_id, "Runtime.callFunctionOn", {
                "objectId": object_id,
                "functionDeclaration": function,
                "arguments": [{"value": arg} for arg in args],
                "returnByValue": True,
            })
        finally:
            try:
                await self._channel.send_command(tab_id, "Runtime.releaseObject", {"objectId": object_id})
            except TabPilotError:
                pass
        return (result.get("result") or {}).get("value")
    
    # =========================================================================
    # Cache
    # =========================================================================
    
    def get_snapshot(self, tab_id: str) -> Optional[Snapshot]:
        return self._snapshots.get(tab_id)
    
    def get_node(self, tab_id: str, uid: str) -> Optional[SnapshotNode]:
        snapshot = self._snapshots.get(tab_id)
        return snapshot.get_node(uid) if snapshot is not None else None
    
    def is_valid_uid(self, tab_id: str, uid: str) -> bool:
        return self.get_node(tab_id, uid) is not None
    
    def clear_snapshot(self, tab_id: str) -> None:
        self._snapshots.pop(tab_id, None)
    
    def clear_all_snapshots(self) -> None:
        self._snapshots.clear()
    
    async def search_and_format(
        self,
        tab_id: str,
        query: str,
        context_levels: int = 1,
        case_sensitive: bool = False,
        use_glob: Optional[bool] = None,
    ) -> str:
        """Take a fresh snapshot and return grouped search results as text."""
        snapshot = await self.create_snapshot(tab_id)
        text = format_snapshot(snapshot)
        result = search_snapshot_text(
            text, query,
            context_levels=context_levels,
            case_sensitive=case_sensitive,
            use_glob=use_glob,
        )
        return format_search_results(text, result, query)
