"""
Snapshot text formatter.

Renders one line per node, indented by depth. The line starts with ``*``
for a focused node, ``→`` for nodes on the path to a focused node and a
space otherwise. Nodes that carry no information print only their role.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Set

from tabpilot.core.models import Snapshot, SnapshotNode
from tabpilot.snapshot.query import SKIP_ROLES

INTERACTIVE_OUTPUT_ROLES = frozenset({
    "button", "link", "textbox", "combobox", "checkbox", "radio",
    "menuitem", "tab", "slider", "spinbutton", "searchbox",
})

VALUE_PROPERTIES = ("value", "valuetext", "valuemin", "valuemax", "level", "autocomplete")

# property -> capability token printed whenever the property is known
BOOLEAN_PROPERTIES = (
    ("disabled", "disableable"),
    ("expanded", "expandable"),
    ("focused", "focusable"),
    ("selected", "selectable"),
    ("modal", "modal"),
    ("readonly", "readonly"),
    ("required", "required"),
)

MIXED_PROPERTIES = ("pressed", "checked")


def _js_str(value: Any) -> str:
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def should_include_in_output(node: SnapshotNode) -> bool:
    role = node.role
    if role == "RootWebArea":
        return True
    if role in INTERACTIVE_OUTPUT_ROLES:
        return True
    if role in ("image", "img"):
        return True
    name = node.name.strip() if isinstance(node.name, str) else ""
    if role == "StaticText":
        return len(name) >= 2
    if role in SKIP_ROLES:
        return False
    return len(name) > 1


def node_attributes(node: SnapshotNode) -> List[str]:
    """Attribute tokens of one formatted line."""
    attributes = [f"uid={node.id}", node.role, f'"{node.name if node.name is not None else ""}"']
    if node.tag_name:
        attributes.append(f"<{node.tag_name}>")
    
    for prop in VALUE_PROPERTIES:
        value = getattr(node, prop)
        if value is not None:
            attributes.append(f'{prop}="{_js_str(value)}"')
    
    for prop, capability in BOOLEAN_PROPERTIES:
        value = getattr(node, prop)
        if value is not None:
            attributes.append(capability)
        if value:
            attributes.append(prop)
    
    for prop in MIXED_PROPERTIES:
        value = getattr(node, prop)
        if value is not None:
            attributes.append(prop)
        if value and value is not True:
            attributes.append(f'{prop}="{_js_str(value)}"')
        elif value is True:
            attributes.append(prop)
    return attributes


def focus_ancestor_ids(snapshot: Snapshot) -> Set[str]:
    """Ids on the path from the root to every focused node, focused nodes included."""
    ancestors: Set[str] = set()
    focused = [uid for uid, node in snapshot.index.items() if node.focused]
    for uid in focused:
        path = _path_to(snapshot.root, uid)
        if path:
            ancestors.update(path)
        else:
            ancestors.add(uid)
    return ancestors


def _path_to(root: SnapshotNode, target_id: str) -> Optional[List[str]]:
    stack = [(root, [root.id])]
    while stack:
        node, path = stack.pop()
        if node.id == target_id:
            return path
        for child in reversed(node.children):
            stack.append((child, path + [child.id]))
    return None


def format_snapshot(snapshot: Snapshot) -> str:
    """Render the snapshot tree as indented text."""
    ancestors = focus_ancestor_ids(snapshot)
    lines: List[str] = []
    stack = [(snapshot.root, 0)]
    while stack:
        node, depth = stack.pop()
        lines.append(format_node_line(node, depth, ancestors))
        for child in reversed(node.children):
            stack.append((child, depth + 1))
    return "".join(lines)


def format_node_line(node: SnapshotNode, depth: int, ancestors: Set[str]) -> str:
    if node.focused:
        marker = "*"
    elif node.id in ancestors:
        marker = "→"
    else:
        marker = " "
    
    if should_include_in_output(node):
        body = " ".join(node_attributes(node))
    else:
        body = node.role
    return " " * depth + marker + body + "\n"


_DICT_FIELDS = (
    "value", "description", "tag_name", "frame_id", "focused", "disabled",
    "expanded", "selected", "checked", "pressed", "level", "valuemin",
    "valuemax", "valuetext", "autocomplete", "haspopup", "invalid",
    "orientation", "modal", "readonly", "required", "href", "title",
)


def _node_dict(node: SnapshotNode) -> Dict[str, Any]:
    data: Dict[str, Any] = {"id": node.id, "role": node.role, "name": node.name}
    for key in _DICT_FIELDS:
        value = getattr(node, key)
        if value is not None:
            data[key] = value
    return data


def snapshot_to_dict(node: SnapshotNode) -> Dict[str, Any]:
    """Plain-dict rendering of a snapshot subtree, for JSON output."""
    root = _node_dict(node)
    stack = [(node, root)]
    while stack:
        current, data = stack.pop()
        if not current.children:
            continue
        data["children"] = []
        for child in current.children:
            child_data = _node_dict(child)
            data["children"].append(child_data)
            stack.append((child, child_data))
    return root
