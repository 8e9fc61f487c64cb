"""
Frame Tree Resolver - splices iframe accessibility subtrees into the main tree.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from tabpilot.cdp.commander import CommandChannel
from tabpilot.core.errors import TabPilotError
from tabpilot.core.models import AccessibilityTree, AXNode, FrameTree

logger = logging.getLogger("tabpilot")

IFRAME_ROLE = "Iframe"


def namespace_node(node: AXNode, frame_id: str) -> AXNode:
    """Copy of node with every id prefixed as ``frameId:originalId``."""
    return replace(
        node,
        node_id=f"{frame_id}:{node.node_id}",
        parent_id=f"{frame_id}:{node.parent_id}" if node.parent_id is not None else None,
        child_ids=[f"{frame_id}:{child}" for child in node.child_ids],
        frame_id=node.frame_id or frame_id,
    )


class FrameTreeResolver:
    """
    Resolves the page's frame hierarchy and merges iframe accessibility trees.
    
    Merging never mutates its input: nodes are copied before any child list
    is extended, and the merged tree is returned as a new object.
    """
    
    def __init__(self, channel: CommandChannel):
        self._channel = channel
    
    async def get_frame_tree(self, tab_id: str) -> FrameTree:
        """Fetch Page.getFrameTree and flatten it to parent links."""
        result = await self._channel.send_command(tab_id, "Page.getFrameTree")
        tree = FrameTree()
        frame_tree = result.get("frameTree")
        if frame_tree:
            tree.main_frame_id = frame_tree.get("frame", {}).get("id")
            self._parse_frame_tree(frame_tree, None, tree)
        return tree
    
    def _parse_frame_tree(self, frame_tree: Dict[str, Any], parent_frame_id: Optional[str],
                          tree: FrameTree) -> None:
        frame = frame_tree.get("frame", {})
        frame_id = frame.get("id")
        if frame_id:
            tree.parent_by_frame_id[frame_id] = parent_frame_id
        for child in frame_tree.get("childFrames", []) or []:
            self._parse_frame_tree(child, frame_id, tree)
    
    async def get_frame_owner(self, tab_id: str, frame_id: str) -> Optional[int]:
        """Backend node id of the iframe element hosting frame_id."""
        result = await self._channel.send_command(tab_id, "DOM.getFrameOwner", {"frameId": frame_id})
        return result.get("backendNodeId")
    
    async def build_owner_map(self, tab_id: str) -> Dict[int, str]:
        """
        Map each iframe element's backend node id to the frame it hosts.
        
        Frames whose owner cannot be resolved are skipped. Any failure of the
        surrounding lookups yields an empty map.
        """
        owners: Dict[int, str] = {}
        try:
            await self._channel.send_command(tab_id, "Page.enable")
            frame_tree = await self.get_frame_tree(tab_id)
            await self._channel.send_command(tab_id, "DOM.enable")
            await self._channel.send_command(tab_id, "DOM.getDocument", {"depth": 0})
            
            for frame_id in frame_tree.parent_by_frame_id:
                if frame_id == frame_tree.main_frame_id:
                    continue
                try:
                    backend_node_id = await self.get_frame_owner(tab_id, frame_id)
                except TabPilotError as e:
                    logger.debug(
                        f"Could not resolve frame owner: {e}",
                        extra={"tab_id": tab_id, "frame_id": frame_id},
                    )
                    continue
                if backend_node_id is not None:
                    owners[backend_node_id] = frame_id
        except TabPilotError as e:
            logger.warning(
                f"Failed to build iframe owner map: {e}",
                extra={"tab_id": tab_id, "error_type": type(e).__name__},
            )
            return {}
        finally:
            await self._disable_domains(tab_id)
        return owners
    
    async def merge_iframes(self, tab_id: str, tree: AccessibilityTree) -> AccessibilityTree:
        """
        Return tree with every reachable iframe's accessibility subtree attached.
        
        Subtree ids are namespaced ``frameId:originalId`` so they cannot collide
        with the main tree or with each other. Nested iframes are followed;
        each frame is fetched at most once.
        """
        owners = await self.build_owner_map(tab_id)
        if not owners:
            return tree
        
        by_id: Dict[str, AXNode] = {}
        ordered: List[AXNode] = []
        for node in tree.nodes:
            copy = replace(node, child_ids=list(node.child_ids))
            by_id[copy.node_id] = copy
            ordered.append(copy)
        
        root = next((node for node in ordered if node.parent_id is None), None)
        if root is None:
            return tree
        
        processed_frames = set()
        visited = set()
        stack = [root.node_id]
        merged = 0
        while stack:
            node_id = stack.pop()
            if node_id in visited:
                continue
            visited.add(node_id)
            node = by_id.get(node_id)
            if node is None:
                continue
            
            children = list(node.child_ids)
            subtree_root = None
            frame_id = owners.get(node.backend_node_id) if node.role == IFRAME_ROLE else None
            if frame_id is not None and frame_id not in processed_frames:
                processed_frames.add(frame_id)
                subtree_root = await self._attach_frame_subtree(tab_id, frame_id, node, by_id, ordered)
                if subtree_root is not None:
                    merged += 1
            
            stack.extend(reversed(children))
            if subtree_root is not None:
                stack.append(subtree_root)
        
        logger.debug(
            f"Merged {merged} iframe accessibility trees",
            extra={"tab_id": tab_id, "node_count": len(ordered)},
        )
        return AccessibilityTree(nodes=ordered)
    
    async def _attach_frame_subtree(
        self,
        tab_id: str,
        frame_id: str,
        iframe_node: AXNode,
        by_id: Dict[str, AXNode],
        ordered: List[AXNode],
    ) -> Optional[str]:
        try:
            result = await self._channel.send_command(
                tab_id, "Accessibility.getFullAXTree", {"frameId": frame_id}
            )
        except TabPilotError as e:
            logger.warning(
                f"Failed to fetch iframe accessibility tree: {e}",
                extra={"tab_id": tab_id, "frame_id": frame_id},
            )
            return None
        
        subtree = AccessibilityTree.from_cdp(result)
        namespaced = [namespace_node(node, frame_id) for node in subtree.nodes]
        subtree_root = next((node for node in namespaced if node.parent_id is None), None)
        if subtree_root is None:
            return None
        
        subtree_root.parent_id = iframe_node.node_id
        iframe_node.child_ids.append(subtree_root.node_id)
        for node in namespaced:
            by_id[node.node_id] = node
            ordered.append(node)
        return subtree_root.node_id
    
    async def _disable_domains(self, tab_id: str) -> None:
        for method in ("DOM.disable", "Page.disable"):
            try:
                await self._channel.send_command(tab_id, method)
            except TabPilotError as e:
                logger.debug(f"{method} failed: {e}", extra={"tab_id": tab_id})
