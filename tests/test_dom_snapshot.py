"""
Tests for DOM-only snapshots and the marker-addressed DOM locator.

Run with: pytest tests/test_dom_snapshot.py -v
"""
import asyncio

import pytest

from tabpilot.config import ActionTimings, AutomationConfig
from tabpilot.core.errors import (
    ActionError,
    ActionTimeoutError,
    ElementNotFoundError,
    FillTargetMismatchError,
    SnapshotError,
)
from tabpilot.core.models import BoundingBox, SnapshotNode
from tabpilot.core.scripts import RUN_DOM_ACTION
from tabpilot.locator.dom import DomLocator
from tabpilot.snapshot.dom import DOM_SNAPSHOT_MESSAGE, DomSnapshotCollector, convert_dom_snapshot

SERIALIZED = {
    "root": {
        "id": "r",
        "role": "RootWebArea",
        "name": "Sign up",
        "children": [
            {
                "id": "i1",
                "role": "textbox",
                "name": "Email",
                "tagName": "input",
                "placeholder": "you@example.com",
                "required": True,
                "focused": True,
            },
            {"id": "l1", "role": "link", "name": "Terms", "href": "https://example.com/terms"},
            {"id": "b1", "role": "button", "name": "Create", "disabled": False, "title": "Create account"},
        ],
    },
    "metadata": {"title": "Sign up", "url": "https://example.com/signup", "timestamp": 1700000000000},
}


# =============================================================================
# Test conversion
# =============================================================================

class TestConvertDomSnapshot:
    """Tests for SerializedDomSnapshot conversion."""

    def test_builds_tree_and_index(self):
        snapshot = convert_dom_snapshot(SERIALIZED, "tab-1")

        assert snapshot.source == "dom"
        assert snapshot.title == "Sign up"
        assert snapshot.url == "https://example.com/signup"
        assert set(snapshot.index) == {"r", "i1", "l1", "b1"}
        assert [child.id for child in snapshot.root.children] == ["i1", "l1", "b1"]

    def test_copies_state_and_extras(self):
        snapshot = convert_dom_snapshot(SERIALIZED, "tab-1")

        email = snapshot.get_node("i1")
        assert email.tag_name == "input"
        assert email.valuetext == "you@example.com"
        assert email.required is True
        assert email.focused is True
        assert snapshot.get_node("l1").href == "https://example.com/terms"
        assert snapshot.get_node("b1").disabled is False
        assert snapshot.get_node("b1").title == "Create account"

    def test_deep_tree_converts(self):
        root = {"id": "n0", "role": "RootWebArea", "children": []}
        parent = root
        for i in range(1, 3000):
            child = {"id": f"n{i}", "role": "generic", "children": []}
            parent["children"].append(child)
            parent = child

        snapshot = convert_dom_snapshot({"root": root}, "tab-1")

        assert len(snapshot.index) == 3000
        assert snapshot.get_node("n2999").role == "generic"

    def test_duplicate_ids_rejected(self):
        data = {"root": {"id": "r", "role": "RootWebArea", "children": [
            {"id": "x", "role": "button", "name": "A"},
            {"id": "x", "role": "button", "name": "B"},
        ]}}

        with pytest.raises(SnapshotError):
            convert_dom_snapshot(data, "tab-1")

    def test_missing_root_rejected(self):
        with pytest.raises(SnapshotError):
            convert_dom_snapshot({"metadata": {}}, "tab-1")


# =============================================================================
# Test collector
# =============================================================================

class TestDomSnapshotCollector:
    """Tests for requesting snapshots from the content handler."""

    @pytest.mark.asyncio
    async def test_create_snapshot(self, transport):
        transport.message_handler = lambda message: {"success": True, "data": SERIALIZED}
        collector = DomSnapshotCollector(transport)

        snapshot = await collector.create_snapshot("tab-1")

        assert transport.messages == [("tab-1", {"type": DOM_SNAPSHOT_MESSAGE, "options": {}})]
        assert collector.get_snapshot("tab-1") is snapshot
        assert collector.get_node("tab-1", "i1").name == "Email"

    @pytest.mark.asyncio
    async def test_no_response(self, transport):
        collector = DomSnapshotCollector(transport)

        with pytest.raises(SnapshotError) as exc_info:
            await collector.create_snapshot("tab-1")

        assert exc_info.value.message.startswith(
            "Failed to create DOM snapshot in background mode: No response received"
        )
        assert collector.get_snapshot("tab-1") is None

    @pytest.mark.asyncio
    async def test_error_response(self, transport):
        transport.message_handler = lambda message: {"success": False, "error": "Document not ready"}
        collector = DomSnapshotCollector(transport)

        with pytest.raises(SnapshotError) as exc_info:
            await collector.create_snapshot("tab-1")

        assert "Document not ready" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_clear(self, transport):
        transport.message_handler = lambda message: {"success": True, "data": SERIALIZED}
        collector = DomSnapshotCollector(transport, options={"maxDepth": 40})
        await collector.create_snapshot("tab-1")

        collector.clear_snapshot("tab-1")

        assert collector.get_node("tab-1", "i1") is None
        assert transport.messages[0][1]["options"] == {"maxDepth": 40}


# =============================================================================
# Test DomLocator
# =============================================================================

@pytest.fixture
def dom_locator(transport, config):
    node = SnapshotNode("i1", "textbox", "Email")
    return DomLocator("tab-1", node, transport, config)


def respond(response):
    return lambda function, args: response


class TestDomLocator:
    """Tests for actions run through the page script bridge."""

    @pytest.mark.asyncio
    async def test_click_runs_page_action(self, transport, dom_locator):
        transport.script_handler = respond({"success": True})

        await dom_locator.click()

        assert transport.scripts == [
            ("tab-1", RUN_DOM_ACTION, ["data-tabpilot-nodeid", "i1", "click", {"count": 1}]),
        ]

    @pytest.mark.asyncio
    async def test_fill_sends_value(self, transport, dom_locator):
        transport.script_handler = respond({"success": True})

        await dom_locator.fill("a@b.c")

        assert transport.scripts[0][2][2:] == ["fill", {"value": "a@b.c"}]

    @pytest.mark.asyncio
    async def test_missing_element(self, transport, dom_locator):
        transport.script_handler = respond({
            "success": False, "errorType": "not-found", "error": "Element not found",
        })

        with pytest.raises(ElementNotFoundError) as exc_info:
            await dom_locator.hover()

        assert exc_info.value.uid == "i1"

    @pytest.mark.asyncio
    async def test_fill_on_non_editable(self, transport, dom_locator):
        transport.script_handler = respond({
            "success": False,
            "errorType": "fill-target-mismatch",
            "error": "Element is not an input, textarea, select or contenteditable",
        })

        with pytest.raises(FillTargetMismatchError):
            await dom_locator.fill("x")

    @pytest.mark.asyncio
    async def test_other_failure(self, transport, dom_locator):
        transport.script_handler = respond({"success": False, "error": "boom"})

        with pytest.raises(ActionError) as exc_info:
            await dom_locator.click()

        assert exc_info.value.message == "boom"

    @pytest.mark.asyncio
    async def test_bridge_failure(self, transport, dom_locator):
        transport.script_handler = respond(RuntimeError("tab discarded"))

        with pytest.raises(ActionError):
            await dom_locator.click()

    @pytest.mark.asyncio
    async def test_no_result(self, transport, dom_locator):
        with pytest.raises(ActionError):
            await dom_locator.click()

    @pytest.mark.asyncio
    async def test_deadline(self, transport):
        async def hang(function, args):
            await asyncio.sleep(5)
        transport.script_handler = hang
        config = AutomationConfig(action_timeout=0.05, timings=ActionTimings.instant())
        locator = DomLocator("tab-1", SnapshotNode("i1", "textbox"), transport, config)

        with pytest.raises(ActionTimeoutError):
            await locator.click()

    @pytest.mark.asyncio
    async def test_bounding_box(self, transport, dom_locator):
        transport.script_handler = respond({
            "success": True, "data": {"x": 1, "y": 2, "width": 3, "height": 4},
        })

        assert await dom_locator.bounding_box() == BoundingBox(1, 2, 3, 4)

    @pytest.mark.asyncio
    async def test_bounding_box_failure_is_none(self, transport, dom_locator):
        transport.script_handler = respond({"success": False, "errorType": "not-found"})

        assert await dom_locator.bounding_box() is None

    @pytest.mark.asyncio
    async def test_values(self, transport, dom_locator):
        transport.script_handler = respond({"success": True, "data": "hello"})

        assert await dom_locator.get_value() == "hello"
        assert await dom_locator.get_editor_value() == "hello"
        assert [script[2][2] for script in transport.scripts] == ["value", "editor-value"]

    @pytest.mark.asyncio
    async def test_unknown_action(self, dom_locator):
        with pytest.raises(ValueError):
            await dom_locator.run_dom_action("scroll")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
