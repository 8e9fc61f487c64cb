"""
Tests for the Automation facade against a scripted tab.

Run with: pytest tests/test_automation.py -v
"""
import pytest

from tabpilot.automation import ELEMENT_NOT_FOUND_MESSAGE, Automation
from tabpilot.config import MODE_DOM, ActionTimings, AutomationConfig
from tabpilot.core.errors import TabPilotError
from tabpilot.core.models import TabInfo
from tabpilot.core.scripts import (
    CONTAINS_NODE,
    FILL_EDITOR,
    GET_EDITOR_VALUE,
    READ_NODE_MARKER,
    RUN_DOM_ACTION,
    SCRIPTED_CLICK,
)
from tests.fakes import ax_node, ax_tree, frame_tree, quad, resolve_node

PAGE_TREE = ax_tree(
    ax_node(1, "RootWebArea", "Example", children=[2, 3], backend=10),
    ax_node(2, "button", "Save", parent=1, backend=30),
    ax_node(3, "textbox", "Name", parent=1, backend=31),
)

MARKERS = {
    "obj-10": {"existingId": "root0001", "tagName": "body"},
    "obj-30": {"existingId": "save0001", "tagName": "button"},
    "obj-31": {"existingId": "name0001", "tagName": "input"},
}

DOM_SNAPSHOT = {
    "root": {
        "id": "d-root",
        "role": "RootWebArea",
        "name": "Example",
        "children": [{"id": "d-save", "role": "button", "name": "Save", "tagName": "button"}],
    },
    "metadata": {"title": "Example", "url": "https://example.com/"},
}


@pytest.fixture
def page(transport, page_functions):
    """One tab with a Save button at (10, 20, 50, 30) and a Name textbox."""
    transport.tabs["tab-1"] = TabInfo("tab-1", url="https://example.com/", title="Example")
    transport.on("Page.getFrameTree", frame_tree("main"))
    transport.on("Accessibility.getFullAXTree", PAGE_TREE)
    transport.on("DOM.resolveNode", resolve_node)
    transport.on("DOM.getContentQuads", {"quads": [quad(10, 20, 50, 30)]})
    transport.on("DOM.getNodeForLocation", {"backendNodeId": 30})
    page_functions.responses[READ_NODE_MARKER] = lambda object_id, args: MARKERS[object_id]
    page_functions.responses[CONTAINS_NODE] = True
    page_functions.responses[FILL_EDITOR] = True
    return page_functions


@pytest.fixture
async def automation(transport, config):
    automation = Automation(config, transport=transport)
    yield automation
    await automation.stop()


def dom_scripts(response):
    """Script handler answering RUN_DOM_ACTION only."""
    def _handler(function, args):
        return response if function == RUN_DOM_ACTION else 0
    return _handler


# =============================================================================
# Test snapshots
# =============================================================================

class TestSnapshots:
    """Tests for taking and searching snapshots."""

    @pytest.mark.asyncio
    async def test_take_snapshot(self, automation, page):
        snapshot = await automation.take_snapshot("tab-1")

        assert snapshot.mode == "cdp"
        assert snapshot.element_count == 3
        assert snapshot.title == "Example"
        assert snapshot.url == "https://example.com/"
        assert 'uid=save0001 button "Save" <button>' in snapshot.text
        assert automation.is_valid_uid("tab-1", "save0001")

    @pytest.mark.asyncio
    async def test_list_tabs(self, automation, transport):
        transport.tabs["tab-1"] = TabInfo("tab-1", title="One")

        tabs = await automation.list_tabs()

        assert [tab.tab_id for tab in tabs] == ["tab-1"]

    @pytest.mark.asyncio
    async def test_search_elements(self, automation, page):
        output = await automation.search_elements("tab-1", "save")

        assert '✓uid=save0001 button "Save"' in output
        assert automation.is_valid_uid("tab-1", "name0001")

    @pytest.mark.asyncio
    async def test_clear_snapshot(self, automation, page):
        await automation.take_snapshot("tab-1")

        automation.clear_snapshot("tab-1")

        assert not automation.is_valid_uid("tab-1", "save0001")

    @pytest.mark.asyncio
    async def test_dom_mode_replaces_cdp_cache(self, automation, transport, page):
        await automation.take_snapshot("tab-1")
        transport.message_handler = lambda message: {"success": True, "data": DOM_SNAPSHOT}

        snapshot = await automation.take_snapshot("tab-1", mode=MODE_DOM)

        assert snapshot.mode == MODE_DOM
        assert snapshot.element_count == 2
        assert automation.builder.get_snapshot("tab-1") is None
        assert not automation.is_valid_uid("tab-1", "save0001")
        assert automation.is_valid_uid("tab-1", "d-save")


# =============================================================================
# Test actions
# =============================================================================

class TestActions:
    """Tests for actions reported as ActionResult values."""

    @pytest.mark.asyncio
    async def test_click(self, automation, transport, page):
        await automation.take_snapshot("tab-1")

        result = await automation.click("tab-1", "save0001")

        assert result.success
        assert result.extracted_content == "Element clicked successfully"
        pressed = [p for p in transport.params_for("Input.dispatchMouseEvent") if p["type"] == "mousePressed"]
        assert [(p["x"], p["y"]) for p in pressed] == [(35, 35)]
        # The handle is disposed after the action
        assert "tab-1" in transport.detach_calls

    @pytest.mark.asyncio
    async def test_double_click(self, automation, page):
        await automation.take_snapshot("tab-1")

        result = await automation.click("tab-1", "save0001", double=True)

        assert result.extracted_content == "Element double clicked successfully"

    @pytest.mark.asyncio
    async def test_covered_click_still_succeeds(self, automation, transport, page):
        page.responses[CONTAINS_NODE] = False
        await automation.take_snapshot("tab-1")

        result = await automation.click("tab-1", "save0001")

        assert result.success
        assert [args for _, _, args in page.called(SCRIPTED_CLICK)] == [[1]]
        assert transport.params_for("Input.dispatchMouseEvent") == []

    @pytest.mark.asyncio
    async def test_zero_size_element(self, automation, transport, page):
        transport.on("DOM.getContentQuads", {"quads": [quad(10, 20, 0, 0)]})
        await automation.take_snapshot("tab-1")

        result = await automation.click("tab-1", "save0001")

        assert not result.success
        assert result.error_message == "Element not visible or has zero size"

    @pytest.mark.asyncio
    async def test_unknown_uid(self, automation, page):
        await automation.take_snapshot("tab-1")

        result = await automation.click("tab-1", "stale123")

        assert not result.success
        assert result.uid == "stale123"
        assert result.error_message == ELEMENT_NOT_FOUND_MESSAGE

    @pytest.mark.asyncio
    async def test_fill_and_hover(self, automation, transport, page):
        await automation.take_snapshot("tab-1")

        filled = await automation.fill("tab-1", "name0001", "Ada")
        hovered = await automation.hover("tab-1", "save0001")

        assert filled.extracted_content == "Element filled successfully"
        assert hovered.extracted_content == "Element hovered successfully"
        assert [args for _, _, args in page.called(FILL_EDITOR)] == [["Ada"]]
        assert [p["type"] for p in transport.params_for("Input.dispatchMouseEvent")] == ["mouseMoved"]

    @pytest.mark.asyncio
    async def test_fill_form_partial(self, automation, page):
        await automation.take_snapshot("tab-1")

        result = await automation.fill_form("tab-1", [
            ("name0001", "Ada"),
            {"uid": "gone0001", "value": "x"},
        ])

        assert result.success
        assert result.extracted_content == (
            f"Filled 1/2 elements successfully. Failed: gone0001: {ELEMENT_NOT_FOUND_MESSAGE}"
        )

    @pytest.mark.asyncio
    async def test_fill_form_all_failing(self, automation, page):
        await automation.take_snapshot("tab-1")

        result = await automation.fill_form("tab-1", [("gone0001", "x"), ("gone0002", "y")])

        assert not result.success
        assert result.error_message.startswith("Filled 0/2 elements successfully. Failed: gone0001")

    @pytest.mark.asyncio
    async def test_fill_form_empty(self, automation):
        with pytest.raises(ValueError):
            await automation.fill_form("tab-1", [])

    @pytest.mark.asyncio
    async def test_get_editor_value(self, automation, page):
        page.responses[GET_EDITOR_VALUE] = "print('hi')"
        await automation.take_snapshot("tab-1")

        result = await automation.get_editor_value("tab-1", "name0001")

        assert result.success
        assert result.extracted_content == "print('hi')"

    @pytest.mark.asyncio
    async def test_get_editor_value_unreadable(self, automation, page):
        page.responses[GET_EDITOR_VALUE] = None
        await automation.take_snapshot("tab-1")

        result = await automation.get_editor_value("tab-1", "save0001")

        assert not result.success
        assert result.error_message == "Element has no readable value"

    @pytest.mark.asyncio
    async def test_dom_mode_click(self, automation, transport, page):
        transport.message_handler = lambda message: {"success": True, "data": DOM_SNAPSHOT}
        transport.script_handler = dom_scripts({"success": True})
        await automation.take_snapshot("tab-1", mode=MODE_DOM)

        result = await automation.click("tab-1", "d-save")

        assert result.success
        actions = [args for _, function, args in transport.scripts if function == RUN_DOM_ACTION]
        assert actions == [["data-tabpilot-nodeid", "d-save", "click", {"count": 1}]]
        assert transport.params_for("Input.dispatchMouseEvent") == []


# =============================================================================
# Test lifecycle
# =============================================================================

class TestLifecycle:
    """Tests for start/stop and the not-started guard."""

    @pytest.mark.asyncio
    async def test_not_started(self):
        automation = Automation(AutomationConfig(timings=ActionTimings.instant()))

        with pytest.raises(TabPilotError) as exc_info:
            await automation.take_snapshot("tab-1")

        assert exc_info.value.message == "Automation not started. Call start() first."

    @pytest.mark.asyncio
    async def test_stop_keeps_supplied_transport_open(self, transport, config, page):
        automation = Automation(config, transport=transport)
        await automation.take_snapshot("tab-1")

        await automation.stop()

        assert not transport.closed
        assert "tab-1" in transport.detach_calls
        assert not automation.is_valid_uid("tab-1", "save0001")

    @pytest.mark.asyncio
    async def test_context_manager_with_supplied_transport(self, transport, config, page):
        async with Automation(config, transport=transport) as automation:
            snapshot = await automation.take_snapshot("tab-1")

        assert snapshot.element_count == 3
        assert not transport.closed


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
