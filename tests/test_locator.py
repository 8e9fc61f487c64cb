"""
Tests for the CDP smart locator: cross-frame geometry, occlusion fallback
and editor-aware filling.

Run with: pytest tests/test_locator.py -v
"""
import asyncio

import pytest

from tabpilot.core.errors import (
    ActionTimeoutError,
    AttachFailedError,
    CDPConnectionError,
    CDPProtocolError,
    ElementNotFoundError,
    FillTargetMismatchError,
    NotVisibleError,
)
from tabpilot.core.models import BoundingBox, SnapshotNode
from tabpilot.core.scripts import (
    CONTAINS_NODE,
    DISPATCH_COMMIT_EVENTS,
    FILL_EDITOR,
    GET_EDITOR_VALUE,
    HIGHLIGHT_ELEMENT,
    IS_FILL_TARGET,
    SCRIPTED_CLICK,
    SCRIPTED_HOVER,
)
from tabpilot.locator.smart import OBJECT_GROUP, SmartElementHandle, SmartLocator
from tests.fakes import child_frame, frame_tree, quad, resolve_node

TARGET = 42
IFRAME_OWNER = 99


def content_quads(rects):
    """DOM.getContentQuads handler serving one rect per backend node id."""
    def _handler(params):
        rect = rects.get(params["backendNodeId"])
        return {"quads": [quad(*rect)] if rect else []}
    return _handler


@pytest.fixture
def page(transport, page_functions):
    """Main-frame button at (10, 20, 50, 30) whose center hits the button itself."""
    transport.on("DOM.getContentQuads", content_quads({TARGET: (10, 20, 50, 30)}))
    transport.on("DOM.resolveNode", resolve_node)
    transport.on("DOM.getNodeForLocation", {"backendNodeId": TARGET})
    transport.on("Runtime.evaluate", {"result": {"type": "boolean", "value": False}})
    page_functions.responses[CONTAINS_NODE] = True
    page_functions.responses[FILL_EDITOR] = False
    page_functions.responses[IS_FILL_TARGET] = True
    return page_functions


def make_locator(registry, channel, frames, config, frame_id=None, backend=TARGET):
    node = SnapshotNode("uid1", "button", "Go", backend_node_id=backend, frame_id=frame_id)
    return SmartLocator("tab-1", node, registry, channel, frames, config)


@pytest.fixture
def locator(registry, channel, frames, config):
    return make_locator(registry, channel, frames, config)


def mouse_events(transport):
    return [
        (params["type"], params["x"], params["y"], params.get("clickCount"))
        for params in transport.params_for("Input.dispatchMouseEvent")
    ]


# =============================================================================
# Test bounding_box
# =============================================================================

class TestBoundingBox:
    """Tests for page-global geometry."""

    @pytest.mark.asyncio
    async def test_main_frame_box(self, transport, locator, page):
        box = await locator.bounding_box()

        assert box == BoundingBox(10, 20, 50, 30)
        assert "DOM.getNodeForLocation" not in transport.methods()

    @pytest.mark.asyncio
    async def test_covered_iframe_element_translated_to_page(self, transport, registry, channel,
                                                             frames, config, page):
        transport.on("DOM.getContentQuads", content_quads({
            TARGET: (10, 20, 50, 30),
            IFRAME_OWNER: (100, 150, 300, 300),
        }))
        transport.on("DOM.getNodeForLocation", {"backendNodeId": 7, "frameId": "main"})
        transport.on("Page.getFrameTree", frame_tree("main", child_frame("frame-A")))
        transport.on("DOM.getFrameOwner", {"backendNodeId": IFRAME_OWNER})
        locator = make_locator(registry, channel, frames, config, frame_id="frame-A")

        box = await locator.bounding_box()

        assert box == BoundingBox(110, 170, 50, 30)

    @pytest.mark.asyncio
    async def test_nested_iframe_offsets_accumulate(self, transport, registry, channel,
                                                    frames, config, page):
        transport.on("DOM.getContentQuads", content_quads({
            TARGET: (5, 5, 10, 10),
            IFRAME_OWNER: (100, 150, 300, 300),
            98: (20, 30, 100, 100),
        }))
        transport.on("DOM.getNodeForLocation", {"backendNodeId": 7, "frameId": "main"})
        transport.on("Page.getFrameTree", frame_tree("main", child_frame("frame-A", child_frame("frame-B"))))
        owners = {"frame-A": IFRAME_OWNER, "frame-B": 98}
        transport.on("DOM.getFrameOwner", lambda params: {"backendNodeId": owners[params["frameId"]]})
        locator = make_locator(registry, channel, frames, config, frame_id="frame-B")

        box = await locator.bounding_box()

        assert box == BoundingBox(125, 185, 10, 10)

    @pytest.mark.asyncio
    async def test_visible_iframe_element_keeps_local_box(self, transport, registry, channel,
                                                          frames, config, page):
        transport.on("DOM.getNodeForLocation", {"backendNodeId": TARGET, "frameId": "frame-A"})
        locator = make_locator(registry, channel, frames, config, frame_id="frame-A")

        box = await locator.bounding_box()

        assert box == BoundingBox(10, 20, 50, 30)
        assert "Page.getFrameTree" not in transport.methods()

    @pytest.mark.asyncio
    async def test_box_model_fallback(self, transport, locator, page):
        transport.on("DOM.getContentQuads", {"quads": []})
        transport.on("DOM.getBoxModel", {"model": {"content": quad(1, 2, 3, 4)}})

        assert await locator.bounding_box() == BoundingBox(1, 2, 3, 4)

    @pytest.mark.asyncio
    async def test_no_geometry(self, transport, locator, page):
        transport.on("DOM.getContentQuads", CDPProtocolError("CDP Error: Could not compute content quads."))
        transport.on("DOM.getBoxModel", CDPProtocolError("CDP Error: Could not compute box model."))

        assert await locator.bounding_box() is None

    @pytest.mark.asyncio
    async def test_attach_failure_gives_none(self, transport, locator, page):
        transport.attach_error = CDPConnectionError("Cannot attach")

        assert await locator.bounding_box() is None


# =============================================================================
# Test click
# =============================================================================

class TestClick:
    """Tests for pointer clicks and the scripted fallback."""

    @pytest.mark.asyncio
    async def test_click_dispatches_press_and_release_at_center(self, transport, locator, page):
        await locator.click()

        assert mouse_events(transport) == [
            ("mousePressed", 35, 35, 1),
            ("mouseReleased", 35, 35, 1),
        ]
        assert transport.params_for("DOM.scrollIntoViewIfNeeded") == [{"backendNodeId": TARGET}]
        assert page.called(SCRIPTED_CLICK) == []

    @pytest.mark.asyncio
    async def test_double_click_counts_up(self, transport, locator, page):
        await locator.click(count=2)

        assert [event[3] for event in mouse_events(transport)] == [1, 1, 2, 2]

    @pytest.mark.asyncio
    async def test_covered_element_gets_scripted_click(self, transport, locator, page):
        transport.on("DOM.getNodeForLocation", {"backendNodeId": 77})
        page.responses[CONTAINS_NODE] = False

        await locator.click()

        assert mouse_events(transport) == []
        assert page.called(SCRIPTED_CLICK) == [(SCRIPTED_CLICK, f"obj-{TARGET}", [1])]

    @pytest.mark.asyncio
    async def test_other_frame_on_top_gets_scripted_click(self, transport, registry, channel,
                                                          frames, config, page):
        transport.on("DOM.getNodeForLocation", {"backendNodeId": 77, "frameId": "frame-Z"})
        transport.on("Page.getFrameTree", frame_tree("main", child_frame("frame-A")))
        transport.on("DOM.getFrameOwner", {"backendNodeId": IFRAME_OWNER})
        locator = make_locator(registry, channel, frames, config, frame_id="frame-A")

        await locator.click()

        assert mouse_events(transport) == []
        assert len(page.called(SCRIPTED_CLICK)) == 1

    @pytest.mark.asyncio
    async def test_occlusion_mid_sequence_scripts_remaining_clicks(self, transport, locator, page):
        hits = iter([True, False])
        page.responses[CONTAINS_NODE] = lambda object_id, args: next(hits)

        await locator.click(count=2)

        assert mouse_events(transport) == [
            ("mousePressed", 35, 35, 1),
            ("mouseReleased", 35, 35, 1),
        ]
        assert page.called(SCRIPTED_CLICK)[0][2] == [1]

    @pytest.mark.asyncio
    async def test_zero_size_is_not_visible(self, transport, locator, page):
        transport.on("DOM.getContentQuads", content_quads({TARGET: (10, 20, 0, 30)}))

        with pytest.raises(NotVisibleError) as exc_info:
            await locator.click()

        assert exc_info.value.message == "Element not visible or has zero size"
        assert mouse_events(transport) == []
        assert page.called(SCRIPTED_CLICK) == []

    @pytest.mark.asyncio
    async def test_no_geometry_falls_back_to_scripted_click(self, transport, locator, page):
        transport.on("DOM.getContentQuads", {"quads": []})
        transport.on("DOM.getBoxModel", CDPProtocolError("CDP Error: Could not compute box model."))

        await locator.click(count=2)

        assert page.called(SCRIPTED_CLICK)[0][2] == [2]

    @pytest.mark.asyncio
    async def test_scroll_failure_is_ignored(self, transport, locator, page):
        transport.on("DOM.scrollIntoViewIfNeeded", CDPProtocolError("CDP Error: Node is detached"))

        await locator.click()

        assert len(mouse_events(transport)) == 2

    @pytest.mark.asyncio
    async def test_highlight_applied_when_enabled(self, transport, locator, page):
        locator.config.highlight = True

        await locator.click()

        assert page.called(HIGHLIGHT_ELEMENT)[0][2] == ["data-tabpilot-highlighted"]

    @pytest.mark.asyncio
    async def test_invalid_count(self, locator):
        with pytest.raises(ValueError):
            await locator.click(count=0)

    @pytest.mark.asyncio
    async def test_missing_backend_node(self, registry, channel, frames, config, page):
        locator = make_locator(registry, channel, frames, config, backend=None)

        with pytest.raises(ElementNotFoundError):
            await locator.click()

    @pytest.mark.asyncio
    async def test_attach_failure(self, transport, locator, page):
        transport.attach_error = CDPConnectionError("Cannot attach")

        with pytest.raises(AttachFailedError):
            await locator.click()

    @pytest.mark.asyncio
    async def test_action_deadline(self, transport, locator, page):
        async def hang(params):
            await asyncio.sleep(5)
            return {}
        transport.on("DOM.getContentQuads", hang)
        locator.config.action_timeout = 0.05

        with pytest.raises(ActionTimeoutError) as exc_info:
            await locator.click()

        assert exc_info.value.message == "Operation 'click' timed out after 50ms"


# =============================================================================
# Test fill
# =============================================================================

class TestFill:
    """Tests for editor-aware filling."""

    @pytest.mark.asyncio
    async def test_editor_fill_skips_select_all(self, transport, locator, page):
        page.responses[FILL_EDITOR] = True

        await locator.fill("x")

        assert page.called(FILL_EDITOR) == [(FILL_EDITOR, f"obj-{TARGET}", ["x"])]
        assert "Input.dispatchKeyEvent" not in transport.methods()
        assert "Input.insertText" not in transport.methods()
        assert page.called(DISPATCH_COMMIT_EVENTS) == []

    @pytest.mark.asyncio
    async def test_plain_input_uses_select_all_and_insert(self, transport, locator, page):
        await locator.fill("x")

        methods = transport.methods()
        assert methods.index("DOM.focus") < methods.index("Input.dispatchKeyEvent")
        assert methods.index("Input.dispatchKeyEvent") < methods.index("Input.insertText")

        keys = [
            (params["type"], params["key"], params["modifiers"], params.get("commands"))
            for params in transport.params_for("Input.dispatchKeyEvent")
        ]
        assert keys == [
            ("rawKeyDown", "Control", 2, None),
            ("rawKeyDown", "a", 2, ["selectAll"]),
            ("keyUp", "a", 2, None),
            ("keyUp", "Control", 0, None),
        ]
        assert transport.params_for("Input.insertText") == [{"text": "x"}]
        assert len(page.called(DISPATCH_COMMIT_EVENTS)) == 1

    @pytest.mark.asyncio
    async def test_mac_uses_meta(self, transport, locator, page):
        transport.on("Runtime.evaluate", {"result": {"type": "boolean", "value": True}})

        await locator.fill("x")

        first = transport.params_for("Input.dispatchKeyEvent")[0]
        assert first["key"] == "Meta"
        assert first["modifiers"] == 8

    @pytest.mark.asyncio
    async def test_editor_script_error_falls_back(self, transport, locator, page):
        page.responses[FILL_EDITOR] = CDPProtocolError("Page function threw: TypeError")

        await locator.fill("hello")

        assert transport.params_for("Input.insertText") == [{"text": "hello"}]

    @pytest.mark.asyncio
    async def test_non_editable_target_is_rejected(self, transport, locator, page):
        page.responses[IS_FILL_TARGET] = False

        with pytest.raises(FillTargetMismatchError):
            await locator.fill("x")

        assert transport.params_for("Input.insertText") == []
        assert transport.params_for("Input.dispatchKeyEvent") == []

    @pytest.mark.asyncio
    async def test_unresolvable_element(self, transport, locator, page):
        transport.on("DOM.resolveNode", {})

        with pytest.raises(ElementNotFoundError) as exc_info:
            await locator.fill("x")

        assert exc_info.value.message == "Failed to resolve element"


# =============================================================================
# Test hover, value and dispose
# =============================================================================

class TestHoverAndValue:
    """Tests for hover, editor value reads and disposal."""

    @pytest.mark.asyncio
    async def test_hover_moves_pointer_to_center(self, transport, locator, page):
        await locator.hover()

        assert mouse_events(transport) == [("mouseMoved", 35, 35, None)]

    @pytest.mark.asyncio
    async def test_hover_without_geometry_is_scripted(self, transport, locator, page):
        transport.on("DOM.getContentQuads", {"quads": []})

        await locator.hover()

        assert mouse_events(transport) == []
        assert len(page.called(SCRIPTED_HOVER)) == 1

    @pytest.mark.asyncio
    async def test_get_editor_value(self, locator, page):
        page.responses[GET_EDITOR_VALUE] = "print('hi')"

        assert await locator.get_editor_value() == "print('hi')"

    @pytest.mark.asyncio
    async def test_get_editor_value_none_when_unreadable(self, locator, page):
        page.responses[GET_EDITOR_VALUE] = None
        assert await locator.get_editor_value() is None

        page.responses[GET_EDITOR_VALUE] = CDPProtocolError("Page function threw")
        assert await locator.get_editor_value() is None

    @pytest.mark.asyncio
    async def test_dispose_detaches_immediately(self, transport, registry, locator, page):
        await locator.click()

        await locator.dispose()

        assert transport.params_for("Runtime.releaseObjectGroup") == [{"objectGroup": OBJECT_GROUP}]
        assert transport.detach_calls == ["tab-1"]
        assert not registry.is_attached("tab-1")

    @pytest.mark.asyncio
    async def test_dispose_swallows_errors(self, transport, locator, page):
        transport.on("Runtime.releaseObjectGroup", CDPConnectionError("Debugger is not attached to the tab"))

        await locator.dispose()

    @pytest.mark.asyncio
    async def test_handle_context_manager_disposes(self, transport, registry, locator, page):
        await registry.attach("tab-1")

        async with SmartElementHandle(locator) as handle:
            assert handle.as_locator() is locator

        assert transport.detach_calls == ["tab-1"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
