"""
LLM Tool Definitions - JSON schemas and executor for LLM tool calling.

This module provides:
1. Tool schemas compatible with OpenAI and Anthropic formats
2. A tool executor that maps tool calls to Automation methods for one tab
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Dict, List, Literal, Optional

from tabpilot.automation import Automation
from tabpilot.core.models import ActionResult


# =============================================================================
# Tool Schemas
# =============================================================================

_UID_PROPERTY = {
    "type": "string",
    "description": "The element uid from the snapshot (shown as uid=...)"
}

TOOL_DEFINITIONS = {
    "take_snapshot": {
        "name": "take_snapshot",
        "description": "Capture the current page as an indented accessibility snapshot. Every element line carries a uid you can pass to the other tools.",
        "parameters": {
            "type": "object",
            "properties": {},
            "required": []
        }
    },
    "search_elements": {
        "name": "search_elements",
        "description": "Search a fresh page snapshot. Separate alternatives with '|'; glob patterns (*, ?, [abc], {a,b}) are detected automatically.",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Search terms, e.g. 'Sign in|Log in' or 'button*Submit*'"
                },
                "context_levels": {
                    "type": "integer",
                    "description": "Number of surrounding lines to include around each match. Default is 1.",
                    "default": 1
                }
            },
            "required": ["query"]
        }
    },
    "click": {
        "name": "click",
        "description": "Click on an element by its uid. Use this for buttons, links, checkboxes, tabs and other clickable elements.",
        "parameters": {
            "type": "object",
            "properties": {
                "uid": _UID_PROPERTY,
                "double": {
                    "type": "boolean",
                    "description": "Double-click instead of a single click. Default is false.",
                    "default": False
                }
            },
            "required": ["uid"]
        }
    },
    "fill": {
        "name": "fill",
        "description": "Replace the value of an input, textarea, contenteditable element or code editor.",
        "parameters": {
            "type": "object",
            "properties": {
                "uid": _UID_PROPERTY,
                "value": {
                    "type": "string",
                    "description": "The new value"
                }
            },
            "required": ["uid", "value"]
        }
    },
    "fill_form": {
        "name": "fill_form",
        "description": "Fill several form elements in one call.",
        "parameters": {
            "type": "object",
            "properties": {
                "elements": {
                    "type": "array",
                    "description": "Elements to fill, in order",
                    "items": {
                        "type": "object",
                        "properties": {
                            "uid": _UID_PROPERTY,
                            "value": {"type": "string", "description": "The new value"}
                        },
                        "required": ["uid", "value"]
                    }
                }
            },
            "required": ["elements"]
        }
    },
    "hover": {
        "name": "hover",
        "description": "Move the mouse over an element, e.g. to open a menu or tooltip.",
        "parameters": {
            "type": "object",
            "properties": {
                "uid": _UID_PROPERTY
            },
            "required": ["uid"]
        }
    },
    "get_editor_value": {
        "name": "get_editor_value",
        "description": "Read the full current value of an input or code editor (Monaco, CodeMirror, Ace).",
        "parameters": {
            "type": "object",
            "properties": {
                "uid": _UID_PROPERTY
            },
            "required": ["uid"]
        }
    },
}


def get_tool_schemas(
    format: Literal["openai", "anthropic"] = "openai",
    include_tools: Optional[List[str]] = None,
) -> List[Dict[str, Any]]:
    """
    Get tool schemas in the specified format.
    
    Args:
        format: "openai" for OpenAI/GPT format, "anthropic" for Claude format.
        include_tools: List of tool names to include. If None, includes all tools.
        
    Returns:
        List of tool schema dictionaries.
    """
    tools_to_include = include_tools or list(TOOL_DEFINITIONS.keys())
    
    schemas = []
    for name in tools_to_include:
        if name not in TOOL_DEFINITIONS:
            continue
        
        tool = TOOL_DEFINITIONS[name]
        
        if format == "openai":
            schemas.append({
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool["description"],
                    "parameters": tool["parameters"],
                }
            })
        elif format == "anthropic":
            schemas.append({
                "name": tool["name"],
                "description": tool["description"],
                "input_schema": tool["parameters"],
            })
    
    return schemas


# =============================================================================
# Tool Executor
# =============================================================================

@dataclass
class ToolExecutionResult:
    """Result of executing a tool."""
    
    success: bool
    tool_name: str
    result: Optional[ActionResult] = None
    error: Optional[str] = None
    output: Optional[str] = None
    
    def to_message(self) -> str:
        """Format for LLM consumption."""
        if self.result:
            return self.result.to_message()
        if self.error:
            return f"✗ {self.tool_name} failed: {self.error}"
        if self.output is not None:
            return self.output
        return f"✓ {self.tool_name} executed"


ToolHandler = Callable[[Automation, str, Dict[str, Any]], Coroutine[Any, Any, ToolExecutionResult]]


async def _handle_take_snapshot(automation: Automation, tab_id: str, args: Dict[str, Any]) -> ToolExecutionResult:
    page = await automation.take_snapshot(tab_id)
    return ToolExecutionResult(True, "take_snapshot", output=page.to_prompt())


async def _handle_search_elements(automation: Automation, tab_id: str, args: Dict[str, Any]) -> ToolExecutionResult:
    query = args.get("query")
    if not query:
        return ToolExecutionResult(False, "search_elements", error="Missing required parameter: query")
    context_levels = args.get("context_levels", 1)
    output = await automation.search_elements(tab_id, query, context_levels=context_levels)
    return ToolExecutionResult(True, "search_elements", output=output)


async def _handle_click(automation: Automation, tab_id: str, args: Dict[str, Any]) -> ToolExecutionResult:
    uid = args.get("uid")
    if not uid:
        return ToolExecutionResult(False, "click", error="Missing required parameter: uid")
    result = await automation.click(tab_id, uid, double=bool(args.get("double", False)))
    return ToolExecutionResult(result.success, "click", result=result)


async def _handle_fill(automation: Automation, tab_id: str, args: Dict[str, Any]) -> ToolExecutionResult:
    uid = args.get("uid")
    value = args.get("value")
    if not uid or value is None:
        return ToolExecutionResult(False, "fill", error="Missing required parameters: uid, value")
    result = await automation.fill(tab_id, uid, str(value))
    return ToolExecutionResult(result.success, "fill", result=result)


async def _handle_fill_form(automation: Automation, tab_id: str, args: Dict[str, Any]) -> ToolExecutionResult:
    elements = args.get("elements")
    if not elements:
        return ToolExecutionResult(False, "fill_form", error="Missing required parameter: elements")
    result = await automation.fill_form(
        tab_id, [(element["uid"], str(element["value"])) for element in elements]
    )
    return ToolExecutionResult(result.success, "fill_form", result=result)


async def _handle_hover(automation: Automation, tab_id: str, args: Dict[str, Any]) -> ToolExecutionResult:
    uid = args.get("uid")
    if not uid:
        return ToolExecutionResult(False, "hover", error="Missing required parameter: uid")
    result = await automation.hover(tab_id, uid)
    return ToolExecutionResult(result.success, "hover", result=result)


async def _handle_get_editor_value(automation: Automation, tab_id: str, args: Dict[str, Any]) -> ToolExecutionResult:
    uid = args.get("uid")
    if not uid:
        return ToolExecutionResult(False, "get_editor_value", error="Missing required parameter: uid")
    result = await automation.get_editor_value(tab_id, uid)
    return ToolExecutionResult(result.success, "get_editor_value", result=result)


TOOL_HANDLERS: Dict[str, ToolHandler] = {
    "take_snapshot": _handle_take_snapshot,
    "search_elements": _handle_search_elements,
    "click": _handle_click,
    "fill": _handle_fill,
    "fill_form": _handle_fill_form,
    "hover": _handle_hover,
    "get_editor_value": _handle_get_editor_value,
}


async def execute_tool(
    automation: Automation,
    tab_id: str,
    tool_name: str,
    tool_args: Dict[str, Any],
) -> ToolExecutionResult:
    """
    Execute a tool call against one tab.
    
    Args:
        automation: Started Automation instance.
        tab_id: Tab the tool acts on.
        tool_name: Name of the tool to execute.
        tool_args: Arguments for the tool.
        
    Returns:
        ToolExecutionResult with the outcome.
    """
    try:
        handler = TOOL_HANDLERS.get(tool_name)
        if handler is None:
            return ToolExecutionResult(False, tool_name, error=f"Unknown tool: {tool_name}")
        return await handler(automation, tab_id, tool_args)
    except Exception as e:
        return ToolExecutionResult(False, tool_name, error=str(e))


# =============================================================================
# Snapshot Guide
# =============================================================================

SNAPSHOT_GUIDE = """Page snapshots list one element per line, indented by depth:

  uid=a1b2c3d4 button "Submit" <button> focusable

- uid: pass this value to click, fill, hover and get_editor_value
- role and quoted name: what the element is and what it says
- <tag>: the HTML tag when known
- state tokens: disableable/disabled, expandable/expanded, focusable/focused, checked, pressed, ...
- a line starting with * is the focused element, lines starting with → lead to it
- lines holding only a role are structure without content

Snapshots go stale when the page changes. If an action reports that an element
was not found, call search_elements or take_snapshot again.
"""


def get_system_prompt() -> str:
    """Guide to the snapshot format for an LLM driving the tools."""
    return SNAPSHOT_GUIDE
