"""
LLM Module - Tool schemas and executor.
"""
from tabpilot.llm.tools import (
    TOOL_DEFINITIONS,
    ToolExecutionResult,
    execute_tool,
    get_system_prompt,
    get_tool_schemas,
)

__all__ = [
    "TOOL_DEFINITIONS",
    "ToolExecutionResult",
    "execute_tool",
    "get_system_prompt",
    "get_tool_schemas",
]
