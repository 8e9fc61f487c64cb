"""
CDP Module - transport, command channel, sessions and frame resolution.
"""
from tabpilot.cdp.client import ChromeTransport, TabConnection, list_tabs
from tabpilot.cdp.commander import CommandChannel, PendingCommand
from tabpilot.cdp.session import SessionInfo, SessionRegistry, SessionStatus
from tabpilot.cdp.frames import FrameTreeResolver, namespace_node

__all__ = [
    "ChromeTransport",
    "TabConnection",
    "list_tabs",
    "CommandChannel",
    "PendingCommand",
    "SessionInfo",
    "SessionRegistry",
    "SessionStatus",
    "FrameTreeResolver",
    "namespace_node",
]
