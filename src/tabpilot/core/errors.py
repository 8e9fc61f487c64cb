"""
TabPilot Error Taxonomy - Custom exception classes for page automation.

This module defines a hierarchy of exceptions specific to snapshot-driven
page automation, so callers can tell a lost session from a stale element
id or an element that simply cannot be clicked.
"""
from typing import Optional


class TabPilotError(Exception):
    """Base exception for all tabpilot errors."""
    
    def __init__(self, message: str, tab_id: Optional[str] = None,
                 method: Optional[str] = None, **context):
        super().__init__(message)
        self.message = message
        self.tab_id = tab_id
        self.method = method
        self.context = context
    
    def __str__(self):
        parts = [self.message]
        if self.tab_id:
            parts.append(f"tab_id={self.tab_id}")
        if self.method:
            parts.append(f"method={self.method}")
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"context=({context_str})")
        return " | ".join(parts)


class CDPConnectionError(TabPilotError):
    """Raised when connection to Chrome/CDP fails or is lost."""
    pass


class CDPProtocolError(TabPilotError):
    """Raised when CDP returns an error response or a command cannot be sent."""
    
    def __init__(self, message: str, code: Optional[int] = None,
                 cdp_error: Optional[dict] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.code = code
        self.cdp_error = cdp_error


class CommandTimeoutError(TabPilotError):
    """Raised when a single CDP command exceeds its deadline."""
    
    def __init__(self, message: str, timeout: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout = timeout


class CommandAbortedError(TabPilotError):
    """Raised for a pending command rejected because its session went away."""
    
    def __init__(self, message: str, reason: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.reason = reason


class AttachFailedError(TabPilotError):
    """Raised by components that cannot proceed without a debugging session."""
    pass


class SnapshotError(TabPilotError):
    """Raised when an accessibility snapshot cannot be produced."""
    pass


class ElementNotFoundError(TabPilotError):
    """Raised when a snapshot id no longer resolves to a live element."""
    
    def __init__(self, message: str, uid: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.uid = uid


class NotVisibleError(TabPilotError):
    """Raised when an element has zero size and cannot receive input."""
    pass


class ActionTimeoutError(TabPilotError):
    """Raised when a whole locator action exceeds its global deadline."""
    
    def __init__(self, message: str, timeout: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout = timeout


class FillTargetMismatchError(TabPilotError):
    """Raised when a value is set on an element that cannot hold one."""
    pass


class ActionError(TabPilotError):
    """Raised when a locator action fails for any other reason."""
    pass
