"""
Command Channel - per-tab request/response calls with deadlines and bulk cancellation.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from tabpilot.core.errors import (
    CommandAbortedError,
    CommandTimeoutError,
    CDPProtocolError,
    TabPilotError,
)
from tabpilot.core.types import DebuggerTransport

logger = logging.getLogger("tabpilot")

DEFAULT_COMMAND_TIMEOUT = 10.0


@dataclass(eq=False)
class PendingCommand:
    """A command still waiting for its response."""
    method: str
    future: asyncio.Future
    started_at: float = field(default_factory=time.monotonic)


class CommandChannel:
    """
    Issues single CDP calls against an attached tab.
    
    Every call races its own deadline. Calls still waiting when the session
    disappears are rejected in bulk through cancel_all_pending, which is how
    in-flight work learns about a lost session instead of hanging.
    """
    
    def __init__(self, transport: DebuggerTransport,
                 default_timeout: float = DEFAULT_COMMAND_TIMEOUT, debug: bool = False):
        self._transport = transport
        self.default_timeout = default_timeout
        self.debug = debug
        self._pending: Dict[str, Set[PendingCommand]] = {}
    
    async def send_command(
        self,
        tab_id: str,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Send one command and wait for its result.
        
        Args:
            tab_id: Tab whose session carries the command. Must already be attached.
            method: CDP method name, e.g. "DOM.getDocument".
            params: Command parameters.
            timeout: Deadline in seconds. Defaults to the channel's default.
            
        Raises:
            CommandTimeoutError: The deadline passed first.
            CommandAbortedError: The session was detached while waiting.
            CDPProtocolError: The browser rejected the command or it could not be sent.
        """
        timeout = self.default_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        entry = PendingCommand(method=method, future=loop.create_future())
        self._pending.setdefault(tab_id, set()).add(entry)
        
        call = asyncio.ensure_future(self._transport.send(tab_id, method, params or {}))
        call.add_done_callback(lambda task: self._settle(entry, task))
        
        if self.debug:
            logger.debug(
                f"CDP command: {method}",
                extra={"tab_id": tab_id, "method": method, "params": params},
            )
        
        try:
            result = await asyncio.wait_for(entry.future, timeout)
        except asyncio.TimeoutError as e:
            logger.warning(
                f"CDP command timeout: {method}",
                extra={"tab_id": tab_id, "method": method, "timeout": timeout},
            )
            raise CommandTimeoutError(
                f"CDP command '{method}' timed out after {int(timeout * 1000)}ms",
                timeout=timeout,
                tab_id=tab_id,
                method=method,
            ) from e
        except TabPilotError:
            raise
        except Exception as e:
            raise CDPProtocolError(
                f"Failed to send CDP command '{method}': {e}",
                tab_id=tab_id,
                method=method,
            ) from e
        finally:
            # Nobody waits for the transport call once the entry has settled
            if not call.done():
                call.cancel()
            self._discard(tab_id, entry)
        
        if self.debug:
            duration = time.monotonic() - entry.started_at
            logger.debug(
                f"CDP response: {method} (duration={duration:.3f}s)",
                extra={"tab_id": tab_id, "method": method, "duration_ms": duration * 1000},
            )
        return result
    
    def cancel_all_pending(self, tab_id: str, reason: str) -> int:
        """
        Reject every pending command for a tab.
        
        Returns:
            Number of commands rejected.
        """
        entries = self._pending.pop(tab_id, set())
        rejected = 0
        for entry in entries:
            if entry.future.done():
                continue
            entry.future.set_exception(CommandAbortedError(
                f"CDP command '{entry.method}' aborted: {reason}",
                reason=reason,
                tab_id=tab_id,
                method=entry.method,
            ))
            rejected += 1
        if rejected:
            logger.debug(
                f"Rejected {rejected} pending CDP commands",
                extra={"tab_id": tab_id, "reason": reason},
            )
        return rejected
    
    def pending_count(self, tab_id: str) -> int:
        return len(self._pending.get(tab_id, ()))
    
    def _settle(self, entry: PendingCommand, call: asyncio.Future) -> None:
        if entry.future.done():
            # Timed out or aborted already; keep the late outcome from being logged as unretrieved
            if not call.cancelled():
                call.exception()
            return
        if call.cancelled():
            entry.future.cancel()
        elif call.exception() is not None:
            entry.future.set_exception(call.exception())
        else:
            entry.future.set_result(call.result())
    
    def _discard(self, tab_id: str, entry: PendingCommand) -> None:
        entries = self._pending.get(tab_id)
        if entries is None:
            return
        entries.discard(entry)
        if not entries:
            self._pending.pop(tab_id, None)
