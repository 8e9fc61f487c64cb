"""
CDP Session Management - attach/detach lifecycle per tab.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set

from tabpilot.cdp.commander import CommandChannel
from tabpilot.config import AutomationConfig
from tabpilot.core.scripts import REMOVE_OVERLAY_FRAMES
from tabpilot.core.types import (
    DebuggerTransport,
    DetachEventSource,
    ScriptBridge,
    TabEventSource,
)

logger = logging.getLogger("tabpilot")

REASON_DETACHING = "detaching"
REASON_TAB_CLOSED = "tab closed"


class SessionStatus(Enum):
    DETACHED = "detached"
    ATTACHING = "attaching"
    ATTACHED = "attached"


@dataclass
class SessionInfo:
    """Per-tab debugging session state."""
    tab_id: str
    status: SessionStatus = SessionStatus.DETACHED
    in_flight: Optional[asyncio.Future] = None
    idle_timer: Optional[asyncio.TimerHandle] = None
    attached_at: Optional[float] = None
    # Bumped on every externally lost session.
    generation: int = 0


class SessionRegistry:
    """
    Owns the debugging-session lifecycle of every tab.
    
    Concurrent attach requests for one tab share a single underlying attach.
    Each use pushes back an idle timer that detaches the session once the tab
    has been left alone long enough. Sessions lost from the outside (another
    debugger, a closed tab) fail every pending command for that tab.
    
    Usage:
        registry = SessionRegistry(transport, channel, detach_events=transport,
                                   tab_events=transport)
        if await registry.attach(tab_id):
            tree = await channel.send_command(tab_id, "Accessibility.getFullAXTree")
            await registry.detach(tab_id)  # soft: keep alive until idle
    """
    
    def __init__(
        self,
        transport: DebuggerTransport,
        channel: CommandChannel,
        *,
        scripts: Optional[ScriptBridge] = None,
        detach_events: Optional[DetachEventSource] = None,
        tab_events: Optional[TabEventSource] = None,
        idle_timeout: Optional[float] = 30.0,
        overlay_settle_delay: float = 0.2,
        overlay_frame_prefixes: Sequence[str] = ("chrome-extension://",),
    ):
        self._transport = transport
        self._channel = channel
        self._scripts = scripts
        self.idle_timeout = idle_timeout
        self.overlay_settle_delay = overlay_settle_delay
        self.overlay_frame_prefixes = tuple(overlay_frame_prefixes)
        self._sessions: Dict[str, SessionInfo] = {}
        self._background: Set[asyncio.Task] = set()
        
        if detach_events is not None:
            detach_events.add_detach_listener(self.handle_session_lost)
        if tab_events is not None:
            tab_events.add_tab_closed_listener(self.handle_tab_closed)
    
    @classmethod
    def from_config(cls, transport: DebuggerTransport, channel: CommandChannel,
                    config: AutomationConfig, **kwargs) -> SessionRegistry:
        return cls(
            transport,
            channel,
            idle_timeout=config.idle_detach_timeout,
            overlay_settle_delay=config.overlay_settle_delay,
            overlay_frame_prefixes=config.overlay_frame_prefixes,
            **kwargs,
        )
    
    # =========================================================================
    # Attach / detach
    # =========================================================================
    
    async def attach(self, tab_id: str) -> bool:
        """
        Make sure a debugging session is attached to the tab.
        
        Returns:
            True when the tab is attached, False when attaching failed.
            Attach failures are never raised.
        """
        session = self._session(tab_id)
        self._cancel_idle_detach(session)
        
        if session.in_flight is not None:
            result = await asyncio.shield(session.in_flight)
            if result:
                self._schedule_idle_detach(session)
            return result
        
        session.in_flight = asyncio.ensure_future(self._attach_once(session))
        return await asyncio.shield(session.in_flight)
    
    async def _attach_once(self, session: SessionInfo) -> bool:
        tab_id = session.tab_id
        try:
            removed = await self._remove_overlay_frames(tab_id)
            if removed:
                logger.debug(
                    f"Removed {removed} overlay frames before attaching",
                    extra={"tab_id": tab_id},
                )
                await asyncio.sleep(self.overlay_settle_delay)
            
            if session.status is SessionStatus.ATTACHED:
                self._schedule_idle_detach(session)
                return True
            
            session.status = SessionStatus.ATTACHING
            generation = session.generation
            try:
                await self._transport.attach(tab_id)
            except Exception as e:
                session.status = SessionStatus.DETACHED
                logger.warning(
                    f"Failed to attach debugger: {e}",
                    extra={"tab_id": tab_id, "error_type": type(e).__name__},
                )
                return False

            if self._sessions.get(tab_id) is not session or session.generation != generation:
                session.status = SessionStatus.DETACHED
                logger.info(
                    "Debugger session ended while attaching",
                    extra={"tab_id": tab_id},
                )
                return False

            session.status = SessionStatus.ATTACHED
            session.attached_at = time.time()
            self._schedule_idle_detach(session)
            logger.info("Debugger attached", extra={"tab_id": tab_id})
            return True
        except asyncio.CancelledError:
            self._cancel_idle_detach(session)
            if session.status is SessionStatus.ATTACHING:
                session.status = SessionStatus.DETACHED
            raise
        finally:
            session.in_flight = None
    
    async def detach(self, tab_id: str, immediate: bool = False) -> None:
        """
        Release the tab's session.
        
        A soft detach only pushes back the idle timer, so a burst of calls
        reuses one session. An immediate detach fails pending commands with
        reason "detaching" and detaches now. Errors are swallowed.
        """
        session = self._sessions.get(tab_id)
        
        if not immediate:
            if session is not None and session.status is SessionStatus.ATTACHED:
                self._schedule_idle_detach(session)
            return
        
        self._channel.cancel_all_pending(tab_id, REASON_DETACHING)
        if session is None:
            return
        self._cancel_idle_detach(session)
        
        if session.status is not SessionStatus.ATTACHED:
            return
        session.status = SessionStatus.DETACHED
        session.attached_at = None
        try:
            await self._transport.detach(tab_id)
            logger.info("Debugger detached", extra={"tab_id": tab_id})
        except Exception as e:
            logger.debug(
                f"Error detaching debugger: {e}",
                extra={"tab_id": tab_id, "error_type": type(e).__name__},
            )
    
    async def close(self) -> None:
        """Detach every tab and stop pending idle timers."""
        for tab_id in list(self._sessions):
            await self.detach(tab_id, immediate=True)
        for task in list(self._background):
            task.cancel()
        self._background.clear()
    
    # =========================================================================
    # External events
    # =========================================================================
    
    def handle_session_lost(self, tab_id: str, reason: str) -> None:
        """The browser dropped our session (another debugger, crash, ...)."""
        self._channel.cancel_all_pending(tab_id, f"Debugger detached: {reason}")
        session = self._sessions.get(tab_id)
        if session is not None:
            self._cancel_idle_detach(session)
            session.status = SessionStatus.DETACHED
            session.attached_at = None
            session.generation += 1
        logger.info(
            f"Debugger session lost: {reason}",
            extra={"tab_id": tab_id, "reason": reason},
        )
    
    def handle_tab_closed(self, tab_id: str) -> None:
        self._channel.cancel_all_pending(tab_id, REASON_TAB_CLOSED)
        session = self._sessions.pop(tab_id, None)
        if session is not None:
            self._cancel_idle_detach(session)
        logger.info("Tab closed", extra={"tab_id": tab_id})
    
    # =========================================================================
    # State queries
    # =========================================================================
    
    def is_attached(self, tab_id: str) -> bool:
        session = self._sessions.get(tab_id)
        return session is not None and session.status is SessionStatus.ATTACHED
    
    def get_status(self, tab_id: str) -> SessionStatus:
        session = self._sessions.get(tab_id)
        return session.status if session is not None else SessionStatus.DETACHED
    
    def has_idle_timer(self, tab_id: str) -> bool:
        session = self._sessions.get(tab_id)
        return session is not None and session.idle_timer is not None
    
    @property
    def attached_tabs(self) -> List[str]:
        return [
            tab_id for tab_id, session in self._sessions.items()
            if session.status is SessionStatus.ATTACHED
        ]
    
    # =========================================================================
    # Internals
    # =========================================================================
    
    def _session(self, tab_id: str) -> SessionInfo:
        session = self._sessions.get(tab_id)
        if session is None:
            session = SessionInfo(tab_id=tab_id)
            self._sessions[tab_id] = session
        return session
    
    def _schedule_idle_detach(self, session: SessionInfo) -> None:
        self._cancel_idle_detach(session)
        if not self.idle_timeout or self.idle_timeout <= 0:
            return
        loop = asyncio.get_running_loop()
        session.idle_timer = loop.call_later(self.idle_timeout, self._on_idle, session)
    
    def _cancel_idle_detach(self, session: SessionInfo) -> None:
        if session.idle_timer is not None:
            session.idle_timer.cancel()
            session.idle_timer = None
    
    def _on_idle(self, session: SessionInfo) -> None:
        session.idle_timer = None
        tab_id = session.tab_id
        if self._sessions.get(tab_id) is not session:
            return
        logger.debug("Auto-detaching idle debugger session", extra={"tab_id": tab_id})
        task = asyncio.ensure_future(self.detach(tab_id, immediate=True))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
    
    async def _remove_overlay_frames(self, tab_id: str) -> int:
        if self._scripts is None or not self.overlay_frame_prefixes:
            return 0
        try:
            removed = await self._scripts.execute_script(
                tab_id, REMOVE_OVERLAY_FRAMES, [list(self.overlay_frame_prefixes)]
            )
        except Exception as e:
            logger.debug(
                f"Overlay frame probe failed: {e}",
                extra={"tab_id": tab_id, "error_type": type(e).__name__},
            )
            return 0
        return removed if isinstance(removed, int) else 0
