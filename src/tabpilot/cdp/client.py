"""
CDP Client - Chrome DevTools Protocol transport over per-tab WebSockets.
"""
import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import httpx
import websockets
from websockets.asyncio.client import connect

from tabpilot.core.errors import (
    CDPConnectionError,
    CDPProtocolError,
    TabPilotError,
)
from tabpilot.core.models import TabInfo
from tabpilot.core.scripts import DELIVER_CONTENT_MESSAGE
from tabpilot.core.types import DetachListener, TabClosedListener

logger = logging.getLogger("tabpilot")


async def list_tabs(host: str = "localhost", port: int = 9222) -> List[TabInfo]:
    """List page targets exposed on the DevTools HTTP endpoint."""
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(f"http://{host}:{port}/json/list")
            targets = response.json()
    except httpx.RequestError as e:
        raise CDPConnectionError(
            f"Failed to connect to Chrome at {host}:{port}",
            method="list_tabs"
        ) from e
    
    tabs = []
    for target in targets:
        if target.get("type") != "page":
            continue
        tabs.append(TabInfo(
            tab_id=target["id"],
            type=target.get("type", "page"),
            url=target.get("url", ""),
            title=target.get("title", ""),
            ws_url=target.get("webSocketDebuggerUrl"),
        ))
    logger.debug(f"Found {len(tabs)} page targets", extra={"host": host, "port": port})
    return tabs


class TabConnection:
    """One DevTools WebSocket bound to a single page target."""
    
    def __init__(
        self,
        tab_id: str,
        ws_url: str,
        on_event: Optional[Callable[[str, dict], None]] = None,
        on_close: Optional[Callable[[str], None]] = None,
        debug: bool = False,
    ):
        self.tab_id = tab_id
        self.ws_url = ws_url
        self.message_id = 0
        self.pending_message: Dict[int, asyncio.Future] = {}
        self.ws = None
        self.debug = debug
        self._on_event = on_event
        self._on_close = on_close
        self._listener: Optional[asyncio.Task] = None
        self._closing = False
    
    async def connect(self) -> None:
        try:
            self.ws = await connect(self.ws_url, max_size=None)
        except Exception as e:
            raise CDPConnectionError(
                f"Failed to connect to Chrome WebSocket: {e}",
                tab_id=self.tab_id,
                method="connect",
            ) from e
        self._listener = asyncio.create_task(self.listen())
        logger.debug("WebSocket connection established", extra={"tab_id": self.tab_id})
    
    async def send(self, method: str, params: Optional[dict] = None) -> dict:
        """Send a command and wait for its response. Deadlines are the caller's job."""
        if not self.ws:
            raise CDPConnectionError(
                "WebSocket connection not established",
                tab_id=self.tab_id,
                method=method,
            )
        self.message_id += 1
        msg_id = self.message_id
        future = asyncio.get_running_loop().create_future()
        self.pending_message[msg_id] = future
        
        try:
            await self.ws.send(json.dumps({"id": msg_id, "method": method, "params": params or {}}))
            return await future
        except websockets.exceptions.ConnectionClosed as e:
            raise CDPConnectionError(
                "WebSocket connection closed",
                tab_id=self.tab_id,
                method=method,
            ) from e
        finally:
            self.pending_message.pop(msg_id, None)
    
    async def listen(self) -> None:
        """Route responses to waiting futures and events to the owner."""
        try:
            async for raw in self.ws:
                data = json.loads(raw)
                
                if "id" in data:
                    future = self.pending_message.pop(data["id"], None)
                    if future is None or future.done():
                        continue
                    if "error" in data:
                        error_data = data["error"]
                        future.set_exception(CDPProtocolError(
                            f"CDP Error: {error_data.get('message', 'Unknown CDP error')}",
                            code=error_data.get("code"),
                            cdp_error=error_data,
                            tab_id=self.tab_id,
                        ))
                    else:
                        future.set_result(data.get("result", {}))
                elif "method" in data and self._on_event is not None:
                    self._on_event(self.tab_id, data)
        except websockets.exceptions.ConnectionClosed:
            pass
        except Exception as e:
            logger.error(f"Error in listen loop: {e}", exc_info=True, extra={"tab_id": self.tab_id})
        finally:
            self._fail_pending()
            if not self._closing and self._on_close is not None:
                self._on_close(self.tab_id)
    
    def _fail_pending(self) -> None:
        for future in self.pending_message.values():
            if not future.done():
                future.set_exception(CDPConnectionError(
                    "WebSocket connection closed",
                    tab_id=self.tab_id,
                    method="listen",
                ))
        self.pending_message.clear()
    
    async def close(self) -> None:
        self._closing = True
        if self.ws:
            try:
                await self.ws.close()
            except Exception as e:
                logger.debug(f"Error closing WebSocket: {e}", extra={"tab_id": self.tab_id})
            finally:
                self.ws = None
        if self._listener is not None:
            self._listener.cancel()
            self._listener = None


class ChromeTransport:
    """
    Debugger transport for a Chrome started with --remote-debugging-port.
    
    Attaching a tab opens a dedicated WebSocket to it. The transport reports
    sessions dropped by the browser (``Inspector.detached``, a crashed
    renderer, a closed socket) to detach listeners, and vanished tabs to
    tab-closed listeners.
    
    Usage:
        transport = ChromeTransport(port=9222)
        tabs = await transport.list_tabs()
        await transport.attach(tabs[0].tab_id)
        result = await transport.send(tabs[0].tab_id, "DOM.getDocument", {"depth": 0})
    """
    
    def __init__(self, host: str = "localhost", port: int = 9222, debug: bool = False):
        self.host = host
        self.port = port
        self.debug = debug
        self._connections: Dict[str, TabConnection] = {}
        self._detach_listeners: List[DetachListener] = []
        self._tab_closed_listeners: List[TabClosedListener] = []
        self._background: set = set()
    
    async def list_tabs(self) -> List[TabInfo]:
        return await list_tabs(self.host, self.port)
    
    async def get_tab_info(self, tab_id: str) -> Optional[TabInfo]:
        for tab in await self.list_tabs():
            if tab.tab_id == tab_id:
                return tab
        return None
    
    # =========================================================================
    # DebuggerTransport
    # =========================================================================
    
    async def attach(self, tab_id: str) -> None:
        if tab_id in self._connections:
            return
        connection = await self._open(tab_id, on_event=self._handle_event, on_close=self._handle_close)
        self._connections[tab_id] = connection
        logger.info("Attached to tab", extra={"tab_id": tab_id})
    
    async def detach(self, tab_id: str) -> None:
        connection = self._connections.pop(tab_id, None)
        if connection is not None:
            await connection.close()
    
    async def send(self, tab_id: str, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        connection = self._connections.get(tab_id)
        if connection is None:
            raise CDPConnectionError("Debugger is not attached to the tab", tab_id=tab_id, method=method)
        if self.debug:
            logger.debug(f"CDP command: {method}", extra={"tab_id": tab_id, "params": params})
        return await connection.send(method, params)
    
    # =========================================================================
    # ScriptBridge / MessageBridge
    # =========================================================================
    
    async def execute_script(self, tab_id: str, function: str, args: List[Any]) -> Any:
        """
        Evaluate a function declaration in the page's main world.
        
        Uses the attached session when there is one, otherwise a short-lived
        connection that is closed right after.
        """
        expression = f"({function.strip()}).apply(null, {json.dumps(args)})"
        connection = self._connections.get(tab_id)
        temporary = connection is None
        if temporary:
            connection = await self._open(tab_id)
        try:
            result = await connection.send("Runtime.evaluate", {
                "expression": expression,
                "awaitPromise": True,
                "returnByValue": True,
            })
        finally:
            if temporary:
                await connection.close()
        
        if result.get("exceptionDetails"):
            details = result["exceptionDetails"]
            raise CDPProtocolError(
                f"Page script threw: {details.get('text', 'exception')}",
                cdp_error=details,
                tab_id=tab_id,
                method="Runtime.evaluate",
            )
        return (result.get("result") or {}).get("value")
    
    async def send_message(self, tab_id: str, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        response = await self.execute_script(tab_id, DELIVER_CONTENT_MESSAGE, [message])
        return response if isinstance(response, dict) else None
    
    # =========================================================================
    # Event sources
    # =========================================================================
    
    def add_detach_listener(self, listener: DetachListener) -> None:
        self._detach_listeners.append(listener)
    
    def add_tab_closed_listener(self, listener: TabClosedListener) -> None:
        self._tab_closed_listeners.append(listener)
    
    def _handle_event(self, tab_id: str, data: dict) -> None:
        method = data.get("method", "")
        params = data.get("params", {})
        if method == "Inspector.detached":
            self._drop_connection(tab_id)
            self._notify_detached(tab_id, params.get("reason", "unknown"))
        elif method == "Inspector.targetCrashed":
            self._drop_connection(tab_id)
            self._notify_detached(tab_id, "target crashed")
    
    def _handle_close(self, tab_id: str) -> None:
        if self._connections.pop(tab_id, None) is None:
            return
        task = asyncio.ensure_future(self._classify_close(tab_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
    
    async def _classify_close(self, tab_id: str) -> None:
        try:
            still_open = await self.get_tab_info(tab_id) is not None
        except TabPilotError:
            still_open = False
        if still_open:
            self._notify_detached(tab_id, "connection closed")
        else:
            self._notify_tab_closed(tab_id)
    
    def _drop_connection(self, tab_id: str) -> None:
        connection = self._connections.pop(tab_id, None)
        if connection is not None:
            task = asyncio.ensure_future(connection.close())
            self._background.add(task)
            task.add_done_callback(self._background.discard)
    
    def _notify_detached(self, tab_id: str, reason: str) -> None:
        logger.info(f"Debugger detached by browser: {reason}", extra={"tab_id": tab_id})
        for listener in list(self._detach_listeners):
            try:
                listener(tab_id, reason)
            except Exception as e:
                logger.error(f"Detach listener failed: {e}", exc_info=True)
    
    def _notify_tab_closed(self, tab_id: str) -> None:
        for listener in list(self._tab_closed_listeners):
            try:
                listener(tab_id)
            except Exception as e:
                logger.error(f"Tab-closed listener failed: {e}", exc_info=True)
    
    # =========================================================================
    # Lifecycle
    # =========================================================================
    
    async def _open(self, tab_id: str, **callbacks) -> TabConnection:
        info = await self.get_tab_info(tab_id)
        if info is None:
            raise CDPConnectionError(f"No page target with id {tab_id}", tab_id=tab_id, method="attach")
        if not info.ws_url:
            raise CDPConnectionError(
                "Tab exposes no WebSocket debugger URL",
                tab_id=tab_id,
                method="attach",
            )
        connection = TabConnection(tab_id, info.ws_url, debug=self.debug, **callbacks)
        await connection.connect()
        return connection
    
    async def close(self) -> None:
        """Close every open connection."""
        for tab_id in list(self._connections):
            await self.detach(tab_id)
        for task in list(self._background):
            task.cancel()
        self._background.clear()
