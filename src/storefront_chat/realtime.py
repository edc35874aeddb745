"""
Realtime channel over a WebSocket.

One channel instance holds one socket and at most one joined conversation
room. The connection loop retries with exponential backoff while the channel
is open; missed events are not replayed after a reconnect, so callers that
care reconcile over REST when they see the channel come back.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Union,
)

import aiohttp

from .auth import ChatAuth, CredentialProvider
from .events import EventType, build_frame, event_name, parse_frame

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], None]


class ConnectionState(str, Enum):
    """Socket connection lifecycle."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


StateListener = Callable[[ConnectionState, ConnectionState], None]


class WebSocketConnection(Protocol):
    async def send_json(self, data: Any) -> None: ...

    def messages(self) -> AsyncIterator[Union[str, bytes]]: ...

    async def close(self) -> None: ...


class WebSocketTransport(Protocol):
    async def connect(self, url: str, headers: Dict[str, str]) -> WebSocketConnection: ...


class AiohttpConnection:
    """An open aiohttp WebSocket and the session that owns it."""

    def __init__(self, session: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._session = session
        self._ws = ws

    async def send_json(self, data: Any) -> None:
        await self._ws.send_json(data)

    async def messages(self) -> AsyncIterator[Union[str, bytes]]:
        async for msg in self._ws:
            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                yield msg.data
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise ConnectionError(f"websocket error: {self._ws.exception()}")

    async def close(self) -> None:
        try:
            await self._ws.close()
        finally:
            await self._session.close()


class AiohttpTransport:
    """Default transport: aiohttp WebSockets with a protocol-level heartbeat."""

    def __init__(self, heartbeat: float = 20.0, connect_timeout: float = 10.0) -> None:
        self.heartbeat = heartbeat
        self.connect_timeout = connect_timeout

    async def connect(self, url: str, headers: Dict[str, str]) -> AiohttpConnection:
        session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=None, sock_connect=self.connect_timeout)
        )
        try:
            ws = await session.ws_connect(url, headers=headers, heartbeat=self.heartbeat)
        except BaseException:
            await session.close()
            raise
        return AiohttpConnection(session, ws)


class RealtimeChannel:
    """Socket lifecycle, room membership and event fan-out."""

    def __init__(
        self,
        url: str,
        credentials: CredentialProvider,
        transport: Optional[WebSocketTransport] = None,
        *,
        reconnect_initial_delay: float = 0.5,
        reconnect_max_delay: float = 5.0,
    ) -> None:
        self.url = url
        self.auth = ChatAuth(credentials)
        self.transport: WebSocketTransport = transport or AiohttpTransport()
        self.reconnect_initial_delay = reconnect_initial_delay
        self.reconnect_max_delay = reconnect_max_delay

        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._state_listeners: List[StateListener] = []
        self._state = ConnectionState.DISCONNECTED
        self._connected = asyncio.Event()
        self._connection: Optional[WebSocketConnection] = None
        self._room: Optional[str] = None
        self._runner: Optional[asyncio.Task[None]] = None
        self._closing = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        credentials: CredentialProvider,
        transport: Optional[WebSocketTransport] = None,
    ) -> "RealtimeChannel":
        return cls(
            settings.socket_url,
            credentials,
            transport
            or AiohttpTransport(
                heartbeat=settings.socket_heartbeat,
                connect_timeout=settings.connect_timeout,
            ),
            reconnect_initial_delay=settings.reconnect_initial_delay,
            reconnect_max_delay=settings.reconnect_max_delay,
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def room(self) -> Optional[str]:
        return self._room

    def subscribe(self, event: EventType | str, handler: Handler) -> Unsubscribe:
        """Register a handler for an inbound event; returns its unsubscribe callable."""
        name = event_name(event)
        self._handlers[name].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(name, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def on_state_change(self, listener: StateListener) -> Unsubscribe:
        self._state_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._state_listeners:
                self._state_listeners.remove(listener)

        return unsubscribe

    def _set_state(self, state: ConnectionState) -> None:
        previous = self._state
        if state == previous:
            return
        self._state = state
        if state == ConnectionState.CONNECTED:
            self._connected.set()
        else:
            self._connected.clear()
        logger.info("[CHANNEL] %s -> %s", previous.value, state.value)
        for listener in list(self._state_listeners):
            try:
                listener(state, previous)
            except Exception:
                logger.exception("[CHANNEL] State listener %r failed", listener)

    async def connect(self) -> None:
        """Start the connection loop; returns without waiting for the socket."""
        if self._runner is not None and not self._runner.done():
            return
        self._closing = False
        self._runner = asyncio.create_task(self._run(), name="realtime-channel")

    async def wait_until_connected(self, timeout: Optional[float] = None) -> bool:
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def _run(self) -> None:
        delay = self.reconnect_initial_delay
        while not self._closing:
            self._set_state(ConnectionState.CONNECTING)
            try:
                headers = await self.auth.get_headers()
                connection = await self.transport.connect(self.url, headers)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "[CHANNEL] Connect to %s failed: %s (retrying in %.1fs)", self.url, e, delay
                )
                self._set_state(ConnectionState.DISCONNECTED)
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.reconnect_max_delay)
                continue

            delay = self.reconnect_initial_delay
            self._connection = connection
            self._set_state(ConnectionState.CONNECTED)
            if self._room is not None:
                await self.emit(EventType.JOIN_CONVERSATION, self._room)

            try:
                await self._read(connection)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("[CHANNEL] Connection lost: %s", e)
            finally:
                self._connection = None
                await self._close_connection(connection)

            self._set_state(ConnectionState.DISCONNECTED)
            if not self._closing:
                await asyncio.sleep(delay)

    async def _read(self, connection: WebSocketConnection) -> None:
        async for raw in connection.messages():
            parsed = parse_frame(raw)
            if parsed is None:
                continue
            event, data = parsed
            await self._dispatch(event, data)
        logger.info("[CHANNEL] Server closed the connection")

    async def _dispatch(self, event: str, data: Any) -> None:
        handlers = list(self._handlers.get(event, ()))
        if not handlers:
            logger.debug("[CHANNEL] No handlers for %s", event)
            return
        for handler in handlers:
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("[CHANNEL] Handler %r for %s failed", handler, event)

    @staticmethod
    async def _close_connection(connection: WebSocketConnection) -> None:
        try:
            await connection.close()
        except Exception as e:
            logger.debug("[CHANNEL] Error closing connection: %s", e)

    async def emit(self, event: EventType | str, payload: Any = None) -> bool:
        """Best-effort send; returns whether the frame was written."""
        name = event_name(event)
        connection = self._connection
        if connection is None or self._state != ConnectionState.CONNECTED:
            logger.debug("[CHANNEL] Not connected, dropping %s", name)
            return False
        try:
            await connection.send_json(build_frame(name, payload))
        except Exception as e:
            logger.warning("[CHANNEL] Failed to emit %s: %s", name, e)
            return False
        return True

    async def join_room(self, conversation_id: str) -> None:
        conversation_id = str(conversation_id)
        if self._room == conversation_id:
            return
        if self._room is not None:
            await self.leave_room(self._room)
        self._room = conversation_id
        # Re-sent by the connection loop after every (re)connect.
        await self.emit(EventType.JOIN_CONVERSATION, conversation_id)
        logger.info("[CHANNEL] Joined conversation %s", conversation_id)

    async def leave_room(self, conversation_id: str) -> None:
        conversation_id = str(conversation_id)
        if self._room != conversation_id:
            return
        self._room = None
        await self.emit(EventType.LEAVE_CONVERSATION, conversation_id)
        logger.info("[CHANNEL] Left conversation %s", conversation_id)

    async def close(self) -> None:
        """Stop reconnecting and drop the socket."""
        self._closing = True
        self._room = None
        runner, self._runner = self._runner, None
        if runner is not None:
            runner.cancel()
            try:
                await runner
            except asyncio.CancelledError:
                pass
        connection, self._connection = self._connection, None
        if connection is not None:
            await self._close_connection(connection)
        self._set_state(ConnectionState.DISCONNECTED)
