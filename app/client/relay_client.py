from __future__ import annotations

import asyncio
import enum
import json
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional

import aiohttp
from loguru import logger

from app.db.models import ChatRole
from app.services.errors import Unauthenticated
from app.services.validation import MAX_MESSAGE_LENGTH, validate_message

DEFAULT_RECONNECT_DELAY = 3.0
MESSAGE_FIELDS = ("id", "santa_id", "giftee_id", "created_at")


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"
    ERRORING = "erroring"
    RECONNECTING = "reconnecting"


TRANSITIONS: Dict[ConnectionState, frozenset] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset(
        {ConnectionState.CONNECTED, ConnectionState.ERRORING, ConnectionState.CLOSING}
    ),
    ConnectionState.CONNECTED: frozenset({ConnectionState.CLOSING, ConnectionState.ERRORING}),
    ConnectionState.CLOSING: frozenset({ConnectionState.DISCONNECTED}),
    ConnectionState.ERRORING: frozenset(
        {ConnectionState.RECONNECTING, ConnectionState.CLOSING, ConnectionState.DISCONNECTED}
    ),
    ConnectionState.RECONNECTING: frozenset({ConnectionState.CONNECTING, ConnectionState.CLOSING}),
}


def is_message(frame: Any) -> bool:
    return isinstance(frame, dict) and all(field in frame for field in MESSAGE_FIELDS)


class Conversation:
    """Client view of one conversation, deduplicated by message id."""

    def __init__(self, role: ChatRole) -> None:
        self.role = role
        self._messages: Dict[str, Dict[str, Any]] = {}

    def add(self, message: Dict[str, Any]) -> bool:
        message_id = message["id"]
        if message_id in self._messages:
            return False
        self._messages[message_id] = message
        return True

    def extend(self, messages: Iterable[Dict[str, Any]]) -> int:
        return sum(1 for message in messages if self.add(message))

    @property
    def messages(self) -> List[Dict[str, Any]]:
        return sorted(self._messages.values(), key=lambda m: (m["created_at"], m["id"]))

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._messages

    def __len__(self) -> int:
        return len(self._messages)


class RelayClient:
    """Reconnecting chat client for one raffle member.

    The credential is given explicitly and sent as a bearer header on every
    request. Any close other than ``close()`` is followed by a reconnect after
    a fixed delay; retries never stop or slow down. A rejected credential ends
    the loop and is raised to the caller.
    """

    def __init__(
        self,
        base_url: str,
        raffle_id: int,
        member_id: int,
        credential: str,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        on_message: Optional[Callable[[ChatRole, Dict[str, Any]], None]] = None,
        on_error: Optional[Callable[[Dict[str, Any]], None]] = None,
        http: Optional[aiohttp.ClientSession] = None,
        max_length: int = MAX_MESSAGE_LENGTH,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.raffle_id = raffle_id
        self.member_id = member_id
        self.reconnect_delay = reconnect_delay
        self.max_length = max_length
        self._credential = credential
        self._on_message = on_message
        self._on_error = on_error
        self._http = http
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._state = ConnectionState.DISCONNECTED
        self._close_requested = asyncio.Event()
        self._connected = asyncio.Event()
        self.reconnects = 0
        self.conversations: Dict[ChatRole, Conversation] = {
            ChatRole.SANTA: Conversation(ChatRole.SANTA),
            ChatRole.GIFTEE: Conversation(ChatRole.GIFTEE),
        }

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._credential}"}

    def _url(self, *parts: str) -> str:
        return "/".join([self.base_url, "raffles", str(self.raffle_id), *parts])

    def _transition(self, state: ConnectionState) -> None:
        if state not in TRANSITIONS[self._state]:
            raise RuntimeError(f"Invalid relay state change {self._state.value} -> {state.value}")
        logger.bind(raffle_id=self.raffle_id, member_id=self.member_id).debug(
            "Relay client {old} -> {new}", old=self._state.value, new=state.value
        )
        self._state = state
        if state == ConnectionState.CONNECTED:
            self._connected.set()
        else:
            self._connected.clear()

    async def wait_connected(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self._connected.wait(), timeout=timeout)

    def role_of(self, message: Dict[str, Any]) -> ChatRole:
        return ChatRole.SANTA if message["santa_id"] == self.member_id else ChatRole.GIFTEE

    def receive(self, message: Dict[str, Any]) -> bool:
        if not is_message(message):
            logger.bind(raffle_id=self.raffle_id).warning("Ignoring relay frame that is not a message")
            return False
        role = self.role_of(message)
        if not self.conversations[role].add(message):
            return False
        if self._on_message is not None:
            self._on_message(role, message)
        return True

    async def load_history(self) -> int:
        added = 0
        for role, path in ((ChatRole.SANTA, "giftee"), (ChatRole.GIFTEE, "santa")):
            async with self._http.get(self._url("chat", path), headers=self._headers) as response:
                if response.status == 401:
                    raise Unauthenticated("Credential was rejected while loading history.")
                if response.status != 200:
                    logger.bind(raffle_id=self.raffle_id, status=response.status).info(
                        "History for {role} not available", role=role.value
                    )
                    continue
                for message in await response.json():
                    if self.receive(message):
                        added += 1
        return added

    async def send(self, content: str, role: ChatRole, message_id: Optional[str] = None) -> str:
        content = validate_message(content, self.max_length)
        if self._state != ConnectionState.CONNECTED or self._ws is None:
            raise ConnectionError("Relay is not connected.")
        message_id = message_id or str(uuid.uuid4())
        await self._ws.send_json({"id": message_id, "content": content, "role": ChatRole(role).value})
        return message_id

    async def _connect(self) -> aiohttp.ClientWebSocketResponse:
        try:
            return await self._http.ws_connect(self._url("chat", "ws"), headers=self._headers)
        except aiohttp.WSServerHandshakeError as exc:
            if exc.status in (401, 403):
                raise Unauthenticated("Credential was rejected by the relay.") from exc
            raise

    def _handle_frame(self, data: str) -> None:
        try:
            frame = json.loads(data)
        except ValueError:
            logger.bind(raffle_id=self.raffle_id).warning("Ignoring malformed relay frame")
            return
        if isinstance(frame, dict) and "error" in frame:
            logger.bind(raffle_id=self.raffle_id).info("Relay rejected a frame: {error}", error=frame)
            if self._on_error is not None:
                self._on_error(frame)
            return
        self.receive(frame)

    async def _pump(self) -> None:
        await self.load_history()
        async for msg in self._ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self._handle_frame(msg.data)
            elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                break

    async def _wait_before_reconnect(self) -> bool:
        try:
            await asyncio.wait_for(self._close_requested.wait(), timeout=self.reconnect_delay)
        except asyncio.TimeoutError:
            return True
        return False

    async def run(self) -> None:
        if self._state != ConnectionState.DISCONNECTED:
            raise RuntimeError("Relay client is already running.")
        self._close_requested.clear()
        own_http = self._http is None
        if own_http:
            self._http = aiohttp.ClientSession()
        try:
            while True:
                self._transition(ConnectionState.CONNECTING)
                try:
                    self._ws = await self._connect()
                except Unauthenticated:
                    self._transition(ConnectionState.ERRORING)
                    self._transition(ConnectionState.DISCONNECTED)
                    raise
                except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
                    logger.bind(raffle_id=self.raffle_id).warning(
                        "Relay connect failed: {error}", error=str(exc)
                    )
                    self._transition(ConnectionState.ERRORING)
                else:
                    if not self._close_requested.is_set():
                        self._transition(ConnectionState.CONNECTED)
                        try:
                            await self._pump()
                        except Unauthenticated:
                            await self._ws.close()
                            self._ws = None
                            self._transition(ConnectionState.ERRORING)
                            self._transition(ConnectionState.DISCONNECTED)
                            raise
                        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
                            logger.bind(raffle_id=self.raffle_id).warning(
                                "Relay connection lost: {error}", error=str(exc)
                            )
                    await self._ws.close()
                    self._ws = None
                    if self._close_requested.is_set():
                        break
                    self._transition(ConnectionState.ERRORING)

                if self._close_requested.is_set():
                    break
                self._transition(ConnectionState.RECONNECTING)
                if not await self._wait_before_reconnect():
                    break
                self.reconnects += 1
        finally:
            if self._ws is not None:
                await self._ws.close()
                self._ws = None
            if self._state != ConnectionState.DISCONNECTED:
                if self._state != ConnectionState.CLOSING:
                    self._transition(ConnectionState.CLOSING)
                self._transition(ConnectionState.DISCONNECTED)
            if own_http:
                await self._http.close()
                self._http = None

    async def close(self) -> None:
        self._close_requested.set()
        if self._ws is not None and self._state == ConnectionState.CONNECTED:
            await self._ws.close()
