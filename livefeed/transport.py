"""Push transport session speaking the Centrifugo JSON protocol over a websocket.

The session never calls back into its owner. Every lifecycle change and every
publication is put on the owner's event queue as a TransportEvent; the owner
consumes the queue from a single task.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from livefeed.errors import TransportError

logger = logging.getLogger(__name__)

EVENT_CONNECTING = "connecting"
EVENT_CONNECTED = "connected"
EVENT_DISCONNECTED = "disconnected"
EVENT_ERROR = "error"
EVENT_SUBSCRIBED = "subscribed"
EVENT_UNSUBSCRIBED = "unsubscribed"
EVENT_SUBSCRIPTION_LOST = "subscription_lost"
EVENT_PUBLICATION = "publication"

CLIENT_NAME = "livefeed"


@dataclass(frozen=True)
class TransportEvent:
    kind: str
    reason: str = ""
    fatal: bool = False
    channel: str = ""
    data: Any = None


def decode_frame(frame) -> list[dict]:
    """Split one websocket frame into protocol messages (newline-delimited JSON).

    Only a newline separates messages. Other line breaks such as U+0085 or
    U+2028 may appear unescaped inside JSON string values.
    """
    if isinstance(frame, bytes):
        frame = frame.decode("utf-8", errors="replace")
    messages = []
    for line in frame.split("\n"):
        if not line.strip():
            continue
        try:
            msg = json.loads(line)
        except ValueError:
            logger.warning("Dropping undecodable protocol message: %.200s", line)
            continue
        if isinstance(msg, dict):
            messages.append(msg)
    return messages


def _error_text(error) -> str:
    if isinstance(error, dict):
        return f"{error.get('message', 'unknown error')} (code {error.get('code')})"
    return str(error)


class TransportSession:
    """One websocket connection authenticated with a connection token."""

    def __init__(
        self,
        url: str,
        token: str,
        events: asyncio.Queue,
        timeout: float = 10.0,
        connector=websockets.connect,
    ):
        self._url = url
        self._token = token
        self._events = events
        self._timeout = timeout
        self._connector = connector
        self._ws = None
        self._task: asyncio.Task | None = None
        self._connected = asyncio.Event()
        self._pending: dict[int, asyncio.Future] = {}
        self._last_id = 0
        self._close_reason: str | None = None
        self._pong = False

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    def emit(self, kind: str, **kwargs):
        self._events.put_nowait(TransportEvent(kind, **kwargs))

    def connect(self):
        """Issue the connection. Returns immediately; progress arrives as events."""
        if self._task is not None:
            raise TransportError("connect() already issued for this session")
        self.emit(EVENT_CONNECTING)
        self._task = asyncio.create_task(self._run())

    def new_subscription(self, channel: str, token: str) -> "Subscription":
        return Subscription(self, channel, token)

    async def disconnect(self):
        """Close the socket and wait for the session task to finish."""
        if self._task is None:
            return
        self._close_reason = "client disconnect"
        if self._ws is not None:
            await self._ws.close()
        else:
            self._task.cancel()

        done, _ = await asyncio.wait({self._task}, timeout=self._timeout)
        if not done:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def wait_connected(self):
        """Wait until the handshake has completed, bounded by the session timeout."""
        if self._connected.is_set():
            return
        if self._task is None:
            raise TransportError("connect() has not been issued")

        waiter = asyncio.ensure_future(self._connected.wait())
        try:
            await asyncio.wait(
                {waiter, self._task},
                timeout=self._timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            waiter.cancel()

        if not self._connected.is_set():
            if self._task.done():
                raise TransportError("session closed before the connection was established")
            raise TransportError(f"not connected after {self._timeout}s")

    async def call(self, command: dict) -> dict:
        """Send one command and wait for its reply."""
        if self._ws is None or not self._connected.is_set():
            raise TransportError("session is not connected")

        cmd_id = self._new_id()
        future = asyncio.get_running_loop().create_future()
        self._pending[cmd_id] = future
        try:
            await self._ws.send(json.dumps({"id": cmd_id, **command}))
            reply = await asyncio.wait_for(future, self._timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"no reply to {next(iter(command))} within {self._timeout}s") from e
        except ConnectionClosed as e:
            raise TransportError(f"connection closed: {e}") from e
        finally:
            self._pending.pop(cmd_id, None)

        if "error" in reply:
            raise TransportError(_error_text(reply["error"]))
        return reply

    def _new_id(self) -> int:
        self._last_id += 1
        return self._last_id

    async def _run(self):
        reason = "connection closed"
        try:
            async with self._connector(self._url, open_timeout=self._timeout) as ws:
                self._ws = ws
                leftover = await self._handshake(ws)
                self._connected.set()
                self.emit(EVENT_CONNECTED)
                logger.info("Transport connected to %s", self._url)
                for msg in leftover:
                    await self._handle(msg)
                async for frame in ws:
                    for msg in decode_frame(frame):
                        await self._handle(msg)
            reason = "connection closed by server"
        except TransportError as e:
            reason = e.reason
            self.emit(EVENT_ERROR, reason=reason, fatal=e.fatal)
        except ConnectionClosed as e:
            reason = f"connection closed: {e}"
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            reason = f"transport failure: {str(e) or type(e).__name__}"
            self.emit(EVENT_ERROR, reason=reason)
        finally:
            reason = self._close_reason or reason
            self._ws = None
            self._connected.clear()
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(TransportError(reason))
            self._pending.clear()
            self.emit(EVENT_DISCONNECTED, reason=reason)

    async def _handshake(self, ws) -> list[dict]:
        """Send the connect command and wait for its reply.

        Returns any messages that arrived in the same frame after the reply.
        """
        cmd_id = self._new_id()
        await ws.send(json.dumps({"id": cmd_id, "connect": {"token": self._token, "name": CLIENT_NAME}}))

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise TransportError("connect handshake timed out")
            try:
                frame = await asyncio.wait_for(ws.recv(), remaining)
            except asyncio.TimeoutError as e:
                raise TransportError("connect handshake timed out") from e

            messages = decode_frame(frame)
            for i, msg in enumerate(messages):
                if msg.get("id") != cmd_id:
                    continue
                if "error" in msg:
                    raise TransportError(f"connect rejected: {_error_text(msg['error'])}", fatal=True)
                self._pong = bool((msg.get("connect") or {}).get("pong"))
                return messages[i + 1:]

    async def _handle(self, msg: dict):
        if not msg:
            # server ping
            if self._pong and self._ws is not None:
                await self._ws.send("{}")
            return

        cmd_id = msg.get("id")
        if cmd_id:
            future = self._pending.pop(cmd_id, None)
            if future is not None and not future.done():
                future.set_result(msg)
            return

        push = msg.get("push")
        if not isinstance(push, dict):
            logger.debug("Ignoring unexpected protocol message: %s", msg)
            return

        channel = push.get("channel", "")
        if "pub" in push:
            pub = push["pub"] if isinstance(push["pub"], dict) else {}
            self.emit(EVENT_PUBLICATION, channel=channel, data=pub.get("data"))
        elif "disconnect" in push:
            info = push["disconnect"] or {}
            self._close_reason = f"server disconnect: {info.get('reason', '')} (code {info.get('code')})"
            if self._ws is not None:
                await self._ws.close()
        elif "unsubscribe" in push:
            info = push["unsubscribe"] or {}
            self.emit(
                EVENT_SUBSCRIPTION_LOST,
                channel=channel,
                reason=str(info.get("reason") or "server unsubscribe"),
            )


class Subscription:
    """One channel subscription authenticated with a subscription token."""

    def __init__(self, session: TransportSession, channel: str, token: str):
        self._session = session
        self.channel = channel
        self._token = token
        self.subscribed = False

    async def subscribe(self):
        await self._session.wait_connected()
        await self._session.call({"subscribe": {"channel": self.channel, "token": self._token}})
        self.subscribed = True
        self._session.emit(EVENT_SUBSCRIBED, channel=self.channel)
        logger.info("Subscribed to channel %s", self.channel)

    async def unsubscribe(self):
        if not self.subscribed:
            return
        try:
            await self._session.call({"unsubscribe": {"channel": self.channel}})
        finally:
            self.subscribed = False
            self._session.emit(EVENT_UNSUBSCRIBED, channel=self.channel, reason="client unsubscribe")
