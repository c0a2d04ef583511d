"""Stream connection manager: entry sequence, connectivity state and teardown.

All state changes are driven by TransportEvents consumed from one queue by a
single task, including the events the manager raises itself. An old session
is always fully closed before a new attempt starts, so its events are already
queued ahead of the new attempt's events.
"""

import asyncio
import logging
from collections import deque

from livefeed.credentials import CredentialBroker
from livefeed.errors import CredentialError, TransportError
from livefeed.models import ConnectivityState, RawRecord
from livefeed.transport import (
    EVENT_CONNECTED,
    EVENT_CONNECTING,
    EVENT_DISCONNECTED,
    EVENT_ERROR,
    EVENT_PUBLICATION,
    EVENT_SUBSCRIBED,
    EVENT_SUBSCRIPTION_LOST,
    EVENT_UNSUBSCRIBED,
    TransportEvent,
    TransportSession,
)

logger = logging.getLogger(__name__)


class StreamConnectionManager:
    """Owns one push connection and its channel subscription.

    The manager never retries on its own; it reports DISCONNECTED or FAILED
    and the owner decides whether to call `start()` again.
    """

    def __init__(
        self,
        broker: CredentialBroker,
        ws_url: str,
        user_id: str,
        channel: str,
        on_publication,
        timeout: float = 10.0,
        session_factory=None,
    ):
        self._broker = broker
        self._ws_url = ws_url
        self._user_id = user_id
        self._channel = channel
        self._on_publication = on_publication
        self._timeout = timeout
        self._session_factory = session_factory or self._default_session
        self._events: asyncio.Queue = asyncio.Queue()
        self._consumer: asyncio.Task | None = None
        self._session = None
        self._subscription = None
        self._state = ConnectivityState.IDLE
        self._state_changed = asyncio.Condition()
        self.reason: str | None = None
        self.history: deque = deque([ConnectivityState.IDLE], maxlen=100)
        self.dropped_publications = 0

    def _default_session(self, url: str, token: str, events: asyncio.Queue) -> TransportSession:
        return TransportSession(url, token, events, timeout=self._timeout)

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def channel(self) -> str:
        return self._channel

    async def start(self):
        """Run the entry sequence: connection token, connect, subscription token, subscribe."""
        self._ensure_consumer()
        await self._close_session()
        self._events.put_nowait(TransportEvent(EVENT_CONNECTING))
        # let the consumer apply everything queued so far, ending in CONNECTING
        await self._events.join()

        try:
            connection_token = await self._broker.acquire_connection_token(self._user_id)
        except CredentialError as e:
            self._events.put_nowait(TransportEvent(EVENT_ERROR, reason=str(e), fatal=True))
            return

        session = self._session_factory(self._ws_url, connection_token, self._events)
        self._session = session
        session.connect()

        try:
            subscription_token = await self._broker.acquire_subscription_token(
                connection_token, self._channel, self._user_id,
            )
            self._subscription = session.new_subscription(self._channel, subscription_token)
            await self._subscription.subscribe()
        except CredentialError as e:
            await self._close_session()
            self._events.put_nowait(TransportEvent(EVENT_ERROR, reason=str(e), fatal=True))
        except TransportError as e:
            if session.connected:
                # connected but the channel was refused
                await self._close_session()
                self._events.put_nowait(
                    TransportEvent(EVENT_ERROR, reason=f"subscribe failed: {e.reason}", fatal=True)
                )
            else:
                logger.warning("Subscribe to %s abandoned: %s", self._channel, e.reason)

    async def stop(self):
        """Unsubscribe, then disconnect, then stop consuming events.

        Both teardown steps are attempted even if the first one fails.
        """
        await self._close_session()
        if self._consumer is not None:
            self._events.put_nowait(None)
            await self._consumer
            self._consumer = None

    async def wait_for_state(self, *states: ConnectivityState) -> ConnectivityState:
        async with self._state_changed:
            await self._state_changed.wait_for(lambda: self._state in states)
            return self._state

    async def _close_session(self):
        subscription, session = self._subscription, self._session
        self._subscription = None
        self._session = None
        if subscription is not None:
            try:
                await subscription.unsubscribe()
            except Exception as e:
                logger.warning("Unsubscribe from %s failed: %s", subscription.channel, e)
        if session is not None:
            try:
                await session.disconnect()
            except Exception as e:
                logger.warning("Disconnect failed: %s", e)

    def _ensure_consumer(self):
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume())

    async def _consume(self):
        while True:
            event = await self._events.get()
            try:
                if event is None:
                    return
                await self._apply(event)
            except Exception:
                logger.exception("Failed to handle transport event %s", event.kind)
            finally:
                self._events.task_done()

    async def _apply(self, event: TransportEvent):
        kind = event.kind
        if kind == EVENT_CONNECTING:
            await self._set_state(ConnectivityState.CONNECTING)
        elif kind == EVENT_CONNECTED:
            if self._state == ConnectivityState.CONNECTING:
                await self._set_state(ConnectivityState.CONNECTED)
        elif kind == EVENT_DISCONNECTED:
            self.reason = event.reason
            if self._state not in (ConnectivityState.IDLE, ConnectivityState.FAILED):
                await self._set_state(ConnectivityState.DISCONNECTED)
        elif kind == EVENT_ERROR:
            self.reason = event.reason
            logger.warning("Transport error: %s", event.reason)
            if event.fatal:
                await self._set_state(ConnectivityState.FAILED)
        elif kind == EVENT_PUBLICATION:
            if (
                self._state != ConnectivityState.CONNECTED
                or self._subscription is None
                or event.channel != self._channel
            ):
                self.dropped_publications += 1
                logger.debug(
                    "Dropping publication on %r received while %s",
                    event.channel, self._state.value,
                )
                return
            self._on_publication(RawRecord.from_wire(event.data))
        elif kind == EVENT_SUBSCRIPTION_LOST:
            await self._subscription_lost(event)
        elif kind in (EVENT_SUBSCRIBED, EVENT_UNSUBSCRIBED):
            logger.info("Channel %s %s %s", event.channel, kind, event.reason)

    async def _set_state(self, new_state: ConnectivityState):
        if new_state == self._state:
            return
        async with self._state_changed:
            logger.info("Connectivity %s -> %s", self._state.value, new_state.value)
            self._state = new_state
            self.history.append(new_state)
            self._state_changed.notify_all()

    async def _subscription_lost(self, event: TransportEvent):
        """Server dropped the channel: close the session so the owner sees DISCONNECTED."""
        if (
            event.channel != self._channel
            or self._subscription is None
            or self._state != ConnectivityState.CONNECTED
        ):
            return
        reason = f"subscription lost: {event.reason}"
        logger.warning("Server unsubscribed %s: %s", self._channel, event.reason)
        # the server already dropped it, skip the unsubscribe command
        self._subscription = None
        await self._close_session()
        self._events.put_nowait(TransportEvent(EVENT_DISCONNECTED, reason=reason))
