import asyncio
import json

import pytest
import pytest_asyncio
import websockets
from aiohttp import web

from livefeed.api import ApiClient
from livefeed.errors import CredentialError, TransportError
from livefeed.transport import (
    EVENT_CONNECTED,
    EVENT_CONNECTING,
    EVENT_DISCONNECTED,
    EVENT_PUBLICATION,
    EVENT_SUBSCRIPTION_LOST,
    TransportEvent,
)

SAMPLE_LINE = (
    '{"timestamp":"2024-01-15T10:30:45Z","log_type":"ERROR","user_id":"u1",'
    '"duration":120,"message":"boom","request_id":"r1","service":"billing"}'
)


@pytest.fixture
def sample_line():
    return SAMPLE_LINE


@pytest.fixture
def sample_statistics():
    return {
        "logTypeCounts": {"INFO": 40, "ERROR": 3},
        "serviceDurations": {"billing": 120.5, "auth": 33.0},
        "serviceCallCounts": {"billing": 20, "auth": 23},
        "errorSequences": [
            {
                "service": "billing",
                "startTime": "2024-01-15T10:30:00Z",
                "endTime": "2024-01-15T10:30:45Z",
                "count": 3,
            }
        ],
        "anomalyDetections": [
            {
                "timestamp": "2024-01-15T10:30:45Z",
                "service": "billing",
                "metricName": "duration",
                "value": 900.0,
                "threshold": 500.0,
            }
        ],
        "updatedAt": "2024-01-15T10:31:00Z",
    }


async def wait_until(predicate, timeout: float = 2.0):
    """Poll `predicate` until it returns truthy or the timeout expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


# ── Fake REST backend (real aiohttp server) ─────────────────────


class FakeBackend:
    """Serves canned responses per (method, path) and records every request."""

    def __init__(self):
        self.url = ""
        self.routes: dict[tuple[str, str], dict] = {}
        self.requests: list[tuple[str, str, object]] = []

    def respond(self, method, path, body=None, status=200, raw=None, delay=0.0):
        self.routes[(method, path)] = {"body": body, "status": status, "raw": raw, "delay": delay}

    def success(self, method, path, data):
        self.respond(method, path, {"status": "success", "data": data})

    async def handle(self, request):
        text = await request.text()
        try:
            payload = json.loads(text) if text else None
        except ValueError:
            payload = text
        self.requests.append((request.method, request.path, payload))

        route = self.routes.get((request.method, request.path))
        if route is None:
            return web.json_response({"status": "error", "message": "not found"}, status=404)
        if route["delay"]:
            await asyncio.sleep(route["delay"])
        if route["raw"] is not None:
            return web.Response(text=route["raw"], status=route["status"])
        return web.json_response(route["body"], status=route["status"])


@pytest_asyncio.fixture
async def backend():
    fake = FakeBackend()
    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", fake.handle)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = runner.addresses[0][1]
    fake.url = f"http://127.0.0.1:{port}"
    yield fake
    await runner.cleanup()


@pytest_asyncio.fixture
async def api(backend):
    client = ApiClient(backend.url, timeout=2.0)
    yield client
    await client.close()


# ── Fake Centrifugo server (real websockets server) ─────────────


class FakeCentrifugo:
    def __init__(self):
        self.url = ""
        self.received: list[dict] = []
        self.connections = []
        self.reject_connect = False
        self.reject_subscribe = False
        self.silent = False
        self.pongs = 0

    async def handler(self, ws):
        self.connections.append(ws)
        try:
            async for frame in ws:
                for line in frame.split("\n"):
                    msg = json.loads(line)
                    self.received.append(msg)
                    await self._reply(ws, msg)
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self.connections.remove(ws)

    async def _reply(self, ws, msg):
        if not msg:
            self.pongs += 1
            return
        if self.silent:
            return
        cmd_id = msg.get("id")
        if "connect" in msg:
            if self.reject_connect:
                await ws.send(json.dumps({"id": cmd_id, "error": {"code": 109, "message": "token expired"}}))
            else:
                await ws.send(json.dumps({"id": cmd_id, "connect": {"client": "c1", "ping": 25, "pong": True}}))
        elif "subscribe" in msg:
            if self.reject_subscribe:
                await ws.send(json.dumps({"id": cmd_id, "error": {"code": 103, "message": "permission denied"}}))
            else:
                await ws.send(json.dumps({"id": cmd_id, "subscribe": {}}))
        elif "unsubscribe" in msg:
            await ws.send(json.dumps({"id": cmd_id, "unsubscribe": {}}))

    async def send_all(self, msg):
        for ws in list(self.connections):
            await ws.send(msg if isinstance(msg, str) else json.dumps(msg))

    async def publish(self, data, channel="logs"):
        await self.send_all({"push": {"channel": channel, "pub": {"data": data}}})


@pytest_asyncio.fixture
async def centrifugo():
    fake = FakeCentrifugo()
    server = await websockets.serve(fake.handler, "127.0.0.1", 0)
    port = next(iter(server.sockets)).getsockname()[1]
    fake.url = f"ws://127.0.0.1:{port}/connection/websocket"
    yield fake
    server.close()
    await server.wait_closed()


# ── In-memory transport and broker fakes ────────────────────────


class FakeSubscription:
    def __init__(self, session, channel, token):
        self._session = session
        self.channel = channel
        self.token = token

    async def subscribe(self):
        self._session.calls.append(("subscribe", self.channel, self.token))
        if self._session.fail_subscribe:
            raise TransportError("permission denied (code 103)")

    async def unsubscribe(self):
        self._session.calls.append(("unsubscribe", self.channel))
        if self._session.fail_unsubscribe:
            raise TransportError("unsubscribe failed")


class FakeSession:
    """Stands in for TransportSession; emits events onto the manager's queue."""

    def __init__(self, url, token, events, calls, auto_connect=True):
        self.url = url
        self.token = token
        self._events = events
        self.calls = calls
        self.auto_connect = auto_connect
        self.connected = False
        self.fail_subscribe = False
        self.fail_unsubscribe = False
        self.fail_disconnect = False

    def emit(self, kind, **kwargs):
        self._events.put_nowait(TransportEvent(kind, **kwargs))

    def connect(self):
        self.calls.append(("connect", self.token))
        self.emit(EVENT_CONNECTING)
        if self.auto_connect:
            self.connected = True
            self.emit(EVENT_CONNECTED)

    def new_subscription(self, channel, token):
        self.calls.append(("new_subscription", channel, token))
        return FakeSubscription(self, channel, token)

    async def disconnect(self):
        self.calls.append(("disconnect",))
        if self.fail_disconnect:
            raise TransportError("socket already gone")
        if self.connected:
            self.connected = False
            self.emit(EVENT_DISCONNECTED, reason="client disconnect")

    def publish(self, data, channel="logs"):
        self.emit(EVENT_PUBLICATION, channel=channel, data=data)

    def drop(self, reason="connection closed by server"):
        self.connected = False
        self.emit(EVENT_DISCONNECTED, reason=reason)

    def lose_subscription(self, reason="subscription expired", channel="logs"):
        self.emit(EVENT_SUBSCRIPTION_LOST, channel=channel, reason=reason)


class SessionFactory:
    """Builds FakeSessions and keeps every one it built, sharing one call log."""

    def __init__(self, calls=None, **session_kwargs):
        self.calls = calls if calls is not None else []
        self.sessions: list[FakeSession] = []
        self._session_kwargs = session_kwargs
        self.configure = None

    def __call__(self, url, token, events):
        session = FakeSession(url, token, events, self.calls, **self._session_kwargs)
        if self.configure:
            self.configure(session)
        self.sessions.append(session)
        return session


class FakeBroker:
    def __init__(self, calls):
        self.calls = calls
        self.fail_stage = None
        self._issued = 0

    async def acquire_connection_token(self, user_id):
        self.calls.append(("connection_token", user_id))
        if self.fail_stage == "connection":
            raise CredentialError("connection", "HTTP 500", http_status=500)
        self._issued += 1
        return f"conn-{self._issued}"

    async def acquire_subscription_token(self, connection_token, channel, user_id):
        self.calls.append(("subscription_token", connection_token, channel))
        if self.fail_stage == "subscription":
            raise CredentialError("subscription", "server reported status 'error'", server_message="bad channel")
        return f"sub-{connection_token}"
