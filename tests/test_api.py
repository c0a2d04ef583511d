"""Tests for the REST envelope client against a real aiohttp server."""

import pytest

from livefeed.api import ApiClient, fetch_generator_config, unwrap_envelope
from livefeed.errors import ApiError


class TestUnwrapEnvelope:
    def test_success_returns_data(self):
        assert unwrap_envelope({"status": "success", "data": [1, 2]}) == [1, 2]

    def test_non_success_is_server_reported(self):
        with pytest.raises(ApiError) as exc_info:
            unwrap_envelope({"status": "error", "message": "generator offline"})
        assert exc_info.value.server_reported is True
        assert exc_info.value.server_message == "generator offline"

    def test_bare_object_passes_through(self):
        assert unwrap_envelope({"token": "abc"}) == {"token": "abc"}


@pytest.mark.asyncio
async def test_get_unwraps_data(backend, api):
    backend.success("GET", "/logs", [{"line": "x"}])
    assert await api.get("/logs") == [{"line": "x"}]


@pytest.mark.asyncio
async def test_post_sends_json_body(backend, api):
    backend.success("POST", "/sub/u1", {"token": "s"})
    await api.post("/sub/u1", {"token": "c", "channel": "logs"})
    assert backend.requests[-1] == ("POST", "/sub/u1", {"token": "c", "channel": "logs"})


@pytest.mark.asyncio
async def test_http_error_carries_status_and_message(backend, api):
    backend.respond("GET", "/statistics", {"error": "db down"}, status=503)
    with pytest.raises(ApiError) as exc_info:
        await api.get("/statistics")
    assert exc_info.value.http_status == 503
    assert exc_info.value.server_message == "db down"
    assert exc_info.value.server_reported is False


@pytest.mark.asyncio
async def test_status_error_on_http_200(backend, api):
    backend.respond("GET", "/statistics", {"status": "error", "message": "not ready"})
    with pytest.raises(ApiError) as exc_info:
        await api.get("/statistics")
    assert exc_info.value.server_reported is True


@pytest.mark.asyncio
async def test_non_json_body(backend, api):
    backend.respond("GET", "/logs", raw="<html>oops</html>")
    with pytest.raises(ApiError):
        await api.get("/logs")


@pytest.mark.asyncio
async def test_timeout(backend):
    backend.success("GET", "/slow", {})
    backend.routes[("GET", "/slow")]["delay"] = 1.0
    client = ApiClient(backend.url, timeout=0.2)
    try:
        with pytest.raises(ApiError, match="timed out"):
            await client.get("/slow")
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_connection_refused():
    client = ApiClient("http://127.0.0.1:1", timeout=1.0)
    try:
        with pytest.raises(ApiError):
            await client.get("/logs")
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_fetch_generator_config_passthrough(backend, api):
    config = {"LOG_RATE": 10, "LOG_TYPES": ["INFO", "ERROR"], "ENABLE_BURSTS": True}
    backend.success("GET", "/config", config)
    assert await fetch_generator_config(api) == config


@pytest.mark.asyncio
async def test_fetch_generator_config_rejects_non_object(backend, api):
    backend.success("GET", "/config", ["not", "a", "dict"])
    with pytest.raises(ApiError):
        await fetch_generator_config(api)
