"""REST client for the backend's `{status, data, message}` envelope."""

import asyncio
import json
import logging

import aiohttp

from livefeed.errors import ApiError

logger = logging.getLogger(__name__)


def unwrap_envelope(body):
    """Return the `data` of a success envelope.

    Raises ApiError(server_reported=True) when `status` is anything other than
    "success". A JSON object without a `status` key is a bare legacy payload
    and is returned unchanged.
    """
    if not isinstance(body, dict) or "status" not in body:
        return body
    if body["status"] != "success":
        message = body.get("message") or body.get("error")
        raise ApiError(
            f"server reported status {body['status']!r}: {message}",
            server_message=message,
            server_reported=True,
        )
    return body.get("data")


class ApiClient:
    """Thin aiohttp wrapper: one session, one total timeout per request."""

    def __init__(self, base_url: str, timeout: float = 10.0):
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def base_url(self) -> str:
        return self._base_url

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"Accept": "application/json"},
            )
        return self._session

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def get(self, path: str):
        return await self._request("GET", path)

    async def post(self, path: str, payload: dict):
        return await self._request("POST", path, payload)

    async def _request(self, method: str, path: str, payload: dict | None = None):
        url = self._base_url + path
        try:
            async with self._get_session().request(method, url, json=payload) as resp:
                text = await resp.text()
                status = resp.status
        except asyncio.TimeoutError as e:
            raise ApiError(f"{method} {path} timed out") from e
        except aiohttp.ClientError as e:
            raise ApiError(f"{method} {path} failed: {e}") from e

        try:
            body = json.loads(text) if text else None
        except ValueError:
            body = None

        if not 200 <= status < 300:
            message = None
            if isinstance(body, dict):
                message = body.get("message") or body.get("error")
            raise ApiError(
                f"{method} {path} returned HTTP {status}",
                http_status=status,
                server_message=message,
            )
        if body is None:
            raise ApiError(f"{method} {path} returned a non-JSON body", http_status=status)

        return unwrap_envelope(body)


async def fetch_generator_config(api: ApiClient) -> dict:
    """Single GET /config; the generator configuration is passed through as-is."""
    data = await api.get("/config")
    if not isinstance(data, dict):
        raise ApiError("GET /config returned a non-object payload")
    return data
