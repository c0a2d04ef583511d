"""Exchanges a user id for connection and subscription tokens."""

import logging
from urllib.parse import quote

from livefeed.api import ApiClient
from livefeed.errors import ApiError, CredentialError

logger = logging.getLogger(__name__)

STAGE_CONNECTION = "connection"
STAGE_SUBSCRIPTION = "subscription"


class CredentialBroker:
    """Stateless token exchange. Each call is one request, no retry, no caching."""

    def __init__(self, api: ApiClient):
        self._api = api

    async def acquire_connection_token(self, user_id: str) -> str:
        path = f"/conn/{quote(user_id, safe='')}"
        data = await self._call(STAGE_CONNECTION, self._api.get(path))
        return _extract_token(STAGE_CONNECTION, data)

    async def acquire_subscription_token(self, connection_token: str, channel: str, user_id: str) -> str:
        path = f"/sub/{quote(user_id, safe='')}"
        payload = {"token": connection_token, "channel": channel}
        data = await self._call(STAGE_SUBSCRIPTION, self._api.post(path, payload))
        return _extract_token(STAGE_SUBSCRIPTION, data)

    @staticmethod
    async def _call(stage: str, request):
        try:
            return await request
        except ApiError as e:
            logger.warning("Failed to acquire %s token: %s", stage, e)
            raise CredentialError(
                stage,
                str(e),
                http_status=e.http_status,
                server_message=e.server_message,
            ) from e


def _extract_token(stage: str, data) -> str:
    token = data.get("token") if isinstance(data, dict) else None
    if not isinstance(token, str) or not token:
        raise CredentialError(stage, "response did not contain a token")
    return token
