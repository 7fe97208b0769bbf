from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

import httpx

from guestsync.infrastructure.api_errors import error_from_response, map_httpx_exception

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "http://localhost:5000/api"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 15.0


class ForcedOfflineTransport(httpx.AsyncBaseTransport):
    """Transport that refuses every request, used to simulate a lost network."""

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Offline mode forced by configuration", request=request)


class GuestApiClient:
    """Async REST client for guests and guest groups.

    Every failure leaves this class as a `NetworkUnavailableError`,
    `ServerRejectedError` or `UnknownSyncError`; nothing httpx-specific leaks.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE_URL,
        *,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        auth_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        headers = {"Accept": "application/json"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _request(self, method: str, path: str, json_data: Any | None = None) -> Any:
        try:
            response = await self._client.request(method, path, json=json_data)
        except httpx.HTTPError as exc:
            logger.debug("api_request_failed method=%s path=%s error=%s", method, path, type(exc).__name__)
            raise map_httpx_exception(exc) from exc
        if response.status_code >= 400:
            raise error_from_response(response)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    # Guests

    async def list_guests(self) -> list[dict[str, Any]]:
        body = await self._request("GET", "/guests")
        return _as_list(body, "guests")

    async def create_guest(self, data: Mapping[str, Any]) -> dict[str, Any]:
        return _as_entity(await self._request("POST", "/guests", dict(data)), "guest")

    async def update_guest(self, guest_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
        return _as_entity(await self._request("PUT", f"/guests/{guest_id}", dict(data)), "guest")

    async def delete_guest(self, guest_id: str) -> Any:
        return await self._request("DELETE", f"/guests/{guest_id}")

    async def bulk_update_guests(self, ids: Sequence[str], data: Mapping[str, Any]) -> Any:
        return await self._request("PUT", "/guests/bulk-update", {"ids": list(ids), **dict(data)})

    # Groups

    async def list_groups(self) -> list[dict[str, Any]]:
        body = await self._request("GET", "/guest-groups")
        return _as_list(body, "groups")

    async def create_group(self, data: Mapping[str, Any]) -> dict[str, Any]:
        return _as_entity(await self._request("POST", "/guest-groups", dict(data)), "group")

    async def update_group(self, group_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
        return _as_entity(await self._request("PUT", f"/guest-groups/{group_id}", dict(data)), "group")

    async def delete_group(self, group_id: str) -> Any:
        return await self._request("DELETE", f"/guest-groups/{group_id}")

    async def aclose(self) -> None:
        await self._client.aclose()


def _as_list(body: Any, envelope_key: str) -> list[dict[str, Any]]:
    if isinstance(body, dict):
        body = body.get(envelope_key, body.get("data", []))
    if not isinstance(body, list):
        return []
    return [item for item in body if isinstance(item, dict)]


def _as_entity(body: Any, envelope_key: str) -> dict[str, Any]:
    if isinstance(body, dict) and isinstance(body.get(envelope_key), dict):
        return body[envelope_key]
    return body if isinstance(body, dict) else {}
