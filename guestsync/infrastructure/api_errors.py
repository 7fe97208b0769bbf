from __future__ import annotations

import httpx

from guestsync.domain.sync_errors import NetworkUnavailableError, ServerRejectedError, UnknownSyncError


def _response_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("error", "message", "msg"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    text = response.text.strip()
    return text[:200] if text else response.reason_phrase or f"HTTP {response.status_code}"


def error_from_response(response: httpx.Response) -> Exception:
    status_code = response.status_code
    message = _response_message(response)
    if 400 <= status_code < 500:
        return ServerRejectedError(f"Server rejected request ({status_code}): {message}", status_code=status_code)
    return UnknownSyncError(f"Unexpected server response ({status_code}): {message}", status_code=status_code)


def map_httpx_exception(exc: Exception) -> Exception:
    """Translates an httpx failure into the sync error taxonomy.

    Timeouts and transport failures mean the server was never reached and
    count as network errors; status errors are split on 4xx vs the rest.
    """
    if isinstance(exc, (NetworkUnavailableError, ServerRejectedError, UnknownSyncError)):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return NetworkUnavailableError(f"Request timed out: {exc}")
    if isinstance(exc, httpx.TransportError):
        return NetworkUnavailableError(f"Server unreachable: {exc}")
    if isinstance(exc, httpx.HTTPStatusError):
        return error_from_response(exc.response)
    return UnknownSyncError(f"Unexpected API failure: {exc}")
