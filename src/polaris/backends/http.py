"""Shared httpx plumbing for HTTP-based generation backends."""

import logging
from typing import Any, Dict, Optional

import httpx

from polaris.exceptions import BackendError, BackendTimeoutError

logger = logging.getLogger(__name__)


def is_transient(error: BaseException) -> bool:
    """Whether a failed call is worth repeating against the same backend.

    Timeouts, network errors, 429 and 5xx are transient. Everything else
    (auth, bad request, truncation) would fail the same way again.
    """
    if not isinstance(error, BackendError):
        return False
    if error.error_type in ("timeout", "network_error"):
        return True
    status = error.status_code
    return status is not None and (status == 429 or status >= 500)


class HTTPBackendMixin:
    """Lazy ``httpx.AsyncClient`` ownership plus error mapping.

    Subclasses set ``_base_url`` and ``_timeout``. A client passed in by the
    caller is used as is and never closed here.
    """

    _base_url: str
    _timeout: float
    _client: Optional[httpx.AsyncClient] = None
    _owns_client: bool = True

    def _headers(self) -> Dict[str, str]:
        return {"content-type": "application/json"}

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
            self._owns_client = True
        return self._client

    async def _post_json(self, path: str, payload: Dict[str, Any], backend: str) -> Dict[str, Any]:
        try:
            response = await self.client.post(path, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            raise BackendTimeoutError(
                f"Request timeout after {self._timeout}s", backend=backend
            ) from e
        except httpx.HTTPError as e:
            raise BackendError(
                f"Network error: {e}", error_type="network_error", backend=backend
            ) from e

        if response.status_code >= 400:
            message, error_type = _error_details(response)
            raise BackendError(
                message, status_code=response.status_code, error_type=error_type, backend=backend
            )

        try:
            return response.json()
        except ValueError as e:
            raise BackendError(
                "Provider returned a non-JSON body", error_type="parse_error", backend=backend
            ) from e

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None


def _error_details(response: httpx.Response) -> tuple:
    message = f"HTTP {response.status_code}: {response.reason_phrase}"
    error_type = None
    try:
        body = response.json()
    except ValueError:
        return message, error_type
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        message = error.get("message") or message
        error_type = error.get("type")
    elif isinstance(error, str):
        message = error
    return message, error_type
