"""Shared async HTTP plumbing for talking to the tutor backend."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from lilibet.constants import DEFAULT_REQUEST_TIMEOUT
from lilibet.errors import BackendError

logger = logging.getLogger(__name__)


class BackendClient:
    """Base for clients of the tutor backend.

    Owns one ``httpx.AsyncClient`` bound to ``base_url``. A bearer token, when
    held, is attached to every request.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.token = token
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self, extra: Optional[dict[str, str]] = None) -> dict[str, str]:
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if extra:
            headers.update(extra)
        return headers

    async def _request_json(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        error_message: str = "Request failed",
    ) -> dict[str, Any]:
        """Send a JSON request and return the decoded object body.

        Raises BackendError on transport failures, non-2xx statuses and
        bodies that are not a JSON object. ``httpx.TimeoutException`` is
        re-raised untouched so callers can decide whether to retry.
        """
        logger.debug("%s %s", method, path)
        try:
            response = await self._client.request(
                method, path, json=json, params=params, headers=self._headers()
            )
        except httpx.TimeoutException:
            raise
        except httpx.HTTPError as e:
            raise BackendError(f"{error_message}: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.is_success:
            detail = data.get("error") if isinstance(data, dict) else None
            logger.warning("%s %s -> %s", method, path, response.status_code)
            raise BackendError(detail or error_message, status_code=response.status_code)

        if not isinstance(data, dict):
            raise BackendError(f"{error_message}: invalid JSON response", status_code=response.status_code)
        return data
