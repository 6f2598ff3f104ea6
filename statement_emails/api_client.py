"""Backend API client.

Thin synchronous wrapper around the inventory backend's REST endpoints
that statement generation needs: business partners, customer invoices
and customer incoming payments.  Responses are returned as the decoded
JSON dicts; mapping to statement lines happens in ``statements``.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from .config import BackendApiConfig

logger = logging.getLogger(__name__)


class BackendApiError(Exception):
    """Base error for backend API failures."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class BackendAuthenticationError(BackendApiError):
    """The API key was rejected."""

    def __init__(self):
        super().__init__("Backend authentication failed. Check the API key.", status_code=401)


class BackendNotFoundError(BackendApiError):
    """The requested resource does not exist."""

    def __init__(self, resource: str):
        self.resource = resource
        super().__init__(f"Resource not found: {resource}", status_code=404)


class BackendApiClient:
    """Client for the inventory backend API.

    The underlying ``httpx.Client`` is created lazily and reused; call
    ``close()`` (or use the client as a context manager) when done.
    A custom ``transport`` can be injected for tests.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.Client | None = None

    @classmethod
    def from_config(cls, config: BackendApiConfig) -> BackendApiClient:
        return cls(
            base_url=config.base_url,
            api_key=config.api_key,
            timeout=config.timeout_seconds,
        )

    def __enter__(self) -> BackendApiClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _get_client(self) -> httpx.Client:
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.Client(
                base_url=self.base_url,
                headers=headers,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            self._client.close()
        self._client = None

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET ``path`` and decode the JSON body.

        Raises:
            BackendAuthenticationError: On 401/403.
            BackendNotFoundError: On 404.
            BackendApiError: On other non-2xx responses, transport errors
                and undecodable bodies.
        """
        client = self._get_client()
        try:
            response = client.get(path, params=params)
        except httpx.TimeoutException as exc:
            raise BackendApiError(f"Timeout calling {path}") from exc
        except httpx.HTTPError as exc:
            raise BackendApiError(f"Request to {path} failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise BackendAuthenticationError()
        if response.status_code == 404:
            raise BackendNotFoundError(path)
        if response.status_code >= 400:
            raise BackendApiError(
                f"{path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise BackendApiError(f"{path} returned invalid JSON") from exc

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def get_business_partner(self, card_code: str) -> dict[str, Any] | None:
        """Business partner by card code, or None if the backend has none."""
        try:
            return self._get(f"api/businesspartner/{quote(card_code, safe='')}")
        except BackendNotFoundError:
            logger.debug("Business partner %s not found", card_code)
            return None

    def get_customer_invoices(self, card_code: str) -> list[dict[str, Any]]:
        data = self._get(f"api/invoice/customer/{quote(card_code, safe='')}")
        return list((data or {}).get("invoices") or [])

    def get_customer_payments(self, card_code: str) -> list[dict[str, Any]]:
        data = self._get(f"api/incomingpayment/customer/{quote(card_code, safe='')}")
        return list((data or {}).get("payments") or [])
