"""HTTP client for the Resend transactional email API."""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Protocol

import httpx

from backend.app.config import EmailConfig

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.resend.com"


class EmailProviderError(RuntimeError):
    """Raised when the email provider rejects or fails a send request."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EmailProvider(Protocol):
    """Anything able to deliver a ``{from, to, subject, html}`` message."""

    async def send(self, message: Mapping[str, Any]) -> str:
        ...


class ResendClient:
    """Send emails through the Resend REST API."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not api_key:
            raise ValueError("Resend API key must be provided")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client

    @classmethod
    def from_config(
        cls, config: EmailConfig, client: Optional[httpx.AsyncClient] = None
    ) -> "ResendClient":
        """Build a client from the email configuration section."""

        return cls(
            config.api_key,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            client=client,
        )

    async def send(self, message: Mapping[str, Any]) -> str:
        """Deliver ``message`` and return the provider-assigned id.

        Raises:
            EmailProviderError: On transport failures or non-2xx responses.
        """

        url = f"{self._base_url}/emails"
        headers = {"Authorization": f"Bearer {self._api_key}"}
        should_close = self._client is None
        session = self._client or httpx.AsyncClient(timeout=self._timeout)
        try:
            response = await session.post(url, json=dict(message), headers=headers)
        except httpx.HTTPError as exc:
            raise EmailProviderError(f"Request to {url} failed: {exc}") from exc
        finally:
            if should_close:
                await session.aclose()

        if not response.is_success:
            detail = _error_detail(response)
            raise EmailProviderError(
                f"Resend returned {response.status_code}: {detail}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise EmailProviderError(
                "Resend returned a non-JSON payload", status_code=response.status_code
            ) from exc
        delivery_id = payload.get("id") if isinstance(payload, dict) else None
        if not delivery_id:
            raise EmailProviderError(
                "Resend response did not include a delivery id", status_code=response.status_code
            )
        return str(delivery_id)


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return response.text


__all__ = ["EmailProvider", "EmailProviderError", "ResendClient"]
