"""Async client for the Ideogram image description endpoint."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx

from config import settings

logger = logging.getLogger(__name__)


class IdeogramError(Exception):
    """The describe call failed or returned something unusable."""


def _error_message(response: httpx.Response) -> str:
    message = "Ideogram API request failed"
    content_type = response.headers.get("content-type", "")
    try:
        if "application/json" in content_type:
            data = response.json()
            if isinstance(data, dict):
                message = data.get("message") or data.get("error") or message
        else:
            message = f"API error ({response.status_code}): {response.text[:100]}"
    except ValueError:
        logger.warning("Could not parse Ideogram error body (status=%s)", response.status_code)
    return str(message)


def parse_description(body: str) -> str:
    """Extract the description text from a successful response body."""
    text = (body or "").strip()
    if not (text.startswith("{") or text.startswith("[")):
        raise IdeogramError("Ideogram API returned invalid response format")
    try:
        data: Any = json.loads(text)
    except ValueError as exc:
        raise IdeogramError("Invalid JSON response from Ideogram API") from exc

    description = None
    if isinstance(data, dict):
        descriptions = data.get("descriptions")
        if isinstance(descriptions, list) and descriptions and isinstance(descriptions[0], dict):
            description = descriptions[0].get("text")
        description = description or data.get("description")
    if not description or not str(description).strip():
        raise IdeogramError("No description found in API response")
    return str(description).strip()


class IdeogramClient:
    """Thin wrapper around ``POST /describe``.

    One client is shared across a batch so connections are pooled; use it as
    an async context manager or call :meth:`aclose`.
    """

    def __init__(
        self,
        api_key: str,
        *,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.api_url = api_url or settings.IDEOGRAM_API_URL
        self._http = httpx.AsyncClient(
            timeout=timeout or settings.IDEOGRAM_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def describe(self, filename: str, content: bytes, content_type: str) -> str:
        try:
            response = await self._http.post(
                self.api_url,
                headers={"Api-Key": self.api_key},
                files={"image_file": (filename, content, content_type)},
            )
        except httpx.HTTPError as exc:
            raise IdeogramError(f"Ideogram API request failed: {exc}") from exc

        if response.is_error:
            raise IdeogramError(_error_message(response))
        return parse_description(response.text)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "IdeogramClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
