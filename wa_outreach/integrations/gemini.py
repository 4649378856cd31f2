"""
Gemini Client
=============
Thin async wrapper around the generateContent REST endpoint.
One client per pipeline run; the API key comes from the caller.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from wa_outreach.config import config

logger = logging.getLogger(__name__)


class GeminiError(Exception):
    """The upstream call failed (transport error or non-2xx status)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def text_part(text: str) -> Dict[str, Any]:
    return {"text": text}


def image_part(data: str, mime_type: str = "image/jpeg") -> Dict[str, Any]:
    return {"inline_data": {"mime_type": mime_type, "data": data}}


def extract_text(response_json: Dict[str, Any]) -> str:
    """First candidate's first text part, or '' when the shape is off."""
    try:
        candidates = response_json.get("candidates") or []
        parts = candidates[0].get("content", {}).get("parts") or []
        return parts[0].get("text") or ""
    except (AttributeError, IndexError, TypeError):
        return ""


class GeminiClient:
    """Async Gemini REST client"""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self.base_url = (base_url or config.GEMINI_API_BASE).rstrip("/")
        self._client = httpx.AsyncClient(
            timeout=timeout or config.GEMINI_TIMEOUT,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def generate(self, model: str, parts: List[Dict[str, Any]]) -> str:
        """
        Call models/{model}:generateContent and return the response text.

        Raises:
            GeminiError: on transport failure or a non-2xx response.
        """
        url = f"{self.base_url}/models/{model}:generateContent"
        body = {"contents": [{"parts": parts}]}

        try:
            response = await self._client.post(url, params={"key": self._api_key}, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            # Body only - the request URL carries the key
            detail = e.response.text[:500]
            raise GeminiError(
                f"Gemini returned {e.response.status_code}: {detail}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise GeminiError(f"Gemini request failed: {type(e).__name__}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise GeminiError("Gemini returned a non-JSON body") from e

        return extract_text(payload)
