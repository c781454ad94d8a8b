"""
Generative text client for Google's Gemini REST API.

Public API
----------
GeminiClient.generate(prompt)  -> str    (raises GenerationError / RateLimitedError)
GeminiClient.check_health()    -> bool   (never raises)

Unlike the orchestration layer, this client does no pacing or retrying of its
own: every call goes straight to the wire.  Throttling is reported as
RateLimitedError so the queue scheduler can decide what to do with it.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from app.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class GenerationError(Exception):
    """The generative service failed to produce text."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(GenerationError):
    """The generative service throttled the call (HTTP 429 / RESOURCE_EXHAUSTED)."""


class GenerationNotConfiguredError(GenerationError):
    """No API key is configured for the generative service."""


class TextGenerator(Protocol):
    async def generate(self, prompt: str) -> str: ...


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class GeminiClient:
    """Thin async wrapper around ``models/{model}:generateContent``."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        temperature: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = settings.GOOGLE_API_KEY if api_key is None else api_key
        self.model = model or settings.GEMINI_MODEL
        self.base_url = (base_url or settings.GEMINI_BASE_URL).rstrip("/")
        self.timeout = httpx.Timeout(
            float(timeout if timeout is not None else settings.GEMINI_TIMEOUT),
            connect=10.0,
        )
        self.temperature = (
            settings.GEMINI_TEMPERATURE if temperature is None else temperature
        )
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def generate(self, prompt: str) -> str:
        """
        Generate text for *prompt* and return the first candidate's text.

        Raises:
            GenerationNotConfiguredError: no GOOGLE_API_KEY is set.
            RateLimitedError: upstream returned 429 / RESOURCE_EXHAUSTED.
            GenerationError: any other failure (network, HTTP error, empty output).
        """
        if not self.is_configured:
            raise GenerationNotConfiguredError("GOOGLE_API_KEY is not configured")

        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": self.temperature},
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.base_url}/models/{self.model}:generateContent",
                    params={"key": self.api_key},
                    json=payload,
                )
        except httpx.TimeoutException as exc:
            raise GenerationError(f"Gemini request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise GenerationError(f"Gemini connection error: {exc}") from exc

        if resp.status_code == 429:
            raise RateLimitedError(
                f"429 Too Many Requests: {resp.text[:200]}", status_code=429
            )
        if resp.status_code != 200:
            body = resp.text[:300]
            if "RESOURCE_EXHAUSTED" in body:
                raise RateLimitedError(
                    f"429 Resource exhausted: {body}", status_code=resp.status_code
                )
            logger.error("Gemini returned HTTP %d: %s", resp.status_code, body)
            raise GenerationError(
                f"Gemini returned HTTP {resp.status_code}", status_code=resp.status_code
            )

        text = self._extract_text(resp.json())
        if not text:
            raise GenerationError("Gemini response contained no candidate text")
        return text

    async def check_health(self) -> bool:
        """Return ``True`` if the configured model is reachable."""
        if not self.is_configured:
            return False
        try:
            async with httpx.AsyncClient(timeout=5.0, transport=self._transport) as client:
                resp = await client.get(
                    f"{self.base_url}/models/{self.model}",
                    params={"key": self.api_key},
                )
                return resp.status_code == 200
        except Exception as exc:
            logger.error("Gemini health check failed: %s", exc)
            return False

    @staticmethod
    def _extract_text(data: Dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(str(p.get("text", "")) for p in parts if isinstance(p, dict))
