"""
Generative Language Client.

Thin async wrapper over the Gemini ``generateContent`` REST endpoint.
Every generation in the service (language detection, free-form survey
replies, result extraction) goes through a ``TextGenerator`` so tests
can substitute a fake.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

import httpx

from src.config import get_settings
from src.errors import GenerationError
from src.logging_config import get_logger

logger = get_logger(__name__)


class TextGenerator(Protocol):
    """Anything that turns a single prompt into a text reply."""

    async def generate(self, prompt: str, *, temperature: float = 0.4) -> str:
        ...


class GeminiClient:
    """
    Calls Gemini with a single-turn text prompt and returns the first candidate.

    A new ``httpx.AsyncClient`` is opened per call; pass ``transport`` to
    route requests somewhere other than the network.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.base_url = (base_url or settings.gemini_api_base_url).rstrip("/")
        self.timeout = timeout or settings.llm_timeout_seconds
        self._transport = transport

        if not self.api_key:
            logger.warning("gemini_api_key_missing")

    async def generate(self, prompt: str, *, temperature: float = 0.4) -> str:
        url = f"{self.base_url}/models/{self.model}:generateContent"
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": temperature},
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    url,
                    headers={
                        "x-goog-api-key": self.api_key,
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error("gemini_request_error", model=self.model, error=str(e))
            raise GenerationError(f"Gemini request failed: {e}") from e
        except ValueError as e:
            logger.error("gemini_response_not_json", model=self.model, error=str(e))
            raise GenerationError(f"Gemini returned a non-JSON response: {e}") from e

        try:
            text = _first_candidate_text(data)
        except (AttributeError, TypeError) as e:
            raise GenerationError(f"Unexpected Gemini response shape: {e}") from e
        if not text:
            raise GenerationError("No response generated by the language model")
        return text


def _first_candidate_text(data: dict[str, Any]) -> str:
    """Join the text parts of the first candidate, or '' if there is none."""
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts).strip()


_client: GeminiClient | None = None


def get_llm() -> GeminiClient:
    global _client
    if _client is None:
        _client = GeminiClient()
    return _client
