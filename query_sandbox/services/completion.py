"""LLM completion provider used by the generative prompt translator.

The translator only needs raw text back from the model; everything about
the prompt contents and the parsing of the answer lives in
``services/translator.py``.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Protocol

from openai import OpenAI

from query_sandbox.config import get_settings

logger = logging.getLogger(__name__)

# In-memory counters exposed on /health
_LLM_CALLS: int = 0
_LLM_ERRORS: int = 0
_LLM_UNAVAILABLE: int = 0


class CompletionUnavailable(RuntimeError):
    """The completion provider is disabled, misconfigured or failed."""


class CompletionProvider(Protocol):
    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        max_tokens: int,
        temperature: float,
    ) -> str:
        ...


def get_llm_stats() -> dict[str, int]:
    """Expose basic counters for health/observability."""

    return {
        "calls": _LLM_CALLS,
        "errors": _LLM_ERRORS,
        "unavailable": _LLM_UNAVAILABLE,
    }


def llm_enabled() -> bool:
    settings = get_settings()
    return bool(settings.QUERY_LLM_ENABLED and settings.OPENAI_API_KEY)


def _extract_text(resp: Any) -> str:
    raw_text = getattr(resp, "output_text", None)
    if raw_text:
        return raw_text
    parts: List[str] = []
    for chunk in getattr(resp, "output", None) or []:
        for content_item in getattr(chunk, "content", None) or []:
            if getattr(content_item, "type", None) == "output_text":
                parts.append(getattr(content_item, "text", ""))
    return "".join(parts)


class OpenAICompletionProvider:
    """Single-shot completions through the OpenAI Responses API."""

    def __init__(
        self,
        *,
        client: Any | None = None,
        model: str | None = None,
        timeout_seconds: int | None = None,
    ) -> None:
        settings = get_settings()
        self._client = client
        self.model = model or settings.QUERY_LLM_MODEL
        self.timeout_seconds = timeout_seconds or settings.QUERY_LLM_TIMEOUT_SECONDS

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        settings = get_settings()
        if not settings.QUERY_LLM_ENABLED:
            raise CompletionUnavailable("Query generation model is disabled")
        if not settings.OPENAI_API_KEY:
            raise CompletionUnavailable("OPENAI_API_KEY is not set")
        self._client = OpenAI(api_key=settings.OPENAI_API_KEY)
        return self._client

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        max_tokens: int,
        temperature: float,
    ) -> str:
        global _LLM_CALLS, _LLM_ERRORS, _LLM_UNAVAILABLE

        start = time.monotonic()
        status = "success"
        try:
            try:
                client = self._get_client()
            except CompletionUnavailable:
                status = "unavailable"
                _LLM_UNAVAILABLE += 1
                raise

            _LLM_CALLS += 1
            messages: List[Dict[str, Any]] = [
                {"role": "system", "content": [{"type": "input_text", "text": system_prompt}]},
                {"role": "user", "content": [{"type": "input_text", "text": user_prompt}]},
            ]
            try:
                resp = client.responses.create(
                    model=self.model,
                    input=messages,
                    max_output_tokens=max_tokens,
                    temperature=temperature,
                    timeout=self.timeout_seconds,
                )
            except Exception as exc:  # noqa: BLE001
                status = "error"
                _LLM_ERRORS += 1
                logger.exception("Query generation call failed")
                raise CompletionUnavailable(f"Completion request failed: {type(exc).__name__}") from exc

            text = _extract_text(resp)
            if not text:
                status = "empty"
                _LLM_ERRORS += 1
                raise CompletionUnavailable("Model returned no text output")
            return text
        finally:
            logger.info(
                "Query generation call completed",
                extra={
                    "status": status,
                    "model": self.model,
                    "duration_seconds": time.monotonic() - start,
                },
            )


_provider: CompletionProvider | None = None


def get_completion_provider() -> CompletionProvider:
    """FastAPI dependency returning the process-wide provider."""

    global _provider
    if _provider is None:
        _provider = OpenAICompletionProvider()
    return _provider


__all__ = [
    "CompletionProvider",
    "CompletionUnavailable",
    "OpenAICompletionProvider",
    "get_completion_provider",
    "get_llm_stats",
    "llm_enabled",
]
