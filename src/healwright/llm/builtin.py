"""LiteLLM-backed rewrite engine.

Requests are paced to the configured requests-per-minute, retried with
exponential backoff on transient provider errors, and traced as Sentry
spans when telemetry is enabled.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

import litellm
from litellm.exceptions import APIConnectionError as LiteLLMConnectionError
from litellm.exceptions import APIError as LiteLLMAPIError
from litellm.exceptions import AuthenticationError as LiteLLMAuthError
from litellm.exceptions import RateLimitError as LiteLLMRateLimitError
from litellm.exceptions import Timeout as LiteLLMTimeout

from healwright.llm.engine import (
    GenerationRequest,
    LLMAuthError,
    LLMConnectionError,
    LLMEngine,
    LLMError,
    LLMRateLimitError,
    LLMResponse,
)
from healwright.telemetry.sentry_integration import start_span

logger = logging.getLogger(__name__)

litellm.suppress_debug_info = True

_SERVER_ERROR_THRESHOLD = 500

# Provider error -> (our error, retry it?).  Checked in order.
_ERROR_MAP: tuple[tuple[type[Exception], type[LLMError], bool], ...] = (
    (LiteLLMAuthError, LLMAuthError, False),
    (LiteLLMRateLimitError, LLMRateLimitError, True),
    (LiteLLMTimeout, LLMConnectionError, True),
    (LiteLLMConnectionError, LLMConnectionError, True),
)
_PROVIDER_ERRORS = (
    LiteLLMAuthError,
    LiteLLMRateLimitError,
    LiteLLMTimeout,
    LiteLLMConnectionError,
    LiteLLMAPIError,
)


@dataclass
class RetryConfig:
    """Exponential backoff settings for transient failures."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    backoff_factor: float = 2.0

    def delay(self, retry: int) -> float:
        """Seconds to wait before retry number *retry* (0-based)."""
        return min(self.base_delay * (self.backoff_factor**retry), self.max_delay)


class _RequestPacer:
    """Spaces request starts at least ``60 / requests_per_minute`` seconds apart."""

    def __init__(self, requests_per_minute: int) -> None:
        self._interval = 60.0 / max(requests_per_minute, 1)
        self._next_slot = 0.0
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            now = time.monotonic()
            if self._next_slot > now:
                await asyncio.sleep(self._next_slot - now)
                now = self._next_slot
            self._next_slot = now + self._interval


def classify_error(exc: Exception) -> tuple[type[LLMError], bool]:
    """Map a LiteLLM exception to an ``LLMError`` subclass and retryability."""
    for source, target, retryable in _ERROR_MAP:
        if isinstance(exc, source):
            return target, retryable
    return LLMError, _is_transient(exc)


class BuiltinLLM(LLMEngine):
    """Rewrite engine for any LiteLLM model string (``gpt-4o``, ``ollama/codellama``).

    Args:
        model: LiteLLM model identifier.
        api_key: Provider key; LiteLLM reads the provider's env var when unset.
        base_url: Custom endpoint, passed to LiteLLM as ``api_base``.
        temperature: Default for requests that leave it unset.
        max_tokens: Default output budget for requests that leave it unset.
        request_timeout: Seconds before one provider call is abandoned.
        retry: Backoff settings.
        requests_per_minute: Pacing limit shared by every request.
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 4096,
        request_timeout: float = 120.0,
        retry: RetryConfig | None = None,
        requests_per_minute: int = 60,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._base_url = base_url
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._request_timeout = request_timeout
        self._retry = retry or RetryConfig()
        self._pacer = _RequestPacer(requests_per_minute)
        self.tokens_used = 0  # prompt + completion, successful requests only

    @property
    def model_name(self) -> str:
        return self._model

    def completion_kwargs(self, request: GenerationRequest) -> dict[str, Any]:
        """Keyword arguments for ``litellm.acompletion`` with defaults applied."""
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": [{"role": m.role, "content": m.content} for m in request.messages],
            "temperature": (
                self._temperature if request.temperature is None else request.temperature
            ),
            "max_tokens": self._max_tokens if request.max_tokens is None else request.max_tokens,
            "timeout": self._request_timeout,
        }
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._base_url:
            kwargs["api_base"] = self._base_url
        kwargs.update(request.extra)
        return kwargs

    async def generate(self, request: GenerationRequest) -> LLMResponse:
        label = request.case_id or "rewrite"
        with start_span("healwright.llm", f"{self._model}: {label}"):
            raw = await self._complete(self.completion_kwargs(request), label)
        response = _to_response(raw, self._model)
        self.tokens_used += response.total_tokens
        logger.info(
            "LLM rewrite for %s via %s: %d tokens%s",
            label,
            response.model,
            response.total_tokens,
            " (truncated)" if response.truncated else "",
        )
        return response

    async def _complete(self, kwargs: dict[str, Any], label: str) -> Any:
        attempts = self._retry.max_retries + 1
        for attempt in range(attempts):
            await self._pacer.wait()
            try:
                return await litellm.acompletion(**kwargs)
            except _PROVIDER_ERRORS as exc:
                error_cls, retryable = classify_error(exc)
                if not retryable or attempt + 1 == attempts:
                    raise error_cls(str(exc)) from exc
                delay = self._retry.delay(attempt)
                logger.warning(
                    "LLM call for %s failed with %s (attempt %d/%d), retrying in %.1fs",
                    label,
                    type(exc).__name__,
                    attempt + 1,
                    attempts,
                    delay,
                )
                await asyncio.sleep(delay)
        raise LLMError("no LLM attempts were made")


def _to_response(raw: Any, model: str) -> LLMResponse:
    choice = raw.choices[0]
    usage = getattr(raw, "usage", None)
    return LLMResponse(
        text=choice.message.content or "",
        model=getattr(raw, "model", None) or model,
        finish_reason=getattr(choice, "finish_reason", None) or "",
        prompt_tokens=usage.prompt_tokens if usage else 0,
        completion_tokens=usage.completion_tokens if usage else 0,
    )


def _is_transient(exc: Exception) -> bool:
    """Return ``True`` if the API error looks transient (5xx or timeout)."""
    status = getattr(exc, "status_code", None)
    if isinstance(status, int) and status >= _SERVER_ERROR_THRESHOLD:
        return True
    msg = str(exc).lower()
    return "timeout" in msg or "overloaded" in msg
