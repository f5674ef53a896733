"""LLMEngine: the interface the fix applier uses to request source rewrites."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class LLMMessage:
    """A single chat message."""

    role: str
    """One of ``'system'``, ``'user'``, or ``'assistant'``."""

    content: str


@dataclass
class GenerationRequest:
    """One rewrite request for a failing test case."""

    messages: list[LLMMessage]

    case_id: str = ""
    """Test case the rewrite is for; used in logs and tracing."""

    temperature: float | None = None
    """Sampling temperature; ``None`` uses the engine default."""

    max_tokens: int | None = None
    """Output budget; ``None`` uses the engine default."""

    extra: dict[str, object] = field(default_factory=dict)
    """Provider-specific parameters passed through unchanged."""


@dataclass
class LLMResponse:
    """The model's reply to a ``GenerationRequest``."""

    text: str
    model: str
    finish_reason: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def truncated(self) -> bool:
        """True when the model stopped at the output budget mid-rewrite."""
        return self.finish_reason == "length"

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class LLMEngine(ABC):
    """Something that can answer a ``GenerationRequest``."""

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> LLMResponse:
        """Return the model's reply.

        Raises:
            LLMError: On any provider failure once retries are spent.
        """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Model identifier recorded in remediation descriptions."""


class LLMError(Exception):
    """Base exception for LLM-related errors."""


class LLMAuthError(LLMError):
    """The provider rejected the credentials."""


class LLMRateLimitError(LLMError):
    """The provider kept rate limiting after every retry."""


class LLMConnectionError(LLMError):
    """The provider could not be reached."""
