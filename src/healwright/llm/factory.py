"""Factory for creating an ``LLMEngine`` from configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

from healwright.llm.builtin import BuiltinLLM, RetryConfig
from healwright.llm.engine import LLMEngine, LLMError

if TYPE_CHECKING:
    from healwright.config import LLMConfig

_OLLAMA_DEFAULT_URL = "http://localhost:11434"


def create_engine(config: LLMConfig) -> LLMEngine:
    """Instantiate a ``BuiltinLLM`` from the ``llm`` config section.

    Raises:
        LLMError: If no model is configured or the provider is unknown.
    """
    if not config.model:
        raise LLMError(
            "No LLM model configured. Set 'llm.model' in .healwright.yml "
            "or HEALWRIGHT_LLM_MODEL."
        )

    model = config.model
    base_url = config.base_url or None
    if config.provider == "ollama":
        if not model.startswith("ollama/"):
            model = f"ollama/{model}"
        base_url = base_url or _OLLAMA_DEFAULT_URL
    elif config.provider not in {"openai", "anthropic"}:
        raise LLMError(f"Unsupported LLM provider: {config.provider!r}")

    return BuiltinLLM(
        model,
        api_key=config.api_key or None,
        base_url=base_url,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
        retry=RetryConfig(max_retries=config.max_retries),
        requests_per_minute=config.requests_per_minute,
    )
