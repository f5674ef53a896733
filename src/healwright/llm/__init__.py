"""LLM integration for the rewrite fallback."""

from healwright.llm.builtin import BuiltinLLM
from healwright.llm.engine import GenerationRequest, LLMEngine, LLMError, LLMMessage, LLMResponse
from healwright.llm.factory import create_engine

__all__ = [
    "BuiltinLLM",
    "GenerationRequest",
    "LLMEngine",
    "LLMError",
    "LLMMessage",
    "LLMResponse",
    "create_engine",
]
