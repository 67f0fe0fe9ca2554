"""
SMUGGLER AI Module

LLM-backed advisory opinions on probe results.
"""

from .advisor import (
    AdvisoryBackend,
    AdvisoryConfig,
    AdvisoryService,
    AnthropicBackend,
    LLMAdvisor,
    LLMBackend,
    OllamaBackend,
    OpenAIBackend,
    ResponseSummary,
    clean_json,
    create_advisor,
)

__all__ = [
    "AdvisoryBackend",
    "AdvisoryConfig",
    "AdvisoryService",
    "AnthropicBackend",
    "LLMAdvisor",
    "LLMBackend",
    "OllamaBackend",
    "OpenAIBackend",
    "ResponseSummary",
    "clean_json",
    "create_advisor",
]
