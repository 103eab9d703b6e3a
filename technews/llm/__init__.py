# technews/llm/__init__.py
"""
Text service abstraction layer.

Usage:
    from technews.llm import get_text_service

    service = get_text_service()  # Uses TEXT_PROVIDER from settings
    completion = service.complete(system_prompt, user_prompt, max_tokens=500)
"""

from __future__ import annotations

from typing import Optional

from technews.config import get_settings
from technews.llm.base import Completion, TextService, extract_json

__all__ = [
    "Completion",
    "TextService",
    "extract_json",
    "get_text_service",
]


def get_text_service(
    provider_name: Optional[str] = None,
    **kwargs,
) -> TextService:
    """
    Factory function to get a text service instance.

    Args:
        provider_name: Provider to use ('openai', 'anthropic').
                      If not provided, uses TEXT_PROVIDER (default: 'openai')
        **kwargs: Additional arguments passed to the provider constructor

    Raises:
        ConfigurationError: the provider's API key is missing
        ValueError: unknown provider name
    """
    name = (provider_name or get_settings().TEXT_PROVIDER).lower().strip()

    if name == "openai":
        from technews.llm.openai_provider import OpenAIProvider

        return OpenAIProvider(**kwargs)

    if name == "anthropic":
        from technews.llm.anthropic_provider import AnthropicProvider

        return AnthropicProvider(**kwargs)

    raise ValueError(f"Unknown text provider: {name}. Available: openai, anthropic")
