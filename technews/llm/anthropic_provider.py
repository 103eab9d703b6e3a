# technews/llm/anthropic_provider.py
"""
Anthropic text service provider.
"""

from __future__ import annotations

from typing import Optional

import anthropic

from technews.config import get_settings
from technews.llm.base import Completion, TextService
from technews.logging_config import log_llm_call
from technews.services.resilience import (
    ConfigurationError,
    PermanentServiceError,
    RateLimitError,
    ServiceTimeoutError,
    ServiceUnavailableError,
)


class AnthropicProvider(TextService):
    """Messages API through the official Anthropic client."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: float = 60.0,
    ):
        settings = get_settings()
        self._api_key = api_key or settings.ANTHROPIC_API_KEY
        if not self._api_key:
            raise ConfigurationError("Anthropic API key required. Set ANTHROPIC_API_KEY or pass api_key.")

        self._model = model or settings.ANTHROPIC_MODEL
        self._client = anthropic.Anthropic(api_key=self._api_key, timeout=timeout, max_retries=0)

    @property
    def name(self) -> str:
        return "anthropic"

    @property
    def model_name(self) -> str:
        return self._model

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float = 0.3,
        json_mode: bool = False,
        call_type: str = "completion",
    ) -> Completion:
        # No JSON mode on this API: the prompts already ask for JSON and
        # callers parse with extract_json, which strips code fences.
        try:
            with log_llm_call(self.name, self._model, call_type) as metrics:
                response = self._client.messages.create(
                    model=self._model,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    system=system_prompt,
                    messages=[{"role": "user", "content": user_prompt}],
                )
                metrics["tokens_in"] = response.usage.input_tokens
                metrics["tokens_out"] = response.usage.output_tokens
        except anthropic.RateLimitError as e:
            raise RateLimitError(f"Anthropic rate limit: {e}") from e
        except anthropic.APITimeoutError as e:
            raise ServiceTimeoutError(f"Anthropic timeout: {e}") from e
        except anthropic.APIConnectionError as e:
            raise ServiceUnavailableError(f"Anthropic unreachable: {e}") from e
        except anthropic.InternalServerError as e:
            raise ServiceUnavailableError(f"Anthropic server error: {e}") from e
        except anthropic.APIStatusError as e:
            if e.status_code >= 500:
                raise ServiceUnavailableError(f"Anthropic error {e.status_code}: {e}") from e
            raise PermanentServiceError(f"Anthropic error {e.status_code}: {e}") from e

        text = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
        tokens = response.usage.input_tokens + response.usage.output_tokens
        return Completion(text=text, tokens_used=tokens)
