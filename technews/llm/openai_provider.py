# technews/llm/openai_provider.py
"""
OpenAI text service provider.
"""

from __future__ import annotations

from typing import Optional

import openai
from openai import OpenAI

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


class OpenAIProvider(TextService):
    """Chat completions through the official OpenAI client."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: float = 60.0,
    ):
        """
        Args:
            api_key: OpenAI API key. If not provided, uses OPENAI_API_KEY.
            model: Model to use. If not provided, uses OPENAI_MODEL.
        """
        settings = get_settings()
        self._api_key = api_key or settings.OPENAI_API_KEY
        if not self._api_key:
            raise ConfigurationError("OpenAI API key required. Set OPENAI_API_KEY or pass api_key.")

        self._model = model or settings.OPENAI_MODEL
        # Retries are handled by our own policy, not the client
        self._client = OpenAI(api_key=self._api_key, timeout=timeout, max_retries=0)

    @property
    def name(self) -> str:
        return "openai"

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
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            with log_llm_call(self.name, self._model, call_type) as metrics:
                response = self._client.chat.completions.create(
                    model=self._model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                    temperature=temperature,
                    max_tokens=max_tokens,
                    **kwargs,
                )
                usage = response.usage
                if usage is not None:
                    metrics["tokens_in"] = usage.prompt_tokens
                    metrics["tokens_out"] = usage.completion_tokens
        except openai.RateLimitError as e:
            raise RateLimitError(f"OpenAI rate limit: {e}") from e
        except openai.APITimeoutError as e:
            raise ServiceTimeoutError(f"OpenAI timeout: {e}") from e
        except openai.APIConnectionError as e:
            raise ServiceUnavailableError(f"OpenAI unreachable: {e}") from e
        except openai.InternalServerError as e:
            raise ServiceUnavailableError(f"OpenAI server error: {e}") from e
        except openai.APIStatusError as e:
            if e.status_code >= 500:
                raise ServiceUnavailableError(f"OpenAI error {e.status_code}: {e}") from e
            raise PermanentServiceError(f"OpenAI error {e.status_code}: {e}") from e

        text = response.choices[0].message.content if response.choices else None
        tokens = response.usage.total_tokens if response.usage is not None else 0
        return Completion(text=text or "", tokens_used=tokens)
