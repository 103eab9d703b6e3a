# technews/llm/base.py
"""
Base interface for text service providers.
Allows swapping between OpenAI, Anthropic, or a fake in tests.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class Completion:
    """Text returned by the service and the tokens it cost."""
    text: str
    tokens_used: int = 0


def extract_json(text: str) -> Dict[str, Any]:
    """Extract a JSON object from a model response, handling markdown code blocks."""
    code_block_match = re.search(r"```(?:json)?\s*([\s\S]*?)```", text)
    if code_block_match:
        text = code_block_match.group(1).strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        json_match = re.search(r"\{[\s\S]*\}", text)
        if not json_match:
            raise ValueError(f"Could not extract JSON from response: {text[:200]}")
        data = json.loads(json_match.group())

    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


class TextService(ABC):
    """Abstract base class for text service providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name (e.g., 'openai', 'anthropic')."""
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model being used (e.g., 'gpt-4o-mini')."""
        pass

    @abstractmethod
    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float = 0.3,
        json_mode: bool = False,
        call_type: str = "completion",
    ) -> Completion:
        """
        Run one completion.

        Raises:
            TransientServiceError: rate limits, timeouts and server errors (retryable)
            PermanentServiceError: any other API error
        """
        pass
