"""
Token counting and usage tracking.

Exact counts come from provider responses; estimates are used only to
account for calls that failed before the provider reported usage.
"""

import math
from dataclasses import dataclass
from typing import Dict, Iterable

# Rough heuristic: one token per four characters of prompt text
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class TokenUsage:
    """Token usage reported by the provider for one completed call."""
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


def estimate_tokens(messages: Iterable[Dict[str, str]], max_tokens: int) -> int:
    """Upper-bound estimate of a request's token cost.

    Args:
        messages: Chat messages with a ``content`` field
        max_tokens: Completion budget requested from the provider

    Returns:
        Estimated prompt tokens plus the full completion budget
    """
    prompt_tokens = sum(
        math.ceil(len(message.get("content") or "") / CHARS_PER_TOKEN)
        for message in messages
    )
    return prompt_tokens + max_tokens
