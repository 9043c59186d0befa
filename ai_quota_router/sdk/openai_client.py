"""
Routed OpenAI-compatible client.

Picks a backend for every chat completion, records the outcome in the
usage ledger and moves to the next backend when one is rate limited.
"""

import logging
import math
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from openai import APIError, OpenAI, RateLimitError

from ..core.catalog import Backend
from ..core.router import QuotaRouter
from ..core.token_counter import TokenUsage, estimate_tokens
from ..storage.models import Outcome
from ..storage.repository import LedgerError

logger = logging.getLogger(__name__)

GROQ_BASE_URL = "https://api.groq.com/openai/v1"

_RETRY_IN = re.compile(r"try again in (\d+(?:\.\d+)?)(s|m|h)", re.IGNORECASE)


def parse_retry_after(error: Exception) -> Optional[int]:
    """Seconds the provider asked us to wait, if it said.

    Reads the ``retry-after`` header first, then phrases like
    "try again in 1.5m" in the error message.
    """
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if headers is not None:
        retry_after = headers.get("retry-after")
        if retry_after:
            try:
                return int(float(retry_after))
            except ValueError:
                pass

    match = _RETRY_IN.search(str(error))
    if match:
        value = float(match.group(1))
        unit = match.group(2).lower()
        if unit == "m":
            return math.ceil(value * 60)
        if unit == "h":
            return math.ceil(value * 3600)
        return math.ceil(value)
    return None


@dataclass(frozen=True)
class RoutedCompletion:
    """Result of a routed chat completion."""
    content: Optional[str]
    backend: Backend
    usage: Optional[TokenUsage]
    response: Any
    attempts: int = 1


class RoutedOpenAI:
    """OpenAI-compatible chat client that rotates across quota-limited backends.

    Accounting is post-hoc: a backend's usage is recorded once its call
    has completed. Failures to record are logged and never fail the call.
    """

    def __init__(
        self,
        router: QuotaRouter,
        api_key: Optional[str] = None,
        base_url: str = GROQ_BASE_URL,
        max_retries: int = 3
    ):
        """Initialize routed client.

        Args:
            router: Quota router used for selection and accounting
            api_key: Provider API key (defaults to $GROQ_API_KEY)
            base_url: OpenAI-compatible endpoint
            max_retries: Backend switches allowed after a rate limit

        Raises:
            ValueError: If max_retries is negative
        """
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")

        self.router = router
        self.max_retries = max_retries
        self.client = OpenAI(
            api_key=api_key or os.environ.get("GROQ_API_KEY"),
            base_url=base_url
        )

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 1000,
        prefer_fast: bool = False,
        **kwargs: Any
    ) -> RoutedCompletion:
        """Create a chat completion on the best available backend.

        Args:
            messages: List of message dictionaries (required)
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            prefer_fast: Rank backends by the catalog's fast order
            **kwargs: Additional completion parameters

        Returns:
            RoutedCompletion with the content and the backend that served it

        Raises:
            ValueError: If messages is empty
            NoBackendAvailable: If every backend is excluded for today
            RateLimitError: If every attempted backend was rate limited
            APIError: Other provider errors, after they are recorded
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        estimated = estimate_tokens(messages, max_tokens)
        tried = set()
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 2):
            selection = self.router.select_backend(prefer_fast=prefer_fast)
            backend = selection.backend
            if backend in tried:
                break
            tried.add(backend)

            logger.info(
                "Using %s (attempt %d/%d)", backend.value, attempt, self.max_retries + 1
            )
            try:
                response = self.client.chat.completions.create(
                    model=backend.value,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    **kwargs
                )
            except RateLimitError as e:
                last_error = e
                retry_after = parse_retry_after(e)
                logger.warning(
                    "Rate limited on %s (retry after %ss), switching backend",
                    backend.value, retry_after if retry_after is not None else "?"
                )
                self._record(backend, 0, Outcome.RATE_LIMITED)
                continue
            except APIError:
                self._record(backend, estimated, Outcome.ERROR)
                raise

            usage = None
            if response.usage:
                usage = TokenUsage(
                    prompt_tokens=response.usage.prompt_tokens,
                    completion_tokens=response.usage.completion_tokens
                )
                self._record(backend, response.usage.total_tokens, Outcome.SUCCESS)
            else:
                logger.warning(
                    "%s response missing usage, recording estimate of %d tokens",
                    backend.value, estimated
                )
                self._record(backend, estimated, Outcome.SUCCESS)

            content = None
            if response.choices:
                content = response.choices[0].message.content
            return RoutedCompletion(
                content=content,
                backend=backend,
                usage=usage,
                response=response,
                attempts=attempt
            )

        # Every attempt was rate limited
        raise last_error

    def complete(self, prompt: str, **kwargs: Any) -> Optional[str]:
        """Single user prompt, returning only the content."""
        return self.chat([{"role": "user", "content": prompt}], **kwargs).content

    def complete_with_system(
        self,
        system_prompt: str,
        user_prompt: str,
        **kwargs: Any
    ) -> Optional[str]:
        """System + user prompt, returning only the content."""
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        return self.chat(messages, **kwargs).content

    def _record(self, backend: Backend, tokens: int, outcome: Outcome) -> None:
        try:
            self.router.record_usage(backend, tokens, outcome=outcome)
        except LedgerError as e:
            logger.warning("Usage for %s not recorded: %s", backend.value, e)
