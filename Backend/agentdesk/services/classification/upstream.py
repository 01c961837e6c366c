"""
Upstream text-generation transport.

The classifier only needs "send this prompt to that model, give me the
text back". ``OpenAICompatibleGenerator`` does that over the OpenAI SDK
against any OpenAI-compatible endpoint and maps SDK failures onto the
classifier error taxonomy.
"""
from __future__ import annotations

import abc
import asyncio
import logging
from typing import Any, Optional

from openai import (
    AsyncOpenAI,
    APIConnectionError,
    APIStatusError,
    NotFoundError,
    RateLimitError,
)

from .errors import (
    ClassificationError,
    ClassifierRateLimitError,
    MalformedResponseError,
    ModelNotFoundError,
    UpstreamCallError,
)

logger = logging.getLogger(__name__)

MAX_COMPLETION_TOKENS: int = 800

_RATE_LIMIT_MARKERS = ("429", "quota", "resource_exhausted", "rate limit")
_NOT_FOUND_MARKERS = ("404", "not found", "is not supported", "unknown model")


class TextGenerator(abc.ABC):
    """Pluggable "prompt in, text out" capability."""

    @abc.abstractmethod
    async def generate(self, model: str, prompt: str, timeout: float) -> str:
        """
        Return the model's text reply.

        Raises:
            ClassifierRateLimitError: quota / rate-limit signal.
            ModelNotFoundError:       the model identifier is not recognized.
            UpstreamCallError:        timeout or any other transport failure.
            MalformedResponseError:   the reply had no text.
        """

    async def close(self) -> None:
        return None


def classify_upstream_error(exc: BaseException) -> ClassificationError:
    """Map an arbitrary upstream exception to the classifier taxonomy."""
    if isinstance(exc, ClassificationError):
        return exc
    if isinstance(exc, RateLimitError):
        return ClassifierRateLimitError(str(exc))
    if isinstance(exc, NotFoundError):
        return ModelNotFoundError(str(exc))
    if isinstance(exc, asyncio.TimeoutError):
        return UpstreamCallError("Upstream call timed out")

    message = str(exc).lower()
    status = getattr(exc, "status_code", None)
    if status == 429 or any(marker in message for marker in _RATE_LIMIT_MARKERS):
        return ClassifierRateLimitError(str(exc))
    if status == 404 or any(marker in message for marker in _NOT_FOUND_MARKERS):
        return ModelNotFoundError(str(exc))
    return UpstreamCallError(f"{type(exc).__name__}: {exc}")


def _extract_text(response: Any) -> str:
    if not getattr(response, "choices", None):
        raise MalformedResponseError("Upstream returned a response with no choices.")
    content = response.choices[0].message.content
    if not content or not content.strip():
        raise MalformedResponseError("Upstream returned an empty response body.")
    return content.strip()


class OpenAICompatibleGenerator(TextGenerator):
    def __init__(self, api_key: str, base_url: Optional[str] = None, max_tokens: int = MAX_COMPLETION_TOKENS):
        # Retries are owned by the classifier, not the SDK
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)
        self._max_tokens = max_tokens

    async def generate(self, model: str, prompt: str, timeout: float) -> str:
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=model,
                    messages=[{"role": "user", "content": prompt}],
                    max_tokens=self._max_tokens,
                    temperature=0,
                ),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, APIConnectionError, APIStatusError) as e:
            raise classify_upstream_error(e) from e
        return _extract_text(response)

    async def close(self) -> None:
        await self._client.close()


class UnconfiguredGenerator(TextGenerator):
    """Stand-in used when no upstream credential is configured."""

    async def generate(self, model: str, prompt: str, timeout: float) -> str:
        raise UpstreamCallError("AI_API_KEY is not configured")
