"""OpenAI-compatible completion adapter.

Sends one chat completion per prompt to any endpoint speaking the OpenAI
API (``OPENAI_BASE_URL``). No retry happens here: a failed call is a hard
failure of the agent turn that issued it.
"""

import asyncio
import logging
from typing import Any

from openai import OpenAI, OpenAIError

from ...config import settings
from ...errors import CompletionError
from .base import CompletionAdapter

logger = logging.getLogger(__name__)


class OpenAICompletionAdapter(CompletionAdapter):
    """Adapter that calls the chat completions API and returns message text."""

    _semaphore: asyncio.Semaphore | None = None

    def __init__(self) -> None:
        if not settings.openai_api_key:
            raise RuntimeError("OPENAI_API_KEY is required for AI_MODE=openai")
        self._client = OpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.openai_timeout_ms / 1000,
            max_retries=0,
        )
        if OpenAICompletionAdapter._semaphore is None:
            OpenAICompletionAdapter._semaphore = asyncio.Semaphore(max(1, settings.openai_concurrency))

    async def complete(self, prompt: str, *, max_tokens: int, temperature: float) -> str:
        assert OpenAICompletionAdapter._semaphore is not None
        try:
            async with OpenAICompletionAdapter._semaphore:
                response = await asyncio.to_thread(self._create_response, prompt, max_tokens, temperature)
        except OpenAIError as exc:
            logger.warning("Completion request failed: %s: %s", type(exc).__name__, str(exc)[:160])
            raise CompletionError(f"{type(exc).__name__}: {str(exc)[:180]}") from exc

        text = self._extract_text(response)
        if not text:
            raise CompletionError("Completion response contained no text")
        return text

    def _create_response(self, prompt: str, max_tokens: int, temperature: float) -> Any:
        return self._client.chat.completions.create(
            model=settings.openai_model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            temperature=temperature,
        )

    def _extract_text(self, response: Any) -> str:
        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        return content.strip() if isinstance(content, str) else ""
