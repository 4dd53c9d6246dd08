"""Shared contract for pluggable reasoning-service adapters."""

from dataclasses import dataclass


@dataclass
class CompletionCall:
    """One prompt sent to an adapter, kept for inspection in tests and logs."""

    prompt: str
    max_tokens: int
    temperature: float


class CompletionAdapter:
    """Minimal interface implemented by all completion backends.

    ``complete`` returns raw generated text. It is fallible and never
    retries; failures surface as ``CompletionError``.
    """

    async def complete(self, prompt: str, *, max_tokens: int, temperature: float) -> str:
        raise NotImplementedError
