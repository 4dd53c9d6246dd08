"""OpenAI adapter tests without network access."""

import asyncio
from types import SimpleNamespace

import httpx
import pytest
from openai import APIConnectionError

from adventure_mas.agents.adapters.openai_adapter import OpenAICompletionAdapter
from adventure_mas.config import settings
from adventure_mas.errors import CompletionError
from adventure_mas.service import pick_adapter


def _adapter(monkeypatch, create):
    adapter = OpenAICompletionAdapter.__new__(OpenAICompletionAdapter)
    monkeypatch.setattr(OpenAICompletionAdapter, "_semaphore", asyncio.Semaphore(1))
    monkeypatch.setattr(adapter, "_create_response", create)
    return adapter


def _response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def test_complete_returns_stripped_text(monkeypatch):
    seen = []

    def create(prompt, max_tokens, temperature):
        seen.append((prompt, max_tokens, temperature))
        return _response('  {"title": "Quest"}\n')

    adapter = _adapter(monkeypatch, create)
    text = asyncio.run(adapter.complete("RECORD: quest", max_tokens=700, temperature=0.8))
    assert text == '{"title": "Quest"}'
    assert seen == [("RECORD: quest", 700, 0.8)]


def test_transport_error_becomes_completion_error(monkeypatch):
    def create(prompt, max_tokens, temperature):
        raise APIConnectionError(request=httpx.Request("POST", "https://api.test/v1/chat/completions"))

    adapter = _adapter(monkeypatch, create)
    with pytest.raises(CompletionError, match="APIConnectionError"):
        asyncio.run(adapter.complete("RECORD: event", max_tokens=100, temperature=0.5))


def test_empty_response_is_an_error(monkeypatch):
    adapter = _adapter(monkeypatch, lambda prompt, max_tokens, temperature: _response("   "))
    with pytest.raises(CompletionError, match="no text"):
        asyncio.run(adapter.complete("RECORD: event", max_tokens=100, temperature=0.5))

    adapter = _adapter(monkeypatch, lambda prompt, max_tokens, temperature: SimpleNamespace(choices=[]))
    with pytest.raises(CompletionError):
        asyncio.run(adapter.complete("RECORD: event", max_tokens=100, temperature=0.5))


def test_missing_key_is_rejected(monkeypatch):
    monkeypatch.setattr(settings, "openai_api_key", "")
    with pytest.raises(RuntimeError, match="OPENAI_API_KEY"):
        OpenAICompletionAdapter()


def test_pick_adapter_by_mode(monkeypatch):
    monkeypatch.setattr(settings, "ai_mode", "openai")
    monkeypatch.setattr(settings, "openai_api_key", "sk-test")
    assert isinstance(pick_adapter(), OpenAICompletionAdapter)

    monkeypatch.setattr(settings, "ai_mode", "carrier-pigeon")
    with pytest.raises(ValueError):
        pick_adapter()
