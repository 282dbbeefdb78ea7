"""Tests for prompts and provider routing."""

import json

import httpx
import pytest

from app.config import settings
from app.errors import ItemDispatchFailure
from app.services.llm_client import LLMClient
from app.services.model_invoker import (
    SYSTEM_PROMPT,
    CanonicalVerse,
    ModelInvoker,
    ModelSpec,
    OpenRouterProvider,
    Target,
    build_prompt,
)


def chapter_target():
    return Target(
        target_type="chapter",
        target_id=101,
        reference="Genesis 1",
        bible_id=1001,
        book_id=1,
        chapter_id=101,
        verses=[
            CanonicalVerse(1001, 1, "In  the beginning", "In the beginning", "h1"),
            CanonicalVerse(1002, 2, "And the earth", "And the earth", "h2"),
        ],
    )


def verse_target():
    return Target(
        target_type="verse",
        target_id=1002,
        reference="Genesis 1:2",
        bible_id=1001,
        book_id=1,
        chapter_id=101,
        verses=[CanonicalVerse(1002, 2, "And the earth", "And the earth", "h2")],
    )


def mock_model(**config):
    return ModelSpec(model_id=1, provider="mock", display_name="Mock", api_config=config)


class StubLLMClient:
    def __init__(self, content):
        self.content = content
        self.calls = []

    def chat_completion(self, **kwargs):
        self.calls.append(kwargs)
        return self.content


def test_prompts_ask_for_kjv_json():
    """Test prompts name the reference and the expected JSON shape."""
    chapter_prompt = build_prompt(chapter_target())
    verse_prompt = build_prompt(verse_target())

    assert "Genesis 1 in the English King James Version" in chapter_prompt
    assert '"verses"' in chapter_prompt
    assert "Genesis 1:2" in verse_prompt
    assert '"verseText"' in verse_prompt


def test_mock_echoes_raw_text():
    """Test the default mock mode recites every canonical verse."""
    raw = ModelInvoker().invoke(mock_model(), chapter_target())

    parsed = json.loads(raw)
    assert parsed["book"] == "Genesis"
    assert parsed["chapter"] == "1"
    assert [v["verseText"] for v in parsed["verses"]] == ["In  the beginning", "And the earth"]


def test_mock_modes():
    """Test processed and literal modes."""
    processed = json.loads(ModelInvoker().invoke(mock_model(mode="echo_processed"), chapter_target()))
    literal = json.loads(
        ModelInvoker().invoke(mock_model(mock={"mode": "literal", "literalResponse": "Amen"}), verse_target())
    )

    assert processed["verses"][0]["verseText"] == "In the beginning"
    assert literal == {"book": "Genesis", "chapter": "1", "verseNumber": "2", "verseText": "Amen"}


def test_mock_overrides_and_failures():
    """Test per-target overrides and forced failures."""
    invoker = ModelInvoker()

    assert invoker.invoke(mock_model(overrides={"1002": "plain text"}), verse_target()) == "plain text"
    with pytest.raises(ItemDispatchFailure):
        invoker.invoke(mock_model(failTargets=[101]), chapter_target())
    with pytest.raises(ItemDispatchFailure, match="Empty response"):
        invoker.invoke(mock_model(overrides={"1002": "  "}), verse_target())


def test_unknown_provider():
    """Test models with an unsupported provider fail the item."""
    model = ModelSpec(model_id=1, provider="carrier-pigeon", display_name="?")

    with pytest.raises(ItemDispatchFailure, match="Unsupported provider"):
        ModelInvoker().invoke(model, verse_target())


def test_openrouter_request():
    """Test the OpenRouter provider sends the system prompt and model settings."""
    client = StubLLMClient('{"verseText": "And the earth"}')
    invoker = ModelInvoker(providers={"openrouter": OpenRouterProvider(llm_client=client)})
    model = ModelSpec(
        model_id=5,
        provider="OpenRouter",
        display_name="GPT",
        model_name="openai/gpt-4o",
        api_config={"temperature": 0.2, "maxTokens": 512},
    )

    assert invoker.invoke(model, verse_target()) == '{"verseText": "And the earth"}'

    call = client.calls[0]
    assert call["model"] == "openai/gpt-4o"
    assert call["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}
    assert call["temperature"] == 0.2
    assert call["max_tokens"] == 512
    assert call["json_mode"]


def test_llm_client_chat_completion(monkeypatch):
    """Test the client posts an OpenRouter request and returns the message content."""
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"choices": [{"message": {"content": "In the beginning"}}]})

    real_client = httpx.Client
    monkeypatch.setattr(
        httpx, "Client", lambda timeout: real_client(transport=httpx.MockTransport(handler), timeout=timeout)
    )

    content = LLMClient(api_key="test-key").chat_completion(
        model="openai/gpt-4o",
        messages=[{"role": "user", "content": "Genesis 1:1"}],
        json_mode=True,
    )

    assert content == "In the beginning"
    body = json.loads(requests[0].content)
    assert requests[0].url.path.endswith("/chat/completions")
    assert requests[0].headers["Authorization"] == "Bearer test-key"
    assert body["response_format"] == {"type": "json_object"}
    assert body["temperature"] == 0.0


def test_llm_client_requires_key():
    """Test a missing API key is reported before any request."""
    client = LLMClient()
    client.api_key = ""

    with pytest.raises(ValueError, match="API key"):
        client.chat_completion(model="openai/gpt-4o", messages=[])


def test_openrouter_attempts_fit_in_one_call(monkeypatch):
    """Test the per-attempt HTTP timeout shares the model call timeout across attempts."""
    monkeypatch.setattr(settings, "MODEL_CALL_TIMEOUT", 90.0)
    monkeypatch.setattr(settings, "MODEL_CALL_MAX_ATTEMPTS", 3)
    client = StubLLMClient('{"verseText": "And the earth"}')
    model = ModelSpec(model_id=5, provider="openrouter", display_name="GPT", model_name="openai/gpt-4o")

    OpenRouterProvider(llm_client=client).generate(model, verse_target())

    assert client.calls[0]["timeout"] == 30.0
