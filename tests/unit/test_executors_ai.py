"""Unit tests for LLM steps."""

import json
from types import SimpleNamespace

import httpx

from mohtawa.executors.ai import RATE_LIMIT_MESSAGE, resolve_prompt, run_ai
from mohtawa.executors.base import StepContext


def _ctx(settings, transport, config=None, input_data=None) -> StepContext:
    return StepContext(
        app=SimpleNamespace(settings=settings, http_transport=transport),  # type: ignore[arg-type]
        step_id="llm",
        step_type="llm",
        category="ai",
        config=config or {},
        input_data=input_data or {},
        user_id="user-1",
    )


def _transport(seen: list[httpx.Request], status: int = 200, payload=None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if status >= 400:
            return httpx.Response(status, text="nope")
        return httpx.Response(200, json=payload or {})

    return httpx.MockTransport(handler)


def test_resolve_prompt_from_upstream():
    assert resolve_prompt({"prompt": "  Hi "}, {}) == "Hi"
    assert resolve_prompt({}, {"a": "one", "b": {"text": "two"}}) == "one\ntwo"
    assert resolve_prompt({}, {"a": {"n": 1}}) == '{"n": 1}'


async def test_missing_prompt_is_an_error(settings_factory):
    result = await run_ai(_ctx(settings_factory(openai_api_key="k"), None))

    assert result.error is not None
    assert result.error.startswith("No prompt provided")


async def test_missing_key_is_an_error(settings_factory):
    result = await run_ai(_ctx(settings_factory(), None, config={"prompt": "hi"}))

    assert result.error == "OpenAI API key not configured. Set OPENAI_API_KEY."


async def test_unsupported_provider(settings_factory):
    result = await run_ai(_ctx(settings_factory(), None, config={"prompt": "hi", "provider": "x"}))

    assert result.error == 'Unsupported LLM provider: x. Use "openai" or "anthropic".'


async def test_openai_completion(settings_factory):
    seen: list[httpx.Request] = []
    payload = {
        "model": "gpt-4o-mini",
        "choices": [{"message": {"content": "A hook"}, "finish_reason": "stop"}],
        "usage": {"total_tokens": 12, "prompt_tokens": 8, "completion_tokens": 4},
    }
    ctx = _ctx(
        settings_factory(openai_api_key="sk-test"),
        _transport(seen, payload=payload),
        config={"prompt": "Write a hook", "maxTokens": 50},
    )

    result = await run_ai(ctx)

    assert result.output == {
        "text": "A hook",
        "model": "gpt-4o-mini",
        "tokensUsed": 12,
        "promptTokens": 8,
        "completionTokens": 4,
        "finishReason": "stop",
    }
    body = json.loads(seen[0].content)
    assert seen[0].headers["authorization"] == "Bearer sk-test"
    assert body["max_tokens"] == 50
    assert body["messages"][1] == {"role": "user", "content": "Write a hook"}


async def test_anthropic_completion_uses_default_model_for_foreign_names(settings_factory):
    seen: list[httpx.Request] = []
    payload = {
        "model": "claude-3-5-haiku-latest",
        "content": [{"type": "text", "text": "Hello"}],
        "usage": {"input_tokens": 3, "output_tokens": 2},
    }
    ctx = _ctx(
        settings_factory(anthropic_api_key="ak"),
        _transport(seen, payload=payload),
        config={"prompt": "hi", "provider": "claude", "model": "gpt-4"},
    )

    result = await run_ai(ctx)

    assert result.output["text"] == "Hello"
    assert result.output["tokensUsed"] == 5
    body = json.loads(seen[0].content)
    assert body["model"] == "claude-3-5-haiku-latest"
    assert seen[0].headers["x-api-key"] == "ak"


async def test_rate_limit_is_mapped(settings_factory):
    ctx = _ctx(
        settings_factory(openai_api_key="k"), _transport([], status=429), config={"prompt": "hi"}
    )

    result = await run_ai(ctx)

    assert result.error == RATE_LIMIT_MESSAGE


async def test_provider_error_includes_status(settings_factory):
    ctx = _ctx(
        settings_factory(openai_api_key="k"), _transport([], status=500), config={"prompt": "hi"}
    )

    result = await run_ai(ctx)

    assert result.error == "OpenAI API error (500): nope"
