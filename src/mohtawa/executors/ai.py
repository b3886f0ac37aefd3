"""AI steps: chat completion against OpenAI or Anthropic over HTTP."""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping

import httpx

from mohtawa.executors.base import StepContext, StepResult
from mohtawa.observability.logging import get_logger

logger = get_logger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
RATE_LIMIT_MESSAGE = "Provider rate limit exceeded. Retry later."


def resolve_prompt(config: Mapping[str, Any], input_data: Mapping[str, Any]) -> str:
    prompt = str(config.get("prompt") or config.get("text") or "").strip()
    if prompt:
        return prompt
    parts: list[str] = []
    for value in input_data.values():
        if isinstance(value, str):
            parts.append(value)
        elif isinstance(value, Mapping) and "text" in value:
            parts.append(str(value["text"]))
        else:
            parts.append(json.dumps(value, default=str))
    return "\n".join(parts).strip()


async def _post(
    url: str,
    *,
    headers: Dict[str, str],
    body: Dict[str, Any],
    timeout: float,
    transport: httpx.AsyncBaseTransport | None,
) -> httpx.Response:
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        return await client.post(url, headers=headers, json=body)


async def run_ai(ctx: StepContext) -> StepResult:
    config = ctx.config
    settings = ctx.app.settings
    timeout = float(settings.llm_timeout_seconds)

    prompt = resolve_prompt(config, ctx.input_data)
    if not prompt:
        return StepResult.failed(
            "No prompt provided for LLM node. Set a prompt in the node config or connect an upstream node."
        )

    provider = str(config.get("provider") or "openai").lower()
    system_prompt = str(config.get("systemPrompt") or "You are a helpful assistant.")
    max_tokens = int(config.get("maxTokens") or 1024)
    temperature = float(config.get("temperature", 0.7))

    if provider in {"openai", "gpt"}:
        api_key = settings.openai_api_key
        name = "OpenAI"
        if not api_key:
            return StepResult.failed("OpenAI API key not configured. Set OPENAI_API_KEY.")
        url = OPENAI_CHAT_URL
        headers = {"Authorization": f"Bearer {api_key}"}
        body: Dict[str, Any] = {
            "model": str(config.get("model") or settings.openai_model),
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
    elif provider in {"anthropic", "claude"}:
        api_key = settings.anthropic_api_key
        name = "Anthropic"
        if not api_key:
            return StepResult.failed("Anthropic API key not configured. Set ANTHROPIC_API_KEY.")
        model = str(config.get("model") or "")
        url = ANTHROPIC_MESSAGES_URL
        headers = {"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION}
        body = {
            "model": model if model.startswith("claude") else settings.anthropic_model,
            "max_tokens": max_tokens,
            "system": system_prompt,
            "messages": [{"role": "user", "content": prompt}],
        }
    else:
        return StepResult.failed(
            f'Unsupported LLM provider: {provider}. Use "openai" or "anthropic".'
        )

    try:
        response = await _post(
            url, headers=headers, body=body, timeout=timeout, transport=ctx.app.http_transport
        )
    except httpx.TimeoutException:
        return StepResult.failed(f"LLM request timed out after {timeout:g}s")
    except httpx.HTTPError as exc:
        return StepResult.failed(f"{name} API error: {exc}")

    if response.status_code == 429:
        return StepResult.failed(RATE_LIMIT_MESSAGE)
    if response.status_code >= 400:
        return StepResult.failed(
            f"{name} API error ({response.status_code}): {response.text[:500]}"
        )

    data = response.json()
    if name == "OpenAI":
        choice = (data.get("choices") or [{}])[0]
        usage = data.get("usage") or {}
        output = {
            "text": (choice.get("message") or {}).get("content") or "",
            "model": data.get("model"),
            "tokensUsed": usage.get("total_tokens", 0),
            "promptTokens": usage.get("prompt_tokens", 0),
            "completionTokens": usage.get("completion_tokens", 0),
            "finishReason": choice.get("finish_reason") or "unknown",
        }
    else:
        content = data.get("content") or [{}]
        usage = data.get("usage") or {}
        prompt_tokens = int(usage.get("input_tokens", 0))
        completion_tokens = int(usage.get("output_tokens", 0))
        output = {
            "text": content[0].get("text") or "",
            "model": data.get("model"),
            "tokensUsed": prompt_tokens + completion_tokens,
            "promptTokens": prompt_tokens,
            "completionTokens": completion_tokens,
        }

    logger.info("llm_completed", step_id=ctx.step_id, provider=name.lower(), model=output["model"])
    return StepResult.ok(output)
