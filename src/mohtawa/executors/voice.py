"""Voice steps: ``voice.tts`` synthesizes narration and uploads the audio."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping

import httpx

from mohtawa.executors.base import StepContext, StepResult
from mohtawa.observability.logging import get_logger
from mohtawa.storage.object_store import VOICE_OUTPUT_PREFIX, generate_storage_key
from mohtawa.voice import TTSRequest, create_provider
from mohtawa.voice.types import MAX_TTS_CHARS
from mohtawa.workflows.resolve import resolve_input_deep

logger = get_logger(__name__)

RATE_LIMIT_MESSAGE = "Provider rate limit exceeded. Retry later."
TIMEOUT_MESSAGE = "TTS request timed out. Try a shorter text or retry."

_TEXT_KEYS = ("text", "content", "script", "output")


def resolve_text(config: Mapping[str, Any], input_data: Mapping[str, Any]) -> str:
    text = str(config.get("text") or "").strip()
    if text:
        return text
    for value in input_data.values():
        if isinstance(value, str) and value.strip():
            return value.strip()
    found = resolve_input_deep(input_data, *_TEXT_KEYS)
    return found.strip() if isinstance(found, str) else ""


def _optional_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _safe_error(message: str) -> str:
    lowered = message.lower()
    if "429" in message or "rate limit" in lowered:
        return RATE_LIMIT_MESSAGE
    if "timeout" in lowered or "timed out" in lowered:
        return TIMEOUT_MESSAGE
    return f"TTS failed: {message}"


async def run_voice(ctx: StepContext) -> StepResult:
    if ctx.step_type not in {"voice.tts", "tts", "text-to-speech"}:
        return StepResult.failed(f"Unsupported voice step type: {ctx.step_type}")
    if not ctx.user_id:
        return StepResult.failed("User context missing for voice.tts node.")

    config = ctx.config
    settings = ctx.app.settings

    provider_name = str(config.get("provider") or "elevenlabs").lower()
    voice_id = str(config.get("voiceId") or "").strip()
    if not voice_id:
        return StepResult.failed("voiceId is required for voice.tts.")

    text = resolve_text(config, ctx.input_data)
    if not text:
        return StepResult.failed(
            "No text provided. Set text in config or connect an upstream node with text output."
        )

    if provider_name == "elevenlabs":
        api_key, region = settings.elevenlabs_api_key, None
        env_name = "ELEVENLABS_API_KEY"
    elif provider_name == "azure":
        api_key, region = settings.azure_speech_key, settings.azure_speech_region
        env_name = "AZURE_SPEECH_KEY"
    else:
        return StepResult.failed(f"Unknown voice provider: {provider_name}")
    if not api_key:
        return StepResult.failed(f"{provider_name} API key not configured. Set {env_name}.")

    audio_format = "wav" if config.get("format") == "wav" else "mp3"
    provider = create_provider(
        provider_name,
        api_key=api_key,
        region=region,
        timeout=float(settings.tts_timeout_seconds),
        transport=ctx.app.http_transport,
    )
    request = TTSRequest(
        text=text[:MAX_TTS_CHARS],
        voice_id=voice_id,
        format=audio_format,
        stability=_optional_float(config.get("stability")),
        similarity_boost=_optional_float(config.get("similarityBoost")),
        speaking_rate=_optional_float(config.get("speakingRate")),
        language=config.get("language") or None,
    )

    try:
        result = await asyncio.wait_for(
            provider.synthesize(request), timeout=float(settings.tts_timeout_seconds)
        )
    except (asyncio.TimeoutError, httpx.TimeoutException):
        return StepResult.failed(TIMEOUT_MESSAGE)
    except Exception as exc:
        logger.warning("tts_failed", step_id=ctx.step_id, provider=provider_name, error=str(exc))
        return StepResult.failed(_safe_error(str(exc)))

    key = generate_storage_key(
        ctx.user_id, f"tts_{voice_id[-6:]}", audio_format, prefix=VOICE_OUTPUT_PREFIX
    )
    try:
        stored = await ctx.app.blob_store.put(key, result.audio, result.content_type)
    except Exception as exc:
        return StepResult.failed(f"TTS succeeded but storing audio failed: {exc}")

    output = {
        "audioUrl": stored.url,
        "audioKey": stored.key,
        "durationSec": result.duration_sec,
        "format": audio_format,
        "voiceProvider": provider_name,
        "voiceId": voice_id,
        "textLength": len(text),
    }
    logger.info("tts_completed", step_id=ctx.step_id, provider=provider_name, text_length=len(text))
    return StepResult.ok(output)
