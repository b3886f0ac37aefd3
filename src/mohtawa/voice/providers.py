"""Concrete TTS providers: ElevenLabs (JSON over REST) and Azure Speech (SSML)."""

from __future__ import annotations

from typing import Any
from xml.sax.saxutils import escape

import httpx

from mohtawa.observability.logging import get_logger
from mohtawa.voice.types import MAX_TTS_CHARS, TTSRequest, TTSResult, VoiceProviderError

logger = get_logger(__name__)

__all__ = ["AzureTTS", "ElevenLabsTTS", "create_provider"]

ELEVENLABS_BASE = "https://api.elevenlabs.io/v1"
DEFAULT_TIMEOUT_SECONDS = 60.0

_XML_ENTITIES = {'"': "&quot;", "'": "&apos;"}


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


class ElevenLabsTTS:
    """ElevenLabs text-to-speech.

    English voices use the monolingual model; anything else uses the
    multilingual one.
    """

    name = "elevenlabs"

    def __init__(
        self,
        api_key: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @staticmethod
    def model_for(language: str | None) -> str:
        lang = (language or "en").lower()
        if lang == "en" or lang.startswith("en-"):
            return "eleven_monolingual_v1"
        return "eleven_multilingual_v2"

    def build_body(self, request: TTSRequest) -> dict[str, Any]:
        stability = 0.5 if request.stability is None else request.stability
        similarity = 0.75 if request.similarity_boost is None else request.similarity_boost
        return {
            "text": request.text[:MAX_TTS_CHARS],
            "model_id": self.model_for(request.language),
            "voice_settings": {
                "stability": _clamp01(stability),
                "similarity_boost": _clamp01(similarity),
            },
        }

    async def synthesize(self, request: TTSRequest) -> TTSResult:
        accept = "audio/mpeg" if request.format == "mp3" else "audio/wav"
        url = f"{ELEVENLABS_BASE}/text-to-speech/{request.voice_id}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                url,
                json=self.build_body(request),
                headers={"xi-api-key": self.api_key, "Accept": accept},
            )
        if response.status_code >= 400:
            raise VoiceProviderError(
                f"ElevenLabs API error ({response.status_code}): {response.text[:500]}",
                status_code=response.status_code,
            )
        return TTSResult(
            audio=response.content,
            content_type=response.headers.get("content-type") or accept,
        )


class AzureTTS:
    """Azure Cognitive Services Speech synthesis via SSML."""

    name = "azure"

    def __init__(
        self,
        subscription_key: str,
        region: str = "eastus",
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.subscription_key = subscription_key
        self.region = region or "eastus"
        self.timeout = timeout
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return f"https://{self.region}.tts.speech.microsoft.com/cognitiveservices/v1"

    @staticmethod
    def build_ssml(text: str, voice_name: str, rate: float = 1.0) -> str:
        rate_attr = ""
        if rate != 1.0:
            sign = "+" if rate > 1 else ""
            rate_attr = f' rate="{sign}{round((rate - 1) * 100)}%"'
        return (
            "<speak version='1.0' xmlns='http://www.w3.org/2001/10/synthesis' xml:lang='en-US'>"
            f"<voice name='{escape(voice_name, _XML_ENTITIES)}'>"
            f"<prosody{rate_attr}>{escape(text, _XML_ENTITIES)}</prosody>"
            "</voice>"
            "</speak>"
        )

    async def synthesize(self, request: TTSRequest) -> TTSResult:
        output_format = (
            "audio-16khz-128kbitrate-mono-mp3"
            if request.format == "mp3"
            else "riff-16khz-16bit-mono-pcm"
        )
        ssml = self.build_ssml(
            request.text[:MAX_TTS_CHARS],
            request.voice_id,
            1.0 if request.speaking_rate is None else float(request.speaking_rate),
        )
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                self.endpoint,
                content=ssml.encode("utf-8"),
                headers={
                    "Ocp-Apim-Subscription-Key": self.subscription_key,
                    "Content-Type": "application/ssml+xml",
                    "X-Microsoft-OutputFormat": output_format,
                },
            )
        if response.status_code >= 400:
            raise VoiceProviderError(
                f"Azure TTS API error ({response.status_code}): {response.text[:500]}",
                status_code=response.status_code,
            )
        return TTSResult(
            audio=response.content,
            content_type="audio/mpeg" if request.format == "mp3" else "audio/wav",
        )


def create_provider(
    provider: str,
    *,
    api_key: str,
    region: str | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ElevenLabsTTS | AzureTTS:
    """Build the provider named ``provider``."""
    if provider == "elevenlabs":
        return ElevenLabsTTS(api_key, timeout=timeout, transport=transport)
    if provider == "azure":
        return AzureTTS(api_key, region or "eastus", timeout=timeout, transport=transport)
    raise ValueError(f"Unknown voice provider: {provider}")
