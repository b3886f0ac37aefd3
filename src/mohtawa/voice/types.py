"""Voice synthesis (TTS) provider abstraction.

Providers accept a ``TTSRequest`` and return raw audio bytes. The ``voice.tts``
step picks a provider by name through :func:`mohtawa.voice.create_provider`.

Example usage:
    provider = create_provider("elevenlabs", api_key=key)
    result = await provider.synthesize(TTSRequest(text="Hello", voice_id="abc"))
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol

__all__ = [
    "AudioFormat",
    "TTSRequest",
    "TTSResult",
    "VoiceProvider",
    "VoiceProviderError",
]

AudioFormat = Literal["mp3", "wav"]
MAX_TTS_CHARS = 5000


class VoiceProviderError(RuntimeError):
    """Non-2xx response from a TTS backend.

    Attributes:
        status_code: HTTP status returned by the provider
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class TTSRequest:
    """Provider-agnostic synthesis request.

    Attributes:
        text: Text to speak (providers truncate to 5000 characters)
        voice_id: Provider voice identifier (ElevenLabs id or Azure short name)
        format: mp3 or wav
        stability: ElevenLabs voice stability, 0-1
        similarity_boost: ElevenLabs similarity boost, 0-1
        speaking_rate: Azure prosody rate multiplier (1.0 = unchanged)
        language: Voice language, used to choose the ElevenLabs model
    """

    text: str
    voice_id: str
    format: AudioFormat = "mp3"
    stability: float | None = None
    similarity_boost: float | None = None
    speaking_rate: float | None = None
    language: str | None = None


@dataclass(frozen=True)
class TTSResult:
    audio: bytes
    content_type: str
    duration_sec: float | None = None


class VoiceProvider(Protocol):
    """Interface implemented by every TTS backend."""

    name: str

    async def synthesize(self, request: TTSRequest) -> TTSResult:
        """Synthesize ``request.text`` and return the encoded audio."""
        ...
