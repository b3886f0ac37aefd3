"""Text-to-speech providers."""

from mohtawa.voice.providers import AzureTTS, ElevenLabsTTS, create_provider
from mohtawa.voice.types import TTSRequest, TTSResult, VoiceProvider, VoiceProviderError

__all__ = [
    "AzureTTS",
    "ElevenLabsTTS",
    "TTSRequest",
    "TTSResult",
    "VoiceProvider",
    "VoiceProviderError",
    "create_provider",
]
