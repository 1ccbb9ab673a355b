"""Speech synthesizer interfaces and provider-backed implementations.

Responsibilities:
- Define protocol for segment-level speech synthesis at a requested rate.
- Provide ElevenLabs- and OpenAI-backed synthesizers writing clip files.
- Build the configured synthesizer from resolved provider runtime values.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from ..config import ProviderRuntimeConfig
from ..errors import DataContractError
from ..llm.openai_client import OpenAISpeechClient
from ..models.datatypes import SpeechClip
from .elevenlabs_client import ElevenLabsClient
from .voices import VoiceProfile


class SpeechSynthesizer(Protocol):
    """Protocol for speech provider implementations."""

    provider_id: str
    clip_suffix: str

    def synthesize(
        self,
        text: str,
        voice: VoiceProfile,
        speaking_rate: float,
        output_path: Path,
    ) -> SpeechClip:
        """Synthesize `text` into `output_path` at `speaking_rate`."""


class ElevenLabsSynthesizer:
    """ElevenLabs-backed synthesizer writing MP3 clips."""

    provider_id = "elevenlabs"
    clip_suffix = ".mp3"
    _MIN_SPEED = 0.7
    _MAX_SPEED = 1.2

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = "eleven_multilingual_v2",
        timeout_seconds: float = 60.0,
    ) -> None:
        """Initialize ElevenLabs synthesizer settings."""

        self.model = model
        self.client = ElevenLabsClient(api_key=api_key, timeout_seconds=timeout_seconds)

    def synthesize(
        self,
        text: str,
        voice: VoiceProfile,
        speaking_rate: float,
        output_path: Path,
    ) -> SpeechClip:
        """Synthesize one clip; the provider speed range is narrower than the controller's."""

        speed = max(self._MIN_SPEED, min(self._MAX_SPEED, speaking_rate))
        audio_bytes = self.client.text_to_speech(
            voice_id=voice.provider_voice_id,
            text=text,
            model_id=self.model,
            voice_settings={
                "stability": voice.stability,
                "similarity_boost": voice.similarity_boost,
                "style": voice.style,
                "use_speaker_boost": voice.use_speaker_boost,
                "speed": round(speed, 3),
            },
        )
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(audio_bytes)
        return SpeechClip(
            path=output_path,
            provider=self.provider_id,
            voice=voice.provider_voice_id,
            speaking_rate=speed,
        )


class OpenAISpeechSynthesizer:
    """OpenAI-backed synthesizer writing MP3 clips."""

    provider_id = "openai"
    clip_suffix = ".mp3"
    _MIN_SPEED = 0.25
    _MAX_SPEED = 4.0

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = "gpt-4o-mini-tts",
        timeout_seconds: float = 60.0,
    ) -> None:
        """Initialize OpenAI synthesizer settings."""

        self.model = model
        self.client = OpenAISpeechClient(api_key=api_key, timeout_seconds=timeout_seconds)

    def synthesize(
        self,
        text: str,
        voice: VoiceProfile,
        speaking_rate: float,
        output_path: Path,
    ) -> SpeechClip:
        """Synthesize one OpenAI clip at a clamped speed."""

        speed = max(self._MIN_SPEED, min(self._MAX_SPEED, speaking_rate))
        audio_bytes = self.client.synthesize_speech(
            model=self.model,
            voice=voice.provider_voice_id,
            text=text,
            response_format="mp3",
            speed=speed,
        )
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(audio_bytes)
        return SpeechClip(
            path=output_path,
            provider=self.provider_id,
            voice=voice.provider_voice_id,
            speaking_rate=speed,
        )


def create_synthesizer(
    runtime: ProviderRuntimeConfig, timeout_seconds: float = 60.0
) -> SpeechSynthesizer:
    """Create the configured synthesizer, requiring credentials up front.

    Raises:
        DataContractError: If the API key for the selected provider is missing.
    """

    if runtime.tts_provider == "openai":
        if not runtime.openai_api_key:
            raise DataContractError(
                "OpenAI API key is required for speech synthesis.",
                {"provider": "openai", "setting": "openai_api_key"},
            )
        return OpenAISpeechSynthesizer(
            api_key=runtime.openai_api_key,
            model=runtime.tts_model,
            timeout_seconds=timeout_seconds,
        )

    if not runtime.elevenlabs_api_key:
        raise DataContractError(
            "ElevenLabs API key is required for speech synthesis.",
            {"provider": "elevenlabs", "setting": "elevenlabs_api_key"},
        )
    return ElevenLabsSynthesizer(
        api_key=runtime.elevenlabs_api_key,
        model=runtime.tts_model,
        timeout_seconds=timeout_seconds,
    )
