"""Voice profile models for synthesis configuration.

Responsibilities:
- Represent provider voice identities and tuning metadata.
- Decouple pipeline logic from provider-specific naming.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class VoiceProfile:
    """Declarative voice profile used by TTS providers.

    Attributes:
        name: Human-readable profile name.
        provider_voice_id: Provider-native voice identifier.
        language: BCP-47 or short language code.
        stability: ElevenLabs voice stability.
        similarity_boost: ElevenLabs similarity boost.
        style: ElevenLabs style exaggeration.
        use_speaker_boost: ElevenLabs speaker boost toggle.
    """

    name: str
    provider_voice_id: str
    language: str = "en"
    stability: float = 0.7
    similarity_boost: float = 0.8
    style: float = 0.2
    use_speaker_boost: bool = True
