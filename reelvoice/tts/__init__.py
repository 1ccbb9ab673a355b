"""Speech synthesis components.

This package contains provider clients, synthesizer implementations, and voice
profiles.
"""

from .synthesizer import (
    ElevenLabsSynthesizer,
    OpenAISpeechSynthesizer,
    SpeechSynthesizer,
    create_synthesizer,
)
from .voices import VoiceProfile

__all__ = [
    "ElevenLabsSynthesizer",
    "OpenAISpeechSynthesizer",
    "SpeechSynthesizer",
    "VoiceProfile",
    "create_synthesizer",
]
