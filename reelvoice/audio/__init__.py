"""Narration audio components.

This package contains speaking-rate control, spoken-text preparation,
media transcoding, and duration-constrained narration assembly.
"""

from .assembler import VoiceAssembler
from .rate_control import AssemblyPolicy, SpeakingRateController
from .transcoder import MediaTranscoder, Transcoder

__all__ = [
    "AssemblyPolicy",
    "MediaTranscoder",
    "SpeakingRateController",
    "Transcoder",
    "VoiceAssembler",
]
