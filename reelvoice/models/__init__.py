"""Shared typed data models for Reelvoice.

This package contains dataclasses used across state, pipeline, and audio
modules to avoid cross-module coupling and circular imports.
"""

from .datatypes import (
    NarrationSegment,
    RunProgress,
    RunRecord,
    RunStatus,
    RunStatusReport,
    SnapshotRecord,
    SpeechClip,
    StageDefinition,
    StageRecord,
    StageStatus,
    VoiceAssemblyResult,
    VoiceSegment,
)

__all__ = [
    "NarrationSegment",
    "RunProgress",
    "RunRecord",
    "RunStatus",
    "RunStatusReport",
    "SnapshotRecord",
    "SpeechClip",
    "StageDefinition",
    "StageRecord",
    "StageStatus",
    "VoiceAssemblyResult",
    "VoiceSegment",
]
