"""Durable pipeline run state.

This package contains the SQLite state store, the default stage catalog, and
the state machine that governs stage transitions, snapshots, and restarts.
"""

from .machine import PipelineStateMachine, ResumePoint, derive_run_status
from .stages import default_stage_definitions
from .store import PipelineStateStore

__all__ = [
    "PipelineStateMachine",
    "PipelineStateStore",
    "ResumePoint",
    "default_stage_definitions",
    "derive_run_status",
]
