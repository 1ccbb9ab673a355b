"""Shared pytest fixtures for the full Reelvoice test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from reelvoice.models.datatypes import StageDefinition
from reelvoice.state import PipelineStateMachine, PipelineStateStore


@pytest.fixture
def state_store(tmp_path: Path) -> PipelineStateStore:
    """Provide a fresh SQLite state store in the test temp directory."""

    return PipelineStateStore(tmp_path / "state" / "reelvoice.db")


@pytest.fixture
def state_machine(state_store: PipelineStateStore) -> PipelineStateMachine:
    """Provide a state machine over a fresh store."""

    return PipelineStateMachine(state_store)


@pytest.fixture
def stage_definitions() -> list[StageDefinition]:
    """Provide a small stage list with one stage that never participates."""

    return [
        StageDefinition("collect", "Collect", 1),
        StageDefinition("write", "Write", 2, generative=True),
        StageDefinition("speak", "Speak", 3),
        StageDefinition("render", "Render", 4, implemented=False),
    ]
