"""Core datatypes shared across Reelvoice modules.

Responsibilities:
- Represent immutable records exchanged between state, pipeline, and audio layers.
- Provide explicit typing for persistence and status serialization.

Key types:
- `StageDefinition`, `StageRecord`, `RunRecord`, `SnapshotRecord` for run state.
- `NarrationSegment`, `VoiceSegment`, `VoiceAssemblyResult` for narration audio.
- `RunProgress`, `RunStatusReport` for the status query.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping


class StageStatus:
    """Stage status identifiers persisted in the state store."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    NOT_IMPLEMENTED = "not_implemented"

    ALL = frozenset({PENDING, RUNNING, COMPLETED, ERROR, NOT_IMPLEMENTED})
    TERMINAL = frozenset({COMPLETED, ERROR})


class RunStatus:
    """Run status identifiers derived from stage statuses."""

    WAITING = "waiting"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class StageDefinition:
    """Static description of one pipeline stage.

    Attributes:
        stage_id: Stable stage identifier, unique within a run.
        name: Human-readable stage name.
        order: 1-based position in the run.
        description: Short description shown in status output.
        service: Collaborator family used by the stage.
        implemented: `False` for stages that never participate in run status.
        generative: Whether the stage calls the generative-text service.
    """

    stage_id: str
    name: str
    order: int
    description: str = ""
    service: str = ""
    implemented: bool = True
    generative: bool = False


@dataclass(frozen=True, slots=True)
class StageRecord:
    """Persisted state of one stage inside one run.

    Attributes:
        run_id: Owning run identifier.
        stage_id: Stage identifier.
        name: Human-readable stage name.
        order: 1-based position in the run.
        status: One of `StageStatus` values.
        output: JSON-compatible stage output, or `None`.
        assets: Asset references found in `output`.
        error: Error message of the last failed attempt.
        error_context: Structured, non-secret failure context.
        started_at: ISO timestamp of first entry into `running`.
        finished_at: ISO timestamp of first entry into a terminal status.
        updated_at: ISO timestamp of the last write.
    """

    run_id: str
    stage_id: str
    name: str
    order: int
    status: str
    output: Any = None
    assets: tuple[str, ...] = ()
    error: str | None = None
    error_context: Mapping[str, Any] = field(default_factory=dict)
    started_at: str | None = None
    finished_at: str | None = None
    updated_at: str | None = None

    @property
    def participating(self) -> bool:
        """Return whether the stage counts toward run status."""

        return self.status != StageStatus.NOT_IMPLEMENTED

    def as_dict(self) -> dict[str, Any]:
        """Serialize the stage for status output and snapshots."""

        return {
            "stage_id": self.stage_id,
            "name": self.name,
            "order": self.order,
            "status": self.status,
            "output": self.output,
            "assets": list(self.assets),
            "error": self.error,
            "error_context": dict(self.error_context),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


@dataclass(frozen=True, slots=True)
class RunRecord:
    """Persisted state of one pipeline run.

    Attributes:
        run_id: Unique run identifier.
        title: Human-readable title.
        source_url: Product page the run was created for.
        target_duration: Requested narration duration in seconds.
        status: One of `RunStatus` values, derived from stage statuses.
        settings: Per-run configuration, including per-stage overrides.
        final_outputs: Output bundle written when all stages complete.
        parent_run_id: Source run when this run was created by a restart.
        created_at: ISO creation timestamp.
        updated_at: ISO timestamp of the last write.
        stages: Stage records in ascending order.
    """

    run_id: str
    title: str
    source_url: str | None
    target_duration: float
    status: str
    settings: Mapping[str, Any] = field(default_factory=dict)
    final_outputs: Mapping[str, Any] = field(default_factory=dict)
    parent_run_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    stages: tuple[StageRecord, ...] = ()

    def stage(self, stage_id: str) -> StageRecord | None:
        """Return the stage with `stage_id`, or `None` when absent."""

        for record in self.stages:
            if record.stage_id == stage_id:
                return record
        return None

    def running_stage(self) -> StageRecord | None:
        """Return the currently running stage, if any."""

        for record in self.stages:
            if record.status == StageStatus.RUNNING:
                return record
        return None


@dataclass(frozen=True, slots=True)
class SnapshotRecord:
    """Named point-in-time copy of every stage of one run.

    Attributes:
        snapshot_id: Unique snapshot identifier.
        run_id: Run the snapshot was taken from.
        label: Short snapshot label.
        note: Optional free-form note.
        run_title: Run title at snapshot time.
        total_stages: Number of stages captured.
        completed_stages: Number of completed stages captured.
        stages: Serialized stage payloads in ascending order.
        created_at: ISO creation timestamp.
    """

    snapshot_id: str
    run_id: str
    label: str
    note: str | None
    run_title: str
    total_stages: int
    completed_stages: int
    stages: tuple[Mapping[str, Any], ...]
    created_at: str

    def summary(self) -> dict[str, Any]:
        """Return listing metadata without stage payloads."""

        return {
            "snapshot_id": self.snapshot_id,
            "run_id": self.run_id,
            "label": self.label,
            "note": self.note,
            "run_title": self.run_title,
            "total_stages": self.total_stages,
            "completed_stages": self.completed_stages,
            "created_at": self.created_at,
        }


@dataclass(frozen=True, slots=True)
class NarrationSegment:
    """One ordered script segment with its time allotment.

    Attributes:
        segment_id: Stable segment identifier.
        text: Script text as produced upstream (may contain markup).
        allotted_seconds: Planned sub-duration of the segment.
    """

    segment_id: str
    text: str
    allotted_seconds: float


@dataclass(frozen=True, slots=True)
class SpeechClip:
    """One synthesized speech clip written to disk.

    Attributes:
        path: Audio file path.
        provider: Speech provider identifier.
        voice: Provider voice identifier.
        speaking_rate: Rate multiplier the clip was requested with.
    """

    path: Path
    provider: str
    voice: str
    speaking_rate: float


@dataclass(frozen=True, slots=True)
class VoiceSegment:
    """One narrated segment with measured timing.

    Attributes:
        segment_id: Segment identifier from the input.
        text: Input text.
        spoken_text: Cleaned, possibly truncated text sent to synthesis.
        audio_path: Per-segment clip path.
        start: Offset of the segment in the merged track (seconds).
        end: End offset of the segment in the merged track (seconds).
        duration: Measured clip duration (seconds).
        multiplier: Speaking-rate multiplier used for this segment.
        truncated: Whether the text was shortened before synthesis.
    """

    segment_id: str
    text: str
    spoken_text: str
    audio_path: Path
    start: float
    end: float
    duration: float
    multiplier: float
    truncated: bool = False

    def as_dict(self, audio_ref: str | None = None) -> dict[str, Any]:
        """Serialize segment metadata, optionally replacing the path with a reference."""

        return {
            "id": self.segment_id,
            "text": self.text,
            "spoken_text": self.spoken_text,
            "audio": audio_ref if audio_ref is not None else str(self.audio_path),
            "start": round(self.start, 3),
            "end": round(self.end, 3),
            "duration": round(self.duration, 3),
            "multiplier": round(self.multiplier, 3),
            "truncated": self.truncated,
        }


@dataclass(frozen=True, slots=True)
class VoiceAssemblyResult:
    """Merged narration track and per-segment metadata.

    Attributes:
        merged_path: Delivered narration file.
        final_duration: Measured duration of the delivered file.
        concatenated_duration: Measured duration before reconciliation.
        target_duration: Requested duration.
        initial_multiplier: Multiplier chosen from the initial ladder.
        final_multiplier: Multiplier used for the last segment.
        reconciliation: `truncate`, `pad`, or `none`.
        segments: Narrated segments in order.
    """

    merged_path: Path
    final_duration: float
    concatenated_duration: float
    target_duration: float
    initial_multiplier: float
    final_multiplier: float
    reconciliation: str
    segments: tuple[VoiceSegment, ...]


@dataclass(frozen=True, slots=True)
class RunProgress:
    """Progress counters for one run."""

    total: int
    completed: int
    running: int
    error: int
    percentage: int

    def as_dict(self) -> dict[str, int]:
        """Serialize progress counters."""

        return {
            "total": self.total,
            "completed": self.completed,
            "running": self.running,
            "error": self.error,
            "percentage": self.percentage,
        }


@dataclass(frozen=True, slots=True)
class RunStatusReport:
    """Status query response for one run."""

    run: RunRecord
    progress: RunProgress
    current_stage: StageRecord | None

    def as_dict(self) -> dict[str, Any]:
        """Serialize the report for CLI and JSON output."""

        return {
            "run_id": self.run.run_id,
            "title": self.run.title,
            "status": self.run.status,
            "source_url": self.run.source_url,
            "target_duration": self.run.target_duration,
            "parent_run_id": self.run.parent_run_id,
            "progress": self.progress.as_dict(),
            "current_stage": (
                self.current_stage.as_dict() if self.current_stage is not None else None
            ),
            "stages": [stage.as_dict() for stage in self.run.stages],
            "final_outputs": dict(self.run.final_outputs),
            "created_at": self.run.created_at,
            "updated_at": self.run.updated_at,
        }
