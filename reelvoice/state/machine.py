"""Durable pipeline state machine.

Responsibilities:
- Create runs, advance stages idempotently, and derive run status.
- Resume, run single stages, restart from a stage, snapshot and restore.
- Edit completed stage outputs and delete runs with their history.
- Answer status queries with progress counters.

Key invariants:
- Stage writes are upserts keyed by `(run_id, stage_id)`; a stage write and
  the derived run status commit in the same transaction.
- At most one stage of a run is `running` at any time.
- `not_implemented` stages never change and never affect run status.
- The state store is authoritative; nothing is cached between calls.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import json
import sqlite3
from typing import Any, Iterable, Mapping
import uuid

from ..errors import (
    ConfirmationRequiredError,
    DataContractError,
    InvalidStageTransitionError,
    NothingToResumeError,
    RunNotFoundError,
    SnapshotNotFoundError,
    StageNotFoundError,
)
from ..io.storage import extract_asset_references
from ..models.datatypes import (
    RunProgress,
    RunRecord,
    RunStatus,
    RunStatusReport,
    SnapshotRecord,
    StageDefinition,
    StageRecord,
    StageStatus,
)
from ..parsing import round_half_up
from ..telemetry.logger import RunLogger
from .store import PipelineStateStore, utc_now


_ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    StageStatus.PENDING: frozenset(
        {StageStatus.PENDING, StageStatus.RUNNING, StageStatus.COMPLETED, StageStatus.ERROR}
    ),
    StageStatus.RUNNING: frozenset(
        {StageStatus.RUNNING, StageStatus.COMPLETED, StageStatus.ERROR}
    ),
    StageStatus.COMPLETED: frozenset({StageStatus.COMPLETED}),
    StageStatus.ERROR: frozenset({StageStatus.ERROR}),
}


def derive_run_status(statuses: Iterable[str]) -> str:
    """Derive a run status from its stage statuses.

    `error` wins over everything; a run is `completed` only when every
    participating stage is completed; otherwise any running stage makes it
    `running`, and it is `waiting` in all remaining cases.
    """

    participating = [status for status in statuses if status != StageStatus.NOT_IMPLEMENTED]
    if any(status == StageStatus.ERROR for status in participating):
        return RunStatus.ERROR
    if participating and all(status == StageStatus.COMPLETED for status in participating):
        return RunStatus.COMPLETED
    if any(status == StageStatus.RUNNING for status in participating):
        return RunStatus.RUNNING
    return RunStatus.WAITING


def _normalize_json(value: Any, field_name: str) -> Any:
    """Return `value` as it reads back from JSON storage."""

    try:
        return json.loads(json.dumps(value, ensure_ascii=False))
    except (TypeError, ValueError) as exc:
        raise DataContractError(
            f"Stage `{field_name}` must be JSON-serializable.", {"field": field_name}
        ) from exc


@dataclass(frozen=True, slots=True)
class ResumePoint:
    """Stage selected by `resume`, already marked `running`."""

    run: RunRecord
    stage: StageRecord


class PipelineStateMachine:
    """Persisted state transitions for pipeline runs."""

    def __init__(self, store: PipelineStateStore, run_logger: RunLogger | None = None) -> None:
        """Initialize the machine over a durable store."""

        self._store = store
        self._run_logger = run_logger

    @property
    def store(self) -> PipelineStateStore:
        """Return the underlying state store."""

        return self._store

    def create_run(
        self,
        title: str | None,
        stages: list[StageDefinition],
        target_duration: float,
        *,
        source_url: str | None = None,
        settings: Mapping[str, Any] | None = None,
        parent_run_id: str | None = None,
    ) -> RunRecord:
        """Persist a new run with every participating stage `pending`.

        Raises:
            DataContractError: If the stage list is empty, has duplicate ids or
                orders, is not numbered `1..N`, or has no participating stage.
        """

        run, ordered = self._build_run(
            title,
            stages,
            target_duration,
            source_url=source_url,
            settings=settings,
            parent_run_id=parent_run_id,
        )
        with self._store.transaction() as connection:
            self._store.insert_run_in(connection, run, ordered)
        self._log_run_event(
            run.run_id, "run_created", stages=len(ordered), target=target_duration
        )
        return run

    def advance_stage(
        self,
        run_id: str,
        stage_id: str,
        status: str,
        output: Any = None,
        error: str | None = None,
        error_context: Mapping[str, Any] | None = None,
        *,
        retry: bool = False,
    ) -> RunRecord:
        """Write a stage status with output or error and re-derive run status.

        Applying the same `(status, output, error)` twice leaves persisted state
        unchanged. `retry=True` allows a terminal stage to re-enter `running`.

        Raises:
            RunNotFoundError: Unknown run.
            StageNotFoundError: Unknown stage.
            InvalidStageTransitionError: Disallowed transition, a second running
                stage, or a `not_implemented` stage.
        """

        if status not in StageStatus.ALL or status == StageStatus.NOT_IMPLEMENTED:
            raise InvalidStageTransitionError(f"Unsupported stage status `{status}`.")

        with self._store.transaction() as connection:
            run = self._require_run(self._store.load_run_in(connection, run_id), run_id)
            current = self._require_stage(run, stage_id)
            updated = self._transition(run, current, status, output, error, error_context, retry)
            if updated is None:
                return run

            definitions = {
                definition.stage_id: definition
                for definition in self._store.load_definitions_in(connection, run_id)
            }
            self._store.upsert_stage_in(connection, updated, definitions[stage_id])
            statuses = [
                updated.status if stage.stage_id == stage_id else stage.status
                for stage in run.stages
            ]
            self._store.update_run_in(
                connection,
                run_id,
                status=derive_run_status(statuses),
                updated_at=updated.updated_at or utc_now(),
            )
            result = self._store.load_run_in(connection, run_id)

        if self._run_logger is not None:
            self._run_logger.log_transition(run_id, stage_id, current.status, status)
        return self._require_run(result, run_id)

    def start_stage(self, run_id: str, stage_id: str) -> RunRecord:
        """Mark one `pending` or `error` stage `running` for a single-stage run."""

        run = self.get_run(run_id)
        stage = self._require_stage(run, stage_id)
        if stage.status not in {StageStatus.PENDING, StageStatus.ERROR}:
            raise InvalidStageTransitionError(
                f"Stage `{stage_id}` is `{stage.status}`; only pending or failed stages can run."
            )
        return self.advance_stage(run_id, stage_id, StageStatus.RUNNING, retry=True)

    def resume(self, run_id: str) -> ResumePoint:
        """Mark the first pending or failed stage `running` and return it.

        Raises:
            NothingToResumeError: When every participating stage is completed.
            InvalidStageTransitionError: When a stage is already running.
        """

        run = self.get_run(run_id)
        running = run.running_stage()
        if running is not None:
            raise InvalidStageTransitionError(
                f"Run `{run_id}` is already running stage `{running.stage_id}`."
            )
        target = next(
            (
                stage
                for stage in run.stages
                if stage.status in {StageStatus.PENDING, StageStatus.ERROR}
            ),
            None,
        )
        if target is None:
            raise NothingToResumeError(f"Run `{run_id}` has no pending or failed stage.")

        updated = self.advance_stage(run_id, target.stage_id, StageStatus.RUNNING, retry=True)
        self._log_run_event(run_id, "resumed", from_stage=target.stage_id)
        stage = self._require_stage(updated, target.stage_id)
        return ResumePoint(run=updated, stage=stage)

    def restart_from(self, run_id: str, order: int) -> RunRecord:
        """Create a new run that keeps completed stages before `order`.

        The automatic snapshot of the source run and the new run commit in one
        transaction; a failure leaves neither behind.
        """

        with self._store.transaction() as connection:
            source = self._require_run(self._store.load_run_in(connection, run_id), run_id)
            if order < 1 or order > len(source.stages):
                raise DataContractError(
                    f"Restart stage must be between 1 and {len(source.stages)}.",
                    {"order": order, "stages": len(source.stages)},
                )
            snapshot = self._snapshot_in(
                connection,
                source,
                label=f"Auto-snapshot before restart from stage {order}",
                note=f"Automatic snapshot taken before restarting from stage {order}.",
            )
            kept = {
                stage.stage_id: stage
                for stage in source.stages
                if stage.order < order and stage.status == StageStatus.COMPLETED
            }
            run, ordered = self._build_run(
                f"{source.title} (restart from stage {order})",
                self._store.load_definitions_in(connection, run_id),
                source.target_duration,
                source_url=source.source_url,
                settings=source.settings,
                parent_run_id=source.run_id,
                kept=kept,
            )
            self._store.insert_run_in(connection, run, ordered)
            result = self._store.load_run_in(connection, run.run_id)

        self._log_run_event(run_id, "snapshot_created", snapshot=snapshot.snapshot_id)
        self._log_run_event(
            run.run_id, "restarted", source_run=run_id, from_order=order, kept=len(kept)
        )
        return self._require_run(result, run.run_id)

    def edit_stage_output(self, run_id: str, stage_id: str, output: Any) -> RunRecord:
        """Replace the output of a completed stage and re-index its assets.

        Raises:
            RunNotFoundError: Unknown run.
            StageNotFoundError: Unknown stage.
            DataContractError: Missing or non-JSON output.
            InvalidStageTransitionError: When the stage is not `completed`.
        """

        if output is None:
            raise DataContractError("Edited stage output is required.", {"stage_id": stage_id})
        normalized = _normalize_json(output, "output")

        with self._store.transaction() as connection:
            run = self._require_run(self._store.load_run_in(connection, run_id), run_id)
            current = self._require_stage(run, stage_id)
            if current.status != StageStatus.COMPLETED:
                raise InvalidStageTransitionError(
                    f"Stage `{stage_id}` is `{current.status}`; only completed stages can be "
                    "edited."
                )
            if current.output == normalized:
                return run

            now = utc_now()
            updated = replace(
                current,
                output=normalized,
                assets=extract_asset_references(normalized),
                updated_at=now,
            )
            definitions = {
                definition.stage_id: definition
                for definition in self._store.load_definitions_in(connection, run_id)
            }
            self._store.upsert_stage_in(connection, updated, definitions[stage_id])
            self._store.update_run_in(connection, run_id, status=run.status, updated_at=now)
            result = self._store.load_run_in(connection, run_id)

        self._log_run_event(run_id, "stage_output_edited", stage=stage_id)
        return self._require_run(result, run_id)

    def delete_run(self, run_id: str, *, confirm: bool = False) -> RunRecord:
        """Delete a run together with its stages and snapshots.

        Raises:
            ConfirmationRequiredError: When `confirm` is not `True`.
            RunNotFoundError: Unknown run.
            InvalidStageTransitionError: When a stage is running.
        """

        if confirm is not True:
            raise ConfirmationRequiredError(
                "Deleting a run removes its stages and snapshots; explicit confirmation is "
                "required."
            )

        with self._store.transaction() as connection:
            run = self._require_run(self._store.load_run_in(connection, run_id), run_id)
            running = run.running_stage()
            if running is not None:
                raise InvalidStageTransitionError(
                    f"Run `{run_id}` is running stage `{running.stage_id}`; cannot delete."
                )
            self._store.delete_run_in(connection, run_id)

        self._log_run_event(run_id, "run_deleted", stages=len(run.stages))
        return run

    def create_snapshot(
        self,
        run_id: str,
        note: str | None = None,
        label: str | None = None,
    ) -> SnapshotRecord:
        """Persist a deep copy of every stage of a run."""

        with self._store.transaction() as connection:
            run = self._require_run(self._store.load_run_in(connection, run_id), run_id)
            snapshot = self._snapshot_in(connection, run, label=label, note=note)
        self._log_run_event(run_id, "snapshot_created", snapshot=snapshot.snapshot_id)
        return snapshot

    def restore_snapshot(
        self, run_id: str, snapshot_id: str, *, confirm: bool = False
    ) -> RunRecord:
        """Replace every stage of a run with a snapshot copy.

        Raises:
            ConfirmationRequiredError: When `confirm` is not `True`.
            SnapshotNotFoundError: Unknown snapshot or snapshot of another run.
            InvalidStageTransitionError: When a stage is running.
        """

        if confirm is not True:
            raise ConfirmationRequiredError(
                "Restoring a snapshot overwrites every stage; explicit confirmation is required."
            )

        with self._store.transaction() as connection:
            run = self._require_run(self._store.load_run_in(connection, run_id), run_id)
            snapshot = self._store.load_snapshot_in(connection, snapshot_id)
            if snapshot is None or snapshot.run_id != run_id:
                raise SnapshotNotFoundError(
                    f"Snapshot `{snapshot_id}` does not exist for run `{run_id}`."
                )
            running = run.running_stage()
            if running is not None:
                raise InvalidStageTransitionError(
                    f"Run `{run_id}` is running stage `{running.stage_id}`; cannot restore."
                )
            self._store.replace_stages_in(connection, run_id, list(snapshot.stages))
            statuses = [payload["status"] for payload in snapshot.stages]
            self._store.update_run_in(
                connection,
                run_id,
                status=derive_run_status(statuses),
                updated_at=utc_now(),
            )
            result = self._store.load_run_in(connection, run_id)

        self._log_run_event(run_id, "snapshot_restored", snapshot=snapshot_id)
        return self._require_run(result, run_id)

    def list_snapshots(self, run_id: str) -> list[SnapshotRecord]:
        """Return snapshots of a run, newest first."""

        self.get_run(run_id)
        return self._store.list_snapshots(run_id)

    def list_runs(self, limit: int = 20) -> list[RunRecord]:
        """Return recent runs, newest first."""

        return self._store.list_runs(limit)

    def get_run(self, run_id: str) -> RunRecord:
        """Load one run or raise `RunNotFoundError`."""

        return self._require_run(self._store.load_run(run_id), run_id)

    def set_final_outputs(self, run_id: str, outputs: Mapping[str, Any]) -> RunRecord:
        """Store the final output bundle of a run."""

        with self._store.transaction() as connection:
            run = self._require_run(self._store.load_run_in(connection, run_id), run_id)
            self._store.update_run_in(
                connection,
                run_id,
                status=run.status,
                updated_at=utc_now(),
                final_outputs=outputs,
            )
            result = self._store.load_run_in(connection, run_id)
        return self._require_run(result, run_id)

    def status(self, run_id: str) -> RunStatusReport:
        """Return status, progress counters, and the current stage of a run."""

        run = self.get_run(run_id)
        counts = {
            status: sum(1 for stage in run.stages if stage.status == status)
            for status in (StageStatus.COMPLETED, StageStatus.RUNNING, StageStatus.ERROR)
        }
        total = len(run.stages)
        percentage = round_half_up(counts[StageStatus.COMPLETED] / total * 100) if total else 0
        current = run.running_stage() or next(
            (stage for stage in run.stages if stage.status == StageStatus.PENDING),
            None,
        )
        return RunStatusReport(
            run=run,
            progress=RunProgress(
                total=total,
                completed=counts[StageStatus.COMPLETED],
                running=counts[StageStatus.RUNNING],
                error=counts[StageStatus.ERROR],
                percentage=percentage,
            ),
            current_stage=current,
        )

    def _build_run(
        self,
        title: str | None,
        stages: list[StageDefinition],
        target_duration: float,
        *,
        source_url: str | None,
        settings: Mapping[str, Any] | None,
        parent_run_id: str | None,
        kept: Mapping[str, StageRecord] | None = None,
    ) -> tuple[RunRecord, list[StageDefinition]]:
        """Build an unsaved run record and its ordered stage definitions.

        Stages named in `kept` are copied into the new run as they are; every
        other participating stage starts `pending`.
        """

        self._validate_stage_list(stages)
        if target_duration <= 0:
            raise DataContractError(
                "Target duration must be positive.", {"target_duration": target_duration}
            )

        now = utc_now()
        run_id = uuid.uuid4().hex
        kept = kept or {}
        ordered = sorted(stages, key=lambda item: item.order)
        stage_records = tuple(
            replace(kept[definition.stage_id], run_id=run_id)
            if definition.stage_id in kept
            else StageRecord(
                run_id=run_id,
                stage_id=definition.stage_id,
                name=definition.name,
                order=definition.order,
                status=(
                    StageStatus.PENDING if definition.implemented else StageStatus.NOT_IMPLEMENTED
                ),
                updated_at=now,
            )
            for definition in ordered
        )
        run = RunRecord(
            run_id=run_id,
            title=(title or "").strip() or f"Run {now[:10]}",
            source_url=source_url,
            target_duration=float(target_duration),
            status=derive_run_status(stage.status for stage in stage_records),
            settings=dict(settings or {}),
            parent_run_id=parent_run_id,
            created_at=now,
            updated_at=now,
            stages=stage_records,
        )
        return run, ordered

    def _snapshot_in(
        self,
        connection: sqlite3.Connection,
        run: RunRecord,
        *,
        label: str | None,
        note: str | None,
    ) -> SnapshotRecord:
        """Insert a snapshot of `run` inside an open transaction."""

        snapshot = SnapshotRecord(
            snapshot_id=uuid.uuid4().hex,
            run_id=run.run_id,
            label=(label or "").strip() or f"Snapshot {utc_now()[:19]}",
            note=note,
            run_title=run.title,
            total_stages=len(run.stages),
            completed_stages=sum(
                1 for stage in run.stages if stage.status == StageStatus.COMPLETED
            ),
            stages=tuple(self._store.stage_payloads_in(connection, run.run_id)),
            created_at=utc_now(),
        )
        self._store.insert_snapshot_in(connection, snapshot)
        return snapshot

    def _transition(
        self,
        run: RunRecord,
        current: StageRecord,
        status: str,
        output: Any,
        error: str | None,
        error_context: Mapping[str, Any] | None,
        retry: bool,
    ) -> StageRecord | None:
        """Return the updated stage record, or `None` when nothing changes."""

        if current.status == StageStatus.NOT_IMPLEMENTED:
            raise InvalidStageTransitionError(
                f"Stage `{current.stage_id}` is not implemented and cannot change status."
            )

        resolved_context = _normalize_json(dict(error_context or {}), "error_context")
        output = _normalize_json(output, "output")
        assets = extract_asset_references(output)
        if (
            current.status == status
            and current.output == output
            and current.error == error
            and dict(current.error_context) == resolved_context
        ):
            return None

        is_retry = (
            retry and current.status in StageStatus.TERMINAL and status == StageStatus.RUNNING
        )
        if not is_retry and status not in _ALLOWED_TRANSITIONS[current.status]:
            raise InvalidStageTransitionError(
                f"Stage `{current.stage_id}` cannot move from `{current.status}` to `{status}`."
            )
        if status == StageStatus.RUNNING:
            running = run.running_stage()
            if running is not None and running.stage_id != current.stage_id:
                raise InvalidStageTransitionError(
                    f"Run `{run.run_id}` is already running stage `{running.stage_id}`."
                )

        now = utc_now()
        started_at = current.started_at
        finished_at = current.finished_at
        if status == StageStatus.RUNNING and started_at is None:
            started_at = now
        if is_retry:
            finished_at = None
        if status in StageStatus.TERMINAL and finished_at is None:
            finished_at = now

        return replace(
            current,
            status=status,
            output=output,
            assets=assets,
            error=error,
            error_context=resolved_context,
            started_at=started_at,
            finished_at=finished_at,
            updated_at=now,
        )

    @staticmethod
    def _validate_stage_list(stages: list[StageDefinition]) -> None:
        """Reject stage lists that cannot form a valid run."""

        if not stages:
            raise DataContractError("A run requires at least one stage.")
        ids = [stage.stage_id for stage in stages]
        if len(set(ids)) != len(ids):
            raise DataContractError("Stage ids must be unique.", {"stage_ids": ids})
        orders = sorted(stage.order for stage in stages)
        if orders != list(range(1, len(stages) + 1)):
            raise DataContractError(
                "Stage orders must be numbered 1..N without gaps.", {"orders": orders}
            )
        if not any(stage.implemented for stage in stages):
            raise DataContractError("A run requires at least one implemented stage.")

    @staticmethod
    def _require_run(run: RunRecord | None, run_id: str) -> RunRecord:
        """Return `run` or raise `RunNotFoundError`."""

        if run is None:
            raise RunNotFoundError(f"Run `{run_id}` does not exist.")
        return run

    @staticmethod
    def _require_stage(run: RunRecord, stage_id: str) -> StageRecord:
        """Return a stage of `run` or raise `StageNotFoundError`."""

        stage = run.stage(stage_id)
        if stage is None:
            raise StageNotFoundError(f"Stage `{stage_id}` is not part of run `{run.run_id}`.")
        return stage

    def _log_run_event(self, run_id: str, event: str, **context: object) -> None:
        """Log one run-scoped event when a run logger is attached."""

        if self._run_logger is not None:
            self._run_logger.log_run_event(run_id, event, **context)
