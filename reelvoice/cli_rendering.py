"""CLI output and error rendering helpers.

This module centralizes user-facing CLI presentation for command diagnostics,
run status reports, run history rows, and snapshot listings.
"""

from __future__ import annotations

import json
from typing import Any, NoReturn

import typer

from .errors import PipelineStageError
from .models.datatypes import RunRecord, RunStatus, RunStatusReport, SnapshotRecord, StageStatus
from .pipeline.failures import failure_hint

_STATUS_MARKERS = {
    StageStatus.PENDING: " ",
    StageStatus.RUNNING: ">",
    StageStatus.COMPLETED: "x",
    StageStatus.ERROR: "!",
    StageStatus.NOT_IMPLEMENTED: "-",
}


def exit_with_command_error(command_name: str, exc: Exception) -> NoReturn:
    """Print concise diagnostics for command failures and exit with code 1."""

    if isinstance(exc, PipelineStageError):
        typer.secho(
            f"{command_name} failed at stage `{exc.stage}`: {exc.detail}",
            fg=typer.colors.RED,
            err=True,
        )
        if exc.hint:
            typer.secho(f"Hint: {exc.hint}", fg=typer.colors.YELLOW, err=True)
    else:
        typer.secho(f"{command_name} failed: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1) from exc


def failed_stage_error(run: RunRecord) -> PipelineStageError | None:
    """Return a CLI error describing the failed stage of a run, if any."""

    if run.status != RunStatus.ERROR:
        return None
    failed = next((stage for stage in run.stages if stage.status == StageStatus.ERROR), None)
    if failed is None:
        return None
    return PipelineStageError(
        stage=failed.stage_id,
        detail=failed.error or "Stage failed without a message.",
        hint=failure_hint(failed.stage_id, failed.error_context),
    )


def echo_run_summary(run: RunRecord) -> None:
    """Print run identity and status."""

    typer.echo(f"Run id: {run.run_id}")
    typer.echo(f"Title: {run.title}")
    typer.echo(f"Status: {run.status}")
    if run.parent_run_id:
        typer.echo(f"Restarted from: {run.parent_run_id}")


def echo_status_report(report: RunStatusReport, as_json: bool = False) -> None:
    """Print a run status report as text rows or JSON."""

    payload = report.as_dict()
    if as_json:
        typer.echo(json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True))
        return

    progress = report.progress
    echo_run_summary(report.run)
    typer.echo(f"Target duration: {report.run.target_duration:g}s")
    typer.echo(
        f"Progress: {progress.completed}/{progress.total} ({progress.percentage}%)"
        f" running={progress.running} error={progress.error}"
    )
    if report.current_stage is not None:
        typer.echo(f"Current stage: {report.current_stage.stage_id}")
    for stage in report.run.stages:
        marker = _STATUS_MARKERS.get(stage.status, "?")
        line = f"[{marker}] {stage.order:>2}. {stage.stage_id} ({stage.status})"
        if stage.error:
            line += f": {stage.error}"
        typer.echo(line)
    _echo_final_outputs(report.run.final_outputs)


def _echo_final_outputs(final_outputs: dict[str, Any]) -> None:
    """Print final output references when a run has completed."""

    if not final_outputs:
        return
    narration = final_outputs.get("narration") or {}
    if narration.get("audio"):
        typer.echo(
            f"Narration: {narration['audio']} "
            f"({narration.get('duration')}s / target {narration.get('target_duration')}s)"
        )
    files = (final_outputs.get("timeline") or {}).get("files") or {}
    for fmt in sorted(files):
        typer.echo(f"Timeline {fmt}: {files[fmt]}")


def echo_run_rows(runs: list[RunRecord]) -> None:
    """Print compact run history rows, newest first."""

    if not runs:
        typer.echo("No runs found.")
        return
    for run in runs:
        completed = sum(1 for stage in run.stages if stage.status == StageStatus.COMPLETED)
        typer.echo(
            f"{run.run_id}  {run.status:<9}  {completed}/{len(run.stages)}  "
            f"{run.created_at}  {run.title}"
        )


def echo_snapshot_rows(snapshots: list[SnapshotRecord]) -> None:
    """Print snapshot rows, newest first."""

    if not snapshots:
        typer.echo("No snapshots found.")
        return
    for snapshot in snapshots:
        typer.echo(
            f"{snapshot.snapshot_id}  {snapshot.completed_stages}/{snapshot.total_stages}  "
            f"{snapshot.created_at}  {snapshot.label}"
        )
