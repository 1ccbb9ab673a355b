"""Structured run logging utilities.

Responsibilities:
- Emit concise, deterministic single-line runtime events through `loguru`.
- Keep secrets and raw payloads out of log context values.
"""

from __future__ import annotations

import sys
from typing import TextIO

from loguru import logger as _loguru_logger


def _sanitize_context_value(value: object) -> str:
    """Convert context values into stable, shell-safe tokens."""

    if isinstance(value, float):
        value = f"{value:.3f}"
    raw = str(value).strip()
    if not raw:
        return "none"
    return "".join(
        character if character.isalnum() or character in {"-", "_", ".", ":", "/"} else "_"
        for character in raw
    )


def _format_context(context: dict[str, object]) -> str:
    """Serialize context key/value pairs in deterministic key order."""

    if not context:
        return ""
    tokens = [
        f"{key}={_sanitize_context_value(context[key])}"
        for key in sorted(context.keys())
        if context[key] is not None
    ]
    return " " + " ".join(tokens) if tokens else ""


class RunLogger:
    """Emit deterministic events for pipeline, state, and assembly activity."""

    def __init__(self, sink: TextIO | None = None, level: str = "INFO") -> None:
        """Initialize logger sink and configure deterministic formatting."""

        self._sink = sink or sys.stderr
        self._logger = _loguru_logger.bind(component="reelvoice")
        _loguru_logger.remove()
        _loguru_logger.add(self._sink, format="{message}", level=level, colorize=False)

    def _emit(
        self,
        level: str,
        event: str,
        *,
        run_id: str | None = None,
        stage: str | None = None,
        **context: object,
    ) -> None:
        """Emit one structured runtime log line."""

        scope = f"run={run_id or 'none'} stage={stage or 'none'}"
        line = f"[run] level={level} {scope} event={event}{_format_context(context)}"
        self._logger.log(level, line)

    def log_stage_start(self, run_id: str, stage: str) -> None:
        """Emit a stage-start runtime event."""

        self._emit("INFO", "start", run_id=run_id, stage=stage)

    def log_stage_complete(self, run_id: str, stage: str, **context: object) -> None:
        """Emit a stage-complete runtime event."""

        self._emit("INFO", "complete", run_id=run_id, stage=stage, **context)

    def log_stage_failure(
        self, run_id: str, stage: str, error_type: str, **context: object
    ) -> None:
        """Emit a stage-failure runtime event without sensitive payload details."""

        self._emit("ERROR", "failure", run_id=run_id, stage=stage, error_type=error_type, **context)

    def log_transition(self, run_id: str, stage: str, previous: str, status: str) -> None:
        """Emit a persisted stage status transition."""

        self._emit(
            "DEBUG", "transition", run_id=run_id, stage=stage, previous=previous, status=status
        )

    def log_run_event(self, run_id: str, event: str, **context: object) -> None:
        """Emit a run-scoped event (create, snapshot, restore, restart, resume)."""

        self._emit("INFO", event, run_id=run_id, **context)

    def log_decision(self, event: str, run_id: str | None = None, **context: object) -> None:
        """Emit a voice-assembly decision (multiplier, truncation, reconciliation)."""

        self._emit("INFO", event, run_id=run_id, stage="voice-generation", **context)

    def log_warning(self, event: str, run_id: str | None = None, **context: object) -> None:
        """Emit a non-fatal warning event."""

        self._emit("WARNING", event, run_id=run_id, **context)
