"""Unit tests for CLI output, error rendering, and failure hints."""

from __future__ import annotations

import pytest
import typer

from reelvoice.cli_rendering import (
    echo_run_rows,
    echo_status_report,
    exit_with_command_error,
    failed_stage_error,
)
from reelvoice.errors import (
    DataContractError,
    ElevenLabsProviderError,
    OpenAIProviderError,
    PipelineStageError,
)
from reelvoice.models.datatypes import StageDefinition
from reelvoice.pipeline.failures import failure_context, failure_detail, failure_hint
from reelvoice.state import PipelineStateMachine


def test_exit_with_command_error_renders_stage_error_with_hint(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Renderer should print stage diagnostics and hint before exiting with code 1."""

    error = PipelineStageError(
        stage="voice-generation",
        detail="ElevenLabs API key is required for speech synthesis.",
        hint="Configure `elevenlabs_api_key`, then run `reelvoice resume`.",
    )

    with pytest.raises(typer.Exit) as exc_info:
        exit_with_command_error("start", error)

    captured = capsys.readouterr()
    assert exc_info.value.exit_code == 1
    assert "start failed at stage `voice-generation`" in captured.err
    assert "Hint: Configure `elevenlabs_api_key`" in captured.err


def test_exit_with_command_error_renders_non_stage_fallback(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Renderer should print fallback exception text for non-stage failures."""

    with pytest.raises(typer.Exit) as exc_info:
        exit_with_command_error("resume", RuntimeError("unexpected state error"))

    assert exc_info.value.exit_code == 1
    assert "resume failed: unexpected state error" in capsys.readouterr().err


def test_failure_detail_and_context_for_provider_errors() -> None:
    """Provider failures should persist a readable message and structured context."""

    error = OpenAIProviderError(
        "OpenAI quota is insufficient for this request (HTTP 429).",
        failure_kind="insufficient_quota",
        status_code=429,
        provider_code="insufficient_quota",
    )

    assert failure_detail(error).startswith("Provider quota is insufficient for this request.")
    assert failure_context(error) == {
        "error_type": "OpenAIProviderError",
        "provider": "openai",
        "failure_kind": "insufficient_quota",
        "status_code": 429,
        "provider_code": "insufficient_quota",
    }
    assert failure_detail(ValueError("")) == "ValueError"


@pytest.mark.parametrize(
    ("stage_id", "context", "expected"),
    [
        ("ai-summary", {"failure_kind": "invalid_api_key"}, "reelvoice credentials"),
        ("ai-summary", {"failure_kind": "invalid_model"}, "--model-text"),
        ("voice-generation", {"failure_kind": "invalid_model"}, "--tts-voice"),
        ("voice-generation", {"failure_kind": "missing_binary"}, "REELVOICE_FFMPEG"),
        ("web-scraping", {"failure_kind": "timeout"}, "network connectivity"),
        ("voice-generation", {"setting": "tts_voice"}, "Configure `tts_voice`"),
        ("timeline-creation", {"error_type": "DataContractError"}, "restart from"),
        ("script-generation", {}, "reelvoice status"),
    ],
)
def test_failure_hint_by_context(stage_id: str, context: dict[str, str], expected: str) -> None:
    """Hints should follow the persisted failure context."""

    assert expected in failure_hint(stage_id, context)


def test_failed_stage_error_reads_persisted_failure(
    state_machine: PipelineStateMachine, stage_definitions: list[StageDefinition]
) -> None:
    """A failed run should produce a stage error with the persisted hint."""

    run = state_machine.create_run("Promo", stage_definitions, 30)
    assert failed_stage_error(run) is None

    exc = DataContractError("A voice identity is required.", {"setting": "tts_voice"})
    state_machine.advance_stage(run.run_id, "speak", "running")
    failed = state_machine.advance_stage(
        run.run_id,
        "speak",
        "error",
        error=failure_detail(exc),
        error_context=failure_context(exc),
    )

    error = failed_stage_error(failed)
    assert error is not None
    assert error.stage == "speak"
    assert error.detail == "A voice identity is required."
    assert error.hint == "Configure `tts_voice`, then run `reelvoice resume`."


def test_failure_context_for_elevenlabs_errors_uses_provider_hint() -> None:
    """Provider errors without a known kind still point at the provider."""

    context = failure_context(ElevenLabsProviderError("bad", failure_kind="http_error"))

    assert context["provider"] == "elevenlabs"
    assert failure_hint("voice-generation", context) == (
        "Fix the provider problem, then run `reelvoice resume`."
    )


def test_echo_status_report_text_and_json(
    state_machine: PipelineStateMachine,
    stage_definitions: list[StageDefinition],
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Status output should list stages with markers or emit JSON."""

    run = state_machine.create_run("Promo", stage_definitions, 30)
    state_machine.advance_stage(run.run_id, "collect", "running")
    report = state_machine.status(run.run_id)

    echo_status_report(report)
    text = capsys.readouterr().out
    assert "Progress: 0/4 (0%) running=1 error=0" in text
    assert "[>]  1. collect (running)" in text
    assert "[-]  4. render (not_implemented)" in text

    echo_status_report(report, as_json=True)
    assert '"current_stage"' in capsys.readouterr().out


def test_echo_run_rows_handles_empty_history(capsys: pytest.CaptureFixture[str]) -> None:
    """Empty run history prints a friendly message."""

    echo_run_rows([])

    assert capsys.readouterr().out.strip() == "No runs found."
