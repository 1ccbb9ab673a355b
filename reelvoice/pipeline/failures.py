"""Stage failure descriptions shared by the orchestrator and the CLI.

Responsibilities:
- Turn collaborator exceptions into persisted error messages and context.
- Build concise, actionable hints for provider failure kinds.
"""

from __future__ import annotations

from typing import Any, Mapping

from ..errors import DataContractError, ProviderError

_PROVIDER_DETAILS = {
    "invalid_api_key": "Provider authentication failed for the configured API key.",
    "insufficient_quota": "Provider quota is insufficient for this request.",
    "invalid_model": "Provider rejected the configured model for this request.",
    "timeout": "Provider request timed out before completion.",
    "transport": "Provider request failed due to a transport/network error.",
}


def failure_detail(exc: BaseException) -> str:
    """Return the message persisted on a failed stage."""

    if isinstance(exc, ProviderError):
        detail = _PROVIDER_DETAILS.get(exc.failure_kind)
        if detail is not None:
            return f"{detail} ({exc})"
    message = str(exc).strip()
    return message or type(exc).__name__


def failure_context(exc: BaseException) -> dict[str, Any]:
    """Return structured error context persisted next to the message."""

    context: dict[str, Any] = {"error_type": type(exc).__name__}
    if isinstance(exc, ProviderError):
        context.update(exc.context())
    elif isinstance(exc, DataContractError):
        context.update(exc.context)
    return context


def failure_hint(stage_id: str, error_context: Mapping[str, Any]) -> str:
    """Return an actionable hint for a failed stage from its persisted context."""

    kind = error_context.get("failure_kind")
    if kind == "invalid_api_key":
        return (
            "Store a valid key via `reelvoice credentials` or pass one-time "
            "`--openai-api-key` / `--elevenlabs-api-key`."
        )
    if kind == "insufficient_quota":
        return "Check provider billing and quota, then run `reelvoice resume`."
    if kind == "invalid_model":
        if stage_id == "voice-generation":
            return "Use `--model-tts` or `--tts-voice` with values available to your account."
        return "Use `--model-text` or a per-stage `model` override with an available model."
    if kind == "missing_binary":
        return "Install ffmpeg/ffprobe or set `REELVOICE_FFMPEG` / `REELVOICE_FFPROBE`."
    if kind in {"timeout", "transport"}:
        return "Check network connectivity, then run `reelvoice resume`."
    if error_context.get("setting"):
        return f"Configure `{error_context['setting']}`, then run `reelvoice resume`."
    if "provider" in error_context:
        return "Fix the provider problem, then run `reelvoice resume`."
    if error_context.get("error_type") in {"DataContractError", "SegmentCountMismatchError"}:
        return "Fix the input or upstream stage output, then restart from the failed stage."
    return "Inspect `reelvoice status` for stage error context."
