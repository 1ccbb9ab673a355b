"""Domain exceptions for pipeline state, collaborators, and CLI diagnostics.

Error classes fall in three groups:
- state errors raised by the state machine for invalid requests
  (unknown run, illegal transition, missing confirmation);
- fatal data-contract and storage errors that abort the current call;
- collaborator errors (`ProviderError` subclasses) that a stage records as its
  `error` status.
"""

from __future__ import annotations

from typing import Any, Mapping


class PipelineStageError(RuntimeError):
    """Raised when a specific pipeline stage fails."""

    def __init__(
        self,
        *,
        stage: str,
        detail: str,
        hint: str | None = None,
    ) -> None:
        """Initialize a stage-scoped pipeline error."""

        super().__init__(detail)
        self.stage = stage
        self.detail = detail
        self.hint = hint


class ProviderError(RuntimeError):
    """Base class for failures reported by an external collaborator."""

    provider = "provider"

    def __init__(
        self,
        message: str,
        *,
        failure_kind: str = "unknown",
        status_code: int | None = None,
        provider_code: str | None = None,
    ) -> None:
        """Initialize provider error metadata for stage-aware diagnostics."""

        super().__init__(message)
        self.failure_kind = failure_kind
        self.status_code = status_code
        self.provider_code = provider_code

    def context(self) -> dict[str, Any]:
        """Return structured, non-secret error context for persistence."""

        payload: dict[str, Any] = {
            "provider": self.provider,
            "failure_kind": self.failure_kind,
        }
        if self.status_code is not None:
            payload["status_code"] = self.status_code
        if self.provider_code is not None:
            payload["provider_code"] = self.provider_code
        return payload


class OpenAIProviderError(ProviderError):
    """Raised when an OpenAI request fails or returns malformed output."""

    provider = "openai"


class ElevenLabsProviderError(ProviderError):
    """Raised when an ElevenLabs request fails or returns malformed output."""

    provider = "elevenlabs"


class ContentSourceError(ProviderError):
    """Raised when the product page cannot be fetched or parsed."""

    provider = "content-source"


class TranscodeError(ProviderError):
    """Raised when `ffmpeg` or `ffprobe` fails or is unavailable."""

    provider = "ffmpeg"


class DataContractError(ValueError):
    """Raised when input data violates a contract the pipeline relies on."""

    def __init__(self, message: str, context: Mapping[str, Any] | None = None) -> None:
        """Initialize a fatal data-contract violation with optional context."""

        super().__init__(message)
        self.context: dict[str, Any] = dict(context or {})


class SegmentCountMismatchError(DataContractError):
    """Raised when synthesized clip count differs from requested segment count."""


class StorageError(RuntimeError):
    """Raised when the durable state store cannot complete an operation."""


class RunNotFoundError(LookupError):
    """Raised when a run id is unknown to the state store."""


class StageNotFoundError(LookupError):
    """Raised when a stage id is not part of a run."""


class SnapshotNotFoundError(LookupError):
    """Raised when a snapshot id is unknown or belongs to another run."""


class NothingToResumeError(RuntimeError):
    """Raised when a run has no pending or failed stage to resume."""


class InvalidStageTransitionError(RuntimeError):
    """Raised when a stage status change violates the transition rules."""


class ConfirmationRequiredError(RuntimeError):
    """Raised when a destructive operation is requested without confirmation."""
