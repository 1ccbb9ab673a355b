"""Duration-constrained narration assembly.

Responsibilities:
- Clean and, where needed, shorten segment text before synthesis.
- Synthesize segments sequentially under a closed-loop speaking-rate controller.
- Concatenate clips losslessly, reconcile to the target, and encode once.
- Report per-segment offsets recomputed from measured durations.

Reconciliation contract:
- over target by more than `overshoot_tolerance` -> exact truncation to target;
- under target by more than `undershoot_tolerance` -> silence padding to target;
- otherwise the track is left as is.
"""

from __future__ import annotations

from pathlib import Path
import re

from ..errors import DataContractError, SegmentCountMismatchError
from ..models.datatypes import NarrationSegment, VoiceAssemblyResult, VoiceSegment
from ..telemetry.logger import RunLogger
from ..tts.synthesizer import SpeechSynthesizer
from ..tts.voices import VoiceProfile
from .rate_control import (
    AssemblyPolicy,
    SpeakingRateController,
    count_words,
    estimate_seconds,
    initial_multiplier,
    truncate_to_words,
    truncation_word_limit,
)
from .text_prep import prepare_segment_text
from .transcoder import Transcoder


RECONCILE_TRUNCATE = "truncate"
RECONCILE_PAD = "pad"
RECONCILE_NONE = "none"


class VoiceAssembler:
    """Produce one narration track whose measured duration matches a target."""

    def __init__(
        self,
        *,
        synthesizer: SpeechSynthesizer,
        transcoder: Transcoder,
        policy: AssemblyPolicy | None = None,
        run_logger: RunLogger | None = None,
    ) -> None:
        """Initialize collaborators and assembly constants."""

        self._synthesizer = synthesizer
        self._transcoder = transcoder
        self._policy = policy if policy is not None else AssemblyPolicy()
        self._run_logger = run_logger

    def assemble(
        self,
        segments: list[NarrationSegment],
        target_duration: float,
        voice: VoiceProfile,
        output_dir: Path,
        *,
        run_id: str | None = None,
    ) -> VoiceAssemblyResult:
        """Synthesize, merge, and reconcile `segments` into one track.

        Raises:
            DataContractError: On missing voice identity, malformed segments,
                or segment text that is empty after cleaning.
            SegmentCountMismatchError: When fewer or more clips than segments exist.
            ProviderError: When synthesis or transcoding fails.
        """

        self._validate_inputs(segments, target_duration, voice)
        policy = self._policy
        prepared = [
            prepare_segment_text(segment.segment_id, segment.text, policy.min_text_chars)
            for segment in segments
        ]

        expected = estimate_seconds(
            sum(count_words(text) for text in prepared), 1.0, policy.words_per_second
        )
        base = initial_multiplier(expected, target_duration, policy)
        self._decision(
            "initial_multiplier",
            run_id,
            expected_seconds=expected,
            target=target_duration,
            multiplier=base,
        )
        controller = SpeakingRateController(
            target_duration=target_duration,
            allotments=[segment.allotted_seconds for segment in segments],
            base=base,
            policy=policy,
        )

        clips_dir = output_dir / "clips"
        synthesized: list[tuple[NarrationSegment, str, Path, float, float, bool]] = []
        for index, (segment, text) in enumerate(zip(segments, prepared), start=1):
            multiplier = controller.current
            spoken_text, truncated = self._fit_text(segment, text, multiplier, run_id)
            clip_path = clips_dir / (
                f"{index:02d}_{_safe_name(segment.segment_id)}{self._synthesizer.clip_suffix}"
            )
            clip = self._synthesizer.synthesize(spoken_text, voice, multiplier, clip_path)
            if not _has_audio(clip.path):
                self._warning("missing_clip", run_id, segment=segment.segment_id)
                raise SegmentCountMismatchError(
                    f"Synthesis produced no clip for segment `{segment.segment_id}`; "
                    f"{len(synthesized)} clip(s) for {len(segments)} segment(s).",
                    {
                        "clips": len(synthesized),
                        "segments": len(segments),
                        "segment_id": segment.segment_id,
                    },
                )
            measured = self._transcoder.probe_duration(clip.path)
            synthesized.append((segment, spoken_text, clip.path, measured, multiplier, truncated))
            next_rate = controller.observe(measured)
            self._decision(
                "segment_synthesized",
                run_id,
                segment=segment.segment_id,
                allotted=segment.allotted_seconds,
                measured=measured,
                multiplier=multiplier,
                next_multiplier=next_rate,
                remaining_budget=controller.remaining_budget,
            )

        if len(synthesized) != len(segments):
            raise SegmentCountMismatchError(
                f"Synthesis produced {len(synthesized)} clip(s) for {len(segments)} segment(s).",
                {"clips": len(synthesized), "segments": len(segments)},
            )

        work_dir = output_dir / "work"
        lossless = [
            self._transcoder.to_lossless(path, work_dir / f"{index:02d}.wav")
            for index, (_, _, path, _, _, _) in enumerate(synthesized, start=1)
        ]
        if len(lossless) == 1:
            combined = lossless[0]
        else:
            combined = self._transcoder.concat(lossless, work_dir / "concat.wav")
        concatenated_duration = self._transcoder.probe_duration(combined)

        reconciled, action = self._reconcile(
            combined, concatenated_duration, target_duration, work_dir, run_id
        )
        merged_path = output_dir / f"narration.{policy.delivery_format}"
        self._transcoder.encode(reconciled, merged_path, policy.delivery_format)
        final_duration = self._transcoder.probe_duration(merged_path)
        self._decision(
            "reconciled",
            run_id,
            action=action,
            concatenated=concatenated_duration,
            final=final_duration,
            target=target_duration,
        )

        voice_segments = _offset_segments(synthesized, final_duration, action)
        return VoiceAssemblyResult(
            merged_path=merged_path,
            final_duration=final_duration,
            concatenated_duration=concatenated_duration,
            target_duration=target_duration,
            initial_multiplier=base,
            final_multiplier=synthesized[-1][4],
            reconciliation=action,
            segments=voice_segments,
        )

    def _validate_inputs(
        self, segments: list[NarrationSegment], target_duration: float, voice: VoiceProfile
    ) -> None:
        """Reject assembly requests that cannot satisfy the contract."""

        if not voice.provider_voice_id or not voice.provider_voice_id.strip():
            raise DataContractError(
                "A voice identity is required for speech synthesis.",
                {"setting": "tts_voice"},
            )
        if target_duration <= 0:
            raise DataContractError(
                "Target duration must be positive.", {"target_duration": target_duration}
            )
        if not segments:
            raise DataContractError("Narration requires at least one segment.")
        seen: set[str] = set()
        for segment in segments:
            if segment.allotted_seconds <= 0:
                raise DataContractError(
                    f"Segment `{segment.segment_id}` has a non-positive allotment.",
                    {"segment_id": segment.segment_id, "allotted": segment.allotted_seconds},
                )
            if segment.segment_id in seen:
                raise DataContractError(
                    f"Duplicate segment id `{segment.segment_id}`.",
                    {"segment_id": segment.segment_id},
                )
            seen.add(segment.segment_id)

    def _fit_text(
        self, segment: NarrationSegment, text: str, multiplier: float, run_id: str | None
    ) -> tuple[str, bool]:
        """Shorten text whose estimate exceeds the allotment beyond the trigger ratio."""

        policy = self._policy
        words = count_words(text)
        estimate = estimate_seconds(words, multiplier, policy.words_per_second)
        if estimate <= policy.truncation_trigger_ratio * segment.allotted_seconds:
            return text, False

        limit = truncation_word_limit(segment.allotted_seconds, multiplier, policy)
        shortened = truncate_to_words(text, limit)
        self._decision(
            "segment_truncated",
            run_id,
            segment=segment.segment_id,
            estimate=estimate,
            allotted=segment.allotted_seconds,
            words=words,
            kept_words=count_words(shortened),
        )
        return shortened, True

    def _reconcile(
        self,
        combined: Path,
        measured: float,
        target: float,
        work_dir: Path,
        run_id: str | None,
    ) -> tuple[Path, str]:
        """Truncate or pad the lossless track when outside tolerance."""

        if measured > target + self._policy.overshoot_tolerance:
            return (
                self._transcoder.truncate(combined, work_dir / "reconciled.wav", target),
                RECONCILE_TRUNCATE,
            )
        if measured < target - self._policy.undershoot_tolerance:
            return (
                self._transcoder.pad(combined, work_dir / "reconciled.wav", target),
                RECONCILE_PAD,
            )
        return combined, RECONCILE_NONE

    def _decision(self, event: str, run_id: str | None, **context: object) -> None:
        """Log one assembly decision when a run logger is attached."""

        if self._run_logger is not None:
            self._run_logger.log_decision(event, run_id=run_id, **context)

    def _warning(self, event: str, run_id: str | None, **context: object) -> None:
        """Log one assembly warning when a run logger is attached."""

        if self._run_logger is not None:
            self._run_logger.log_warning(event, run_id=run_id, **context)


def _offset_segments(
    synthesized: list[tuple[NarrationSegment, str, Path, float, float, bool]],
    final_duration: float,
    action: str,
) -> tuple[VoiceSegment, ...]:
    """Lay segments end to end from measured durations."""

    cursor = 0.0
    result: list[VoiceSegment] = []
    for segment, spoken_text, path, measured, multiplier, truncated in synthesized:
        start = cursor
        end = cursor + measured
        cursor = end
        if action == RECONCILE_TRUNCATE:
            start = min(start, final_duration)
            end = min(end, final_duration)
        result.append(
            VoiceSegment(
                segment_id=segment.segment_id,
                text=segment.text,
                spoken_text=spoken_text,
                audio_path=path,
                start=start,
                end=end,
                duration=measured,
                multiplier=multiplier,
                truncated=truncated,
            )
        )
    return tuple(result)


def _has_audio(path: Path) -> bool:
    """Return whether a synthesized clip file exists and is non-empty."""

    return path.is_file() and path.stat().st_size > 0


def _safe_name(value: str) -> str:
    """Return a filesystem-safe token for a segment id."""

    return re.sub(r"[^A-Za-z0-9_-]+", "-", value).strip("-") or "segment"
