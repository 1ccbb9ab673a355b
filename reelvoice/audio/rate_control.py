"""Speaking-rate planning for duration-constrained narration.

Responsibilities:
- Choose an initial speaking-rate multiplier from a whole-script estimate.
- Decide per-segment truncation from word-count estimates.
- Recompute the multiplier after every measured segment (closed loop).

Key types:
- `AssemblyPolicy`: tunable constants for estimates, control, and reconciliation.
- `SpeakingRateController`: transient calibration state for one assembly.

`initial_multiplier`, `next_multiplier`, and `truncate_to_words` are pure
functions so the control behavior is testable without audio.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
import re


_SENTENCE_END = (".", "!", "?")


@dataclass(frozen=True, slots=True)
class AssemblyPolicy:
    """Constants governing voice assembly.

    Attributes:
        words_per_second: Base speech rate used for all duration estimates.
        ladder: Initial multiplier tiers as `(min_deviation, multiplier)` pairs,
            scanned top-down; deviation is `(expected - target) / target`.
        truncation_trigger_ratio: Estimate/allotment ratio that triggers truncation.
        truncation_target_ratio: Allotment multiple a truncated segment is sized to.
        critical_remaining_seconds: Average remaining seconds per segment below
            which the critical multiplier floor applies.
        tight_remaining_seconds: Average remaining seconds per segment below
            which the tight multiplier floor applies.
        critical_multiplier: Minimum multiplier in the critical band.
        tight_multiplier: Minimum multiplier in the tight band.
        multiplier_ceiling: Upper bound of any controller decision.
        relax_floor: Lower bound when relaxing for an ample budget.
        ample_ratio: Remaining-allotment/remaining-budget ratio below which the
            budget counts as ample.
        overshoot_tolerance: Seconds over target tolerated before truncation.
        undershoot_tolerance: Seconds under target tolerated before padding.
        min_text_chars: Minimum cleaned text length accepted for synthesis.
        delivery_format: Extension/codec family of the delivered track.
    """

    words_per_second: float = 2.3
    ladder: tuple[tuple[float, float], ...] = (
        (0.20, 1.25),
        # 5% to 20% over target, for example 7%, starts at 1.10x.
        (0.05, 1.10),
        (-0.05, 1.0),
        (-0.20, 0.90),
    )
    ladder_floor: float = 0.85
    truncation_trigger_ratio: float = 1.20
    truncation_target_ratio: float = 1.15
    critical_remaining_seconds: float = 2.0
    tight_remaining_seconds: float = 3.0
    critical_multiplier: float = 1.5
    tight_multiplier: float = 1.3
    multiplier_ceiling: float = 1.8
    relax_floor: float = 0.9
    ample_ratio: float = 0.8
    overshoot_tolerance: float = 0.3
    undershoot_tolerance: float = 0.5
    min_text_chars: int = 5
    delivery_format: str = "mp3"


def count_words(text: str) -> int:
    """Count whitespace-separated words."""

    return len(text.split())


def estimate_seconds(word_count: int, multiplier: float, words_per_second: float) -> float:
    """Estimate spoken duration of `word_count` words at a rate multiplier."""

    return word_count / (words_per_second * multiplier)


def initial_multiplier(
    expected_seconds: float,
    target_seconds: float,
    policy: AssemblyPolicy | None = None,
) -> float:
    """Pick the starting multiplier from the deviation of estimate versus target.

    Deviations within 5% keep the natural rate; scripts 5-20% too long start at
    1.10x, more than 20% too long at 1.25x, and more than 20% too short at 0.85x.
    """

    resolved = policy if policy is not None else AssemblyPolicy()
    if target_seconds <= 0:
        raise ValueError("`target_seconds` must be positive.")
    deviation = (expected_seconds - target_seconds) / target_seconds
    for threshold, multiplier in resolved.ladder:
        if deviation > threshold or (threshold < 0 and deviation >= threshold):
            return multiplier
    return resolved.ladder_floor


def next_multiplier(
    remaining_budget: float,
    remaining_segments: int,
    *,
    remaining_allotted: float,
    base: float,
    policy: AssemblyPolicy | None = None,
) -> float:
    """Return the multiplier for the next segment from the remaining time budget.

    Args:
        remaining_budget: Target duration minus measured duration so far.
        remaining_segments: Segments not yet synthesized.
        remaining_allotted: Sum of planned allotments of those segments.
        base: Multiplier chosen by the initial ladder.
        policy: Control constants.
    """

    resolved = policy if policy is not None else AssemblyPolicy()
    ceiling = resolved.multiplier_ceiling
    if remaining_segments <= 0:
        return base
    if remaining_budget <= 0:
        return ceiling

    average_remaining = remaining_budget / remaining_segments
    if average_remaining < resolved.critical_remaining_seconds:
        return min(ceiling, max(base, resolved.critical_multiplier))
    if average_remaining < resolved.tight_remaining_seconds:
        return min(ceiling, max(base, resolved.tight_multiplier))

    pressure = remaining_allotted / remaining_budget
    if pressure > 1.0:
        return min(ceiling, base * pressure)
    if pressure < resolved.ample_ratio:
        return max(min(base, resolved.relax_floor), base * pressure)
    return base


def truncate_to_words(text: str, max_words: int) -> str:
    """Return a word-bounded prefix of `text` with at most `max_words` words.

    The prefix never splits a word; a sentence terminator is appended when the
    cut falls mid-sentence.
    """

    words = text.split()
    if max_words <= 0:
        raise ValueError("`max_words` must be positive.")
    if len(words) <= max_words:
        return " ".join(words)

    prefix = " ".join(words[:max_words])
    prefix = re.sub(r"[,;:\-–—]+$", "", prefix).rstrip()
    if not prefix.endswith(_SENTENCE_END):
        prefix = f"{prefix}."
    return prefix


def truncation_word_limit(
    allotted_seconds: float, multiplier: float, policy: AssemblyPolicy
) -> int:
    """Return the word budget a truncated segment is sized to."""

    budget = policy.truncation_target_ratio * allotted_seconds
    return max(1, math.floor(budget * policy.words_per_second * multiplier))


class SpeakingRateController:
    """Closed-loop multiplier state for one narration assembly.

    The controller owns transient calibration state only; it is created per
    assembly and never persisted.
    """

    def __init__(
        self,
        *,
        target_duration: float,
        allotments: list[float],
        base: float,
        policy: AssemblyPolicy | None = None,
    ) -> None:
        """Initialize controller state at the ladder-selected base multiplier."""

        self._policy = policy if policy is not None else AssemblyPolicy()
        self._target = target_duration
        self._pending_allotments = list(allotments)
        self._elapsed = 0.0
        self.base = base
        self.current = base

    @property
    def elapsed(self) -> float:
        """Return measured seconds synthesized so far."""

        return self._elapsed

    @property
    def remaining_budget(self) -> float:
        """Return target seconds not yet consumed by measured clips."""

        return self._target - self._elapsed

    def observe(self, measured_seconds: float) -> float:
        """Record one measured clip and return the multiplier for the next one."""

        self._elapsed += measured_seconds
        if self._pending_allotments:
            self._pending_allotments.pop(0)
        self.current = next_multiplier(
            self.remaining_budget,
            len(self._pending_allotments),
            remaining_allotted=sum(self._pending_allotments),
            base=self.base,
            policy=self._policy,
        )
        return self.current
