"""Prompt template library for generative stages.

Responsibilities:
- Centralize default instructions and sampling settings per stage.
- Build deterministic user prompts from upstream stage outputs.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Any, Mapping

from ..state import stages


@dataclass(frozen=True, slots=True)
class AssistantProfile:
    """Instructions and sampling settings for one generative stage.

    Attributes:
        instructions: System prompt; `{placeholders}` are filled per call.
        temperature: Sampling temperature.
        max_tokens: Completion token cap.
        model: Optional model override for this stage.
    """

    instructions: str
    temperature: float
    max_tokens: int
    model: str | None = None

    def with_overrides(self, overrides: Mapping[str, Any] | None) -> AssistantProfile:
        """Return a copy with per-run overrides applied."""

        if not overrides:
            return self
        return AssistantProfile(
            instructions=str(overrides.get("instructions") or self.instructions),
            temperature=float(overrides.get("temperature", self.temperature)),
            max_tokens=int(overrides.get("max_tokens", self.max_tokens)),
            model=overrides.get("model") or self.model,
        )


_DEFAULT_PROFILES: dict[str, AssistantProfile] = {
    stages.TEXT_CLEANER: AssistantProfile(
        instructions=(
            "You clean scraped marketing copy. Return JSON with keys `features` and "
            "`benefits`, each a list of at most 6 short, factual sentences. Drop navigation "
            "text, calls to action, and duplicates. Return only JSON."
        ),
        temperature=0.2,
        max_tokens=800,
    ),
    stages.SUMMARY: AssistantProfile(
        instructions=(
            "You are a product analyst. Summarize what the product is, who it is for, and "
            "its strongest concrete benefit in at most 120 words."
        ),
        temperature=0.7,
        max_tokens=500,
    ),
    stages.VIRAL_HOOKS: AssistantProfile(
        instructions=(
            "You write scroll-stopping openers for {target_duration}-second promo videos. "
            "Return 5 hooks, one per line, no numbering, each under 12 words."
        ),
        temperature=0.9,
        max_tokens=300,
    ),
    stages.SCRIPT: AssistantProfile(
        instructions=(
            "You write voiceover scripts for {target_duration}-second promo videos. "
            "Write between {min_words} and {target_words} spoken words. Start with the hook: "
            "{selected_hook}. Plain spoken text only: no stage directions, no labels, "
            "no markdown."
        ),
        temperature=0.8,
        max_tokens=800,
    ),
    stages.TIMELINE: AssistantProfile(
        instructions=(
            "Split the voiceover script into 2 to 4 consecutive segments covering "
            "{target_duration} seconds. Return JSON: {{\"segments\": [{{\"id\": str, "
            "\"text\": str, \"startTime\": number, \"endTime\": number, \"duration\": number}}], "
            "\"totalDuration\": number}}. Keep the script wording. Return only JSON."
        ),
        temperature=0.3,
        max_tokens=1500,
    ),
    stages.BACKGROUND: AssistantProfile(
        instructions=(
            "Suggest background visuals for each part of a {target_duration}-second promo "
            "video. Be concrete about scenes, colors, and motion."
        ),
        temperature=0.7,
        max_tokens=400,
    ),
    stages.MUSIC: AssistantProfile(
        instructions=(
            "Suggest background music and sound effects for a {target_duration}-second promo "
            "video: genre, tempo, mood, and where effects land."
        ),
        temperature=0.7,
        max_tokens=400,
    ),
    stages.AVATAR_BEHAVIOR: AssistantProfile(
        instructions=(
            "Plan presenter gestures, expressions, and camera framing for each segment of "
            "the promo video timeline."
        ),
        temperature=0.6,
        max_tokens=400,
    ),
    stages.THUMBNAIL: AssistantProfile(
        instructions=(
            "Describe one thumbnail concept: main visual, headline text under 5 words, "
            "and color palette."
        ),
        temperature=0.8,
        max_tokens=300,
    ),
}


def script_word_targets(target_duration: float, words_per_second: float) -> tuple[int, int]:
    """Return `(target_words, min_words)` for a script of `target_duration` seconds."""

    target_words = math.floor(target_duration * words_per_second)
    min_words = max(target_words - 5, math.floor(target_words * 0.85))
    return target_words, min_words


class PromptLibrary:
    """Build prompts for supported generative stages."""

    def profile(
        self, stage_id: str, overrides: Mapping[str, Any] | None = None
    ) -> AssistantProfile:
        """Return the assistant profile of a stage with optional overrides."""

        if stage_id not in _DEFAULT_PROFILES:
            raise KeyError(f"No prompt profile for stage `{stage_id}`.")
        return _DEFAULT_PROFILES[stage_id].with_overrides(overrides)

    @staticmethod
    def system_prompt(profile: AssistantProfile, **values: object) -> str:
        """Fill `{placeholder}` values into the profile instructions."""

        return profile.instructions.format_map(_DefaultingDict(values))

    def cleaner_prompt(self, page: Mapping[str, Any]) -> str:
        """Return the text-cleaner user prompt."""

        highlights = "\n".join(f"- {item}" for item in page.get("highlights") or [])
        return (
            f"Title: {page.get('title', '')}\n"
            f"Description: {page.get('description', '')}\n"
            f"Highlights:\n{highlights or '- (none)'}\n\n"
            f"Page text:\n{page.get('full_text', '')}"
        )

    def summary_prompt(self, page: Mapping[str, Any], cleaned: Mapping[str, Any]) -> str:
        """Return the summary user prompt."""

        features = "\n".join(f"- {item}" for item in cleaned.get("features") or [])
        benefits = "\n".join(f"- {item}" for item in cleaned.get("benefits") or [])
        return (
            f"Analyze this product page.\nTitle: {page.get('title', '')}\n"
            f"Description: {page.get('description', '')}\n"
            f"Features:\n{features or '- (none)'}\nBenefits:\n{benefits or '- (none)'}\n\n"
            f"{page.get('full_text', '')}"
        )

    def hooks_prompt(self, summary: str) -> str:
        """Return the viral-hooks user prompt."""

        return f"Product: {summary}"

    def script_prompt(self, summary: str, selected_hook: str) -> str:
        """Return the script user prompt."""

        return f"Product: {summary}\nStart with: {selected_hook}"

    def timeline_prompt(self, script: str) -> str:
        """Return the timeline user prompt."""

        return f"Voiceover script:\n{script}"

    def creative_prompt(self, script: str, timeline: Mapping[str, Any] | None) -> str:
        """Return the shared user prompt for visual and audio direction stages."""

        lines = [f"Voiceover script:\n{script}"]
        for segment in (timeline or {}).get("segments") or []:
            lines.append(
                f"[{segment.get('start', 0):.1f}-{segment.get('end', 0):.1f}s] "
                f"{segment.get('text', '')}"
            )
        return "\n".join(lines)


class _DefaultingDict(dict):
    """Mapping that leaves unknown placeholders untouched."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"
