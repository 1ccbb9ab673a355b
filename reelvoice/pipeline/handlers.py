"""Stage handlers for promotional-video runs.

Responsibilities:
- Build each stage input from persisted outputs of completed stages.
- Call the stage collaborator and shape its result as a JSON stage output.
- Save stage files as run assets referenced by `/uploads/...` strings.

Handlers never touch run state; the orchestrator persists their outputs.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import re
from typing import Any, Mapping

from ..audio.assembler import VoiceAssembler
from ..audio.rate_control import AssemblyPolicy, estimate_seconds
from ..audio.transcoder import Transcoder
from ..config import ProviderRuntimeConfig, ReelvoiceConfig
from ..content.source import ContentSource
from ..errors import DataContractError
from ..io.storage import AssetStore
from ..llm.generator import ContentGenerator
from ..llm.prompts import script_word_targets
from ..models.datatypes import RunRecord, StageStatus
from ..parsing import parse_json_payload
from ..state import stages
from ..telemetry.logger import RunLogger
from ..tts.synthesizer import SpeechSynthesizer
from ..tts.voices import VoiceProfile
from .timeline import export_timeline, narration_segments, parse_timeline, timeline_from_script

GeneratorFactory = Callable[[ProviderRuntimeConfig, float], ContentGenerator]
SynthesizerFactory = Callable[[ProviderRuntimeConfig, float], SpeechSynthesizer]

_HOOK_PREFIX = re.compile(r"^\s*(?:[-*•]|\d+[.)]|hook\s*\d*\s*:)\s*", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class StageContext:
    """Inputs available to one stage execution.

    Attributes:
        run: Run record as persisted before the stage started.
        outputs: Outputs of completed stages keyed by stage id.
        runtime: Resolved provider runtime values.
    """

    run: RunRecord
    outputs: Mapping[str, Any] = field(default_factory=dict)
    runtime: ProviderRuntimeConfig | None = None

    @classmethod
    def from_run(cls, run: RunRecord, runtime: ProviderRuntimeConfig) -> StageContext:
        """Build a context from completed stage outputs of `run`."""

        return cls(
            run=run,
            outputs={
                stage.stage_id: stage.output
                for stage in run.stages
                if stage.status == StageStatus.COMPLETED
            },
            runtime=runtime,
        )

    def require(self, stage_id: str) -> Any:
        """Return a completed upstream output or raise a data-contract error."""

        if stage_id not in self.outputs or self.outputs[stage_id] is None:
            raise DataContractError(
                f"Stage requires completed `{stage_id}` output.", {"missing_stage": stage_id}
            )
        return self.outputs[stage_id]

    def stage_overrides(self, stage_id: str) -> Mapping[str, Any]:
        """Return per-run overrides for a generative stage."""

        overrides = (self.run.settings.get("stages") or {}).get(stage_id) or {}
        if not isinstance(overrides, Mapping):
            raise DataContractError(
                "Stage overrides must be a mapping.", {"stage_id": stage_id}
            )
        return overrides


class StageHandlers:
    """Dispatch table of stage id to handler method."""

    def __init__(
        self,
        *,
        config: ReelvoiceConfig,
        assets: AssetStore,
        content_source: ContentSource,
        generator_factory: GeneratorFactory,
        synthesizer_factory: SynthesizerFactory,
        transcoder: Transcoder,
        run_logger: RunLogger | None = None,
    ) -> None:
        """Initialize collaborators shared by all handlers."""

        self._config = config
        self._assets = assets
        self._content_source = content_source
        self._generator_factory = generator_factory
        self._synthesizer_factory = synthesizer_factory
        self._transcoder = transcoder
        self._run_logger = run_logger
        self._handlers: dict[str, Callable[[StageContext], Any]] = {
            stages.WEB_SCRAPING: self.web_scraping,
            stages.TEXT_CLEANER: self.text_cleaner,
            stages.SUMMARY: self.summary,
            stages.VIRAL_HOOKS: self.viral_hooks,
            stages.SCRIPT: self.script,
            stages.TIMELINE: self.timeline,
            stages.BACKGROUND: self.background,
            stages.MUSIC: self.music,
            stages.AVATAR_BEHAVIOR: self.avatar_behavior,
            stages.THUMBNAIL: self.thumbnail,
            stages.VOICE: self.voice,
        }

    def run(self, stage_id: str, context: StageContext) -> Any:
        """Execute one stage and return its JSON output."""

        handler = self._handlers.get(stage_id)
        if handler is None:
            raise DataContractError(
                f"No handler registered for stage `{stage_id}`.", {"stage_id": stage_id}
            )
        return handler(context)

    def _generator(self, context: StageContext) -> ContentGenerator:
        runtime = _runtime(context)
        return self._generator_factory(runtime, self._config.http_timeout_seconds)

    def web_scraping(self, context: StageContext) -> dict[str, Any]:
        """Fetch the product page."""

        if not context.run.source_url:
            raise DataContractError("Run has no source URL to scrape.")
        return self._content_source.fetch(context.run.source_url).as_dict()

    def text_cleaner(self, context: StageContext) -> dict[str, Any]:
        """Clean feature and benefit lists, falling back to the scraped lists."""

        page = context.require(stages.WEB_SCRAPING)
        generator = self._generator(context)
        generated = generator.generate(
            stages.TEXT_CLEANER,
            generator.prompts.cleaner_prompt(page),
            overrides=context.stage_overrides(stages.TEXT_CLEANER),
        )
        try:
            payload = parse_json_payload(generated.text)
            if not isinstance(payload, dict):
                raise ValueError("Cleaner response is not a JSON object.")
            features = _string_list(payload.get("features"))
            benefits = _string_list(payload.get("benefits"))
            fallback = False
        except ValueError as exc:
            if self._run_logger is not None:
                self._run_logger.log_warning(
                    "cleaner_fallback",
                    run_id=context.run.run_id,
                    stage=stages.TEXT_CLEANER,
                    reason=str(exc),
                )
            features = _string_list(page.get("features"))
            benefits = _string_list(page.get("benefits"))
            fallback = True
        return {
            "features": features,
            "benefits": benefits,
            "key_numbers": _string_list(page.get("key_numbers")),
            "fallback": fallback,
            "model": generated.model,
        }

    def summary(self, context: StageContext) -> dict[str, Any]:
        """Summarize the product."""

        page = context.require(stages.WEB_SCRAPING)
        cleaned = context.outputs.get(stages.TEXT_CLEANER) or {}
        generator = self._generator(context)
        generated = generator.generate(
            stages.SUMMARY,
            generator.prompts.summary_prompt(page, cleaned),
            overrides=context.stage_overrides(stages.SUMMARY),
        )
        return {"summary": generated.text, "model": generated.model}

    def viral_hooks(self, context: StageContext) -> dict[str, Any]:
        """Generate hook lines and record the selected one."""

        summary = context.require(stages.SUMMARY)["summary"]
        generator = self._generator(context)
        generated = generator.generate(
            stages.VIRAL_HOOKS,
            generator.prompts.hooks_prompt(summary),
            overrides=context.stage_overrides(stages.VIRAL_HOOKS),
            target_duration=f"{context.run.target_duration:g}",
        )
        hooks = parse_hook_lines(generated.text)
        if not hooks:
            raise DataContractError("Hook response contained no usable lines.")
        selected = _selected_hook_index(context.run.settings, len(hooks))
        return {
            "hooks": hooks,
            "selected_index": selected,
            "selected_hook": hooks[selected - 1],
            "model": generated.model,
        }

    def script(self, context: StageContext) -> dict[str, Any]:
        """Write the voiceover script sized to the target duration."""

        summary = context.require(stages.SUMMARY)["summary"]
        hook = context.require(stages.VIRAL_HOOKS)["selected_hook"]
        target_words, min_words = script_word_targets(
            context.run.target_duration, self._config.words_per_second
        )
        generator = self._generator(context)
        generated = generator.generate(
            stages.SCRIPT,
            generator.prompts.script_prompt(summary, hook),
            overrides=context.stage_overrides(stages.SCRIPT),
            target_duration=f"{context.run.target_duration:g}",
            target_words=target_words,
            min_words=min_words,
            selected_hook=hook,
        )
        script_text = generated.text.strip()
        word_count = len(script_text.split())
        path = self._assets.save_text(context.run.run_id, "script/script.txt", script_text)
        return {
            "script": script_text,
            "word_count": word_count,
            "target_words": target_words,
            "min_words": min_words,
            "estimated_seconds": round(
                estimate_seconds(word_count, 1.0, self._config.words_per_second), 3
            ),
            "file": self._assets.reference(path),
            "model": generated.model,
        }

    def timeline(self, context: StageContext) -> dict[str, Any]:
        """Split the script into timed segments and export subtitle files."""

        script_text = context.require(stages.SCRIPT)["script"]
        target = context.run.target_duration
        if context.run.settings.get("timeline_mode") == "script":
            timeline = timeline_from_script(script_text, target)
        else:
            generator = self._generator(context)
            generated = generator.generate(
                stages.TIMELINE,
                generator.prompts.timeline_prompt(script_text),
                overrides=context.stage_overrides(stages.TIMELINE),
                target_duration=f"{target:g}",
            )
            timeline = parse_timeline(generated.text, target)

        run_id = context.run.run_id
        files = {}
        for fmt in ("json", "srt", "vtt"):
            path = self._assets.save_text(
                run_id, f"timeline/timeline.{fmt}", export_timeline(timeline, fmt)
            )
            files[fmt] = self._assets.reference(path)
        return {**timeline, "files": files}

    def background(self, context: StageContext) -> dict[str, Any]:
        """Suggest background visuals."""

        return self.creative(context, stages.BACKGROUND)

    def music(self, context: StageContext) -> dict[str, Any]:
        """Suggest music and sound design."""

        return self.creative(context, stages.MUSIC)

    def avatar_behavior(self, context: StageContext) -> dict[str, Any]:
        """Plan presenter gestures."""

        return self.creative(context, stages.AVATAR_BEHAVIOR)

    def thumbnail(self, context: StageContext) -> dict[str, Any]:
        """Describe the thumbnail concept."""

        return self.creative(context, stages.THUMBNAIL)

    def creative(self, context: StageContext, stage_id: str) -> dict[str, Any]:
        """Generate visual or audio direction text."""

        script_text = context.require(stages.SCRIPT)["script"]
        generator = self._generator(context)
        generated = generator.generate(
            stage_id,
            generator.prompts.creative_prompt(
                script_text, context.outputs.get(stages.TIMELINE)
            ),
            overrides=context.stage_overrides(stage_id),
            target_duration=f"{context.run.target_duration:g}",
        )
        return {"text": generated.text, "model": generated.model}

    def voice(self, context: StageContext) -> dict[str, Any]:
        """Assemble the narration track over the timeline segments."""

        runtime = _runtime(context)
        if not runtime.tts_voice:
            raise DataContractError(
                "A voice id is required for speech synthesis.",
                {"provider": runtime.tts_provider, "setting": "tts_voice"},
            )
        script_text = context.require(stages.SCRIPT)["script"]
        target = context.run.target_duration
        segments = narration_segments(context.outputs.get(stages.TIMELINE), script_text, target)

        synthesizer = self._synthesizer_factory(runtime, self._config.http_timeout_seconds)
        assembler = VoiceAssembler(
            synthesizer=synthesizer,
            transcoder=self._transcoder,
            policy=assembly_policy(self._config),
            run_logger=self._run_logger,
        )
        run_id = context.run.run_id
        result = assembler.assemble(
            segments,
            target,
            VoiceProfile(name=runtime.tts_voice, provider_voice_id=runtime.tts_voice),
            self._assets.run_dir(run_id, "voice"),
            run_id=run_id,
        )
        return {
            "audio": self._assets.reference(result.merged_path),
            "duration": round(result.final_duration, 3),
            "target_duration": target,
            "concatenated_duration": round(result.concatenated_duration, 3),
            "reconciliation": result.reconciliation,
            "initial_multiplier": result.initial_multiplier,
            "final_multiplier": round(result.final_multiplier, 3),
            "provider": runtime.tts_provider,
            "voice": runtime.tts_voice,
            "segments": [
                segment.as_dict(self._assets.reference(segment.audio_path))
                for segment in result.segments
            ],
        }


def assembly_policy(config: ReelvoiceConfig) -> AssemblyPolicy:
    """Build voice assembly constants from configuration."""

    return AssemblyPolicy(
        words_per_second=config.words_per_second,
        overshoot_tolerance=config.overshoot_tolerance,
        undershoot_tolerance=config.undershoot_tolerance,
        delivery_format=config.delivery_format,
    )


def parse_hook_lines(text: str) -> list[str]:
    """Split a hook response into clean, non-empty lines."""

    hooks: list[str] = []
    for line in text.splitlines():
        cleaned = _HOOK_PREFIX.sub("", line).strip().strip('"').strip()
        if cleaned and cleaned not in hooks:
            hooks.append(cleaned)
    return hooks


def _selected_hook_index(settings: Mapping[str, Any], hook_count: int) -> int:
    raw = settings.get("selected_hook", 1)
    if isinstance(raw, bool) or not isinstance(raw, int | str):
        raise DataContractError("`selected_hook` must be an integer.", {"selected_hook": raw})
    try:
        index = int(raw)
    except ValueError as exc:
        raise DataContractError(
            "`selected_hook` must be an integer.", {"selected_hook": raw}
        ) from exc
    if index < 1 or index > hook_count:
        raise DataContractError(
            f"`selected_hook` must be between 1 and {hook_count}.",
            {"selected_hook": index, "hooks": hook_count},
        )
    return index


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list | tuple):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def _runtime(context: StageContext) -> ProviderRuntimeConfig:
    if context.runtime is None:
        raise DataContractError("Stage context has no resolved provider runtime.")
    return context.runtime
