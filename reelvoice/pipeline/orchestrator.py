"""Pipeline orchestration for Reelvoice.

Responsibilities:
- Validate start requests and create durable runs.
- Execute participating stages strictly in order, persisting each transition.
- Record the first stage failure and halt; resume and restart from durable state.
- Store the final output bundle once every participating stage completes.

Key types:
- `ReelPipeline`: orchestration facade over the state machine and handlers.
- `RunHandle`: run id plus the future of its background execution.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import urlparse

from ..audio.transcoder import MediaTranscoder, Transcoder
from ..config import ProviderRuntimeConfig, ReelvoiceConfig
from ..content.source import ContentSource, HttpContentSource
from ..errors import DataContractError
from ..io.storage import AssetStore
from ..llm.generator import ContentGenerator
from ..models.datatypes import RunRecord, RunStatus, SnapshotRecord, StageStatus
from ..state import PipelineStateMachine, PipelineStateStore, default_stage_definitions
from ..state import stages
from ..telemetry.logger import RunLogger
from ..tts.synthesizer import create_synthesizer
from .failures import failure_context, failure_detail
from .handlers import GeneratorFactory, StageContext, StageHandlers, SynthesizerFactory


@dataclass(frozen=True, slots=True)
class RunHandle:
    """Identifier of a started run and the future of its execution."""

    run_id: str
    future: Future[RunRecord]


def create_generator(runtime: ProviderRuntimeConfig, timeout_seconds: float) -> ContentGenerator:
    """Create the OpenAI-backed generator, requiring a key up front."""

    if not runtime.openai_api_key:
        raise DataContractError(
            "OpenAI API key is required for generative stages.",
            {"provider": "openai", "setting": "openai_api_key"},
        )
    return ContentGenerator.from_api_key(
        runtime.openai_api_key, runtime.text_model, timeout_seconds
    )


class ReelPipeline:
    """Coordinate all stages for promotional-video runs."""

    def __init__(
        self,
        config: ReelvoiceConfig,
        *,
        run_logger: RunLogger | None = None,
        state: PipelineStateMachine | None = None,
        content_source: ContentSource | None = None,
        generator_factory: GeneratorFactory | None = None,
        synthesizer_factory: SynthesizerFactory | None = None,
        transcoder: Transcoder | None = None,
        max_workers: int = 2,
    ) -> None:
        """Initialize collaborators; defaults use the real providers."""

        config.validate()
        self.config = config
        self._run_logger = run_logger
        if state is None:
            config.output_dir.mkdir(parents=True, exist_ok=True)
            state = PipelineStateMachine(PipelineStateStore(config.state_db_path), run_logger)
        self.state = state
        self.assets = AssetStore(config.output_dir)
        self._handlers = StageHandlers(
            config=config,
            assets=self.assets,
            content_source=(
                content_source
                if content_source is not None
                else HttpContentSource(config.http_timeout_seconds)
            ),
            generator_factory=generator_factory or create_generator,
            synthesizer_factory=synthesizer_factory or create_synthesizer,
            transcoder=transcoder if transcoder is not None else MediaTranscoder(),
            run_logger=run_logger,
        )
        self._max_workers = max_workers
        self._executor: ThreadPoolExecutor | None = None

    def __enter__(self) -> ReelPipeline:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self, wait: bool = True) -> None:
        """Shut down the background executor."""

        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    def create(
        self,
        url: str,
        target_duration: float,
        *,
        title: str | None = None,
        settings: Mapping[str, Any] | None = None,
    ) -> RunRecord:
        """Validate a start request and persist a new run without executing it."""

        parsed = urlparse(url or "")
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise DataContractError("Source URL must be an http(s) URL.", {"url": url})
        try:
            duration = self.config.validate_target_duration(target_duration)
        except ValueError as exc:
            raise DataContractError(str(exc), {"target_duration": target_duration}) from exc

        runtime = self.config.resolved_provider_runtime()
        run_settings = {"runtime": runtime.as_run_metadata(), **dict(settings or {})}
        return self.state.create_run(
            title,
            default_stage_definitions(),
            duration,
            source_url=url,
            settings=run_settings,
        )

    def start(
        self,
        url: str,
        target_duration: float,
        *,
        title: str | None = None,
        settings: Mapping[str, Any] | None = None,
    ) -> RunHandle:
        """Create a run and execute it on the background pool."""

        run = self.create(url, target_duration, title=title, settings=settings)
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="reelvoice-run"
            )
        return RunHandle(run_id=run.run_id, future=self._executor.submit(self.execute, run.run_id))

    def execute(
        self,
        run_id: str,
        from_stage: str | None = None,
        *,
        only_stage: str | None = None,
    ) -> RunRecord:
        """Run participating stages in order until completion or the first failure."""

        run = self.state.get_run(run_id)
        runtime = self.config.resolved_provider_runtime()
        start_order = 1
        if from_stage is not None:
            anchor = run.stage(from_stage)
            if anchor is None:
                raise DataContractError(
                    f"Stage `{from_stage}` is not part of run `{run_id}`.",
                    {"stage_id": from_stage},
                )
            start_order = anchor.order

        for stage in run.stages:
            if not stage.participating or stage.order < start_order:
                continue
            if only_stage is not None and stage.stage_id != only_stage:
                continue
            if stage.status == StageStatus.COMPLETED:
                continue
            if not self._run_stage(run_id, stage.stage_id, stage.status, runtime):
                return self.state.get_run(run_id)

        run = self.state.get_run(run_id)
        if run.status == RunStatus.COMPLETED:
            run = self.state.set_final_outputs(run_id, final_output_bundle(run))
            self._log_run_event(run_id, "run_completed")
        return run

    def _run_stage(
        self, run_id: str, stage_id: str, status: str, runtime: ProviderRuntimeConfig
    ) -> bool:
        """Execute one stage and persist its terminal status; return success."""

        if status != StageStatus.RUNNING:
            self.state.advance_stage(
                run_id, stage_id, StageStatus.RUNNING, retry=status == StageStatus.ERROR
            )
        if self._run_logger is not None:
            self._run_logger.log_stage_start(run_id, stage_id)

        context = StageContext.from_run(self.state.get_run(run_id), runtime)
        try:
            output = self._handlers.run(stage_id, context)
        except Exception as exc:
            self.state.advance_stage(
                run_id,
                stage_id,
                StageStatus.ERROR,
                error=failure_detail(exc),
                error_context=failure_context(exc),
            )
            if self._run_logger is not None:
                self._run_logger.log_stage_failure(run_id, stage_id, type(exc).__name__)
            return False

        self.state.advance_stage(run_id, stage_id, StageStatus.COMPLETED, output=output)
        if self._run_logger is not None:
            self._run_logger.log_stage_complete(run_id, stage_id)
        return True

    def resume(self, run_id: str) -> RunRecord:
        """Resume from the first pending or failed stage and continue the run."""

        point = self.state.resume(run_id)
        return self.execute(run_id, from_stage=point.stage.stage_id)

    def run_stage(self, run_id: str, stage_id: str) -> RunRecord:
        """Execute exactly one pending or failed stage."""

        self.state.start_stage(run_id, stage_id)
        return self.execute(run_id, only_stage=stage_id)

    def restart_from(self, run_id: str, order: int, *, execute: bool = True) -> RunRecord:
        """Create a restarted run from stage `order` and optionally execute it."""

        run = self.state.restart_from(run_id, order)
        if not execute:
            return run
        return self.execute(run.run_id)

    def snapshot(
        self, run_id: str, note: str | None = None, label: str | None = None
    ) -> SnapshotRecord:
        """Create a manual snapshot of a run."""

        return self.state.create_snapshot(run_id, note=note, label=label)

    def restore(self, run_id: str, snapshot_id: str, *, confirm: bool = False) -> RunRecord:
        """Restore a run from one of its snapshots."""

        return self.state.restore_snapshot(run_id, snapshot_id, confirm=confirm)

    def edit_stage_output(self, run_id: str, stage_id: str, output: Any) -> RunRecord:
        """Replace the output of a completed stage."""

        return self.state.edit_stage_output(run_id, stage_id, output)

    def delete_run(self, run_id: str, *, confirm: bool = False) -> RunRecord:
        """Delete a run with its stages and snapshots."""

        return self.state.delete_run(run_id, confirm=confirm)

    def _log_run_event(self, run_id: str, event: str, **context: object) -> None:
        if self._run_logger is not None:
            self._run_logger.log_run_event(run_id, event, **context)


def final_output_bundle(run: RunRecord) -> dict[str, Any]:
    """Collect script, timeline, narration audio, and thumbnail concept of a run."""

    def _output(stage_id: str) -> Mapping[str, Any]:
        stage = run.stage(stage_id)
        if stage is None or not isinstance(stage.output, Mapping):
            return {}
        return stage.output

    script = _output(stages.SCRIPT)
    timeline = _output(stages.TIMELINE)
    voice = _output(stages.VOICE)
    thumbnail = _output(stages.THUMBNAIL)
    return {
        "script": script.get("script"),
        "timeline": {
            "segments": timeline.get("segments", []),
            "files": timeline.get("files", {}),
        },
        "narration": {
            "audio": voice.get("audio"),
            "duration": voice.get("duration"),
            "target_duration": run.target_duration,
        },
        "thumbnail_concept": thumbnail.get("text"),
    }
