"""Command-line interface for Reelvoice.

Responsibilities:
- Expose user-facing commands for run creation, inspection, and recovery.
- Convert CLI arguments into `ReelvoiceConfig` and run-level settings.

Key public functions:
- `app`: Typer application instance.
- `main`: invoke the Typer application.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any

import typer
import yaml

from .cli_rendering import (
    echo_run_rows,
    echo_run_summary,
    echo_snapshot_rows,
    echo_status_report,
    exit_with_command_error,
    failed_stage_error,
)
from .cli_runtime import load_cli_config, resolve_provider_runtime_sources
from .config import ReelvoiceConfig
from .credentials import PROVIDER_ACCOUNTS, create_credential_store
from .errors import ConfirmationRequiredError, PipelineStageError
from .models.datatypes import RunRecord
from .parsing import normalize_optional_string
from .pipeline import ReelPipeline
from .telemetry.logger import RunLogger
from .tts.elevenlabs_client import ElevenLabsClient

app = typer.Typer(
    name="reelvoice",
    no_args_is_help=True,
    help="Reelvoice CLI.",
)

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", help="Optional YAML config file."),
]
OutOption = Annotated[
    Path | None,
    typer.Option("--out", help="Output directory (overrides config value)."),
]
ModelTextOption = Annotated[
    str | None, typer.Option("--model-text", help="Chat model for generative stages.")
]
ProviderTtsOption = Annotated[
    str | None, typer.Option("--provider-tts", help="Speech provider (elevenlabs/openai).")
]
ModelTtsOption = Annotated[str | None, typer.Option("--model-tts", help="Speech model id.")]
TtsVoiceOption = Annotated[str | None, typer.Option("--tts-voice", help="Speech voice id.")]
OpenAIKeyOption = Annotated[
    str | None,
    typer.Option("--openai-api-key", help="One-time OpenAI API key override."),
]
ElevenLabsKeyOption = Annotated[
    str | None,
    typer.Option("--elevenlabs-api-key", help="One-time ElevenLabs API key override."),
]
InteractiveOption = Annotated[
    bool,
    typer.Option(
        "--interactive-provider-setup",
        help="Prompt for text model, speech provider, and voice.",
    ),
]
StoreKeysOption = Annotated[
    bool,
    typer.Option(
        "--store-api-keys",
        help="Store API keys passed on the command line in secure credential storage.",
    ),
]
VerboseOption = Annotated[
    bool, typer.Option("--verbose", help="Emit debug-level run log lines.")
]


def _build_config(
    config_file: Path | None,
    out: Path | None,
    model_text: str | None = None,
    provider_tts: str | None = None,
    model_tts: str | None = None,
    tts_voice: str | None = None,
    openai_api_key: str | None = None,
    elevenlabs_api_key: str | None = None,
    interactive_provider_setup: bool = False,
    store_api_keys: bool = False,
) -> ReelvoiceConfig:
    """Resolve effective config from YAML or env defaults plus CLI runtime overrides."""

    runtime_cli, runtime_secure = resolve_provider_runtime_sources(
        model_text=model_text,
        provider_tts=provider_tts,
        model_tts=model_tts,
        tts_voice=tts_voice,
        openai_api_key=openai_api_key,
        elevenlabs_api_key=elevenlabs_api_key,
        interactive_provider_setup=interactive_provider_setup,
        store_api_keys=store_api_keys,
        credential_store_factory=create_credential_store,
    )
    try:
        return load_cli_config(config_file, out, runtime_cli, runtime_secure)
    except FileNotFoundError as exc:
        raise PipelineStageError(
            stage="config",
            detail=f"Config file not found: `{config_file}`.",
            hint="Provide an existing path via `--config <path.yaml>`.",
        ) from exc
    except ValueError as exc:
        raise PipelineStageError(
            stage="config",
            detail=f"Invalid configuration: {exc}",
            hint="Fix config schema/values and rerun.",
        ) from exc


def _build_pipeline(config: ReelvoiceConfig, verbose: bool = False) -> ReelPipeline:
    """Create the pipeline with a stderr run logger."""

    return ReelPipeline(config, run_logger=RunLogger(level="DEBUG" if verbose else "INFO"))


def _load_settings_file(path: Path | None) -> dict[str, Any]:
    """Load per-run settings (for example per-stage overrides) from YAML."""

    if path is None:
        return {}
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise PipelineStageError(
            stage="config",
            detail=f"Cannot read run settings `{path}`: {exc}",
            hint="Provide a readable YAML mapping via `--settings <path.yaml>`.",
        ) from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise PipelineStageError(
            stage="config",
            detail=f"Run settings `{path}` must contain a top-level mapping.",
            hint="Use keys such as `selected_hook`, `timeline_mode`, and `stages`.",
        )
    return payload


def _load_output_file(path: Path) -> Any:
    """Load a replacement stage output from a JSON file."""

    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise PipelineStageError(
            stage="edit",
            detail=f"Cannot read stage output `{path}`: {exc}",
            hint="Provide a readable JSON document via `--output-file <path.json>`.",
        ) from exc


def _finish(command_name: str, run: RunRecord) -> None:
    """Print a run summary and exit with an error when a stage failed."""

    echo_run_summary(run)
    failure = failed_stage_error(run)
    if failure is not None:
        exit_with_command_error(command_name, failure)
    final_audio = (run.final_outputs.get("narration") or {}).get("audio")
    if final_audio:
        typer.echo(f"Narration: {final_audio}")


@app.command("start")
def start_command(
    url: Annotated[str, typer.Argument(help="Product page URL.")],
    duration: Annotated[
        float, typer.Option("--duration", "-d", help="Target narration duration in seconds.")
    ] = 30.0,
    title: Annotated[str | None, typer.Option("--title", help="Run title.")] = None,
    selected_hook: Annotated[
        int | None,
        typer.Option("--selected-hook", help="1-based index of the hook to build on."),
    ] = None,
    timeline_mode: Annotated[
        str | None,
        typer.Option(
            "--timeline-mode",
            help="`model` asks the text model for segments; `script` splits sentences.",
        ),
    ] = None,
    settings_file: Annotated[
        Path | None,
        typer.Option("--settings", help="YAML run settings with per-stage overrides."),
    ] = None,
    config_file: ConfigOption = None,
    out: OutOption = None,
    model_text: ModelTextOption = None,
    provider_tts: ProviderTtsOption = None,
    model_tts: ModelTtsOption = None,
    tts_voice: TtsVoiceOption = None,
    openai_api_key: OpenAIKeyOption = None,
    elevenlabs_api_key: ElevenLabsKeyOption = None,
    interactive_provider_setup: InteractiveOption = False,
    store_api_keys: StoreKeysOption = False,
    verbose: VerboseOption = False,
) -> None:
    """Create a run for a product page and execute it."""

    try:
        config = _build_config(
            config_file,
            out,
            model_text,
            provider_tts,
            model_tts,
            tts_voice,
            openai_api_key,
            elevenlabs_api_key,
            interactive_provider_setup,
            store_api_keys,
        )
        settings = _load_settings_file(settings_file)
        if selected_hook is not None:
            settings["selected_hook"] = selected_hook
        if timeline_mode is not None:
            if timeline_mode not in {"model", "script"}:
                raise PipelineStageError(
                    stage="config",
                    detail=f"Unsupported timeline mode `{timeline_mode}`.",
                    hint="Use `--timeline-mode model` or `--timeline-mode script`.",
                )
            settings["timeline_mode"] = timeline_mode
        with _build_pipeline(config, verbose) as pipeline:
            handle = pipeline.start(url, duration, title=title, settings=settings)
            typer.echo(f"Started run: {handle.run_id}")
            run = handle.future.result()
    except Exception as exc:
        exit_with_command_error("start", exc)

    _finish("start", run)


@app.command("status")
def status_command(
    run_id: Annotated[str, typer.Argument(help="Run id.")],
    as_json: Annotated[bool, typer.Option("--json", help="Print the report as JSON.")] = False,
    config_file: ConfigOption = None,
    out: OutOption = None,
) -> None:
    """Show run status, progress, and stage outputs."""

    try:
        with _build_pipeline(_build_config(config_file, out)) as pipeline:
            report = pipeline.state.status(run_id)
    except Exception as exc:
        exit_with_command_error("status", exc)

    echo_status_report(report, as_json=as_json)


@app.command("runs")
def runs_command(
    limit: Annotated[int, typer.Option("--limit", help="Maximum rows to show.")] = 20,
    config_file: ConfigOption = None,
    out: OutOption = None,
) -> None:
    """List recent runs, newest first."""

    try:
        with _build_pipeline(_build_config(config_file, out)) as pipeline:
            runs = pipeline.state.list_runs(limit)
    except Exception as exc:
        exit_with_command_error("runs", exc)

    echo_run_rows(runs)


@app.command("resume")
def resume_command(
    run_id: Annotated[str, typer.Argument(help="Run id.")],
    config_file: ConfigOption = None,
    out: OutOption = None,
    model_text: ModelTextOption = None,
    provider_tts: ProviderTtsOption = None,
    model_tts: ModelTtsOption = None,
    tts_voice: TtsVoiceOption = None,
    openai_api_key: OpenAIKeyOption = None,
    elevenlabs_api_key: ElevenLabsKeyOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Resume a run from its first pending or failed stage."""

    try:
        config = _build_config(
            config_file,
            out,
            model_text,
            provider_tts,
            model_tts,
            tts_voice,
            openai_api_key,
            elevenlabs_api_key,
        )
        with _build_pipeline(config, verbose) as pipeline:
            run = pipeline.resume(run_id)
    except Exception as exc:
        exit_with_command_error("resume", exc)

    _finish("resume", run)


@app.command("run-stage")
def run_stage_command(
    run_id: Annotated[str, typer.Argument(help="Run id.")],
    stage_id: Annotated[str, typer.Argument(help="Stage id, for example `ai-summary`.")],
    config_file: ConfigOption = None,
    out: OutOption = None,
    model_text: ModelTextOption = None,
    provider_tts: ProviderTtsOption = None,
    model_tts: ModelTtsOption = None,
    tts_voice: TtsVoiceOption = None,
    openai_api_key: OpenAIKeyOption = None,
    elevenlabs_api_key: ElevenLabsKeyOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Execute exactly one pending or failed stage."""

    try:
        config = _build_config(
            config_file,
            out,
            model_text,
            provider_tts,
            model_tts,
            tts_voice,
            openai_api_key,
            elevenlabs_api_key,
        )
        with _build_pipeline(config, verbose) as pipeline:
            run = pipeline.run_stage(run_id, stage_id)
    except Exception as exc:
        exit_with_command_error("run-stage", exc)

    _finish("run-stage", run)


@app.command("restart")
def restart_command(
    run_id: Annotated[str, typer.Argument(help="Source run id.")],
    from_stage: Annotated[
        int, typer.Option("--from-stage", help="1-based stage order to restart from.")
    ],
    execute: Annotated[
        bool,
        typer.Option("--execute/--no-execute", help="Execute the new run immediately."),
    ] = True,
    config_file: ConfigOption = None,
    out: OutOption = None,
    model_text: ModelTextOption = None,
    provider_tts: ProviderTtsOption = None,
    model_tts: ModelTtsOption = None,
    tts_voice: TtsVoiceOption = None,
    openai_api_key: OpenAIKeyOption = None,
    elevenlabs_api_key: ElevenLabsKeyOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Create a new run that keeps completed stages before `--from-stage`."""

    try:
        config = _build_config(
            config_file,
            out,
            model_text,
            provider_tts,
            model_tts,
            tts_voice,
            openai_api_key,
            elevenlabs_api_key,
        )
        with _build_pipeline(config, verbose) as pipeline:
            run = pipeline.restart_from(run_id, from_stage, execute=execute)
    except Exception as exc:
        exit_with_command_error("restart", exc)

    _finish("restart", run)


@app.command("snapshot")
def snapshot_command(
    run_id: Annotated[str, typer.Argument(help="Run id.")],
    label: Annotated[str | None, typer.Option("--label", help="Snapshot label.")] = None,
    note: Annotated[str | None, typer.Option("--note", help="Snapshot note.")] = None,
    config_file: ConfigOption = None,
    out: OutOption = None,
) -> None:
    """Store a copy of every stage of a run."""

    try:
        with _build_pipeline(_build_config(config_file, out)) as pipeline:
            snapshot = pipeline.snapshot(run_id, note=note, label=label)
    except Exception as exc:
        exit_with_command_error("snapshot", exc)

    typer.echo(f"Snapshot id: {snapshot.snapshot_id}")
    typer.echo(f"Label: {snapshot.label}")
    typer.echo(f"Completed stages: {snapshot.completed_stages}/{snapshot.total_stages}")


@app.command("snapshots")
def snapshots_command(
    run_id: Annotated[str, typer.Argument(help="Run id.")],
    config_file: ConfigOption = None,
    out: OutOption = None,
) -> None:
    """List snapshots of a run, newest first."""

    try:
        with _build_pipeline(_build_config(config_file, out)) as pipeline:
            snapshots = pipeline.state.list_snapshots(run_id)
    except Exception as exc:
        exit_with_command_error("snapshots", exc)

    echo_snapshot_rows(snapshots)


@app.command("restore")
def restore_command(
    run_id: Annotated[str, typer.Argument(help="Run id.")],
    snapshot_id: Annotated[str, typer.Argument(help="Snapshot id.")],
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="Confirm overwriting every stage.")
    ] = False,
    config_file: ConfigOption = None,
    out: OutOption = None,
) -> None:
    """Replace every stage of a run with a snapshot copy."""

    confirmed = yes or typer.confirm(
        f"Restore run `{run_id}` from snapshot `{snapshot_id}`? Every stage is overwritten.",
        default=False,
    )
    try:
        if not confirmed:
            raise ConfirmationRequiredError("Restore cancelled; no stage was changed.")
        with _build_pipeline(_build_config(config_file, out)) as pipeline:
            run = pipeline.restore(run_id, snapshot_id, confirm=True)
    except Exception as exc:
        exit_with_command_error("restore", exc)

    echo_run_summary(run)


@app.command("edit-stage")
def edit_stage_command(
    run_id: Annotated[str, typer.Argument(help="Run id.")],
    stage_id: Annotated[str, typer.Argument(help="Completed stage id.")],
    output_file: Annotated[
        Path,
        typer.Option("--output-file", help="JSON file with the replacement stage output."),
    ],
    config_file: ConfigOption = None,
    out: OutOption = None,
) -> None:
    """Replace the JSON output of a completed stage."""

    try:
        output = _load_output_file(output_file)
        with _build_pipeline(_build_config(config_file, out)) as pipeline:
            run = pipeline.edit_stage_output(run_id, stage_id, output)
    except Exception as exc:
        exit_with_command_error("edit-stage", exc)

    stage = run.stage(stage_id)
    typer.echo(f"Stage `{stage_id}` updated.")
    if stage is not None and stage.assets:
        typer.echo(f"Assets: {', '.join(stage.assets)}")


@app.command("delete")
def delete_command(
    run_id: Annotated[str, typer.Argument(help="Run id.")],
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="Confirm deleting the run and its snapshots.")
    ] = False,
    config_file: ConfigOption = None,
    out: OutOption = None,
) -> None:
    """Delete a run together with its stages and snapshots."""

    confirmed = yes or typer.confirm(
        f"Delete run `{run_id}` with all stages and snapshots?", default=False
    )
    try:
        if not confirmed:
            raise ConfirmationRequiredError("Delete cancelled; the run was kept.")
        with _build_pipeline(_build_config(config_file, out)) as pipeline:
            run = pipeline.delete_run(run_id, confirm=True)
    except Exception as exc:
        exit_with_command_error("delete", exc)

    typer.echo(f"Deleted run: {run.run_id} ({run.title})")


@app.command("voices")
def voices_command(
    elevenlabs_api_key: ElevenLabsKeyOption = None,
    config_file: ConfigOption = None,
    out: OutOption = None,
) -> None:
    """List ElevenLabs voices available to the configured key."""

    try:
        config = _build_config(config_file, out, elevenlabs_api_key=elevenlabs_api_key)
        runtime = config.resolved_provider_runtime()
        client = ElevenLabsClient(
            api_key=runtime.elevenlabs_api_key, timeout_seconds=config.http_timeout_seconds
        )
        voices = client.list_voices()
    except Exception as exc:
        exit_with_command_error("voices", exc)

    for voice in voices:
        typer.echo(f"{voice['voice_id']}  {voice['name']}  {voice['category']}")


@app.command("credentials")
def credentials_command(
    provider: Annotated[
        str, typer.Option("--provider", help="Provider account (openai/elevenlabs).")
    ] = "openai",
    set_api_key: Annotated[
        bool,
        typer.Option(
            "--set-api-key",
            help="Prompt for API key with hidden input and store it securely.",
        ),
    ] = False,
    clear_api_key: Annotated[
        bool,
        typer.Option(
            "--clear-api-key",
            help="Clear stored API key from secure credential storage.",
        ),
    ] = False,
) -> None:
    """Manage securely stored provider credentials."""

    if set_api_key and clear_api_key:
        exit_with_command_error(
            "credentials",
            PipelineStageError(
                stage="credentials",
                detail="`--set-api-key` and `--clear-api-key` cannot be used together.",
                hint="Run one credentials action per command invocation.",
            ),
        )
    if provider.strip().lower() not in PROVIDER_ACCOUNTS:
        exit_with_command_error(
            "credentials",
            PipelineStageError(
                stage="credentials",
                detail=f"Unsupported provider `{provider}`.",
                hint="Use `--provider openai` or `--provider elevenlabs`.",
            ),
        )

    credential_store = create_credential_store()
    if set_api_key:
        prompted_api_key = normalize_optional_string(
            typer.prompt(
                f"{provider} API key (hidden input)",
                default="",
                hide_input=True,
                show_default=False,
            )
        )
        if prompted_api_key is None:
            exit_with_command_error(
                "credentials",
                PipelineStageError(
                    stage="credentials",
                    detail="No API key entered.",
                    hint="Provide a non-empty API key when using `--set-api-key`.",
                ),
            )
        try:
            credential_store.set_api_key(provider, prompted_api_key)
        except Exception as exc:
            exit_with_command_error(
                "credentials",
                PipelineStageError(
                    stage="credentials",
                    detail=f"Failed to store API key securely: {exc}",
                    hint="Install and configure a keyring backend and retry.",
                ),
            )
        typer.echo(f"{provider} API key stored in secure credential storage.")
        return

    if clear_api_key:
        if credential_store.clear_api_key(provider):
            typer.echo(f"Stored {provider} API key cleared from secure credential storage.")
        else:
            typer.echo(f"No stored {provider} API key found in secure credential storage.")
        return

    availability = "available" if credential_store.is_available() else "unavailable"
    typer.echo(f"Secure credential storage: {availability}")
    for name in sorted(PROVIDER_ACCOUNTS):
        status = "present" if credential_store.get_api_key(name) is not None else "not set"
        typer.echo(f"Stored {name} API key: {status}")


def main() -> None:
    """CLI entrypoint for console scripts."""
    app()


if __name__ == "__main__":
    main()
