"""CLI provider runtime resolution helpers.

This module isolates provider/model prompt flow, runtime source assembly,
and secure API-key persistence from the command wiring layer.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Protocol

import typer

from .config import ConfigLoader, ReelvoiceConfig, RuntimeConfigSources
from .credentials import PROVIDER_ACCOUNTS, create_credential_store
from .errors import PipelineStageError
from .parsing import normalize_optional_string


class CredentialStoreProtocol(Protocol):
    """Protocol for secure credential store operations used by CLI runtime resolution."""

    def set_api_key(self, provider: str, api_key: str) -> None:
        """Persist API key value in secure storage."""

    def secure_values(self) -> dict[str, str]:
        """Return stored keys keyed by runtime account name."""


def _set_runtime_cli_value(
    runtime_cli_values: dict[str, str],
    key: str,
    value: str | None,
) -> None:
    """Set a normalized runtime CLI value when user input is present."""

    normalized = normalize_optional_string(value)
    if normalized is not None:
        runtime_cli_values[key] = normalized


def _prompt_for_provider_runtime_values(runtime_cli_values: dict[str, str]) -> None:
    """Prompt for text model and speech settings."""

    runtime_cli_values["model_text"] = typer.prompt(
        "Text model",
        default=runtime_cli_values.get("model_text", "gpt-4o-mini"),
    ).strip()
    runtime_cli_values["provider_tts"] = typer.prompt(
        "TTS provider (elevenlabs/openai)",
        default=runtime_cli_values.get("provider_tts", "elevenlabs"),
    ).strip()
    voice = normalize_optional_string(
        typer.prompt(
            "TTS voice id (leave blank for the configured default)",
            default=runtime_cli_values.get("tts_voice", ""),
            show_default=False,
        )
    )
    if voice is not None:
        runtime_cli_values["tts_voice"] = voice


def resolve_provider_runtime_sources(
    model_text: str | None,
    provider_tts: str | None,
    model_tts: str | None,
    tts_voice: str | None,
    openai_api_key: str | None,
    elevenlabs_api_key: str | None,
    interactive_provider_setup: bool = False,
    store_api_keys: bool = False,
    credential_store_factory: Callable[[], CredentialStoreProtocol] = create_credential_store,
) -> tuple[dict[str, str], dict[str, str]]:
    """Resolve CLI and secure runtime source mappings for provider configuration."""

    runtime_cli_values: dict[str, str] = {}
    _set_runtime_cli_value(runtime_cli_values, "model_text", model_text)
    _set_runtime_cli_value(runtime_cli_values, "provider_tts", provider_tts)
    _set_runtime_cli_value(runtime_cli_values, "model_tts", model_tts)
    _set_runtime_cli_value(runtime_cli_values, "tts_voice", tts_voice)
    _set_runtime_cli_value(runtime_cli_values, "openai_api_key", openai_api_key)
    _set_runtime_cli_value(runtime_cli_values, "elevenlabs_api_key", elevenlabs_api_key)

    if interactive_provider_setup:
        _prompt_for_provider_runtime_values(runtime_cli_values)

    credential_store = credential_store_factory()
    runtime_secure_values = credential_store.secure_values()

    if store_api_keys:
        for provider, account in PROVIDER_ACCOUNTS.items():
            if account not in runtime_cli_values:
                continue
            try:
                credential_store.set_api_key(provider, runtime_cli_values[account])
            except Exception as exc:
                raise PipelineStageError(
                    stage="credentials",
                    detail=f"Failed to store {provider} API key securely: {exc}",
                    hint=(
                        "Install and configure a keyring backend, or rerun without "
                        "`--store-api-keys` for one-off usage."
                    ),
                ) from exc
            typer.echo(f"Stored {provider} API key in secure credential storage.")

    return runtime_cli_values, runtime_secure_values


def load_cli_config(
    config_path: Path | None,
    output_dir: Path | None,
    runtime_cli_values: dict[str, str],
    runtime_secure_values: dict[str, str],
) -> ReelvoiceConfig:
    """Load YAML or env configuration and attach runtime sources."""

    config = ConfigLoader.from_yaml(config_path) if config_path else ConfigLoader.from_env()
    if output_dir is not None:
        config.output_dir = output_dir
    config.runtime_sources = RuntimeConfigSources(
        cli=runtime_cli_values,
        secure=runtime_secure_values,
        env=dict(os.environ),
    )
    config.validate()
    return config
