"""Configuration model and loaders for Reelvoice.

Responsibilities:
- Define runtime configuration as a typed dataclass.
- Provide deterministic precedence resolution for provider/model settings.
- Provide loader entry points for file- and environment-based configuration.

Key types:
- `ReelvoiceConfig`: normalized runtime settings shared by all runs.
- `ProviderRuntimeConfig`: resolved provider/model runtime values.
- `RuntimeConfigSources`: optional value sources for precedence resolution.
- `ConfigLoader`: static construction helpers for `ReelvoiceConfig`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from .parsing import normalize_optional_string, parse_positive_float


_DEFAULT_TEXT_MODEL = "gpt-4o-mini"
_DEFAULT_TTS_PROVIDER = "elevenlabs"
_DEFAULT_TTS_MODELS = {
    "elevenlabs": "eleven_multilingual_v2",
    "openai": "gpt-4o-mini-tts",
}
_DEFAULT_TTS_VOICES = {"openai": "echo"}
_SUPPORTED_TTS_PROVIDERS = frozenset(_DEFAULT_TTS_MODELS)
_SUPPORTED_DELIVERY_FORMATS = frozenset({"mp3", "m4a", "wav"})


@dataclass(frozen=True, slots=True)
class RuntimeConfigSources:
    """Source mappings used for deterministic runtime value precedence.

    Attributes:
        cli: Values explicitly provided by CLI arguments.
        secure: Values loaded from secure local credential storage.
        env: Values loaded from environment variables.
    """

    cli: Mapping[str, str] = field(default_factory=dict)
    secure: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ProviderRuntimeConfig:
    """Resolved runtime provider and model identifiers.

    Attributes:
        text_model: Chat-completions model used by generative stages.
        tts_provider: Speech provider identifier (`elevenlabs` or `openai`).
        tts_model: Speech model identifier.
        tts_voice: Provider voice identifier, `None` when unresolved.
        openai_api_key: OpenAI key (resolved but never persisted).
        elevenlabs_api_key: ElevenLabs key (resolved but never persisted).
    """

    text_model: str
    tts_provider: str
    tts_model: str
    tts_voice: str | None = None
    openai_api_key: str | None = None
    elevenlabs_api_key: str | None = None

    def as_run_metadata(self) -> dict[str, str]:
        """Return non-secret runtime metadata safe to persist with a run."""

        return {
            "model_text": self.text_model,
            "provider_tts": self.tts_provider,
            "model_tts": self.tts_model,
            "tts_voice": self.tts_voice or "",
        }


@dataclass(slots=True)
class ReelvoiceConfig:
    """Runtime configuration shared by pipeline runs.

    Attributes:
        output_dir: Root directory for generated assets and the state database.
        database_path: Optional explicit SQLite path (defaults under `output_dir`).
        model_text: Chat-completions model identifier.
        provider_tts: Speech provider identifier.
        model_tts: Speech model identifier, defaulting per provider.
        tts_voice: Provider voice identifier.
        openai_api_key: Optional OpenAI API key.
        elevenlabs_api_key: Optional ElevenLabs API key.
        words_per_second: Base speech rate used for duration estimates.
        overshoot_tolerance: Seconds above target tolerated before truncation.
        undershoot_tolerance: Seconds below target tolerated before padding.
        min_target_duration: Smallest accepted target duration (seconds).
        max_target_duration: Largest accepted target duration (seconds).
        delivery_format: Container/codec of the delivered narration track.
        http_timeout_seconds: Timeout applied to provider HTTP requests.
        runtime_sources: Optional runtime source overrides injected by CLI.
        extra: Additional metadata for future extensions.
    """

    output_dir: Path = Path("out")
    database_path: Path | None = None
    model_text: str = _DEFAULT_TEXT_MODEL
    provider_tts: str = _DEFAULT_TTS_PROVIDER
    model_tts: str | None = None
    tts_voice: str | None = None
    openai_api_key: str | None = None
    elevenlabs_api_key: str | None = None
    words_per_second: float = 2.3
    overshoot_tolerance: float = 0.3
    undershoot_tolerance: float = 0.5
    min_target_duration: float = 3.0
    max_target_duration: float = 60.0
    delivery_format: str = "mp3"
    http_timeout_seconds: float = 60.0
    runtime_sources: RuntimeConfigSources = field(default_factory=RuntimeConfigSources)
    extra: dict[str, str] = field(default_factory=dict)

    @property
    def state_db_path(self) -> Path:
        """Return the SQLite database path used by the state store."""

        if self.database_path is not None:
            return self.database_path
        return self.output_dir / "reelvoice.db"

    def validate(self) -> None:
        """Validate configuration values before pipeline execution."""

        self._validate_tts_provider(self.provider_tts)
        self._require_non_empty(self.model_text, "model_text")
        for field_name in (
            "words_per_second",
            "overshoot_tolerance",
            "undershoot_tolerance",
            "min_target_duration",
            "max_target_duration",
            "http_timeout_seconds",
        ):
            parse_positive_float(getattr(self, field_name), field_name)
        if self.min_target_duration > self.max_target_duration:
            raise ValueError("`min_target_duration` must not exceed `max_target_duration`.")
        if self.delivery_format not in _SUPPORTED_DELIVERY_FORMATS:
            supported = ", ".join(sorted(_SUPPORTED_DELIVERY_FORMATS))
            raise ValueError(
                f"Unsupported `delivery_format` value `{self.delivery_format}`; "
                f"supported: {supported}."
            )

    def validate_target_duration(self, target_duration: float) -> float:
        """Return a validated target duration within configured bounds."""

        value = parse_positive_float(target_duration, "target_duration")
        if value < self.min_target_duration or value > self.max_target_duration:
            raise ValueError(
                "`target_duration` must be between "
                f"{self.min_target_duration:g} and {self.max_target_duration:g} seconds."
            )
        return value

    def resolved_provider_runtime(
        self, sources: RuntimeConfigSources | None = None
    ) -> ProviderRuntimeConfig:
        """Resolve provider and model settings with deterministic source precedence.

        Precedence for each key is:
        `cli` > `secure` > `env` > config field default.
        """

        resolved_sources = sources if sources is not None else self.runtime_sources

        text_model = self._resolve_runtime_value(
            key="model_text",
            env_keys=("REELVOICE_MODEL_TEXT",),
            default_value=self.model_text,
            sources=resolved_sources,
        )
        tts_provider = self._resolve_runtime_value(
            key="provider_tts",
            env_keys=("REELVOICE_PROVIDER_TTS",),
            default_value=self.provider_tts,
            sources=resolved_sources,
        ).lower()
        self._validate_tts_provider(tts_provider)
        tts_model = self._resolve_runtime_value(
            key="model_tts",
            env_keys=("REELVOICE_MODEL_TTS",),
            default_value=self.model_tts or _DEFAULT_TTS_MODELS[tts_provider],
            sources=resolved_sources,
        )
        tts_voice = self._resolve_optional_runtime_value(
            key="tts_voice",
            env_keys=("REELVOICE_TTS_VOICE", "ELEVENLABS_VOICE_ID"),
            default_value=self.tts_voice or _DEFAULT_TTS_VOICES.get(tts_provider),
            sources=resolved_sources,
        )
        openai_api_key = self._resolve_optional_runtime_value(
            key="openai_api_key",
            env_keys=("OPENAI_API_KEY",),
            default_value=self.openai_api_key,
            sources=resolved_sources,
        )
        elevenlabs_api_key = self._resolve_optional_runtime_value(
            key="elevenlabs_api_key",
            env_keys=("ELEVENLABS_API_KEY",),
            default_value=self.elevenlabs_api_key,
            sources=resolved_sources,
        )

        return ProviderRuntimeConfig(
            text_model=text_model,
            tts_provider=tts_provider,
            tts_model=tts_model,
            tts_voice=tts_voice,
            openai_api_key=openai_api_key,
            elevenlabs_api_key=elevenlabs_api_key,
        )

    def _resolve_runtime_value(
        self,
        key: str,
        env_keys: tuple[str, ...],
        default_value: str | None,
        sources: RuntimeConfigSources,
    ) -> str:
        """Resolve a required runtime value from sources in precedence order."""

        resolved = self._resolve_optional_runtime_value(key, env_keys, default_value, sources)
        if resolved is None:
            raise ValueError(
                f"`{key}` could not be resolved from CLI, secure storage, env, or defaults."
            )
        return resolved

    def _resolve_optional_runtime_value(
        self,
        key: str,
        env_keys: tuple[str, ...],
        default_value: str | None,
        sources: RuntimeConfigSources,
    ) -> str | None:
        """Resolve an optional runtime value from sources in precedence order."""

        cli_value = self._normalized_lookup(sources.cli, key)
        if cli_value is not None:
            return cli_value

        secure_value = self._normalized_lookup(sources.secure, key)
        if secure_value is not None:
            return secure_value

        for env_key in env_keys:
            env_value = self._normalized_lookup(sources.env, env_key)
            if env_value is not None:
                return env_value

        return normalize_optional_string(default_value)

    @staticmethod
    def _normalized_lookup(mapping: Mapping[str, str], key: str) -> str | None:
        """Return a stripped mapping value for a key or `None` when missing/blank."""

        if key not in mapping:
            return None
        return normalize_optional_string(mapping.get(key))

    @staticmethod
    def _validate_tts_provider(provider_id: str) -> None:
        """Validate the speech provider identifier."""

        if provider_id not in _SUPPORTED_TTS_PROVIDERS:
            supported = ", ".join(sorted(_SUPPORTED_TTS_PROVIDERS))
            raise ValueError(
                f"Unsupported `provider_tts` value `{provider_id}`; supported: {supported}."
            )

    @staticmethod
    def _require_non_empty(value: str, field_name: str) -> None:
        """Validate that runtime string fields are not empty."""

        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"`{field_name}` must be a non-empty string.")


class ConfigLoader:
    """Factory methods for creating `ReelvoiceConfig` from external sources."""

    _STRING_KEYS = (
        "model_text",
        "provider_tts",
        "model_tts",
        "tts_voice",
        "openai_api_key",
        "elevenlabs_api_key",
        "delivery_format",
    )
    _FLOAT_KEYS = (
        "words_per_second",
        "overshoot_tolerance",
        "undershoot_tolerance",
        "min_target_duration",
        "max_target_duration",
        "http_timeout_seconds",
    )
    _SUPPORTED_YAML_KEYS = frozenset(
        {"output_dir", "database_path", "extra", *_STRING_KEYS, *_FLOAT_KEYS}
    )
    _ENV_KEYS = {
        "REELVOICE_MODEL_TEXT": "model_text",
        "REELVOICE_PROVIDER_TTS": "provider_tts",
        "REELVOICE_MODEL_TTS": "model_tts",
        "REELVOICE_TTS_VOICE": "tts_voice",
        "REELVOICE_DELIVERY_FORMAT": "delivery_format",
        "REELVOICE_WORDS_PER_SECOND": "words_per_second",
        "REELVOICE_OVERSHOOT_TOLERANCE": "overshoot_tolerance",
        "REELVOICE_UNDERSHOOT_TOLERANCE": "undershoot_tolerance",
        "REELVOICE_MIN_TARGET_DURATION": "min_target_duration",
        "REELVOICE_MAX_TARGET_DURATION": "max_target_duration",
        "REELVOICE_HTTP_TIMEOUT_SECONDS": "http_timeout_seconds",
    }
    _RUNTIME_ENV_KEYS = frozenset(
        {
            "REELVOICE_MODEL_TEXT",
            "REELVOICE_PROVIDER_TTS",
            "REELVOICE_MODEL_TTS",
            "REELVOICE_TTS_VOICE",
            "ELEVENLABS_VOICE_ID",
            "OPENAI_API_KEY",
            "ELEVENLABS_API_KEY",
        }
    )

    @staticmethod
    def from_yaml(path: Path) -> ReelvoiceConfig:
        """Create a validated config from a YAML file."""

        path_text = path.read_text(encoding="utf-8")
        try:
            payload = yaml.safe_load(path_text)
        except yaml.YAMLError as exc:
            raise ValueError(f"YAML config `{path}` is not valid YAML: {exc}") from exc

        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ValueError(f"YAML config `{path}` must contain a top-level mapping/object.")
        return ConfigLoader._build_config_from_mapping(payload, source_label=f"YAML `{path}`")

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None) -> ReelvoiceConfig:
        """Create a validated config from environment variables."""

        env_map: Mapping[str, str] = os.environ if env is None else env

        payload: dict[str, Any] = {}
        output_dir = normalize_optional_string(env_map.get("REELVOICE_OUTPUT_DIR"))
        if output_dir is not None:
            payload["output_dir"] = output_dir
        database_path = normalize_optional_string(env_map.get("REELVOICE_DATABASE_PATH"))
        if database_path is not None:
            payload["database_path"] = database_path
        for env_key, config_key in ConfigLoader._ENV_KEYS.items():
            value = normalize_optional_string(env_map.get(env_key))
            if value is not None:
                payload[config_key] = value

        config = ConfigLoader._build_config_from_mapping(payload, source_label="environment")
        config.runtime_sources = RuntimeConfigSources(
            env={
                key: value
                for key, value in env_map.items()
                if key in ConfigLoader._RUNTIME_ENV_KEYS
                and normalize_optional_string(value) is not None
            }
        )
        return config

    @staticmethod
    def _build_config_from_mapping(
        payload: Mapping[str, Any], source_label: str
    ) -> ReelvoiceConfig:
        """Build a validated config from a normalized mapping payload."""

        unknown = sorted(set(payload).difference(ConfigLoader._SUPPORTED_YAML_KEYS))
        if unknown:
            key_list = ", ".join(unknown)
            raise ValueError(f"{source_label} includes unsupported key(s): {key_list}.")

        values: dict[str, Any] = {}
        output_dir = normalize_optional_string(payload.get("output_dir"))
        if output_dir is not None:
            values["output_dir"] = Path(output_dir)
        database_path = normalize_optional_string(payload.get("database_path"))
        if database_path is not None:
            values["database_path"] = Path(database_path)
        for key in ConfigLoader._STRING_KEYS:
            value = normalize_optional_string(payload.get(key))
            if value is not None:
                values[key] = value
        for key in ConfigLoader._FLOAT_KEYS:
            if key not in payload or normalize_optional_string(payload[key]) is None:
                continue
            try:
                values[key] = parse_positive_float(payload[key], key)
            except ValueError as exc:
                raise ValueError(f"{source_label}: {exc}") from exc
        values["extra"] = ConfigLoader._optional_string_map(payload, "extra", source_label)

        config = ReelvoiceConfig(**values)
        try:
            config.validate()
        except ValueError as exc:
            raise ValueError(f"{source_label}: {exc}") from exc
        return config

    @staticmethod
    def _optional_string_map(
        payload: Mapping[str, Any], key: str, source_label: str
    ) -> dict[str, str]:
        """Read an optional mapping of scalar values as normalized strings."""

        raw = payload.get(key)
        if raw is None:
            return {}
        if not isinstance(raw, Mapping):
            raise ValueError(f"{source_label} `{key}` must be a mapping.")
        normalized: dict[str, str] = {}
        for item_key, item_value in raw.items():
            if isinstance(item_value, bool):
                normalized[str(item_key)] = "true" if item_value else "false"
            elif item_value is not None:
                normalized[str(item_key)] = str(item_value)
        return normalized

