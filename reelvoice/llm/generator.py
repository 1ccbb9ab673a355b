"""Generative-text stage integration.

Responsibilities:
- Resolve per-stage assistant profiles with run-level overrides.
- Call a chat-completions client and return text with model metadata.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from .openai_client import OpenAIChatClient
from .prompts import PromptLibrary


class ChatClient(Protocol):
    """Protocol for chat-completions clients."""

    def chat_completion_text(
        self,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> str:
        """Return assistant text for one system and user prompt pair."""


@dataclass(frozen=True, slots=True)
class GeneratedText:
    """Text generated for one stage plus the settings used to produce it."""

    stage_id: str
    text: str
    model: str
    temperature: float


class ContentGenerator:
    """Run generative stages against a chat-completions client."""

    def __init__(
        self,
        client: ChatClient,
        model: str = "gpt-4o-mini",
        prompts: PromptLibrary | None = None,
    ) -> None:
        """Initialize client, default model, and prompt library."""

        self.client = client
        self.model = model
        self.prompts = prompts if prompts is not None else PromptLibrary()

    @classmethod
    def from_api_key(
        cls, api_key: str | None, model: str, timeout_seconds: float = 60.0
    ) -> ContentGenerator:
        """Build a generator backed by the OpenAI HTTP client."""

        return cls(
            OpenAIChatClient(api_key=api_key, timeout_seconds=timeout_seconds), model=model
        )

    def generate(
        self,
        stage_id: str,
        user_prompt: str,
        *,
        overrides: Mapping[str, Any] | None = None,
        **placeholders: object,
    ) -> GeneratedText:
        """Generate text for `stage_id` with optional per-run overrides."""

        profile = self.prompts.profile(stage_id, overrides)
        model = profile.model or self.model
        text = self.client.chat_completion_text(
            model=model,
            system_prompt=self.prompts.system_prompt(profile, **placeholders),
            user_prompt=user_prompt,
            temperature=profile.temperature,
            max_tokens=profile.max_tokens,
        )
        return GeneratedText(
            stage_id=stage_id, text=text, model=model, temperature=profile.temperature
        )
