"""OpenAI HTTP client utilities for generative-text and speech stages.

Responsibilities:
- Send minimal chat-completions and speech requests to OpenAI's REST API.
- Normalize response extraction for deterministic stage integrations.
- Raise actionable provider exceptions for pipeline-level error mapping.
"""

from __future__ import annotations

import json
from typing import Any

from ..errors import OpenAIProviderError
from ..io.http_client import ProviderHTTPClient


class _OpenAIBaseClient(ProviderHTTPClient):
    """Shared OpenAI HTTP settings used by stage-specific clients."""

    provider_label = "OpenAI"
    error_class = OpenAIProviderError
    missing_key_message = (
        "Missing OpenAI API key. Set `OPENAI_API_KEY`, use `--openai-api-key`, or "
        "store one with `reelvoice credentials`."
    )

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 60.0,
    ) -> None:
        """Initialize OpenAI HTTP client settings."""

        super().__init__(api_key=api_key, base_url=base_url, timeout_seconds=timeout_seconds)

    def _auth_headers(self) -> dict[str, str]:
        """Return bearer-token authentication headers."""

        return {"Authorization": f"Bearer {self.api_key}"}


class OpenAIChatClient(_OpenAIBaseClient):
    """Minimal requests-based OpenAI chat-completions HTTP client."""

    def chat_completion_text(
        self,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> str:
        """Return the first assistant text response from a chat-completions request."""

        payload: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        raw_payload = self._request_bytes("POST", "/chat/completions", payload=payload)
        return self._extract_message_text(raw_payload.decode("utf-8", errors="replace"))

    @staticmethod
    def _extract_message_text(raw_payload: str) -> str:
        """Extract first assistant message text from a chat-completions JSON payload."""

        try:
            payload = json.loads(raw_payload)
        except json.JSONDecodeError as exc:
            raise OpenAIProviderError("OpenAI returned invalid JSON payload.") from exc

        choices = payload.get("choices") if isinstance(payload, dict) else None
        if not isinstance(choices, list) or not choices:
            raise OpenAIProviderError("OpenAI response missing non-empty `choices` list.")

        first_choice = choices[0]
        message = first_choice.get("message") if isinstance(first_choice, dict) else None
        if not isinstance(message, dict):
            raise OpenAIProviderError("OpenAI response missing `choices[0].message` object.")

        content = message.get("content")
        if isinstance(content, list):
            content = "".join(
                item["text"]
                for item in content
                if isinstance(item, dict)
                and item.get("type") == "text"
                and isinstance(item.get("text"), str)
            )
        normalized = content.strip() if isinstance(content, str) else ""
        if not normalized:
            raise OpenAIProviderError("OpenAI response message content is empty.")
        return normalized


class OpenAISpeechClient(_OpenAIBaseClient):
    """Minimal requests-based OpenAI speech HTTP client."""

    def synthesize_speech(
        self,
        *,
        model: str,
        voice: str,
        text: str,
        response_format: str = "mp3",
        speed: float = 1.0,
    ) -> bytes:
        """Return synthesized audio bytes from OpenAI `/audio/speech`."""

        payload = {
            "model": model,
            "voice": voice,
            "input": text,
            "response_format": response_format,
            "speed": speed,
        }
        return self._request_bytes(
            "POST",
            "/audio/speech",
            payload=payload,
            require_non_empty_response=True,
        )
