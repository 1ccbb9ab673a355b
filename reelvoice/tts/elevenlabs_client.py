"""ElevenLabs HTTP client for speech synthesis and voice listing."""

from __future__ import annotations

from typing import Any

from ..errors import ElevenLabsProviderError
from ..io.http_client import ProviderHTTPClient


class ElevenLabsClient(ProviderHTTPClient):
    """Minimal requests-based ElevenLabs REST client."""

    provider_label = "ElevenLabs"
    error_class = ElevenLabsProviderError
    missing_key_message = (
        "Missing ElevenLabs API key. Set `ELEVENLABS_API_KEY`, use "
        "`--elevenlabs-api-key`, or store one with `reelvoice credentials`."
    )

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = "https://api.elevenlabs.io/v1",
        timeout_seconds: float = 60.0,
    ) -> None:
        """Initialize ElevenLabs HTTP client settings."""

        super().__init__(api_key=api_key, base_url=base_url, timeout_seconds=timeout_seconds)

    def _auth_headers(self) -> dict[str, str]:
        """Return `xi-api-key` authentication headers."""

        return {"xi-api-key": self.api_key}

    def text_to_speech(
        self,
        *,
        voice_id: str,
        text: str,
        model_id: str,
        voice_settings: dict[str, Any],
    ) -> bytes:
        """Return MP3 audio bytes for `text` spoken by `voice_id`."""

        payload = {
            "text": text,
            "model_id": model_id,
            "voice_settings": voice_settings,
        }
        return self._request_bytes(
            "POST",
            f"/text-to-speech/{voice_id}",
            payload=payload,
            accept="audio/mpeg",
            require_non_empty_response=True,
        )

    def list_voices(self) -> list[dict[str, str]]:
        """Return available voices as `{voice_id, name, category}` rows."""

        payload = self._request_json("GET", "/voices")
        voices = payload.get("voices") if isinstance(payload, dict) else None
        if not isinstance(voices, list):
            raise ElevenLabsProviderError("ElevenLabs response missing `voices` list.")
        rows: list[dict[str, str]] = []
        for voice in voices:
            if not isinstance(voice, dict) or not voice.get("voice_id"):
                continue
            rows.append(
                {
                    "voice_id": str(voice["voice_id"]),
                    "name": str(voice.get("name") or ""),
                    "category": str(voice.get("category") or ""),
                }
            )
        return rows
