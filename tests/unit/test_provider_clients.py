"""Unit tests for OpenAI and ElevenLabs HTTP clients and synthesizers."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from pytest import MonkeyPatch

from reelvoice.config import ProviderRuntimeConfig
from reelvoice.errors import DataContractError, ElevenLabsProviderError, OpenAIProviderError
from reelvoice.io import http_client
from reelvoice.llm.openai_client import OpenAIChatClient
from reelvoice.tts.elevenlabs_client import ElevenLabsClient
from reelvoice.tts.synthesizer import (
    ElevenLabsSynthesizer,
    OpenAISpeechSynthesizer,
    create_synthesizer,
)
from reelvoice.tts.voices import VoiceProfile


class _MockRequestsResponse:
    """Minimal requests response mock for HTTP transport patching."""

    def __init__(self, *, payload: bytes, status_code: int = 200) -> None:
        """Initialize response with raw payload bytes and HTTP status."""

        self.content = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        """Raise HTTPError when the response status represents a failure."""

        if self.status_code >= 400:
            raise http_client.requests.HTTPError(
                f"HTTP {self.status_code} error",
                response=self,
            )


def _chat_payload(content: object) -> bytes:
    return json.dumps({"choices": [{"message": {"content": content}}]}).encode("utf-8")


def _patch_post(
    monkeypatch: MonkeyPatch, response: _MockRequestsResponse, captured: dict[str, Any]
) -> None:
    def _mock_post(url: str, **kwargs: Any) -> _MockRequestsResponse:
        captured["url"] = url
        captured.update(kwargs)
        return response

    monkeypatch.setattr(http_client.requests, "post", _mock_post)


def test_chat_completion_sends_messages_and_returns_text(monkeypatch: MonkeyPatch) -> None:
    """Chat client should post both prompts and return stripped message text."""

    captured: dict[str, Any] = {}
    _patch_post(
        monkeypatch, _MockRequestsResponse(payload=_chat_payload("  Hello reel  ")), captured
    )
    client = OpenAIChatClient(api_key=" sk-test ", timeout_seconds=12.0)

    text = client.chat_completion_text(
        model="gpt-4o-mini",
        system_prompt="system",
        user_prompt="user",
        temperature=0.3,
        max_tokens=200,
    )

    assert text == "Hello reel"
    assert captured["url"] == "https://api.openai.com/v1/chat/completions"
    assert captured["headers"]["Authorization"] == "Bearer sk-test"
    assert captured["timeout"] == 12.0
    assert captured["json"]["messages"][0] == {"role": "system", "content": "system"}
    assert captured["json"]["max_tokens"] == 200
    assert captured["json"]["temperature"] == 0.3


def test_chat_completion_joins_content_parts(monkeypatch: MonkeyPatch) -> None:
    """List-style message content should be joined from its text parts."""

    payload = _chat_payload(
        [
            {"type": "text", "text": "Part one. "},
            {"type": "image"},
            {"type": "text", "text": "Two."},
        ]
    )
    _patch_post(monkeypatch, _MockRequestsResponse(payload=payload), {})

    text = OpenAIChatClient(api_key="k").chat_completion_text(
        model="m", system_prompt="s", user_prompt="u"
    )

    assert text == "Part one. Two."


def test_chat_completion_rejects_empty_content(monkeypatch: MonkeyPatch) -> None:
    """Empty message content is a provider failure."""

    _patch_post(monkeypatch, _MockRequestsResponse(payload=_chat_payload("   ")), {})

    with pytest.raises(OpenAIProviderError, match="content is empty"):
        OpenAIChatClient(api_key="k").chat_completion_text(
            model="m", system_prompt="s", user_prompt="u"
        )


def test_missing_api_key_fails_before_request(monkeypatch: MonkeyPatch) -> None:
    """Requests without a key should fail with `invalid_api_key` and never hit HTTP."""

    def _unexpected(*args: object, **kwargs: object) -> None:
        raise AssertionError("HTTP must not be called without a key")

    monkeypatch.setattr(http_client.requests, "post", _unexpected)

    with pytest.raises(OpenAIProviderError) as exc_info:
        OpenAIChatClient(api_key="  ").chat_completion_text(
            model="m", system_prompt="s", user_prompt="u"
        )

    assert exc_info.value.failure_kind == "invalid_api_key"


@pytest.mark.parametrize(
    ("status_code", "body", "failure_kind", "provider_code"),
    [
        (
            401,
            {"error": {"code": "invalid_api_key", "message": "Incorrect key sk-abcdefgh12345"}},
            "invalid_api_key",
            "invalid_api_key",
        ),
        (
            429,
            {"error": {"code": "insufficient_quota", "message": "You exceeded your quota."}},
            "insufficient_quota",
            "insufficient_quota",
        ),
        (
            404,
            {"error": {"code": "model_not_found", "message": "The model does not exist."}},
            "invalid_model",
            "model_not_found",
        ),
        (504, {"error": {"message": "Gateway timeout"}}, "timeout", None),
        (500, {"error": {"message": "Server exploded"}}, "http_error", None),
    ],
)
def test_http_failures_are_classified(
    monkeypatch: MonkeyPatch,
    status_code: int,
    body: dict[str, Any],
    failure_kind: str,
    provider_code: str | None,
) -> None:
    """HTTP errors should map to deterministic failure kinds with context."""

    _patch_post(
        monkeypatch,
        _MockRequestsResponse(payload=json.dumps(body).encode("utf-8"), status_code=status_code),
        {},
    )

    with pytest.raises(OpenAIProviderError) as exc_info:
        OpenAIChatClient(api_key="k").chat_completion_text(
            model="m", system_prompt="s", user_prompt="u"
        )

    error = exc_info.value
    assert error.failure_kind == failure_kind
    assert error.status_code == status_code
    assert error.provider_code == provider_code
    assert f"(HTTP {status_code})" in str(error)
    assert "sk-abcdefgh12345" not in str(error)
    assert error.context()["provider"] == "openai"


@pytest.mark.parametrize(
    ("raised", "failure_kind"),
    [
        (http_client.requests.Timeout("slow"), "timeout"),
        (http_client.requests.ConnectionError("refused"), "transport"),
    ],
)
def test_transport_failures_are_classified(
    monkeypatch: MonkeyPatch, raised: Exception, failure_kind: str
) -> None:
    """Network-layer failures should map to timeout or transport kinds."""

    def _mock_post(url: str, **kwargs: Any) -> None:
        raise raised

    monkeypatch.setattr(http_client.requests, "post", _mock_post)

    with pytest.raises(OpenAIProviderError) as exc_info:
        OpenAIChatClient(api_key="k").chat_completion_text(
            model="m", system_prompt="s", user_prompt="u"
        )

    assert exc_info.value.failure_kind == failure_kind


def test_elevenlabs_list_voices_reads_rows(monkeypatch: MonkeyPatch) -> None:
    """Voice listing should return id, name, and category rows."""

    captured: dict[str, Any] = {}
    payload = {
        "voices": [
            {"voice_id": "v1", "name": "Rachel", "category": "premade"},
            {"name": "missing id"},
            {"voice_id": "v2", "name": None},
        ]
    }

    def _mock_get(url: str, **kwargs: Any) -> _MockRequestsResponse:
        captured["url"] = url
        captured.update(kwargs)
        return _MockRequestsResponse(payload=json.dumps(payload).encode("utf-8"))

    monkeypatch.setattr(http_client.requests, "get", _mock_get)

    rows = ElevenLabsClient(api_key="xi-key").list_voices()

    assert rows == [
        {"voice_id": "v1", "name": "Rachel", "category": "premade"},
        {"voice_id": "v2", "name": "", "category": ""},
    ]
    assert captured["url"] == "https://api.elevenlabs.io/v1/voices"
    assert captured["headers"] == {"xi-api-key": "xi-key"}


def test_elevenlabs_detail_envelope_is_classified(monkeypatch: MonkeyPatch) -> None:
    """ElevenLabs `detail` error envelopes should yield codes and kinds."""

    body = {"detail": {"status": "voice_not_found", "message": "Voice not found."}}
    _patch_post(
        monkeypatch,
        _MockRequestsResponse(payload=json.dumps(body).encode("utf-8"), status_code=400),
        {},
    )

    with pytest.raises(ElevenLabsProviderError) as exc_info:
        ElevenLabsClient(api_key="k").text_to_speech(
            voice_id="missing", text="Hello", model_id="m", voice_settings={}
        )

    assert exc_info.value.failure_kind == "invalid_model"
    assert exc_info.value.provider_code == "voice_not_found"


def test_elevenlabs_synthesizer_clamps_speed_and_writes_clip(
    monkeypatch: MonkeyPatch, tmp_path: Path
) -> None:
    """Requested rates beyond the provider range are clamped before the request."""

    captured: dict[str, Any] = {}
    _patch_post(monkeypatch, _MockRequestsResponse(payload=b"mp3-bytes"), captured)
    synthesizer = ElevenLabsSynthesizer(api_key="k", model="eleven_turbo_v2")
    voice = VoiceProfile(name="Narrator", provider_voice_id="voice-1")

    clip = synthesizer.synthesize("Hello there", voice, 1.8, tmp_path / "clips" / "01.mp3")

    assert clip.path.read_bytes() == b"mp3-bytes"
    assert clip.speaking_rate == 1.2
    assert captured["url"].endswith("/text-to-speech/voice-1")
    assert captured["headers"]["Accept"] == "audio/mpeg"
    assert captured["json"]["model_id"] == "eleven_turbo_v2"
    assert captured["json"]["voice_settings"]["speed"] == 1.2


def test_openai_synthesizer_rejects_empty_audio(monkeypatch: MonkeyPatch, tmp_path: Path) -> None:
    """An empty speech response is a provider failure."""

    _patch_post(monkeypatch, _MockRequestsResponse(payload=b""), {})
    synthesizer = OpenAISpeechSynthesizer(api_key="k")

    with pytest.raises(OpenAIProviderError, match="response is empty"):
        synthesizer.synthesize(
            "Hello there", VoiceProfile("Echo", "echo"), 1.0, tmp_path / "01.mp3"
        )


def test_create_synthesizer_requires_provider_key() -> None:
    """Missing keys for the selected provider fail before any synthesis."""

    runtime = ProviderRuntimeConfig(
        text_model="gpt-4o-mini",
        tts_provider="elevenlabs",
        tts_model="eleven_multilingual_v2",
        tts_voice="voice-1",
        openai_api_key="openai-key",
    )

    with pytest.raises(DataContractError) as exc_info:
        create_synthesizer(runtime)
    assert exc_info.value.context == {"provider": "elevenlabs", "setting": "elevenlabs_api_key"}

    openai_runtime = ProviderRuntimeConfig(
        text_model="gpt-4o-mini",
        tts_provider="openai",
        tts_model="gpt-4o-mini-tts",
        openai_api_key="openai-key",
    )
    synthesizer = create_synthesizer(openai_runtime, 15.0)
    assert isinstance(synthesizer, OpenAISpeechSynthesizer)
    assert synthesizer.client.timeout_seconds == 15.0
