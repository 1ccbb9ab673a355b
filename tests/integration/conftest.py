"""Integration-test fixtures for deterministic provider behavior."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from reelvoice.config import ReelvoiceConfig
from reelvoice.io import http_client
from reelvoice.pipeline import ReelPipeline
from tests.fakes import (
    FakeChatClient,
    FakeContentSource,
    FakeSynthesizer,
    FakeTranscoder,
    fake_generator_factory,
)


@pytest.fixture(autouse=True)
def _block_provider_http(monkeypatch: pytest.MonkeyPatch) -> None:
    """Fail fast if an integration test reaches a real provider endpoint."""

    def _unexpected_request(*args: object, **kwargs: object) -> None:
        raise AssertionError("Integration tests must not issue provider HTTP requests.")

    monkeypatch.setattr(http_client.requests, "get", _unexpected_request)
    monkeypatch.setattr(http_client.requests, "post", _unexpected_request)


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    """Provide the output root shared by pipelines of one test."""

    return tmp_path / "out"


@pytest.fixture
def chat_client() -> FakeChatClient:
    """Provide a chat client answering every generative stage."""

    return FakeChatClient()


@pytest.fixture
def transcoder() -> FakeTranscoder:
    """Provide an in-memory transcoder."""

    return FakeTranscoder()


@pytest.fixture
def build_pipeline(
    output_dir: Path, chat_client: FakeChatClient, transcoder: FakeTranscoder
) -> Callable[..., ReelPipeline]:
    """Return a factory building pipelines over fakes and a shared output root."""

    def _build(
        *,
        clip_durations: list[float] | None = None,
        tts_voice: str | None = "voice-1",
        content_source: FakeContentSource | None = None,
    ) -> ReelPipeline:
        synthesizer = FakeSynthesizer(transcoder, clip_durations or [3.1, 3.9, 3.0])
        config = ReelvoiceConfig(
            output_dir=output_dir,
            tts_voice=tts_voice,
            openai_api_key="sk-test",
            elevenlabs_api_key="xi-test",
        )
        return ReelPipeline(
            config,
            content_source=content_source or FakeContentSource(),
            generator_factory=fake_generator_factory(chat_client),
            synthesizer_factory=lambda runtime, timeout: synthesizer,
            transcoder=transcoder,
        )

    return _build
