"""Unit tests for duration-constrained narration assembly."""

from __future__ import annotations

from pathlib import Path

import pytest

from reelvoice.audio.assembler import VoiceAssembler
from reelvoice.errors import DataContractError, SegmentCountMismatchError
from reelvoice.models.datatypes import NarrationSegment
from reelvoice.tts.voices import VoiceProfile
from tests.fakes import FakeSynthesizer, FakeTranscoder


VOICE = VoiceProfile(name="Narrator", provider_voice_id="voice-123")

THREE_SEGMENTS = [
    NarrationSegment(
        "hook", "Tired of building weekly reports by hand every single Monday morning?", 5.0
    ),
    NarrationSegment(
        "body", "Acme Flow connects your data and builds clear dashboards for you.", 5.0
    ),
    NarrationSegment("cta", "Start your free trial today and get your Mondays back now.", 5.0),
]


def _assembler(synthesizer: FakeSynthesizer, transcoder: FakeTranscoder) -> VoiceAssembler:
    return VoiceAssembler(synthesizer=synthesizer, transcoder=transcoder)


def test_assemble_truncates_overshoot_and_adapts_rate(tmp_path: Path) -> None:
    """Overshooting clips should speed up later segments and truncate to target."""

    transcoder = FakeTranscoder()
    synthesizer = FakeSynthesizer(transcoder, [6.2, 4.8, 5.5])

    result = _assembler(synthesizer, transcoder).assemble(
        THREE_SEGMENTS, 15.0, VOICE, tmp_path / "voice", run_id="run-1"
    )

    rates = [rate for _, rate in synthesizer.requests]
    assert rates[0] == 1.0
    assert rates[1] == pytest.approx(10.0 / 8.8)
    assert rates[2] == pytest.approx(1.25)

    assert result.initial_multiplier == 1.0
    assert result.final_multiplier == pytest.approx(1.25)
    assert result.concatenated_duration == pytest.approx(16.5)
    assert result.final_duration == pytest.approx(15.0)
    assert result.reconciliation == "truncate"
    assert ("truncate", 15.0) in transcoder.calls
    assert result.merged_path == tmp_path / "voice" / "narration.mp3"
    assert result.merged_path.is_file()

    offsets = [(segment.start, segment.end) for segment in result.segments]
    assert offsets[0] == pytest.approx((0.0, 6.2))
    assert offsets[1] == pytest.approx((6.2, 11.0))
    assert offsets[2] == pytest.approx((11.0, 15.0))
    assert [segment.audio_path.name for segment in result.segments] == [
        "01_hook.mp3",
        "02_body.mp3",
        "03_cta.mp3",
    ]


def test_assemble_pads_short_single_segment_without_concat(tmp_path: Path) -> None:
    """A short single clip should be padded with silence and never concatenated."""

    transcoder = FakeTranscoder()
    synthesizer = FakeSynthesizer(transcoder, [7.0])
    segment = NarrationSegment(
        "segment_1",
        "Acme Flow builds your reports automatically every morning for the whole team.",
        10.0,
    )

    result = _assembler(synthesizer, transcoder).assemble(
        [segment], 10.0, VOICE, tmp_path / "voice"
    )

    assert result.initial_multiplier == 0.85
    assert result.reconciliation == "pad"
    assert result.final_duration == pytest.approx(10.0)
    assert [name for name, _ in transcoder.calls] == ["to_lossless", "pad", "encode:mp3"]


def test_assemble_leaves_track_within_tolerance(tmp_path: Path) -> None:
    """Small deviations from the target should not be reconciled."""

    transcoder = FakeTranscoder()
    synthesizer = FakeSynthesizer(transcoder, [5.1, 5.0, 4.7])

    result = _assembler(synthesizer, transcoder).assemble(
        THREE_SEGMENTS, 15.0, VOICE, tmp_path / "voice"
    )

    assert result.reconciliation == "none"
    assert result.final_duration == pytest.approx(14.8)
    assert not any(name in {"truncate", "pad"} for name, _ in transcoder.calls)


def test_assemble_truncates_segment_text_that_cannot_fit(tmp_path: Path) -> None:
    """Text far over its allotment should be cut at word boundaries before synthesis."""

    transcoder = FakeTranscoder()
    synthesizer = FakeSynthesizer(transcoder, [2.1])
    segment = NarrationSegment(
        "hook",
        "Acme Flow turns messy spreadsheets into clean dashboards, sends weekly "
        "summaries, flags anomalies, and keeps every teammate aligned.",
        2.0,
    )

    result = _assembler(synthesizer, transcoder).assemble([segment], 2.0, VOICE, tmp_path)

    assert result.initial_multiplier == 1.25
    assert synthesizer.requests[0][0] == "Acme Flow turns messy spreadsheets into."
    assert result.segments[0].truncated is True
    assert result.segments[0].text == segment.text


def test_assemble_raises_on_missing_clip(tmp_path: Path) -> None:
    """An empty clip aborts assembly before any later segment is synthesized."""

    transcoder = FakeTranscoder()
    synthesizer = FakeSynthesizer(transcoder, [5.0, 5.0, 5.0], empty_indices=frozenset({1}))

    with pytest.raises(SegmentCountMismatchError) as exc_info:
        _assembler(synthesizer, transcoder).assemble(
            THREE_SEGMENTS, 15.0, VOICE, tmp_path / "voice"
        )

    assert exc_info.value.context == {"clips": 1, "segments": 3, "segment_id": "body"}
    assert len(synthesizer.requests) == 2
    assert not (tmp_path / "voice" / "narration.mp3").exists()


def test_assemble_stops_at_first_missing_clip(tmp_path: Path) -> None:
    """A missing first clip means no further provider calls are made."""

    transcoder = FakeTranscoder()
    synthesizer = FakeSynthesizer(transcoder, [5.0, 5.0, 5.0], empty_indices=frozenset({0}))

    with pytest.raises(SegmentCountMismatchError) as exc_info:
        _assembler(synthesizer, transcoder).assemble(
            THREE_SEGMENTS, 15.0, VOICE, tmp_path / "voice"
        )

    assert exc_info.value.context["clips"] == 0
    assert len(synthesizer.requests) == 1
    assert transcoder.calls == []


def test_assemble_rejects_markup_only_segment_before_synthesis(tmp_path: Path) -> None:
    """Segments with nothing speakable should fail before any provider call."""

    transcoder = FakeTranscoder()
    synthesizer = FakeSynthesizer(transcoder, [5.0, 5.0])
    segments = [
        NarrationSegment("hook", "Reports that build themselves.", 5.0),
        NarrationSegment("cue", "[MUSIC] (PAUSE)", 5.0),
    ]

    with pytest.raises(DataContractError):
        _assembler(synthesizer, transcoder).assemble(segments, 10.0, VOICE, tmp_path)

    assert synthesizer.requests == []


def test_assemble_requires_voice_identity(tmp_path: Path) -> None:
    """A blank provider voice id should be rejected."""

    transcoder = FakeTranscoder()
    synthesizer = FakeSynthesizer(transcoder, [5.0])
    voice = VoiceProfile(name="Narrator", provider_voice_id="  ")

    with pytest.raises(DataContractError) as exc_info:
        _assembler(synthesizer, transcoder).assemble(
            THREE_SEGMENTS[:1], 5.0, voice, tmp_path
        )

    assert exc_info.value.context == {"setting": "tts_voice"}


def test_assemble_rejects_duplicate_segment_ids(tmp_path: Path) -> None:
    """Segment ids must be unique within one assembly."""

    transcoder = FakeTranscoder()
    synthesizer = FakeSynthesizer(transcoder, [5.0, 5.0])
    segments = [THREE_SEGMENTS[0], THREE_SEGMENTS[0]]

    with pytest.raises(DataContractError, match="Duplicate segment id"):
        _assembler(synthesizer, transcoder).assemble(segments, 10.0, VOICE, tmp_path)
