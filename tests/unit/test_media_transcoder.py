"""Unit tests for ffmpeg/ffprobe command construction and failure mapping."""

from __future__ import annotations

from pathlib import Path
import subprocess
from typing import Any

import pytest
from pytest import MonkeyPatch

from reelvoice.audio import transcoder as transcoder_module
from reelvoice.audio.transcoder import MediaTranscoder
from reelvoice.errors import TranscodeError


def _recording_run(
    monkeypatch: MonkeyPatch, stdout: str = ""
) -> list[list[str]]:
    commands: list[list[str]] = []

    def _mock_run(command: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        commands.append(command)
        return subprocess.CompletedProcess(command, 0, stdout=stdout, stderr="")

    monkeypatch.setattr(transcoder_module.subprocess, "run", _mock_run)
    return commands


def test_probe_duration_parses_ffprobe_output(monkeypatch: MonkeyPatch, tmp_path: Path) -> None:
    """ffprobe output should be parsed as seconds."""

    commands = _recording_run(monkeypatch, stdout="12.480000\n")
    media = MediaTranscoder(ffmpeg_path="ffmpeg", ffprobe_path="ffprobe")

    assert media.probe_duration(tmp_path / "clip.mp3") == pytest.approx(12.48)
    assert commands[0][0] == "ffprobe"
    assert commands[0][-1] == str(tmp_path / "clip.mp3")


def test_probe_duration_rejects_unusable_output(
    monkeypatch: MonkeyPatch, tmp_path: Path
) -> None:
    """Non-numeric ffprobe output is a probe error."""

    _recording_run(monkeypatch, stdout="N/A")
    media = MediaTranscoder(ffmpeg_path="ffmpeg", ffprobe_path="ffprobe")

    with pytest.raises(TranscodeError) as exc_info:
        media.probe_duration(tmp_path / "clip.mp3")

    assert exc_info.value.failure_kind == "probe_error"


def test_truncate_and_pad_use_exact_durations(monkeypatch: MonkeyPatch, tmp_path: Path) -> None:
    """Reconciliation commands should trim or pad to the exact target."""

    commands = _recording_run(monkeypatch)
    media = MediaTranscoder(ffmpeg_path="ffmpeg", ffprobe_path="ffprobe")

    media.truncate(tmp_path / "in.wav", tmp_path / "cut.wav", 15.0)
    media.pad(tmp_path / "in.wav", tmp_path / "pad.wav", 10.0)

    assert "atrim=0:15.000" in commands[0]
    assert "apad=whole_dur=10.000" in commands[1]
    assert commands[1][commands[1].index("-t") + 1] == "10.000"
    assert "pcm_s16le" in commands[0]


def test_concat_writes_list_file_and_removes_it(monkeypatch: MonkeyPatch, tmp_path: Path) -> None:
    """Concat uses the demuxer with stream copy and cleans up its list file."""

    listed: list[str] = []

    def _mock_run(command: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        list_path = Path(command[command.index("-i") + 1])
        listed.append(list_path.read_text(encoding="utf-8"))
        return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

    monkeypatch.setattr(transcoder_module.subprocess, "run", _mock_run)
    media = MediaTranscoder(ffmpeg_path="ffmpeg", ffprobe_path="ffprobe")
    output = tmp_path / "work" / "concat.wav"

    media.concat([tmp_path / "01.wav", tmp_path / "02.wav"], output)

    assert listed[0].count("file '") == 2
    assert not output.with_suffix(".concat.txt").exists()


def test_encode_selects_codec_and_rejects_unknown_format(
    monkeypatch: MonkeyPatch, tmp_path: Path
) -> None:
    """Delivery encoding maps formats to codecs; unknown formats fail."""

    commands = _recording_run(monkeypatch)
    media = MediaTranscoder(ffmpeg_path="ffmpeg", ffprobe_path="ffprobe")

    media.encode(tmp_path / "in.wav", tmp_path / "narration.mp3", "mp3")
    assert "libmp3lame" in commands[0]

    with pytest.raises(TranscodeError, match="Unsupported delivery format"):
        media.encode(tmp_path / "in.wav", tmp_path / "narration.ogg", "ogg")


def test_missing_binary_and_process_errors_are_mapped(
    monkeypatch: MonkeyPatch, tmp_path: Path
) -> None:
    """Subprocess failures map to `missing_binary` and `process_error` kinds."""

    def _missing(command: list[str], **kwargs: Any) -> None:
        raise FileNotFoundError(command[0])

    monkeypatch.setattr(transcoder_module.subprocess, "run", _missing)
    media = MediaTranscoder(ffmpeg_path="ffmpeg", ffprobe_path="ffprobe")
    with pytest.raises(TranscodeError) as missing_info:
        media.to_lossless(tmp_path / "a.mp3", tmp_path / "a.wav")
    assert missing_info.value.failure_kind == "missing_binary"

    def _failing(command: list[str], **kwargs: Any) -> None:
        raise subprocess.CalledProcessError(1, command, stderr="Invalid data found")

    monkeypatch.setattr(transcoder_module.subprocess, "run", _failing)
    with pytest.raises(TranscodeError, match="Invalid data found") as failed_info:
        media.to_lossless(tmp_path / "a.mp3", tmp_path / "a.wav")
    assert failed_info.value.failure_kind == "process_error"
