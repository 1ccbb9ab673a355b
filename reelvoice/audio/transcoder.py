"""ffmpeg/ffprobe media operations used by narration assembly.

Responsibilities:
- Measure real clip durations with `ffprobe`.
- Decode clips to a lossless PCM WAV intermediate and concatenate them.
- Truncate or pad the lossless track to an exact duration.
- Encode the delivered track exactly once.
"""

from __future__ import annotations

from pathlib import Path
import subprocess
from typing import Protocol

from ..errors import TranscodeError
from ..parsing import normalize_optional_string
from ..runtime_tools import resolve_executable


class Transcoder(Protocol):
    """Protocol for media operations consumed by `VoiceAssembler`."""

    def probe_duration(self, path: Path) -> float:
        """Return the measured duration of an audio file in seconds."""

    def to_lossless(self, source: Path, output_path: Path) -> Path:
        """Decode `source` into a PCM WAV intermediate."""

    def concat(self, sources: list[Path], output_path: Path) -> Path:
        """Concatenate lossless intermediates in order."""

    def truncate(self, source: Path, output_path: Path, duration: float) -> Path:
        """Cut `source` to exactly `duration` seconds."""

    def pad(self, source: Path, output_path: Path, duration: float) -> Path:
        """Append silence to `source` until it lasts `duration` seconds."""

    def encode(self, source: Path, output_path: Path, format_id: str) -> Path:
        """Encode the lossless track once into the delivery format."""


class MediaTranscoder:
    """Subprocess-backed `ffmpeg`/`ffprobe` implementation of `Transcoder`."""

    _SAMPLE_RATE = "44100"
    _CHANNELS = "1"
    _ENCODING_PROFILES = {
        "mp3": ("libmp3lame", "192k"),
        "m4a": ("aac", "192k"),
    }

    def __init__(self, ffmpeg_path: str | None = None, ffprobe_path: str | None = None) -> None:
        """Initialize executable paths, resolving bundled or PATH binaries by default."""

        self.ffmpeg_path = ffmpeg_path or resolve_executable("ffmpeg")
        self.ffprobe_path = ffprobe_path or resolve_executable("ffprobe")

    def probe_duration(self, path: Path) -> float:
        """Return container duration reported by `ffprobe`."""

        command = [
            self.ffprobe_path,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            str(path),
        ]
        completed = self._run(command, tool="ffprobe", target=path)
        raw = normalize_optional_string(completed.stdout)
        try:
            duration = float(raw) if raw is not None else -1.0
        except ValueError:
            duration = -1.0
        if duration < 0:
            raise TranscodeError(
                f"ffprobe returned no usable duration for `{path.name}`: {raw or 'empty output'}",
                failure_kind="probe_error",
            )
        return duration

    def to_lossless(self, source: Path, output_path: Path) -> Path:
        """Decode one clip into mono PCM WAV."""

        self._ffmpeg(["-i", str(source), "-vn", *self._pcm_args()], output_path)
        return output_path

    def concat(self, sources: list[Path], output_path: Path) -> Path:
        """Concatenate WAV intermediates with the concat demuxer and stream copy."""

        if not sources:
            raise TranscodeError("Nothing to concatenate.", failure_kind="invalid_input")

        list_path = output_path.with_suffix(".concat.txt")
        list_path.parent.mkdir(parents=True, exist_ok=True)
        list_path.write_text(
            "\n".join(f"file '{self._escape_concat_path(path.resolve())}'" for path in sources)
            + "\n",
            encoding="utf-8",
        )
        try:
            self._ffmpeg(
                ["-f", "concat", "-safe", "0", "-i", str(list_path), "-c", "copy"],
                output_path,
            )
        finally:
            if list_path.exists():
                list_path.unlink()
        return output_path

    def truncate(self, source: Path, output_path: Path, duration: float) -> Path:
        """Cut the lossless track at exactly `duration` seconds."""

        self._ffmpeg(
            ["-i", str(source), "-af", f"atrim=0:{duration:.3f}", *self._pcm_args()],
            output_path,
        )
        return output_path

    def pad(self, source: Path, output_path: Path, duration: float) -> Path:
        """Pad the lossless track with trailing silence up to `duration` seconds."""

        self._ffmpeg(
            [
                "-i",
                str(source),
                "-af",
                f"apad=whole_dur={duration:.3f}",
                "-t",
                f"{duration:.3f}",
                *self._pcm_args(),
            ],
            output_path,
        )
        return output_path

    def encode(self, source: Path, output_path: Path, format_id: str) -> Path:
        """Encode the reconciled lossless track into the delivery format."""

        if format_id == "wav":
            self._ffmpeg(["-i", str(source), *self._pcm_args()], output_path)
            return output_path
        if format_id not in self._ENCODING_PROFILES:
            raise TranscodeError(
                f"Unsupported delivery format `{format_id}`.",
                failure_kind="invalid_input",
            )
        codec, bitrate = self._ENCODING_PROFILES[format_id]
        self._ffmpeg(
            [
                "-i",
                str(source),
                "-vn",
                "-map_metadata",
                "-1",
                "-ac",
                self._CHANNELS,
                "-ar",
                self._SAMPLE_RATE,
                "-c:a",
                codec,
                "-b:a",
                bitrate,
            ],
            output_path,
        )
        return output_path

    def _pcm_args(self) -> list[str]:
        """Return output arguments for the lossless intermediate format."""

        return ["-ac", self._CHANNELS, "-ar", self._SAMPLE_RATE, "-c:a", "pcm_s16le"]

    def _ffmpeg(self, arguments: list[str], output_path: Path) -> None:
        """Run one `ffmpeg` command writing `output_path`."""

        output_path.parent.mkdir(parents=True, exist_ok=True)
        command = [
            self.ffmpeg_path,
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            *arguments,
            str(output_path),
        ]
        self._run(command, tool="ffmpeg", target=output_path)

    def _run(
        self, command: list[str], *, tool: str, target: Path
    ) -> subprocess.CompletedProcess[str]:
        """Execute a media command and map failures to `TranscodeError`."""

        try:
            return subprocess.run(
                command,
                check=True,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as exc:
            raise TranscodeError(
                f"Media tool `{tool}` is not available on PATH.",
                failure_kind="missing_binary",
            ) from exc
        except subprocess.CalledProcessError as exc:
            stderr = normalize_optional_string(exc.stderr) or "no stderr output"
            raise TranscodeError(
                f"{tool} failed for `{target.name}`: {stderr}",
                failure_kind="process_error",
            ) from exc

    @staticmethod
    def _escape_concat_path(path: Path) -> str:
        """Escape one file path for ffmpeg concat list format."""

        return str(path).replace("'", "'\\''")
