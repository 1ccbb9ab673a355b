"""Narration timeline parsing, normalization, and export.

Responsibilities:
- Validate model-produced timeline JSON before any voice work depends on it.
- Normalize segment allotments so they sum to the target duration.
- Build a deterministic sentence-based timeline from a script.
- Export timelines as SRT, WebVTT, or JSON text.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any, Mapping, Sequence

from ..errors import DataContractError
from ..models.datatypes import NarrationSegment
from ..parsing import parse_json_payload

MIN_SEGMENTS = 2
MIN_SEGMENT_TEXT_CHARS = 5
DEFAULT_SEGMENT_COUNT = 3

_SENTENCE_PATTERN = re.compile(r"[^.!?]+[.!?]*")


def parse_timeline(raw_text: str, target_duration: float) -> dict[str, Any]:
    """Parse and validate a model timeline response.

    Raises:
        DataContractError: If the response is not a usable timeline.
    """

    try:
        payload = parse_json_payload(raw_text)
    except ValueError as exc:
        raise DataContractError(
            f"Timeline response is not valid JSON: {exc}",
            {"response_preview": raw_text[:200]},
        ) from exc

    if not isinstance(payload, dict) or not isinstance(payload.get("segments"), list):
        raise DataContractError("Timeline JSON must contain a `segments` array.")
    raw_segments = payload["segments"]
    if len(raw_segments) < MIN_SEGMENTS:
        raise DataContractError(
            f"Timeline must contain at least {MIN_SEGMENTS} segments.",
            {"segment_count": len(raw_segments)},
        )

    entries: list[tuple[str, str, float]] = []
    for index, item in enumerate(raw_segments, start=1):
        if not isinstance(item, dict):
            raise DataContractError(
                "Timeline segment must be an object.", {"segment_index": index}
            )
        text = item.get("text")
        if not isinstance(text, str) or len(text.strip()) < MIN_SEGMENT_TEXT_CHARS:
            raise DataContractError(
                f"Timeline segment text must be at least {MIN_SEGMENT_TEXT_CHARS} characters.",
                {"segment_index": index},
            )
        segment_id = str(item.get("id") or f"segment_{index}")
        entries.append((segment_id, text.strip(), _segment_seconds(item, index)))

    return normalize_timeline(entries, target_duration, source="model")


def _segment_seconds(item: Mapping[str, Any], index: int) -> float:
    """Return a positive segment duration from `duration` or `startTime`/`endTime`."""

    duration = item.get("duration")
    if _is_number(duration):
        seconds = float(duration)
    elif _is_number(item.get("startTime")) and _is_number(item.get("endTime")):
        seconds = float(item["endTime"]) - float(item["startTime"])
    else:
        raise DataContractError(
            "Timeline segment timing must be numeric.", {"segment_index": index}
        )
    if not math.isfinite(seconds) or seconds <= 0:
        raise DataContractError(
            "Timeline segment duration must be positive.",
            {"segment_index": index, "duration": seconds},
        )
    return seconds


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def normalize_timeline(
    entries: Sequence[tuple[str, str, float]],
    target_duration: float,
    *,
    source: str,
) -> dict[str, Any]:
    """Scale `(id, text, seconds)` entries so allotments sum to `target_duration`."""

    seen: set[str] = set()
    for segment_id, _, _ in entries:
        if segment_id in seen:
            raise DataContractError(
                "Timeline segment ids must be unique.", {"segment_id": segment_id}
            )
        seen.add(segment_id)

    total = sum(seconds for _, _, seconds in entries)
    scale = target_duration / total
    segments: list[dict[str, Any]] = []
    cursor = 0.0
    for position, (segment_id, text, seconds) in enumerate(entries):
        allotted = seconds * scale
        end = target_duration if position == len(entries) - 1 else cursor + allotted
        segments.append(
            {
                "id": segment_id,
                "text": text,
                "start": round(cursor, 3),
                "end": round(end, 3),
                "duration": round(end - cursor, 3),
                "word_count": len(text.split()),
            }
        )
        cursor = end

    return {
        "segments": segments,
        "total_duration": target_duration,
        "total_words": sum(segment["word_count"] for segment in segments),
        "source": source,
    }


def timeline_from_script(
    script: str, target_duration: float, segment_count: int = DEFAULT_SEGMENT_COUNT
) -> dict[str, Any]:
    """Group script sentences into segments with word-proportional allotments."""

    sentences = [match.group(0).strip() for match in _SENTENCE_PATTERN.finditer(script)]
    sentences = [sentence for sentence in sentences if sentence]
    if not sentences:
        raise DataContractError("Script contains no sentences to split into a timeline.")

    count = max(1, min(segment_count, len(sentences)))
    per_segment = math.ceil(len(sentences) / count)
    entries: list[tuple[str, str, float]] = []
    for index in range(count):
        chunk = sentences[index * per_segment : (index + 1) * per_segment]
        if not chunk:
            break
        text = " ".join(chunk)
        entries.append((f"segment_{index + 1}", text, float(max(1, len(text.split())))))
    return normalize_timeline(entries, target_duration, source="script")


def narration_segments(
    timeline: Mapping[str, Any] | None, script: str, target_duration: float
) -> list[NarrationSegment]:
    """Return assembler input segments; one segment spans the target without a timeline."""

    if not timeline or not timeline.get("segments"):
        return [NarrationSegment("segment_1", script, target_duration)]
    return [
        NarrationSegment(
            segment_id=str(segment["id"]),
            text=str(segment["text"]),
            allotted_seconds=float(segment["duration"]),
        )
        for segment in timeline["segments"]
    ]


def export_timeline(timeline: Mapping[str, Any], fmt: str = "json") -> str:
    """Render a timeline as `srt`, `vtt`, or `json` text."""

    segments = timeline.get("segments") or []
    if fmt == "srt":
        return "\n".join(
            f"{index}\n{_srt_time(segment['start'])} --> {_srt_time(segment['end'])}\n"
            f"{segment['text']}\n"
            for index, segment in enumerate(segments, start=1)
        )
    if fmt == "vtt":
        cues = "\n\n".join(
            f"{_vtt_time(segment['start'])} --> {_vtt_time(segment['end'])}\n{segment['text']}"
            for segment in segments
        )
        return "WEBVTT\n\n" + cues + "\n"
    if fmt == "json":
        return json.dumps(dict(timeline), ensure_ascii=False, indent=2)
    raise ValueError(f"Unsupported timeline export format `{fmt}`.")


def _split_millis(seconds: float) -> tuple[int, int, int, int]:
    total_millis = int(round(float(seconds) * 1000))
    hours, remainder = divmod(total_millis, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, millis = divmod(remainder, 1000)
    return hours, minutes, secs, millis


def _srt_time(seconds: float) -> str:
    hours, minutes, secs, millis = _split_millis(seconds)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def _vtt_time(seconds: float) -> str:
    hours, minutes, secs, millis = _split_millis(seconds)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"
