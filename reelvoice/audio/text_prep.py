"""Spoken-text preparation for speech synthesis.

Responsibilities:
- Strip stage directions, markup, and speaker labels from script segments.
- Replace leftover marker characters so none reach synthesis.
- Reject text that would reach synthesis empty.
"""

from __future__ import annotations

import re

from ..errors import DataContractError


_DIRECTION_CUES = (
    "pause",
    "beat",
    "music",
    "sfx",
    "sound",
    "whisper",
    "laugh",
    "smile",
    "sigh",
    "excited",
    "dramatic",
    "upbeat",
    "transition",
    "zoom",
    "b-roll",
    "on screen",
    "on-screen",
    "voiceover",
    "voice over",
    "camera",
    "scene",
    "visual",
    "gesture",
)
_MARKER_CHARACTERS = frozenset("[]{}<>*#_`|~")

_BRACKETED = re.compile(r"\[[^\]]*\]|\{[^}]*\}|<[^>]*>")
_PARENTHESIZED = re.compile(r"\(([^)]*)\)")
_SPEAKER_LABEL = re.compile(r"(?m)^\s*[A-Z][A-Z0-9 ]{1,30}:\s*")
_SECTION_LABEL = re.compile(
    r"(?im)^\s*(?:segment|part|scene|hook|cta|intro|outro)\s*\d*\s*:\s*"
)
_MARKDOWN_HEADING = re.compile(r"(?m)^\s{0,3}#{1,6}\s*")
_LIST_BULLET = re.compile(r"(?m)^\s*(?:[-*+•]|\d+[.)])\s+")
_EMPHASIS = re.compile(r"(\*{1,3}|_{1,3}|~~|`+)(.+?)\1")
_EMOJI = re.compile(
    "["
    "\U0001F300-\U0001FAFF"
    "\U00002600-\U000027BF"
    "\U0001F000-\U0001F2FF"
    "\U0000FE0F"
    "\U0000200D"
    "]+"
)
_WHITESPACE = re.compile(r"\s+")
_SPACE_BEFORE_PUNCTUATION = re.compile(r"\s+([,.;:!?])")


def _is_direction(content: str) -> bool:
    """Return whether parenthesized content reads as a performance direction."""

    stripped = content.strip()
    if not stripped:
        return True
    letters = [character for character in stripped if character.isalpha()]
    if letters and all(character.isupper() for character in letters):
        return True
    lowered = stripped.lower()
    return any(
        re.search(rf"\b{re.escape(cue)}(?:s|es|ing|ed)?\b", lowered)
        for cue in _DIRECTION_CUES
    )


def clean_spoken_text(text: str) -> str:
    """Return narration text with directions, markup, and labels removed."""

    cleaned = _BRACKETED.sub(" ", text)
    cleaned = _PARENTHESIZED.sub(
        lambda match: " " if _is_direction(match.group(1)) else match.group(0),
        cleaned,
    )
    cleaned = _MARKDOWN_HEADING.sub("", cleaned)
    cleaned = _LIST_BULLET.sub("", cleaned)
    cleaned = _SPEAKER_LABEL.sub("", cleaned)
    cleaned = _SECTION_LABEL.sub("", cleaned)
    previous = None
    while previous != cleaned:
        previous = cleaned
        cleaned = _EMPHASIS.sub(r"\2", cleaned)
    cleaned = _EMOJI.sub(" ", cleaned)
    cleaned = "".join(
        " " if character in _MARKER_CHARACTERS else character for character in cleaned
    )
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    cleaned = _SPACE_BEFORE_PUNCTUATION.sub(r"\1", cleaned)
    return cleaned


def prepare_segment_text(segment_id: str, text: str, min_chars: int) -> str:
    """Clean one segment and enforce the minimum spoken length.

    Raises:
        DataContractError: If the cleaned text is shorter than `min_chars`.
    """

    cleaned = clean_spoken_text(text)
    if len(cleaned) < min_chars:
        raise DataContractError(
            f"Segment `{segment_id}` has no speakable text after cleaning.",
            {"segment_id": segment_id, "cleaned_length": len(cleaned), "min_chars": min_chars},
        )
    return cleaned
