"""Unit tests for spoken-text preparation."""

from __future__ import annotations

import pytest

from reelvoice.audio.text_prep import clean_spoken_text, prepare_segment_text
from reelvoice.errors import DataContractError


def test_clean_spoken_text_strips_directions_labels_and_markup() -> None:
    """Directions, speaker labels, and emphasis markers should never be spoken."""

    raw = "NARRATOR: **Meet** Acme Flow! [upbeat music] (PAUSE) It saves you *hours*."

    assert clean_spoken_text(raw) == "Meet Acme Flow! It saves you hours."


def test_clean_spoken_text_strips_section_labels_and_emoji() -> None:
    """Section labels and emoji should be removed."""

    assert clean_spoken_text("Hook: Stop wasting time 🚀") == "Stop wasting time"
    assert clean_spoken_text("Segment 2: Reports in one click.") == "Reports in one click."


def test_clean_spoken_text_keeps_spoken_parentheticals() -> None:
    """Parenthesized prose that is not a direction should stay."""

    text = "It works with your tools (and it is free) today."

    assert clean_spoken_text(text) == text


def test_clean_spoken_text_removes_cue_parentheticals() -> None:
    """Parenthesized cue words are directions."""

    assert clean_spoken_text("Hello (laughing) there.") == "Hello there."


def test_clean_spoken_text_keeps_ordinary_sentences_with_colons() -> None:
    """Mixed-case sentences with colons are not speaker labels."""

    text = "Here is the deal: reports build themselves."

    assert clean_spoken_text(text) == text


def test_prepare_segment_text_rejects_empty_result() -> None:
    """Segments with nothing speakable left are a data-contract violation."""

    with pytest.raises(DataContractError) as exc_info:
        prepare_segment_text("intro", "[MUSIC] (PAUSE)", 5)

    assert exc_info.value.context["segment_id"] == "intro"


def test_prepare_segment_text_enforces_minimum_length() -> None:
    """Cleaned text shorter than the minimum is rejected."""

    with pytest.raises(DataContractError):
        prepare_segment_text("s1", "Hi!", 5)

    assert prepare_segment_text("s1", "Hello world", 5) == "Hello world"


def test_prepare_segment_text_never_returns_marker_characters() -> None:
    """Stray markup characters are replaced instead of reaching synthesis."""

    prepared = prepare_segment_text("body", "Save <50%> of | your ~ time today ]", 5)

    assert not set(prepared) & set("[]{}<>*#_`|~")
    assert prepared.startswith("Save")
    assert prepared.endswith("today")
