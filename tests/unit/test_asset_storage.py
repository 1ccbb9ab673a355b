"""Unit tests for run asset storage and references."""

from __future__ import annotations

from pathlib import Path

import pytest

from reelvoice.io.storage import AssetStore, extract_asset_references


def test_asset_store_saves_and_references_files(tmp_path: Path) -> None:
    """Saved assets should map to stable `/uploads/...` references and back."""

    store = AssetStore(tmp_path)

    path = store.save_json("run-1", "timeline/timeline.json", {"b": 1, "a": 2})
    reference = store.reference(path)

    assert reference == "/uploads/run-1/timeline/timeline.json"
    assert store.resolve(reference) == tmp_path / "uploads" / "run-1" / "timeline" / "timeline.json"
    assert store.exists(reference)
    assert path.read_text(encoding="utf-8").startswith('{\n  "a": 2')


def test_asset_store_run_dir_creates_directories(tmp_path: Path) -> None:
    """Run directories are created on demand."""

    directory = AssetStore(tmp_path).run_dir("run-1", "voice")

    assert directory.is_dir()
    assert directory == tmp_path / "uploads" / "run-1" / "voice"


def test_asset_store_resolve_rejects_foreign_and_escaping_references(tmp_path: Path) -> None:
    """References outside the asset root are rejected."""

    store = AssetStore(tmp_path)

    with pytest.raises(ValueError, match="Not an asset reference"):
        store.resolve("/etc/passwd")
    with pytest.raises(ValueError, match="escapes"):
        store.resolve("/uploads/../secrets.txt")


def test_extract_asset_references_walks_nested_output() -> None:
    """References are collected from nested outputs once, in order."""

    output = {
        "audio": "/uploads/r/voice/narration.mp3",
        "segments": [
            {"audio": "/uploads/r/voice/clips/01_a.mp3"},
            {"audio": "/uploads/r/voice/narration.mp3"},
        ],
        "text": "mentions /uploads/ inline",
        "count": 3,
    }

    assert extract_asset_references(output) == (
        "/uploads/r/voice/narration.mp3",
        "/uploads/r/voice/clips/01_a.mp3",
    )
    assert extract_asset_references(None) == ()
