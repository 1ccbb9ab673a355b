"""Run asset storage.

Responsibilities:
- Lay out per-run asset directories under the output root.
- Save text and JSON assets and map files to stable `/uploads/...` references.
- Resolve references back to filesystem paths.
"""

from __future__ import annotations

import json
from pathlib import Path, PurePosixPath
from typing import Any


ASSET_PREFIX = "/uploads/"


class AssetStore:
    """Filesystem-backed asset store rooted at `<output_dir>/uploads`."""

    def __init__(self, output_dir: Path) -> None:
        """Initialize the store with the configured output directory."""

        self.root = output_dir / "uploads"

    def run_dir(self, run_id: str, *parts: str) -> Path:
        """Return (and create) a directory for assets of one run."""

        path = self.root.joinpath(run_id, *parts)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def save_text(self, run_id: str, relative_path: str, content: str) -> Path:
        """Save text content under the run directory and return its path."""

        path = self.root / run_id / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    def save_json(self, run_id: str, relative_path: str, payload: Any) -> Path:
        """Save a JSON-serializable payload under the run directory."""

        return self.save_text(
            run_id,
            relative_path,
            json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True),
        )

    def reference(self, path: Path) -> str:
        """Return the `/uploads/...` reference of a stored file."""

        relative = path.resolve().relative_to(self.root.resolve())
        return ASSET_PREFIX + PurePosixPath(*relative.parts).as_posix()

    def resolve(self, reference: str) -> Path:
        """Return the filesystem path behind an asset reference."""

        if not reference.startswith(ASSET_PREFIX):
            raise ValueError(f"Not an asset reference: `{reference}`.")
        relative = PurePosixPath(reference[len(ASSET_PREFIX) :])
        if ".." in relative.parts:
            raise ValueError(f"Asset reference escapes the asset root: `{reference}`.")
        return self.root.joinpath(*relative.parts)

    def exists(self, reference: str) -> bool:
        """Return whether the referenced asset exists."""

        return self.resolve(reference).exists()


def extract_asset_references(output: Any) -> tuple[str, ...]:
    """Collect `/uploads/...` strings found anywhere in a stage output, in order."""

    found: list[str] = []

    def _walk(value: Any) -> None:
        if isinstance(value, str):
            if value.startswith(ASSET_PREFIX) and value not in found:
                found.append(value)
        elif isinstance(value, dict):
            for item in value.values():
                _walk(item)
        elif isinstance(value, list | tuple):
            for item in value:
                _walk(item)

    _walk(output)
    return tuple(found)
