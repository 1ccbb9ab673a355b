"""Deterministic runtime executable resolution helpers.

Responsibilities:
- Resolve `ffmpeg`/`ffprobe` paths with explicit override, bundled, then PATH precedence.
- Support frozen app layouts (for example PyInstaller) and local development runs.
"""

from __future__ import annotations

import os
from pathlib import Path
import shutil
import sys
from typing import Mapping

from .parsing import normalize_optional_string


def resolve_executable(command_name: str, env: Mapping[str, str] | None = None) -> str:
    """Resolve an executable path for one media tool.

    Resolution order:
    1. `REELVOICE_<TOOL>` environment override (for example `REELVOICE_FFPROBE`).
    2. Bundled app directories (`./bin/<tool>` then `./<tool>` from app root).
    3. System `PATH`.
    4. Raw command name (allowing subprocess to raise a native missing-binary error).
    """

    normalized = command_name.strip()
    if not normalized:
        return command_name

    env_map = os.environ if env is None else env
    override = normalize_optional_string(env_map.get(f"REELVOICE_{normalized.upper()}"))
    if override is not None:
        return override

    for candidate in _bundled_candidates(normalized):
        if candidate.is_file():
            return str(candidate)

    resolved_path = shutil.which(normalized)
    if resolved_path is not None:
        return resolved_path

    return normalized


def _bundled_candidates(command_name: str) -> list[Path]:
    """Return bundled candidate paths for one executable name."""

    app_root = _app_root()
    suffixes = ("",) if command_name.lower().endswith(".exe") else ("", ".exe")
    candidates: list[Path] = []
    for suffix in suffixes:
        candidates.append(app_root / "bin" / f"{command_name}{suffix}")
        candidates.append(app_root / f"{command_name}{suffix}")
    return candidates


def _app_root() -> Path:
    """Resolve runtime application root for frozen and non-frozen execution."""

    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parents[1]
