"""Integration tests for CLI run commands over deterministic pipeline fakes."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pytest import MonkeyPatch
from typer.testing import CliRunner, Result

from reelvoice.cli import app
from reelvoice.config import ReelvoiceConfig
from reelvoice.credentials import CredentialStore
from reelvoice.pipeline import ReelPipeline
from tests.fakes import (
    FakeChatClient,
    FakeContentSource,
    FakeSynthesizer,
    FakeTranscoder,
    fake_generator_factory,
)

PRODUCT_URL = "https://example.com/product"


class InMemoryCredentialStore(CredentialStore):
    """Credential store keeping provider keys in a dictionary."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        """Initialize the store with optional provider keys."""

        self.keys = dict(initial or {})

    def is_available(self) -> bool:
        """Report the store as usable."""

        return True

    def get_api_key(self, provider: str) -> str | None:
        """Return the stored key of a provider."""

        return self.keys.get(provider)

    def set_api_key(self, provider: str, api_key: str) -> None:
        """Store a normalized key."""

        self.keys[provider] = api_key.strip()

    def clear_api_key(self, provider: str) -> bool:
        """Remove a key and report whether it existed."""

        return self.keys.pop(provider, None) is not None


@pytest.fixture
def credential_store(monkeypatch: MonkeyPatch) -> InMemoryCredentialStore:
    """Route every CLI credential lookup to an in-memory store."""

    store = InMemoryCredentialStore()
    monkeypatch.setattr("reelvoice.cli.create_credential_store", lambda: store)
    return store


@pytest.fixture(autouse=True)
def fake_pipeline(monkeypatch: MonkeyPatch, credential_store: InMemoryCredentialStore) -> None:
    """Build CLI pipelines over fakes while keeping the real config resolution."""

    for name in ("REELVOICE_TTS_VOICE", "ELEVENLABS_VOICE_ID", "REELVOICE_PROVIDER_TTS"):
        monkeypatch.delenv(name, raising=False)
    transcoder = FakeTranscoder()
    synthesizer = FakeSynthesizer(transcoder, [3.1, 3.9, 3.0] * 4)
    client = FakeChatClient()

    def _build(config: ReelvoiceConfig, verbose: bool = False) -> ReelPipeline:
        _ = verbose
        return ReelPipeline(
            config,
            content_source=FakeContentSource(),
            generator_factory=fake_generator_factory(client),
            synthesizer_factory=lambda runtime, timeout: synthesizer,
            transcoder=transcoder,
        )

    monkeypatch.setattr("reelvoice.cli._build_pipeline", _build)


def _start(runner: CliRunner, out_dir: Path, *extra: str) -> Result:
    return runner.invoke(
        app,
        [
            "start",
            PRODUCT_URL,
            "--duration",
            "10",
            "--out",
            str(out_dir),
            "--openai-api-key",
            "sk-test",
            "--elevenlabs-api-key",
            "xi-test",
            *extra,
        ],
    )


def _run_id(output: str) -> str:
    for line in output.splitlines():
        if line.startswith("Run id: "):
            return line.removeprefix("Run id: ").strip()
    raise AssertionError(f"No run id in output:\n{output}")


def test_start_status_and_runs_commands(tmp_path: Path) -> None:
    """A completed start should be visible through `status --json` and `runs`."""

    runner = CliRunner()
    out_dir = tmp_path / "out"

    started = _start(runner, out_dir, "--tts-voice", "voice-1", "--title", "Acme promo")

    assert started.exit_code == 0, started.output
    assert "Started run: " in started.output
    assert "Status: completed" in started.output
    run_id = _run_id(started.output)
    assert f"Narration: /uploads/{run_id}/voice/narration.mp3" in started.output

    status = runner.invoke(app, ["status", run_id, "--json", "--out", str(out_dir)])
    assert status.exit_code == 0, status.output
    report = json.loads(status.output)
    assert report["status"] == "completed"
    assert report["progress"]["total"] == 14
    assert report["progress"]["completed"] == 11
    assert report["final_outputs"]["script"]

    runs = runner.invoke(app, ["runs", "--out", str(out_dir)])
    assert runs.exit_code == 0
    assert run_id in runs.output
    assert "Acme promo" in runs.output


def test_start_reports_failed_stage_with_hint(tmp_path: Path) -> None:
    """A missing voice id should fail the voice stage and exit with code 1."""

    runner = CliRunner()

    result = _start(runner, tmp_path / "out")

    assert result.exit_code == 1
    assert "start failed at stage `voice-generation`" in result.output
    assert "Hint: Configure `tts_voice`, then run `reelvoice resume`." in result.output


def test_start_rejects_invalid_url_and_timeline_mode(tmp_path: Path) -> None:
    """Invalid requests fail before any stage runs."""

    runner = CliRunner()

    bad_url = runner.invoke(app, ["start", "ftp://example.com", "--out", str(tmp_path)])
    assert bad_url.exit_code == 1
    assert "start failed: Source URL must be an http(s) URL." in bad_url.output

    bad_mode = _start(runner, tmp_path / "out", "--timeline-mode", "auto")
    assert bad_mode.exit_code == 1
    assert "Unsupported timeline mode `auto`" in bad_mode.output


def test_resume_after_voice_configured(tmp_path: Path) -> None:
    """Resuming with a voice id completes a run that failed at voice generation."""

    runner = CliRunner()
    out_dir = tmp_path / "out"
    run_id = _run_id(_start(runner, out_dir).output)

    resumed = runner.invoke(
        app, ["resume", run_id, "--out", str(out_dir), "--tts-voice", "voice-1"]
    )

    assert resumed.exit_code == 0, resumed.output
    assert "Status: completed" in resumed.output


def test_snapshot_restore_and_restart_commands(tmp_path: Path) -> None:
    """Snapshots are listed, restore asks for confirmation, restart links runs."""

    runner = CliRunner()
    out_dir = tmp_path / "out"
    run_id = _run_id(_start(runner, out_dir, "--tts-voice", "voice-1").output)

    snapshot = runner.invoke(
        app, ["snapshot", run_id, "--label", "approved", "--out", str(out_dir)]
    )
    assert snapshot.exit_code == 0, snapshot.output
    assert "Label: approved" in snapshot.output
    assert "Completed stages: 11/14" in snapshot.output
    snapshot_id = snapshot.output.splitlines()[0].removeprefix("Snapshot id: ").strip()

    listed = runner.invoke(app, ["snapshots", run_id, "--out", str(out_dir)])
    assert snapshot_id in listed.output

    declined = runner.invoke(
        app, ["restore", run_id, snapshot_id, "--out", str(out_dir)], input="n\n"
    )
    assert declined.exit_code == 1
    assert "Restore cancelled; no stage was changed." in declined.output

    restored = runner.invoke(app, ["restore", run_id, snapshot_id, "--yes", "--out", str(out_dir)])
    assert restored.exit_code == 0, restored.output
    assert "Status: completed" in restored.output

    restarted = runner.invoke(
        app,
        ["restart", run_id, "--from-stage", "5", "--out", str(out_dir), "--tts-voice", "voice-1"],
    )
    assert restarted.exit_code == 0, restarted.output
    assert f"Restarted from: {run_id}" in restarted.output
    assert "(restart from stage 5)" in restarted.output


def test_edit_stage_and_delete_commands(tmp_path: Path) -> None:
    """Completed stage outputs can be edited and runs deleted after confirmation."""

    runner = CliRunner()
    out_dir = tmp_path / "out"
    run_id = _run_id(_start(runner, out_dir, "--tts-voice", "voice-1").output)
    output_file = tmp_path / "summary.json"
    output_file.write_text(
        json.dumps({"summary": "Edited summary.", "image": f"/uploads/{run_id}/cover.png"}),
        encoding="utf-8",
    )

    edit_args = ["--output-file", str(output_file), "--out", str(out_dir)]

    edited = runner.invoke(app, ["edit-stage", run_id, "ai-summary", *edit_args])
    assert edited.exit_code == 0, edited.output
    assert "Stage `ai-summary` updated." in edited.output
    assert f"Assets: /uploads/{run_id}/cover.png" in edited.output

    status = runner.invoke(app, ["status", run_id, "--json", "--out", str(out_dir)])
    stages = {stage["stage_id"]: stage for stage in json.loads(status.output)["stages"]}
    assert stages["ai-summary"]["output"]["summary"] == "Edited summary."
    assert stages["ai-summary"]["status"] == "completed"

    rejected = runner.invoke(app, ["edit-stage", run_id, "final-merge", *edit_args])
    assert rejected.exit_code == 1
    assert "only completed stages can be edited" in rejected.output

    declined = runner.invoke(app, ["delete", run_id, "--out", str(out_dir)], input="n\n")
    assert declined.exit_code == 1
    assert "Delete cancelled; the run was kept." in declined.output

    deleted = runner.invoke(app, ["delete", run_id, "--yes", "--out", str(out_dir)])
    assert deleted.exit_code == 0, deleted.output
    assert f"Deleted run: {run_id}" in deleted.output

    missing = runner.invoke(app, ["status", run_id, "--out", str(out_dir)])
    assert missing.exit_code == 1
    assert f"Run `{run_id}` does not exist." in missing.output


def test_credentials_command_sets_reports_and_clears_keys(
    credential_store: InMemoryCredentialStore,
) -> None:
    """Credential actions should operate on the secure store only."""

    runner = CliRunner()

    stored = runner.invoke(
        app, ["credentials", "--provider", "elevenlabs", "--set-api-key"], input="xi-secret\n"
    )
    assert stored.exit_code == 0, stored.output
    assert credential_store.keys == {"elevenlabs": "xi-secret"}
    assert "xi-secret" not in stored.output

    status = runner.invoke(app, ["credentials"])
    assert "Secure credential storage: available" in status.output
    assert "Stored elevenlabs API key: present" in status.output
    assert "Stored openai API key: not set" in status.output

    cleared = runner.invoke(app, ["credentials", "--provider", "elevenlabs", "--clear-api-key"])
    assert "Stored elevenlabs API key cleared" in cleared.output
    assert credential_store.keys == {}

    conflicting = runner.invoke(app, ["credentials", "--set-api-key", "--clear-api-key"])
    assert conflicting.exit_code == 1
    assert "cannot be used together" in conflicting.output


def test_stored_key_is_used_as_runtime_source(
    tmp_path: Path, credential_store: InMemoryCredentialStore
) -> None:
    """Keys in the secure store should reach the persisted run metadata as flags only."""

    credential_store.keys["openai"] = "sk-stored"
    runner = CliRunner()
    out_dir = tmp_path / "out"

    result = runner.invoke(
        app,
        ["start", PRODUCT_URL, "-d", "10", "--out", str(out_dir), "--tts-voice", "voice-1"],
    )

    assert result.exit_code == 0, result.output
    status = runner.invoke(app, ["status", _run_id(result.output), "--json", "--out", str(out_dir)])
    assert "sk-stored" not in status.output
