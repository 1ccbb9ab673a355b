"""Durable SQLite storage for runs, stages, and snapshots.

Responsibilities:
- Own the schema and connection settings of the state database.
- Provide transactional reads and writes; stage writes are upserts keyed by
  `(run_id, stage_id)`.
- Convert rows into immutable records.

Every public method runs in its own transaction. Callers that need a
read-modify-write cycle use `transaction()` and the `*_in` helpers so the
whole cycle commits or rolls back as one unit.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
import json
from pathlib import Path
import sqlite3
import threading
from typing import Any, Iterator, Mapping

from ..errors import StorageError
from ..models.datatypes import RunRecord, SnapshotRecord, StageDefinition, StageRecord


_SCHEMA = """
CREATE TABLE IF NOT EXISTS runs (
    run_id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    source_url TEXT,
    target_duration REAL NOT NULL,
    status TEXT NOT NULL,
    settings_json TEXT NOT NULL DEFAULT '{}',
    final_outputs_json TEXT NOT NULL DEFAULT '{}',
    parent_run_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS stages (
    run_id TEXT NOT NULL REFERENCES runs(run_id) ON DELETE CASCADE,
    stage_id TEXT NOT NULL,
    name TEXT NOT NULL,
    stage_order INTEGER NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    service TEXT NOT NULL DEFAULT '',
    implemented INTEGER NOT NULL DEFAULT 1,
    generative INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL,
    output_json TEXT,
    assets_json TEXT NOT NULL DEFAULT '[]',
    error TEXT,
    error_context_json TEXT NOT NULL DEFAULT '{}',
    started_at TEXT,
    finished_at TEXT,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (run_id, stage_id),
    UNIQUE (run_id, stage_order)
);

CREATE TABLE IF NOT EXISTS snapshots (
    snapshot_id TEXT PRIMARY KEY,
    run_id TEXT NOT NULL REFERENCES runs(run_id) ON DELETE CASCADE,
    label TEXT NOT NULL,
    note TEXT,
    run_title TEXT NOT NULL,
    total_stages INTEGER NOT NULL,
    completed_stages INTEGER NOT NULL,
    stages_json TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_snapshots_run ON snapshots(run_id, created_at);
"""

_STAGE_COLUMNS = (
    "stage_id",
    "name",
    "stage_order",
    "description",
    "service",
    "implemented",
    "generative",
    "status",
    "output_json",
    "assets_json",
    "error",
    "error_context_json",
    "started_at",
    "finished_at",
    "updated_at",
)


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string with milliseconds."""

    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def _dumps(value: Any) -> str:
    """Serialize a JSON value deterministically."""

    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def _loads(raw: str | None, default: Any) -> Any:
    """Deserialize a JSON column, returning `default` for empty values."""

    if raw is None or raw == "":
        return default
    return json.loads(raw)


class PipelineStateStore:
    """SQLite-backed store for pipeline run state."""

    def __init__(self, db_path: Path) -> None:
        """Initialize the store and create the schema when missing."""

        self._db_path = Path(db_path)
        self._lock = threading.RLock()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            connection = self.connect()
            try:
                try:
                    connection.execute("PRAGMA journal_mode = WAL;")
                except sqlite3.OperationalError:
                    connection.execute("PRAGMA journal_mode = DELETE;")
                connection.executescript(_SCHEMA)
            finally:
                connection.close()
        except sqlite3.Error as exc:
            raise StorageError(
                f"Cannot initialize state database `{self._db_path}`: {exc}"
            ) from exc

    @property
    def db_path(self) -> Path:
        """Return the database file path."""

        return self._db_path

    def connect(self) -> sqlite3.Connection:
        """Open a connection with row access by name and foreign keys on."""

        connection = sqlite3.connect(str(self._db_path), timeout=30.0, isolation_level=None)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside one immediate transaction.

        The transaction commits when the block exits normally and rolls back on
        any exception. `sqlite3.Error` is re-raised as `StorageError`.
        """

        with self._lock:
            try:
                connection = self.connect()
            except sqlite3.Error as exc:
                raise StorageError(f"Cannot open state database `{self._db_path}`: {exc}") from exc
            try:
                connection.execute("BEGIN IMMEDIATE")
                yield connection
                connection.execute("COMMIT")
            except sqlite3.Error as exc:
                if connection.in_transaction:
                    connection.execute("ROLLBACK")
                raise StorageError(f"State database operation failed: {exc}") from exc
            except BaseException:
                if connection.in_transaction:
                    connection.execute("ROLLBACK")
                raise
            finally:
                connection.close()

    def insert_run_in(
        self,
        connection: sqlite3.Connection,
        run: RunRecord,
        definitions: list[StageDefinition],
    ) -> None:
        """Insert a run row and one stage row per definition."""

        connection.execute(
            """
            INSERT INTO runs (
                run_id, title, source_url, target_duration, status, settings_json,
                final_outputs_json, parent_run_id, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                run.run_id,
                run.title,
                run.source_url,
                run.target_duration,
                run.status,
                _dumps(dict(run.settings)),
                _dumps(dict(run.final_outputs)),
                run.parent_run_id,
                run.created_at,
                run.updated_at,
            ),
        )
        by_id = {stage.stage_id: stage for stage in run.stages}
        for definition in definitions:
            self.upsert_stage_in(connection, by_id[definition.stage_id], definition)

    def upsert_stage_in(
        self,
        connection: sqlite3.Connection,
        stage: StageRecord,
        definition: StageDefinition,
    ) -> None:
        """Insert or replace one stage row keyed by `(run_id, stage_id)`."""

        connection.execute(
            """
            INSERT INTO stages (
                run_id, stage_id, name, stage_order, description, service, implemented,
                generative, status, output_json, assets_json, error, error_context_json,
                started_at, finished_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(run_id, stage_id) DO UPDATE SET
                status = excluded.status,
                output_json = excluded.output_json,
                assets_json = excluded.assets_json,
                error = excluded.error,
                error_context_json = excluded.error_context_json,
                started_at = excluded.started_at,
                finished_at = excluded.finished_at,
                updated_at = excluded.updated_at
            """,
            (
                stage.run_id,
                stage.stage_id,
                definition.name,
                definition.order,
                definition.description,
                definition.service,
                int(definition.implemented),
                int(definition.generative),
                stage.status,
                None if stage.output is None else _dumps(stage.output),
                _dumps(list(stage.assets)),
                stage.error,
                _dumps(dict(stage.error_context)),
                stage.started_at,
                stage.finished_at,
                stage.updated_at,
            ),
        )

    def update_run_in(
        self,
        connection: sqlite3.Connection,
        run_id: str,
        *,
        status: str,
        updated_at: str,
        final_outputs: Mapping[str, Any] | None = None,
    ) -> None:
        """Update the derived status (and optionally final outputs) of a run."""

        if final_outputs is None:
            connection.execute(
                "UPDATE runs SET status = ?, updated_at = ? WHERE run_id = ?",
                (status, updated_at, run_id),
            )
            return
        connection.execute(
            "UPDATE runs SET status = ?, updated_at = ?, final_outputs_json = ? WHERE run_id = ?",
            (status, updated_at, _dumps(dict(final_outputs)), run_id),
        )

    def load_run_in(self, connection: sqlite3.Connection, run_id: str) -> RunRecord | None:
        """Load one run with its stages, or `None` when unknown."""

        row = connection.execute("SELECT * FROM runs WHERE run_id = ?", (run_id,)).fetchone()
        if row is None:
            return None
        stage_rows = connection.execute(
            "SELECT * FROM stages WHERE run_id = ? ORDER BY stage_order", (run_id,)
        ).fetchall()
        return self._run_from_row(row, stage_rows)

    def load_definitions_in(
        self, connection: sqlite3.Connection, run_id: str
    ) -> list[StageDefinition]:
        """Load the stage definitions stored with a run, in order."""

        rows = connection.execute(
            "SELECT * FROM stages WHERE run_id = ? ORDER BY stage_order", (run_id,)
        ).fetchall()
        return [self._definition_from_row(row) for row in rows]

    def stage_payloads_in(
        self, connection: sqlite3.Connection, run_id: str
    ) -> list[dict[str, Any]]:
        """Return raw stage column payloads used for snapshots."""

        rows = connection.execute(
            f"SELECT {', '.join(_STAGE_COLUMNS)} FROM stages WHERE run_id = ? ORDER BY stage_order",
            (run_id,),
        ).fetchall()
        return [{column: row[column] for column in _STAGE_COLUMNS} for row in rows]

    def replace_stages_in(
        self,
        connection: sqlite3.Connection,
        run_id: str,
        payloads: list[Mapping[str, Any]],
    ) -> None:
        """Replace all stage rows of a run with snapshot payloads."""

        connection.execute("DELETE FROM stages WHERE run_id = ?", (run_id,))
        placeholders = ", ".join("?" for _ in range(len(_STAGE_COLUMNS) + 1))
        for payload in payloads:
            connection.execute(
                f"INSERT INTO stages (run_id, {', '.join(_STAGE_COLUMNS)}) "
                f"VALUES ({placeholders})",
                (run_id, *(payload.get(column) for column in _STAGE_COLUMNS)),
            )

    def delete_run_in(self, connection: sqlite3.Connection, run_id: str) -> None:
        """Delete a run row; stage and snapshot rows cascade."""

        connection.execute("DELETE FROM runs WHERE run_id = ?", (run_id,))

    def insert_snapshot_in(
        self,
        connection: sqlite3.Connection,
        snapshot: SnapshotRecord,
    ) -> None:
        """Insert one snapshot row."""

        connection.execute(
            """
            INSERT INTO snapshots (
                snapshot_id, run_id, label, note, run_title, total_stages,
                completed_stages, stages_json, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                snapshot.snapshot_id,
                snapshot.run_id,
                snapshot.label,
                snapshot.note,
                snapshot.run_title,
                snapshot.total_stages,
                snapshot.completed_stages,
                _dumps([dict(stage) for stage in snapshot.stages]),
                snapshot.created_at,
            ),
        )

    def load_snapshot_in(
        self, connection: sqlite3.Connection, snapshot_id: str
    ) -> SnapshotRecord | None:
        """Load one snapshot, or `None` when unknown."""

        row = connection.execute(
            "SELECT * FROM snapshots WHERE snapshot_id = ?", (snapshot_id,)
        ).fetchone()
        return None if row is None else self._snapshot_from_row(row)

    def load_run(self, run_id: str) -> RunRecord | None:
        """Load one run with its stages in a read transaction."""

        with self.transaction() as connection:
            return self.load_run_in(connection, run_id)

    def list_runs(self, limit: int = 20) -> list[RunRecord]:
        """Return the most recent runs, newest first."""

        with self.transaction() as connection:
            rows = connection.execute(
                "SELECT run_id FROM runs ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
            runs = [self.load_run_in(connection, row["run_id"]) for row in rows]
        return [run for run in runs if run is not None]

    def list_snapshots(self, run_id: str) -> list[SnapshotRecord]:
        """Return snapshots of one run, newest first."""

        with self.transaction() as connection:
            rows = connection.execute(
                "SELECT * FROM snapshots WHERE run_id = ? ORDER BY created_at DESC, rowid DESC",
                (run_id,),
            ).fetchall()
        return [self._snapshot_from_row(row) for row in rows]

    @staticmethod
    def stage_from_payload(run_id: str, payload: Mapping[str, Any]) -> StageRecord:
        """Build a stage record from a raw stage payload."""

        return StageRecord(
            run_id=run_id,
            stage_id=payload["stage_id"],
            name=payload["name"],
            order=int(payload["stage_order"]),
            status=payload["status"],
            output=_loads(payload.get("output_json"), None),
            assets=tuple(_loads(payload.get("assets_json"), [])),
            error=payload.get("error"),
            error_context=_loads(payload.get("error_context_json"), {}),
            started_at=payload.get("started_at"),
            finished_at=payload.get("finished_at"),
            updated_at=payload.get("updated_at"),
        )

    @classmethod
    def _run_from_row(cls, row: sqlite3.Row, stage_rows: list[sqlite3.Row]) -> RunRecord:
        """Build a run record from its row and ordered stage rows."""

        return RunRecord(
            run_id=row["run_id"],
            title=row["title"],
            source_url=row["source_url"],
            target_duration=float(row["target_duration"]),
            status=row["status"],
            settings=_loads(row["settings_json"], {}),
            final_outputs=_loads(row["final_outputs_json"], {}),
            parent_run_id=row["parent_run_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            stages=tuple(
                cls.stage_from_payload(row["run_id"], dict(stage_row)) for stage_row in stage_rows
            ),
        )

    @staticmethod
    def _definition_from_row(row: sqlite3.Row) -> StageDefinition:
        """Build a stage definition from a stage row."""

        return StageDefinition(
            stage_id=row["stage_id"],
            name=row["name"],
            order=int(row["stage_order"]),
            description=row["description"],
            service=row["service"],
            implemented=bool(row["implemented"]),
            generative=bool(row["generative"]),
        )

    @staticmethod
    def _snapshot_from_row(row: sqlite3.Row) -> SnapshotRecord:
        """Build a snapshot record from its row."""

        return SnapshotRecord(
            snapshot_id=row["snapshot_id"],
            run_id=row["run_id"],
            label=row["label"],
            note=row["note"],
            run_title=row["run_title"],
            total_stages=int(row["total_stages"]),
            completed_stages=int(row["completed_stages"]),
            stages=tuple(_loads(row["stages_json"], [])),
            created_at=row["created_at"],
        )
