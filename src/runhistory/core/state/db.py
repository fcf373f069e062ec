from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List

from runhistory.core.logger import get_logger, log_event
from runhistory.core.state.models import RunRecord

DEFAULT_DB_PATH = Path(".runtime/runhistory.sqlite")

logger = get_logger("db")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS meta (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS runs (
  run_id TEXT NOT NULL,
  job TEXT NOT NULL,
  number INTEGER NOT NULL,
  started_at_ms INTEGER NOT NULL,
  result TEXT,
  node TEXT,
  building INTEGER NOT NULL DEFAULT 0,
  is_worse INTEGER NOT NULL DEFAULT 0,
  PRIMARY KEY(job, run_id)
);
CREATE INDEX IF NOT EXISTS runs_job_time ON runs(job, started_at_ms);
"""


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    # busy_timeout is per-connection, so set it on every connect.
    conn.execute("PRAGMA busy_timeout = 5000;")
    conn.execute("PRAGMA journal_mode = WAL;")


def ensure_db_initialized(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    try:
        _apply_pragmas(conn)
        conn.executescript(SCHEMA_SQL)
        conn.execute("INSERT OR IGNORE INTO meta(key,value) VALUES(?,?)", ("schema_version", "1"))
        conn.commit()
    finally:
        conn.close()


def _row_to_run(row: sqlite3.Row) -> RunRecord:
    return RunRecord(
        run_id=str(row["run_id"]),
        job=str(row["job"]),
        number=int(row["number"]),
        started_at_ms=int(row["started_at_ms"]),
        result=row["result"],
        node=row["node"],
        building=bool(row["building"]),
        is_worse=bool(row["is_worse"]),
    )


@dataclass
class Db:
    """
    Read side of the run history store. Rows are written by the host system.
    """

    db_path: Path
    conn: sqlite3.Connection | None = None

    def __enter__(self) -> "Db":
        if not self.db_path.exists():
            raise FileNotFoundError(f"history db not found: {self.db_path}")
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row
        _apply_pragmas(self.conn)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        if not self.conn:
            return
        try:
            self.conn.close()
        finally:
            self.conn = None

    def list_jobs(self) -> List[str]:
        assert self.conn is not None
        rows = self.conn.execute("SELECT DISTINCT job FROM runs ORDER BY job").fetchall()
        return [str(r["job"]) for r in rows]

    def has_job(self, job: str) -> bool:
        assert self.conn is not None
        row = self.conn.execute("SELECT 1 FROM runs WHERE job=? LIMIT 1", (job,)).fetchone()
        return row is not None

    def iter_runs(self, job: str) -> Iterator[RunRecord]:
        """
        Streams runs of `job`, newest first. Rows are fetched as the caller
        advances.
        """
        assert self.conn is not None
        log_event(logger, {"event": "db.query", "job": job}, level=logging.DEBUG)
        cur = self.conn.execute(
            """
            SELECT * FROM runs
            WHERE job=?
            ORDER BY started_at_ms DESC, run_id DESC
            """,
            (job,),
        )
        try:
            for row in cur:
                yield _row_to_run(row)
        finally:
            # the Db may already be closed when an abandoned generator is collected
            if self.conn is not None:
                cur.close()

    def get_job(self, name: str) -> "DbJob":
        if not self.has_job(name):
            raise KeyError(f"unknown job: {name}")
        return DbJob(db=self, name=name)

    def get_jobs(self, names: Iterable[str]) -> List["DbJob"]:
        return [self.get_job(n) for n in names]


class _RunsQuery:
    def __init__(self, db: Db, job: str) -> None:
        self._db = db
        self._job = job

    def __iter__(self) -> Iterator[RunRecord]:
        return self._db.iter_runs(self._job)


@dataclass
class DbJob:
    """
    Job backed by the history store; every get_builds() iteration re-runs
    the query, so RunLists built on it can be iterated repeatedly while the
    Db is open.
    """

    db: Db
    name: str

    def get_builds(self) -> Iterable[RunRecord]:
        return _RunsQuery(self.db, self.name)

    def get_all_jobs(self) -> Iterator["DbJob"]:
        yield self
