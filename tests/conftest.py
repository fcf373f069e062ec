import sqlite3
import time
from pathlib import Path
from typing import Iterable, Optional

import pytest

from runhistory.core.state.db import ensure_db_initialized
from runhistory.core.state.models import SUCCESS, RunRecord

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS
NOW_MS = 1_700_000_000_000


def make_run(
    ts: int,
    job: str = "core",
    result: Optional[str] = SUCCESS,
    node: Optional[str] = None,
    building: bool = False,
    is_worse: bool = False,
    number: Optional[int] = None,
) -> RunRecord:
    return RunRecord(
        run_id=f"{job}-{ts}",
        job=job,
        number=number if number is not None else ts,
        started_at_ms=ts,
        result=None if building else result,
        node=node,
        building=building,
        is_worse=is_worse,
    )


def insert_runs(db_path: Path, runs: Iterable[RunRecord]) -> None:
    conn = sqlite3.connect(str(db_path))
    try:
        conn.executemany(
            """
            INSERT INTO runs(run_id,job,number,started_at_ms,result,node,building,is_worse)
            VALUES(?,?,?,?,?,?,?,?)
            """,
            [
                (r.run_id, r.job, r.number, r.started_at_ms, r.result, r.node, int(r.building), int(r.is_worse))
                for r in runs
            ],
        )
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def history_db(tmp_path):
    db_path = tmp_path / "history.sqlite"
    ensure_db_initialized(db_path)
    return db_path


@pytest.fixture
def now_ms():
    return int(time.time() * 1000)
