from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import Iterable, Iterator, List, Optional, Protocol

SUCCESS = "success"
UNSTABLE = "unstable"
FAILURE = "failure"
NOT_BUILT = "not_built"
ABORTED = "aborted"

# best -> worst
RESULT_ORDER = (SUCCESS, UNSTABLE, FAILURE, NOT_BUILT, ABORTED)


def result_rank(result: Optional[str]) -> int:
    if result not in RESULT_ORDER:
        raise ValueError(f"unknown result: {result!r}")
    return RESULT_ORDER.index(result)


@dataclass(frozen=True)
class RunRecord:
    run_id: str
    job: str
    number: int
    started_at_ms: int
    result: Optional[str] = None
    node: Optional[str] = None
    building: bool = False
    is_worse: bool = False

    @property
    def timestamp(self) -> int:
        return self.started_at_ms

    @property
    def records_location(self) -> bool:
        return self.node is not None

    @property
    def started_at_iso(self) -> str:
        return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.started_at_ms / 1000))


@dataclass(frozen=True)
class BuildStatusSummary:
    is_worse: bool
    message: str


def build_status_summary(current: RunRecord, previous: Optional[RunRecord]) -> BuildStatusSummary:
    """
    Compare a run with the previous completed run of the same job.

    `previous` must already be completed; pass None when there is none.
    """
    if current.building or current.result is None:
        return BuildStatusSummary(is_worse=False, message="in progress")

    if previous is None or previous.result is None:
        msg = "stable" if current.result == SUCCESS else "broken"
        return BuildStatusSummary(is_worse=False, message=msg)

    cur = result_rank(current.result)
    prev = result_rank(previous.result)

    if cur > prev:
        msg = "broken since this build" if previous.result == SUCCESS else "got worse"
        return BuildStatusSummary(is_worse=True, message=msg)

    if current.result == SUCCESS:
        msg = "stable" if previous.result == SUCCESS else "back to normal"
        return BuildStatusSummary(is_worse=False, message=msg)

    return BuildStatusSummary(is_worse=False, message="still failing")


def with_regressions(runs_ascending: Iterable[RunRecord]) -> List[RunRecord]:
    """
    Returns copies of the runs (oldest first) with `is_worse` recomputed.
    """
    out: List[RunRecord] = []
    previous: Optional[RunRecord] = None
    for r in runs_ascending:
        summary = build_status_summary(r, previous)
        out.append(replace(r, is_worse=summary.is_worse))
        if not r.building and r.result is not None:
            previous = r
    return out


class Job(Protocol):
    name: str

    def get_builds(self) -> Iterable[RunRecord]:
        """Runs of this job, newest first."""
        ...


class Item(Protocol):
    def get_all_jobs(self) -> Iterable[Job]:
        ...


class View(Protocol):
    def get_items(self) -> Iterable[Item]:
        ...


class StaticJob:
    """
    In-memory job. Runs are sorted newest-first and regression flags recomputed.
    """

    def __init__(self, name: str, runs: Iterable[RunRecord] = ()) -> None:
        self.name = name
        ascending = sorted(runs, key=lambda r: r.started_at_ms)
        self._runs: List[RunRecord] = list(reversed(with_regressions(ascending)))

    def get_builds(self) -> List[RunRecord]:
        return self._runs

    def get_all_jobs(self) -> Iterator[StaticJob]:
        yield self

    def __repr__(self) -> str:
        return f"StaticJob({self.name!r}, runs={len(self._runs)})"


@dataclass
class StaticView:
    name: str
    items: List[Item]

    def get_items(self) -> List[Item]:
        return list(self.items)
