from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from itertools import islice
from typing import Callable, Iterable, Iterator, List, Optional

from runhistory.core.iterators import CountingPredicate, Restartable, limit, merge_descending
from runhistory.core.logger import get_logger, log_event
from runhistory.core.state.models import SUCCESS, Job, RunRecord, View

logger = get_logger("runlist")

DAY_MS = 24 * 60 * 60 * 1000
NEW_BUILDS_MIN_COUNT = 10
NEW_BUILDS_WINDOW_DAYS = 7


def _started_at(r: RunRecord) -> int:
    return r.timestamp


def _now_ms() -> int:
    return int(time.time() * 1000)


@contextmanager
def _closing_iter(items: Iterable[RunRecord]) -> Iterator[Iterator[RunRecord]]:
    """
    Iterator over `items`, closed on exit so a partly read source (e.g. a
    database cursor) is released right away.
    """
    it = iter(items)
    try:
        yield it
    finally:
        close = getattr(it, "close", None)
        if close is not None:
            close()


class RunList:
    """
    Lazy view over runs, newest first.

    Iteration is always restartable: the source is kept as an iterable and
    every iter() re-fetches from the jobs it was built from.

    Transformations (filter, limit and the helpers built on them) update this
    instance in place and return it, so calls can be chained. Use copy() to
    branch a pipeline.

    Naming follows the "build number" convention: get_last_build() is the most
    recent run (head of the list), get_first_build() the earliest one (tail).
    """

    def __init__(self, base: Optional[Iterable[RunRecord]] = None) -> None:
        if isinstance(base, Iterator):
            raise TypeError("RunList needs a re-iterable source, not an iterator")
        self._base: Iterable[RunRecord] = base if base is not None else ()
        self._first: Optional[RunRecord] = None
        self._size: Optional[int] = None

    @classmethod
    def from_job(cls, job: Job) -> "RunList":
        return cls(Restartable(lambda: iter(job.get_builds()), label=job.name))

    @classmethod
    def from_jobs(cls, jobs: Iterable[Job]) -> "RunList":
        jobs_list = list(jobs)
        label = ",".join(j.name for j in jobs_list)
        return cls(
            Restartable(
                lambda: merge_descending([j.get_builds() for j in jobs_list], key=_started_at),
                label=f"merge({label})",
            )
        )

    @classmethod
    def from_view(cls, view: View) -> "RunList":
        jobs: List[Job] = []
        for item in view.get_items():
            jobs.extend(item.get_all_jobs())
        return cls.from_jobs(jobs)

    @classmethod
    def from_runs(cls, runs: Iterable[RunRecord]) -> "RunList":
        """
        Wraps an explicit collection as-is; the caller owns the ordering.
        """
        return cls(runs)

    def copy(self) -> "RunList":
        return RunList(self._base)

    # --- reads ---

    def __iter__(self) -> Iterator[RunRecord]:
        return iter(self._base)

    def size(self) -> int:
        """
        Walks the whole list once; the result is cached until the next
        transformation.
        """
        if self._size is None:
            sz = 0
            for r in self:
                self._first = r
                sz += 1
            self._size = sz
            log_event(logger, {"event": "runlist.size", "size": sz}, level=logging.DEBUG)
        return self._size

    def __len__(self) -> int:
        return self.size()

    def get(self, index: int) -> RunRecord:
        """
        Walks the list up to `index`. Prefer iterating.
        """
        if index < 0:
            raise IndexError(f"RunList index out of range: {index}")
        with _closing_iter(self) as it:
            for r in islice(it, index, None):
                return r
        raise IndexError(f"RunList index out of range: {index}")

    def __getitem__(self, index: int) -> RunRecord:
        if not isinstance(index, int):
            raise TypeError(f"RunList indices must be integers, not {type(index).__name__}")
        return self.get(index)

    def index_of(self, run: object) -> int:
        with _closing_iter(self) as it:
            for index, r in enumerate(it):
                if r == run:
                    return index
        return -1

    def last_index_of(self, run: object) -> int:
        found = -1
        for index, r in enumerate(self):
            if r == run:
                found = index
        return found

    def __contains__(self, run: object) -> bool:
        return self.index_of(run) >= 0

    def is_empty(self) -> bool:
        with _closing_iter(self) as it:
            return next(it, None) is None

    def __bool__(self) -> bool:
        return not self.is_empty()

    def get_first_build(self) -> Optional[RunRecord]:
        """Earliest run: the last one reached by a full traversal."""
        self.size()
        return self._first

    def get_last_build(self) -> Optional[RunRecord]:
        """Most recent run: the head of the list."""
        with _closing_iter(self) as it:
            return next(it, None)

    # --- transformations ---

    def _replace_base(self, base: Iterable[RunRecord], name: str) -> "RunList":
        self._size = None
        self._first = None
        self._base = base
        log_event(logger, {"event": "runlist.transform", "name": name}, level=logging.DEBUG)
        return self

    def filter(self, predicate: Callable[[RunRecord], bool]) -> "RunList":
        """Keeps the runs that satisfy predicate."""
        nested = self._base
        return self._replace_base(
            Restartable(lambda: (r for r in nested if predicate(r)), label="filter"),
            "filter",
        )

    def limit(self, predicate: CountingPredicate) -> "RunList":
        """
        Keeps the first streak of runs for which predicate(index, run) holds.

        filter([1,2,3,4], odd) == [1,3] but limit([1,2,3,4], odd) == [1].
        """
        nested = self._base
        return self._replace_base(Restartable(lambda: limit(nested, predicate), label="limit"), "limit")

    def failure_only(self) -> "RunList":
        return self.filter(lambda r: r.result != SUCCESS)

    def node(self, name: str) -> "RunList":
        return self.filter(lambda r: r.records_location and r.node == name)

    def regression_only(self) -> "RunList":
        return self.filter(lambda r: r.is_worse)

    def by_timestamp(self, start: int, end: int) -> "RunList":
        """
        Runs started in [start, end), epoch milliseconds.

        Newest first, so iteration stops at the first run older than start.
        """
        return self.limit(lambda index, r: start <= r.started_at_ms).filter(lambda r: r.started_at_ms < end)

    def new_builds(
        self,
        now_ms: Optional[int] = None,
        *,
        min_count: int = NEW_BUILDS_MIN_COUNT,
        window_days: int = NEW_BUILDS_WINDOW_DAYS,
    ) -> "RunList":
        """
        Recent completed runs: at least `min_count` of them, plus anything
        newer than `window_days`. In-progress runs are dropped since a feed
        entry can't change after publishing.
        """
        t = (now_ms if now_ms is not None else _now_ms()) - window_days * DAY_MS
        return self.filter(lambda r: not r.building).limit(
            lambda index, r: index < min_count or r.started_at_ms >= t
        )

    def __repr__(self) -> str:
        if self._size is not None:
            return f"RunList(size={self._size})"
        return f"RunList({self._base!r})"
