"""Tests for runhistory.core.runlist — the lazy run sequence."""

import pytest

from conftest import DAY_MS, HOUR_MS, NOW_MS, make_run
from runhistory.core.runlist import RunList
from runhistory.core.state.models import FAILURE, SUCCESS, UNSTABLE, StaticJob, StaticView


class CountingJob:
    """Job that records how many times its builds were fetched."""

    def __init__(self, name, runs):
        self.name = name
        self.runs = list(runs)
        self.fetches = 0

    def get_builds(self):
        self.fetches += 1
        return list(self.runs)


class ExplodingSource:
    """Yields `head`, then fails if anyone asks for more."""

    def __init__(self, head):
        self.head = list(head)

    def __iter__(self):
        yield from self.head
        raise AssertionError("source consumed past its head")


class TrackingSource:
    """Records whether the iterator handed out was closed."""

    def __init__(self, runs):
        self.runs = list(runs)
        self.closed = 0

    def __iter__(self):
        try:
            yield from self.runs
        finally:
            self.closed += 1


class ExplodingJob:
    def __init__(self, name, head):
        self.name = name
        self.head = head

    def get_builds(self):
        return ExplodingSource(self.head)


def _timestamps(rl):
    return [r.started_at_ms for r in rl]


def _odd(x):
    return x % 2 == 1


class TestConstruction:
    def test_empty(self):
        rl = RunList()
        assert list(rl) == []
        assert rl.is_empty()
        assert rl.size() == 0
        assert rl.get_last_build() is None
        assert rl.get_first_build() is None

    def test_from_job_keeps_job_order(self):
        job = StaticJob("core", [make_run(t) for t in (10, 30, 20)])
        assert _timestamps(RunList.from_job(job)) == [30, 20, 10]

    def test_from_runs_keeps_caller_order(self):
        runs = [make_run(10), make_run(30), make_run(20)]
        assert _timestamps(RunList.from_runs(runs)) == [10, 30, 20]

    def test_from_runs_rejects_iterators(self):
        with pytest.raises(TypeError):
            RunList.from_runs(iter([make_run(10)]))

    def test_constructor_rejects_iterators(self):
        with pytest.raises(TypeError):
            RunList(iter([make_run(30), make_run(20)]))

    def test_constructor_rejects_generators(self):
        with pytest.raises(TypeError):
            RunList(r for r in [make_run(30)])

    def test_from_view_merges_all_jobs(self):
        a = StaticJob("a", [make_run(t, job="a") for t in (100, 50)])
        b = StaticJob("b", [make_run(t, job="b") for t in (75, 25)])
        view = StaticView("all", [a, b])
        assert _timestamps(RunList.from_view(view)) == [100, 75, 50, 25]


class TestMerge:
    def test_globally_descending_and_complete(self):
        a = StaticJob("a", [make_run(t, job="a") for t in (100, 70, 40)])
        b = StaticJob("b", [make_run(t, job="b") for t in (90, 80, 10)])
        c = StaticJob("c", [])
        rl = RunList.from_jobs([a, b, c])
        ts = _timestamps(rl)
        assert ts == sorted(ts, reverse=True)
        assert len(ts) == 6
        assert rl.size() == 6

    def test_ties_follow_job_order(self):
        a = StaticJob("a", [make_run(50, job="a")])
        b = StaticJob("b", [make_run(50, job="b")])
        assert [r.job for r in RunList.from_jobs([a, b])] == ["a", "b"]
        assert [r.job for r in RunList.from_jobs([b, a])] == ["b", "a"]

    def test_merge_is_streaming(self):
        a = ExplodingJob("a", [make_run(100, job="a")])
        b = ExplodingJob("b", [make_run(90, job="b")])
        rl = RunList.from_jobs([a, b])
        assert rl.get_last_build().started_at_ms == 100
        assert not rl.is_empty()


class TestFilterAndLimit:
    def test_filter_vs_limit(self):
        assert list(RunList.from_runs([1, 2, 3, 4]).filter(_odd)) == [1, 3]
        assert list(RunList.from_runs([1, 2, 3, 4]).limit(lambda i, x: _odd(x))) == [1]

    def test_limit_stops_consuming_source(self):
        src = ExplodingSource([1, 3, 4])
        assert list(RunList.from_runs(src).limit(lambda i, x: _odd(x))) == [1, 3]

    def test_limit_counts_positions(self):
        rl = RunList.from_runs(list(range(20))).limit(lambda i, x: i < 5)
        assert list(rl) == [0, 1, 2, 3, 4]

    def test_transformations_return_same_instance(self):
        rl = RunList.from_runs([1, 2, 3])
        assert rl.filter(_odd) is rl
        assert rl.limit(lambda i, x: True) is rl

    def test_chained_filters(self):
        runs = [
            make_run(50, result=FAILURE, node="linux"),
            make_run(40, result=SUCCESS, node="linux"),
            make_run(30, result=FAILURE, node="mac"),
            make_run(20, result=UNSTABLE, node="linux"),
        ]
        rl = RunList.from_runs(runs).failure_only().node("linux")
        assert _timestamps(rl) == [50, 20]


class TestDomainFilters:
    def test_failure_only_keeps_in_progress(self):
        runs = [make_run(30, building=True), make_run(20, result=SUCCESS), make_run(10, result=FAILURE)]
        assert _timestamps(RunList.from_runs(runs).failure_only()) == [30, 10]

    def test_node_requires_recorded_location(self):
        runs = [make_run(30, node="linux"), make_run(20, node=None), make_run(10, node="linux-2")]
        assert _timestamps(RunList.from_runs(runs).node("linux")) == [30]

    def test_regression_only(self):
        job = StaticJob(
            "core",
            [
                make_run(10, result=SUCCESS),
                make_run(20, result=FAILURE),
                make_run(30, result=FAILURE),
                make_run(40, result=SUCCESS),
                make_run(50, result=UNSTABLE),
            ],
        )
        assert _timestamps(RunList.from_job(job).regression_only()) == [50, 20]

    def test_by_timestamp(self):
        runs = [make_run(t) for t in (100, 90, 80, 70, 60)]
        assert _timestamps(RunList.from_runs(runs).by_timestamp(70, 95)) == [90, 80, 70]

    def test_by_timestamp_stops_below_start(self):
        src = ExplodingSource([make_run(t) for t in (100, 90, 50)])
        assert _timestamps(RunList.from_runs(src).by_timestamp(70, 200)) == [100, 90]


class TestNewBuilds:
    def _old(self, n):
        return [make_run(NOW_MS - 8 * DAY_MS - i * HOUR_MS) for i in range(n)]

    def _recent(self, n):
        return [make_run(NOW_MS - (i + 1) * HOUR_MS) for i in range(n)]

    def test_keeps_ten_when_all_old(self):
        runs = self._old(15)
        rl = RunList.from_runs(runs).new_builds(NOW_MS)
        assert list(rl) == runs[:10]

    def test_pads_recent_with_old_up_to_ten(self):
        runs = self._recent(3) + self._old(12)
        rl = RunList.from_runs(runs).new_builds(NOW_MS)
        assert list(rl) == runs[:10]

    def test_keeps_all_recent_beyond_ten(self):
        runs = self._recent(12) + self._old(3)
        assert list(RunList.from_runs(runs).new_builds(NOW_MS)) == runs[:12]

    def test_drops_in_progress(self):
        building = make_run(NOW_MS - 1, building=True)
        runs = [building] + self._old(15)
        rl = RunList.from_runs(runs).new_builds(NOW_MS)
        assert building not in rl
        assert rl.size() == 10

    def test_custom_window(self):
        runs = self._recent(3) + self._old(5)
        rl = RunList.from_runs(runs).new_builds(NOW_MS, min_count=2, window_days=1)
        assert list(rl) == runs[:3]


class TestReads:
    def test_size_is_cached(self):
        job = CountingJob("core", [make_run(t) for t in (30, 20, 10)])
        rl = RunList.from_job(job)
        assert rl.size() == 3
        assert len(rl) == 3
        assert job.fetches == 1

    def test_first_and_last_build(self):
        job = CountingJob("core", [make_run(t) for t in (30, 20, 10)])
        rl = RunList.from_job(job)
        assert rl.get_last_build().started_at_ms == 30
        assert rl.get_first_build().started_at_ms == 10
        assert rl.size() == 3
        assert job.fetches == 2

    def test_transform_invalidates_cache(self):
        rl = RunList.from_runs([make_run(30, result=FAILURE), make_run(20), make_run(10, result=FAILURE)])
        assert rl.size() == 3
        assert rl.get_first_build().started_at_ms == 10
        rl.filter(lambda r: r.started_at_ms > 15)
        assert rl.size() == 2
        assert rl.get_first_build().started_at_ms == 20

    def test_partial_reads_release_source(self):
        src = TrackingSource([make_run(t) for t in (30, 20, 10)])
        rl = RunList.from_runs(src)
        assert rl.get_last_build().started_at_ms == 30
        assert not rl.is_empty()
        assert rl.get(1).started_at_ms == 20
        assert rl.index_of(make_run(30)) == 0
        assert src.closed == 4

    def test_is_empty_does_not_enumerate(self):
        rl = RunList.from_runs(ExplodingSource([make_run(10)]))
        assert not rl.is_empty()
        assert rl

    def test_get(self):
        runs = [make_run(t) for t in (30, 20, 10)]
        rl = RunList.from_runs(runs)
        assert rl.get(0) == runs[0]
        assert rl[2] == runs[2]
        with pytest.raises(IndexError):
            rl.get(3)
        with pytest.raises(IndexError):
            rl[-1]

    def test_index_of_and_last_index_of(self):
        a, b = make_run(20), make_run(10)
        rl = RunList.from_runs([a, b, a])
        assert rl.index_of(a) == 0
        assert rl.last_index_of(a) == 2
        assert rl.index_of(b) == 1
        assert rl.index_of(make_run(99)) == -1
        assert rl.last_index_of(make_run(99)) == -1
        assert b in rl


class TestRestartability:
    def test_iterating_twice_yields_same_runs(self):
        job = StaticJob("core", [make_run(t, result=FAILURE) for t in (30, 20, 10)])
        rl = RunList.from_job(job).failure_only().limit(lambda i, r: i < 2)
        assert list(rl) == list(rl)
        assert _timestamps(rl) == [30, 20]

    def test_refetches_from_job(self):
        job = CountingJob("core", [make_run(20)])
        rl = RunList.from_job(job)
        assert _timestamps(rl) == [20]
        job.runs.insert(0, make_run(30))
        assert _timestamps(rl) == [30, 20]

    def test_copy_branches_pipeline(self):
        rl = RunList.from_runs([make_run(30, result=FAILURE), make_run(20)])
        failures = rl.copy().failure_only()
        assert failures is not rl
        assert _timestamps(failures) == [30]
        assert _timestamps(rl) == [30, 20]
