"""Batch scheduler and progress emitter tests.

Maps to BDD spec: TestGroupedScheduling, TestProgressEvents

Timing assertions use short synthetic delays and only lower bounds,
which cannot flake on a slow machine.
"""

from __future__ import annotations

import asyncio
import math

import pytest

from conftest import FakePool, SourceScript
from tradecar_search.adapters.base import SearchCriteria
from tradecar_search.errors import ActionableError, ErrorType
from tradecar_search.pipeline.aggregator import RunState
from tradecar_search.pipeline.outcomes import Success
from tradecar_search.pipeline.scheduler import (
    BatchScheduler,
    ProgressEmitter,
    ProgressEvent,
    partition,
)

FORD_FOCUS = SearchCriteria(make="FORD", model="FOCUS")


class TestPartition:
    """REQUIREMENT: Jobs are grouped in submission order.

    WHO: The batch scheduler
    WHAT: Consecutive groups of at most K, the last one possibly
          shorter; order is preserved; no jobs → no groups
    WHY: Group membership decides which jobs may run together
    """

    def test_groups_of_k_in_order(self, make_job) -> None:
        """Five jobs with K=2 make groups of 2, 2 and 1."""
        jobs = [make_job(name, FORD_FOCUS) for name in "abcde"]
        groups = partition(jobs, 2)
        assert [[job.source_name for job in group] for group in groups] == [
            ["a", "b"],
            ["c", "d"],
            ["e"],
        ]

    def test_empty_job_list(self) -> None:
        """Nothing to schedule yields no groups."""
        assert partition([], 3) == []


class TestSchedulerConfiguration:
    """REQUIREMENT: The concurrency limit must be a whole number >= 1.

    WHO: Callers passing a per-request concurrency override
    WHAT: 0, negatives, booleans and non-integers raise VALIDATION
          errors; the default limit is 2
    WHY: A limit of 0 would never start a job and the run would hang
    """

    def test_default_limit_is_two(self) -> None:
        """Two sources at a time unless configured otherwise."""
        assert BatchScheduler().concurrency_limit == 2

    @pytest.mark.parametrize("limit", [0, -3, True, 1.5, "2"])
    def test_invalid_limit_rejected(self, limit: object) -> None:
        """Anything but a positive int is refused up front."""
        with pytest.raises(ActionableError) as exc_info:
            BatchScheduler(limit)  # type: ignore[arg-type]
        assert exc_info.value.error_type == ErrorType.VALIDATION
        assert "concurrency_limit" in exc_info.value.error


class TestGroupedScheduling:
    """REQUIREMENT: At most K jobs run at once, in barrier-separated groups.

    WHO: Operators keeping browser memory bounded
    WHAT: Never more than K contexts open; a group starts only after the
          previous group has fully finished, even if a job in the next
          group would be faster; total time is at least ceil(N/K) * D for
          N jobs of delay D; a run with K >= N runs everything at once
    WHY: Each job holds a full browser context — unbounded fan-out
         exhausts the host
    """

    async def test_open_contexts_never_exceed_limit(self, make_orchestrator) -> None:
        """With five slow sources and K=2, at most two contexts are open at once."""
        scripts = {name: SourceScript(delay=0.02) for name in ("a", "b", "c", "d", "e")}
        orchestrator, pool = make_orchestrator(scripts, concurrency_limit=2)
        await orchestrator.run(FORD_FOCUS)
        assert pool.max_open == 2
        assert len(pool.released) == 5

    async def test_next_group_waits_for_slowest_job(self, make_orchestrator) -> None:
        """The fast job in group two still finishes after the slow job in group one."""
        scripts = {
            "quick": SourceScript(delay=0.01),
            "slow": SourceScript(delay=0.15),
            "instant": SourceScript(),
        }
        order: list[str] = []
        orchestrator, _ = make_orchestrator(scripts, concurrency_limit=2)
        await orchestrator.run(FORD_FOCUS, on_progress=lambda event: order.append(event.source_name))
        assert order == ["quick", "slow", "instant"]

    @pytest.mark.parametrize(("n", "k"), [(5, 2), (4, 2), (3, 1)])
    async def test_run_time_lower_bound(self, make_orchestrator, n: int, k: int) -> None:
        """N jobs of delay D under limit K take at least ceil(N/K) * D."""
        delay = 0.05
        scripts = {f"src{i}": SourceScript(delay=delay) for i in range(n)}
        orchestrator, _ = make_orchestrator(scripts, concurrency_limit=k)

        loop = asyncio.get_running_loop()
        started = loop.time()
        await orchestrator.run(FORD_FOCUS)
        elapsed = loop.time() - started

        # Small tolerance for the event loop clock resolution
        assert elapsed >= math.ceil(n / k) * delay * 0.95

    async def test_limit_above_job_count_runs_all_together(self, make_orchestrator) -> None:
        """K larger than N is one group holding every job."""
        scripts = {name: SourceScript(delay=0.02) for name in ("a", "b", "c")}
        orchestrator, pool = make_orchestrator(scripts, concurrency_limit=10)
        await orchestrator.run(FORD_FOCUS)
        assert pool.max_open == 3

    async def test_core_defect_propagates_and_cancels_group(self, make_job) -> None:
        """An execute callable that raises is a bug: the error surfaces, siblings are cancelled."""
        jobs = [make_job("a", FORD_FOCUS), make_job("b", FORD_FOCUS, index=2)]
        cancelled: list[str] = []

        async def execute(job):
            if job.source_name == "a":
                raise RuntimeError("scheduler contract broken")
            try:
                await asyncio.sleep(1.0)
            except asyncio.CancelledError:
                cancelled.append(job.source_name)
                raise
            return Success(source=job.source_name)

        with pytest.raises(RuntimeError, match="contract broken"):
            await BatchScheduler(2).run(jobs, execute, RunState(total_jobs=2), ProgressEmitter())
        assert cancelled == ["b"]


class TestProgressEvents:
    """REQUIREMENT: One progress event per job, delivered in completion order.

    WHO: The SSE transport and the CLI progress printer
    WHAT: Exactly N events; ordinals are 1..N in delivery order and
          unique; every event carries total_jobs == N and the job's
          status and items; a subscriber that raises is ignored; no
          subscriber is fine
    WHY: Clients render "3/5 sources done" from these fields
    """

    async def test_one_event_per_job_with_unique_ordinals(self, make_orchestrator) -> None:
        """Five sources produce ordinals 1..5 in delivery order."""
        scripts = {
            "a": SourceScript(delay=0.03),
            "b": SourceScript(delay=0.01),
            "c": SourceScript(skip_reason="not offered"),
            "d": SourceScript(error=RuntimeError("boom")),
            "e": SourceScript(),
        }
        events: list[ProgressEvent] = []
        orchestrator, _ = make_orchestrator(scripts)
        await orchestrator.run(FORD_FOCUS, on_progress=events.append)

        assert [event.completion_ordinal for event in events] == [1, 2, 3, 4, 5]
        assert {event.source_name for event in events} == set(scripts)
        assert all(event.total_jobs == 5 for event in events)

    async def test_events_carry_status_and_items(self, make_orchestrator, make_listing) -> None:
        """A progress event holds that job's listings and status."""
        listing = make_listing("a")
        scripts = {"a": SourceScript(items=[listing]), "b": SourceScript(skip_reason="no")}
        events: list[ProgressEvent] = []
        orchestrator, _ = make_orchestrator(scripts)
        await orchestrator.run(FORD_FOCUS, on_progress=events.append)

        by_source = {event.source_name: event for event in events}
        assert by_source["a"].items == (listing,)
        assert by_source["a"].status.value == "success"
        assert by_source["b"].items == ()
        assert by_source["b"].status.value == "empty"

    async def test_raising_subscriber_is_ignored(self, make_orchestrator) -> None:
        """A broken subscriber affects neither scheduling nor the aggregate."""
        scripts = {name: SourceScript() for name in ("a", "b", "c")}
        calls: list[int] = []

        def subscriber(event: ProgressEvent) -> None:
            calls.append(event.completion_ordinal)
            raise RuntimeError("client went away")

        orchestrator, _ = make_orchestrator(scripts)
        result = await orchestrator.run(FORD_FOCUS, on_progress=subscriber)
        assert calls == [1, 2, 3]
        assert len(result.per_source_status) == 3

    def test_emitter_without_subscriber_counts_events(self) -> None:
        """No subscriber means events are only counted and logged."""
        emitter = ProgressEmitter()
        event = Success(source="a")
        emitter.emit(
            ProgressEvent(
                source_name="a",
                items=(),
                total_jobs=1,
                completion_ordinal=1,
                status=event.status,
            )
        )
        assert emitter.emitted == 1

    async def test_progress_never_emitted_twice_for_a_job(
        self, make_orchestrator
    ) -> None:
        """Each source appears in exactly one event."""
        scripts = {name: SourceScript(delay=0.01 * i) for i, name in enumerate("abcd")}
        events: list[ProgressEvent] = []
        orchestrator, _ = make_orchestrator(scripts, concurrency_limit=3, pool=FakePool())
        await orchestrator.run(FORD_FOCUS, on_progress=events.append)
        names = [event.source_name for event in events]
        assert sorted(names) == ["a", "b", "c", "d"]
        assert len(set(names)) == len(names)
