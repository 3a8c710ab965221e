"""Batch scheduler and progress emitter.

Jobs run in sequential groups of ``concurrency_limit``, in submission
order.  All jobs of a group start together and the next group starts
only once every job in the current one is terminal, so at most one
browser context per slot is ever open.

Within a group, outcomes are consumed as they complete.  For each one
the scheduler coroutine — and only it — assigns the completion ordinal,
records the outcome into :class:`RunState` and emits a progress event,
before looking at the next completion.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from tradecar_search.errors import ActionableError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Sequence

    from tradecar_search.adapters.base import Listing
    from tradecar_search.pipeline.aggregator import RunState
    from tradecar_search.pipeline.job_runner import Job
    from tradecar_search.pipeline.outcomes import JobOutcome, SourceStatus

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY_LIMIT = 2


@dataclass(frozen=True)
class ProgressEvent:
    """One completed job, as seen by a progress subscriber."""

    source_name: str
    items: tuple[Listing, ...]
    total_jobs: int
    completion_ordinal: int
    status: SourceStatus


ProgressCallback = Callable[[ProgressEvent], None]


class ProgressEmitter:
    """Delivers progress events to an optional subscriber.

    Delivery is synchronous and at-most-once per job.  A subscriber that
    raises is logged and otherwise ignored — progress is a side channel
    and never affects scheduling or aggregation.
    """

    def __init__(self, subscriber: ProgressCallback | None = None) -> None:
        self._subscriber = subscriber
        self.emitted = 0

    def emit(self, event: ProgressEvent) -> None:
        self.emitted += 1
        logger.info(
            "Progress %d/%d: %s %s (%d items)",
            event.completion_ordinal,
            event.total_jobs,
            event.source_name,
            event.status.value,
            len(event.items),
        )
        if self._subscriber is None:
            return
        try:
            self._subscriber(event)
        except Exception:
            logger.exception("Progress subscriber failed for %s — continuing", event.source_name)


def partition(jobs: Sequence[Job], size: int) -> list[list[Job]]:
    """Split *jobs* into consecutive groups of at most *size*, order preserved."""
    return [list(jobs[i : i + size]) for i in range(0, len(jobs), size)]


class BatchScheduler:
    """Runs jobs under a fixed concurrency limit using group barriers."""

    def __init__(self, concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT) -> None:
        if isinstance(concurrency_limit, bool) or not isinstance(concurrency_limit, int) or concurrency_limit < 1:
            raise ActionableError.validation(
                "concurrency_limit",
                f"is {concurrency_limit!r} — must be a whole number >= 1",
            )
        self.concurrency_limit = concurrency_limit

    async def run(
        self,
        jobs: Sequence[Job],
        execute: Callable[[Job], Awaitable[JobOutcome]],
        state: RunState,
        emitter: ProgressEmitter,
    ) -> None:
        """Execute every job and feed each outcome to *state* and *emitter*.

        *execute* must not raise (``JobRunner.run`` never does); if it does
        anyway, the remaining tasks of the group are cancelled and the
        error propagates, since that is a defect in the core.
        """
        groups = partition(jobs, self.concurrency_limit)
        for index, group in enumerate(groups, 1):
            logger.info(
                "Starting group %d/%d: %s",
                index,
                len(groups),
                ", ".join(job.source_name for job in group),
            )
            tasks = [asyncio.create_task(execute(job), name=f"job:{job.source_name}") for job in group]
            try:
                for next_done in asyncio.as_completed(tasks):
                    outcome = await next_done
                    ordinal = state.record(outcome)
                    emitter.emit(
                        ProgressEvent(
                            source_name=outcome.source,
                            items=outcome.items,
                            total_jobs=state.total_jobs,
                            completion_ordinal=ordinal,
                            status=outcome.status,
                        )
                    )
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
