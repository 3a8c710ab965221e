"""Run-scoped accumulator and the final aggregate.

:class:`RunState` lives for exactly one orchestration call.  Only the
batch scheduler writes to it, one completed job at a time, so no two
jobs ever append concurrently.  :func:`aggregate` reduces it into the
:class:`AggregateResult` handed back to callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from tradecar_search.pipeline.outcomes import EmptyBySkip, Failure, SourceStatus

if TYPE_CHECKING:
    from tradecar_search.adapters.base import Listing
    from tradecar_search.pipeline.outcomes import JobOutcome


class RunStatus(StrEnum):
    """Whole-run classification.  Never aborts the run; purely descriptive."""

    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True)
class SourceReport:
    """One entry of ``per_source_status``."""

    status: SourceStatus
    item_count: int = 0
    error: str | None = None
    error_type: str | None = None
    reason: str | None = None
    completion_ordinal: int | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"status": self.status.value, "item_count": self.item_count}
        if self.error is not None:
            result["error"] = self.error
        if self.error_type is not None:
            result["error_type"] = self.error_type
        if self.reason is not None:
            result["reason"] = self.reason
        if self.completion_ordinal is not None:
            result["completion_ordinal"] = self.completion_ordinal
        return result


@dataclass
class RunState:
    """Accumulates outcomes in completion order for a single run."""

    total_jobs: int
    completed: int = 0
    items: list[Listing] = field(default_factory=list)
    reports: dict[str, SourceReport] = field(default_factory=dict)
    completion_order: list[str] = field(default_factory=list)

    @property
    def is_finished(self) -> bool:
        return self.completed == self.total_jobs

    def record(self, outcome: JobOutcome) -> int:
        """Append *outcome* and return its 1-based completion ordinal.

        Raises ``RuntimeError`` on a second outcome for the same source or
        on more outcomes than jobs — both mean the scheduler is broken.
        """
        if self.completed >= self.total_jobs:
            msg = f"RunState already holds all {self.total_jobs} outcomes"
            raise RuntimeError(msg)
        if outcome.source in self.reports:
            msg = f"Duplicate outcome for source '{outcome.source}'"
            raise RuntimeError(msg)

        self.completed += 1
        ordinal = self.completed
        self.completion_order.append(outcome.source)
        self.items.extend(outcome.items)
        self.reports[outcome.source] = _report_for(outcome, ordinal)
        return ordinal


@dataclass
class AggregateResult:
    """Final merged result of one orchestration run.

    ``items`` are in completion order — callers must not assume any
    stable ordering of sources within it.
    """

    items: list[Listing]
    per_source_status: dict[str, SourceReport]
    total_jobs: int

    @property
    def run_status(self) -> RunStatus:
        failed = len(self.sources_with(SourceStatus.FAILED))
        if self.total_jobs == 0 or failed == self.total_jobs:
            return RunStatus.FAILED
        if failed:
            return RunStatus.PARTIAL
        return RunStatus.COMPLETE

    def sources_with(self, status: SourceStatus) -> list[str]:
        """Names of the sources that ended with *status*."""
        return [name for name, report in self.per_source_status.items() if report.status == status]

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_status": self.run_status.value,
            "total_jobs": self.total_jobs,
            "total_items": len(self.items),
            "items": [item.to_dict() for item in self.items],
            "per_source_status": {
                name: report.to_dict() for name, report in self.per_source_status.items()
            },
        }


def aggregate(state: RunState) -> AggregateResult:
    """Reduce a finished :class:`RunState` into the final aggregate.

    Raises ``RuntimeError`` if any job has not reported yet.
    """
    if not state.is_finished:
        msg = f"Cannot aggregate: {state.completed}/{state.total_jobs} jobs finished"
        raise RuntimeError(msg)
    return AggregateResult(
        items=list(state.items),
        per_source_status={name: state.reports[name] for name in state.completion_order},
        total_jobs=state.total_jobs,
    )


def _report_for(outcome: JobOutcome, ordinal: int) -> SourceReport:
    if isinstance(outcome, Failure):
        return SourceReport(
            status=outcome.status,
            error=outcome.error.error,
            error_type=outcome.error.error_type.value,
            completion_ordinal=ordinal,
        )
    if isinstance(outcome, EmptyBySkip):
        return SourceReport(status=outcome.status, reason=outcome.reason, completion_ordinal=ordinal)
    return SourceReport(status=outcome.status, item_count=len(outcome.items), completion_ordinal=ordinal)
