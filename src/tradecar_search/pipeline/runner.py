"""Search orchestrator — the single entry point for a multi-source search.

The orchestrator ties the pipeline together:

1. Validate criteria and the concurrency limit (fail before any browser work)
2. Resolve one :class:`SourceDescriptor` per enabled source
3. Open the execution context pool
4. Run every job through the batch scheduler, emitting progress
5. Reduce the run state into an :class:`AggregateResult`

It owns the control flow but delegates all source-specific logic to
adapters and all per-job error handling to the :class:`JobRunner`.
Nothing here survives between calls: each ``run`` builds its own
:class:`RunState`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tradecar_search.adapters import AdapterRegistry
from tradecar_search.adapters.session import ContextPool
from tradecar_search.config import CredentialRef
from tradecar_search.errors import ActionableError
from tradecar_search.pipeline.aggregator import RunState, aggregate
from tradecar_search.pipeline.job_runner import Job, JobRunner, SourceDescriptor
from tradecar_search.pipeline.scheduler import BatchScheduler, ProgressEmitter

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from contextlib import AbstractAsyncContextManager

    from tradecar_search.adapters.base import SearchCriteria
    from tradecar_search.config import Settings
    from tradecar_search.pipeline.aggregator import AggregateResult
    from tradecar_search.pipeline.job_runner import ExecutionContextPool
    from tradecar_search.pipeline.scheduler import ProgressCallback

    PoolFactory = Callable[[Settings], AbstractAsyncContextManager[ExecutionContextPool]]

logger = logging.getLogger(__name__)


def _default_pool(settings: Settings) -> ContextPool:
    return ContextPool(
        settings.browser,
        acquire_timeout=settings.orchestration.acquire_timeout_seconds,
    )


class SearchOrchestrator:
    """Runs one search across every enabled source.

    Args:
        settings: Validated configuration.
        pool_factory: Builds the execution context pool for a run.
        registry: Source name → adapter lookup (``AdapterRegistry`` API).
        environ: Credential source handed to the job runner.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        pool_factory: PoolFactory | None = None,
        registry: type[AdapterRegistry] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._settings = settings
        self._pool_factory = pool_factory or _default_pool
        self._registry = registry or AdapterRegistry
        self._environ = environ

    def planned_sources(self, sources: list[str] | None = None) -> list[str]:
        """Source names the next run will search, in submission order.

        Raises :class:`ActionableError` (CONFIG) for a name with no adapter.
        """
        names = list(sources) if sources else list(self._settings.enabled_sources)
        if len(set(names)) != len(names):
            raise ActionableError.validation("sources", f"source names must be unique, got {names}")
        for name in names:
            if not self._registry.is_registered(name):
                raise ActionableError.config(
                    field_name="sources.enabled",
                    reason=f"No adapter registered for source '{name}'",
                    suggestion=(
                        "Use one of: " + ", ".join(sorted(self._registry.list_registered()))
                    ),
                )
        return names

    def build_jobs(self, criteria: SearchCriteria, sources: list[str] | None = None) -> list[Job]:
        """One job per planned source, numbered in submission order."""
        jobs: list[Job] = []
        for index, name in enumerate(self.planned_sources(sources), 1):
            source_cfg = self._settings.sources.get(name)
            credentials = source_cfg.credentials if source_cfg else CredentialRef.for_source(name)
            descriptor = SourceDescriptor(
                name=name,
                credentials=credentials,
                supports_query_url=self._registry.supports_query_url(name),
            )
            jobs.append(Job(descriptor=descriptor, criteria=criteria, submission_index=index))
        return jobs

    async def run(
        self,
        criteria: SearchCriteria,
        concurrency_limit: int | None = None,
        on_progress: ProgressCallback | None = None,
        *,
        sources: list[str] | None = None,
    ) -> AggregateResult:
        """Search every source and return the merged result.

        Args:
            criteria: What to search for.  Validated before any job starts.
            concurrency_limit: Jobs per group; defaults to
                ``[orchestration].concurrency_limit``.
            on_progress: Called once per finished job, in completion order.
            sources: Restrict the run to these source names.

        Raises:
            ActionableError: VALIDATION/CONFIG problems, before any job runs.
                Individual source failures never raise — they appear in
                ``per_source_status``.
        """
        criteria.validate()
        limit = concurrency_limit if concurrency_limit is not None else self._settings.orchestration.concurrency_limit
        scheduler = BatchScheduler(limit)
        jobs = self.build_jobs(criteria, sources)

        state = RunState(total_jobs=len(jobs))
        emitter = ProgressEmitter(on_progress)
        logger.info(
            "Searching %d sources for %s %s (concurrency %d)",
            len(jobs),
            criteria.make,
            criteria.model,
            scheduler.concurrency_limit,
        )

        if jobs:
            async with self._pool_factory(self._settings) as pool:
                runner = JobRunner(
                    pool,
                    self._registry.get,
                    job_timeout=self._settings.orchestration.job_timeout_seconds,
                    environ=self._environ,
                )
                await scheduler.run(jobs, runner.run, state, emitter)

        result = aggregate(state)
        logger.info(
            "Run finished (%s): %d listings from %d sources",
            result.run_status.value,
            len(result.items),
            result.total_jobs,
        )
        return result
