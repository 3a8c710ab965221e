"""Job runner — drives one source adapter from login to extraction.

The runner is the only place that interprets adapter behaviour.  Whatever
an adapter does (returns listings, returns a skip signal, raises), the
runner turns it into exactly one :data:`JobOutcome` and never lets an
exception escape to the scheduler.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, TypeVar

from tradecar_search.adapters.base import RefinementUnavailable
from tradecar_search.errors import ActionableError
from tradecar_search.pipeline.outcomes import EmptyBySkip, Failure, Success

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping
    from contextlib import AbstractAsyncContextManager

    from playwright.async_api import Page

    from tradecar_search.adapters.base import Credentials, SearchCriteria, SourceAdapter
    from tradecar_search.config import CredentialRef
    from tradecar_search.pipeline.outcomes import JobOutcome

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExecutionContextPool(Protocol):
    """What the runner needs from a pool — satisfied by ``ContextPool``."""

    def lease(self, source_name: str = "") -> AbstractAsyncContextManager[Page]: ...


@dataclass(frozen=True)
class SourceDescriptor:
    """Static description of one source for a run."""

    name: str
    credentials: CredentialRef
    supports_query_url: bool = False


@dataclass(frozen=True)
class Job:
    """One (source, criteria) pair.  Has exactly one outcome."""

    descriptor: SourceDescriptor
    criteria: SearchCriteria
    submission_index: int = 1

    @property
    def source_name(self) -> str:
        return self.descriptor.name


class JobRunner:
    """Runs a job to a terminal outcome.

    Args:
        pool: Provides an isolated page per job via ``lease()``.
        adapter_factory: Returns a *fresh* adapter for a source name.
        job_timeout: Wall-clock ceiling in seconds for the whole job;
            ``None`` disables it.
        environ: Where credentials are read from (defaults to ``os.environ``).
    """

    def __init__(
        self,
        pool: ExecutionContextPool,
        adapter_factory: Callable[[str], SourceAdapter],
        *,
        job_timeout: float | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._pool = pool
        self._adapter_factory = adapter_factory
        self._job_timeout = job_timeout
        self._environ = environ

    async def run(self, job: Job) -> JobOutcome:
        """Execute *job*.  Never raises (except on task cancellation)."""
        source = job.source_name
        try:
            if self._job_timeout is None:
                return await self._execute(job)
            return await asyncio.wait_for(self._execute(job), timeout=self._job_timeout)
        except TimeoutError:
            error = ActionableError.timeout(source, self._job_timeout or 0)
        except ActionableError as exc:
            error = exc
        except Exception as exc:
            error = ActionableError.unexpected(source, "run", str(exc) or type(exc).__name__)
            logger.debug("Unclassified failure in %s", source, exc_info=True)

        logger.warning("Source '%s' failed: %s", source, error.error)
        return Failure(source=source, error=error)

    async def _execute(self, job: Job) -> JobOutcome:
        source = job.source_name
        credentials = self._resolve_credentials(job)
        adapter = self._adapter_factory(source)

        async with self._pool.lease(source) as page:
            await self._step(source, "authenticate", adapter.authenticate(page, credentials))

            if job.descriptor.supports_query_url:
                url = self._build_query(adapter, job)
                logger.info("Source '%s': navigating to %s", source, url)
                await self._step(source, "navigate", page.goto(url, wait_until="domcontentloaded"))
            else:
                signal = await self._step(
                    source, "apply_refinements", adapter.apply_refinements(page, job.criteria)
                )
                if isinstance(signal, RefinementUnavailable):
                    logger.info("Source '%s' skipped: %s", source, signal.reason)
                    return EmptyBySkip(source=source, reason=signal.reason)

            items = await self._step(source, "extract_items", adapter.extract_items(page, job.criteria))

        listings = tuple(items or ())
        logger.info("Source '%s': %d listings extracted", source, len(listings))
        return Success(source=source, items=listings)

    def _resolve_credentials(self, job: Job) -> Credentials:
        ref = job.descriptor.credentials
        credentials = ref.resolve(self._environ)
        if credentials is None:
            raise ActionableError.authentication(
                job.source_name,
                f"Missing username or password ({ref.username_env} / {ref.password_env})",
                suggestion=f"Set {ref.username_env} and {ref.password_env} in the environment or .env",
            )
        return credentials

    @staticmethod
    def _build_query(adapter: SourceAdapter, job: Job) -> str:
        try:
            return adapter.build_query(job.criteria)
        except ActionableError:
            raise
        except Exception as exc:
            raise ActionableError.from_exception(exc, job.source_name, "navigate") from exc

    @staticmethod
    async def _step(source: str, operation: str, awaitable: Awaitable[T]) -> T:
        """Await one adapter call, classifying anything it raises."""
        try:
            return await awaitable
        except ActionableError:
            raise
        except Exception as exc:
            raise ActionableError.from_exception(exc, source, operation) from exc
