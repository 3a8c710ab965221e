"""Global test configuration — shared fixtures and safety guards.

This conftest provides:

1. **Output guard** — makes the real ``output/`` directory read-only so
   tests that forget to use ``tmp_path`` get an immediate ``PermissionError``.

2. **Scripted sources** — ``SourceScript`` / ``ScriptedAdapter`` stand in
   for real dealer sites.  A script decides what each adapter step does
   (return listings, signal a skip, raise, sleep), and records the steps
   that were called.  Scripted adapters are registered on a per-test
   ``registry`` so the real adapters never see them.

3. **I/O-boundary fakes** — ``FakePool`` replaces the Playwright context
   pool and counts leases, releases and how many contexts were open at
   once.

4. **Factories** — ``make_settings``, ``make_listing``, ``make_job`` and
   ``make_orchestrator`` build the real pipeline objects around the fakes.
"""

from __future__ import annotations

import asyncio
import contextlib
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar
from unittest.mock import AsyncMock, MagicMock

import pytest

from tradecar_search.adapters.base import Listing, RefinementUnavailable, SourceAdapter
from tradecar_search.adapters.registry import AdapterRegistry
from tradecar_search.config import (
    CredentialRef,
    OrchestrationConfig,
    OutputConfig,
    ServerConfig,
    Settings,
    SourceConfig,
)
from tradecar_search.errors import ActionableError
from tradecar_search.pipeline.job_runner import Job, SourceDescriptor
from tradecar_search.pipeline.runner import SearchOrchestrator

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable, Iterator

    from playwright.async_api import Page

    from tradecar_search.adapters.base import Credentials, SearchCriteria

_PROJECT_OUTPUT = Path(__file__).resolve().parent.parent / "output"


# ---------------------------------------------------------------------------
# Scripted sources
# ---------------------------------------------------------------------------


@dataclass
class SourceScript:
    """What a scripted adapter does when a job runs it.

    ``delay`` is slept at the start of ``authenticate``; ``error`` is
    raised from the step named by ``fail_at``.
    """

    items: list[Listing] = field(default_factory=list)
    skip_reason: str | None = None
    error: BaseException | None = None
    fail_at: str = "extract_items"
    delay: float = 0.0
    query_url: bool = False
    calls: list[str] = field(default_factory=list)


class ScriptedAdapter(SourceAdapter):
    """Adapter whose every step is dictated by a :class:`SourceScript`."""

    name: ClassVar[str] = "scripted"
    script: ClassVar[SourceScript] = SourceScript()

    @property
    def source_name(self) -> str:
        return self.name

    @property
    def supports_query_url(self) -> bool:
        return self.script.query_url

    def _step(self, step: str) -> None:
        self.script.calls.append(step)
        if self.script.error is not None and self.script.fail_at == step:
            raise self.script.error

    async def authenticate(self, page: Page, credentials: Credentials) -> None:
        if self.script.delay:
            await asyncio.sleep(self.script.delay)
        self._step("authenticate")

    def build_query(self, criteria: SearchCriteria) -> str:
        self._step("build_query")
        return f"https://{self.name}.example/search?make={criteria.make}&model={criteria.model}"

    async def apply_refinements(
        self,
        page: Page,
        criteria: SearchCriteria,
    ) -> RefinementUnavailable | None:
        self._step("apply_refinements")
        if self.script.skip_reason is not None:
            return RefinementUnavailable(self.script.skip_reason)
        return None

    async def extract_items(self, page: Page, criteria: SearchCriteria) -> list[Listing]:
        self._step("extract_items")
        return list(self.script.items)


def scripted_adapter(name: str, script: SourceScript) -> type[ScriptedAdapter]:
    """A fresh ``ScriptedAdapter`` subclass bound to *name* and *script*."""
    return type(f"Scripted_{name}", (ScriptedAdapter,), {"name": name, "script": script})


def credentials_env(names: Iterable[str]) -> dict[str, str]:
    """Environment with default-named credentials for every source in *names*."""
    env: dict[str, str] = {}
    for name in names:
        ref = CredentialRef.for_source(name)
        env[ref.username_env] = f"{name}-user"
        env[ref.password_env] = "s3cret"
    return env


@pytest.fixture
def registry() -> type[AdapterRegistry]:
    """An empty registry per test, isolated from the real adapters."""

    class _TestRegistry(AdapterRegistry):
        _adapters: ClassVar[dict[str, type[SourceAdapter]]] = {}

    return _TestRegistry


# ---------------------------------------------------------------------------
# Execution context fake
# ---------------------------------------------------------------------------


class FakePool:
    """Stands in for ``ContextPool``; every lease yields a mock ``Page``.

    ``fail_for`` names sources whose acquisition fails the way the real
    pool reports it.
    """

    def __init__(self, fail_for: Iterable[str] = ()) -> None:
        self.fail_for = set(fail_for)
        self.leased: list[str] = []
        self.released: list[str] = []
        self.pages: dict[str, MagicMock] = {}
        self.open = 0
        self.max_open = 0
        self.entered = 0
        self.exited = 0

    async def __aenter__(self) -> FakePool:
        self.entered += 1
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.exited += 1

    @contextlib.asynccontextmanager
    async def lease(self, source_name: str = "") -> AsyncIterator[Any]:
        if source_name in self.fail_for:
            raise ActionableError.context_acquisition(source_name, "browser process crashed")
        page = MagicMock()
        page.goto = AsyncMock()
        self.pages[source_name] = page
        self.leased.append(source_name)
        self.open += 1
        self.max_open = max(self.max_open, self.open)
        try:
            yield page
        finally:
            self.open -= 1
            self.released.append(source_name)


@pytest.fixture
def pool() -> FakePool:
    return FakePool()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_settings(tmp_path: Path):
    """Factory fixture — returns a callable that produces a Settings instance.

    Output and log directories are always rooted under ``tmp_path``.
    """

    def _factory(
        enabled_sources: Iterable[str] = ("alpha",),
        *,
        concurrency_limit: int = 2,
        job_timeout: float | None = None,
        cancel_on_disconnect: bool = False,
    ) -> Settings:
        names = list(enabled_sources)
        return Settings(
            enabled_sources=names,
            sources={
                name: SourceConfig(name=name, credentials=CredentialRef.for_source(name))
                for name in names
            },
            orchestration=OrchestrationConfig(
                concurrency_limit=concurrency_limit,
                job_timeout_seconds=job_timeout,
                acquire_timeout_seconds=5.0,
            ),
            server=ServerConfig(cancel_on_disconnect=cancel_on_disconnect),
            output=OutputConfig(
                output_dir=str(tmp_path / "output"),
                log_dir=str(tmp_path / "logs"),
            ),
        )

    return _factory


@pytest.fixture
def make_listing():
    """Factory fixture — returns a callable that produces a Listing."""

    def _factory(
        source: str = "alpha",
        title: str = "FORD FOCUS 1.0 EcoBoost Zetec 5dr",
        *,
        registration: str = "AB12 CDE",
        price: int | None = 8995,
    ) -> Listing:
        return Listing(
            url=f"https://{source}.example/vehicle/{registration.replace(' ', '')}",
            image_url=f"https://{source}.example/img/{registration.replace(' ', '')}.jpg",
            title=title,
            price=price,
            location="Leeds",
            registration=registration,
            source=source,
        )

    return _factory


@pytest.fixture
def make_job():
    """Factory fixture — returns a callable that produces a Job."""

    def _factory(
        name: str,
        criteria: SearchCriteria,
        *,
        query_url: bool = False,
        index: int = 1,
    ) -> Job:
        descriptor = SourceDescriptor(
            name=name,
            credentials=CredentialRef.for_source(name),
            supports_query_url=query_url,
        )
        return Job(descriptor=descriptor, criteria=criteria, submission_index=index)

    return _factory


@pytest.fixture
def make_orchestrator(make_settings, registry: type[AdapterRegistry]):
    """Factory fixture — scripted sources wired into a real SearchOrchestrator.

    Takes ``{source_name: SourceScript}`` (dict order is submission
    order) and returns ``(orchestrator, pool)``.  Credentials for every
    source are present unless ``environ`` is given.
    """

    def _factory(
        scripts: dict[str, SourceScript],
        *,
        pool: FakePool | None = None,
        concurrency_limit: int = 2,
        job_timeout: float | None = None,
        environ: dict[str, str] | None = None,
    ) -> tuple[SearchOrchestrator, FakePool]:
        for name, script in scripts.items():
            registry.register(scripted_adapter(name, script))
        fake_pool = pool or FakePool()
        settings = make_settings(
            scripts,
            concurrency_limit=concurrency_limit,
            job_timeout=job_timeout,
        )
        orchestrator = SearchOrchestrator(
            settings,
            pool_factory=lambda _settings: fake_pool,
            registry=registry,
            environ=credentials_env(scripts) if environ is None else environ,
        )
        return orchestrator, fake_pool

    return _factory


# ---------------------------------------------------------------------------
# Output directory guard
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True, scope="session")
def _guard_real_output_dir() -> Iterator[None]:
    """Make the real output/ directory read-only during tests.

    Restores original permissions after the session, even on failure.
    If the directory does not exist the guard is silently skipped —
    CI environments may not have it.
    """
    if not _PROJECT_OUTPUT.is_dir():
        yield
        return

    dirs_to_guard = [_PROJECT_OUTPUT]
    for child in _PROJECT_OUTPUT.iterdir():
        if child.is_dir():
            dirs_to_guard.append(child)

    original_modes: dict[Path, int] = {}
    for d in dirs_to_guard:
        original_modes[d] = d.stat().st_mode
        # Remove write permission (owner, group, other)
        d.chmod(original_modes[d] & ~(stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH))

    try:
        yield
    finally:
        for d, mode in original_modes.items():
            with contextlib.suppress(OSError):
                d.chmod(mode)
