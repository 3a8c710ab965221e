"""HTTP transport — FastAPI app with streaming and non-streaming search.

``POST /api/scrape-stream`` answers with ``text/event-stream``: one
``data: <json>\\n\\n`` frame per event, in this order::

    connected -> progress (once per source, completion order) -> complete | error

``error`` is only sent when the orchestration call itself fails; a
source that fails shows up as a ``progress`` frame with status
``failed``.  Criteria and configuration problems are rejected with 422
before the stream opens.

``POST /api/scrape`` runs the same search and returns the aggregate in
one JSON body.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from tradecar_search.adapters import AdapterRegistry
from tradecar_search.adapters.base import SearchCriteria
from tradecar_search.errors import ActionableError, ErrorType
from tradecar_search.logging import logger
from tradecar_search.pipeline.runner import SearchOrchestrator

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from tradecar_search.config import Settings
    from tradecar_search.pipeline.aggregator import AggregateResult
    from tradecar_search.pipeline.scheduler import ProgressEvent

_CLIENT_ERRORS = frozenset({ErrorType.VALIDATION, ErrorType.CONFIG})

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class SearchRequest(BaseModel):
    """Request body for both search endpoints.

    Accepts the snake_case field names and the camelCase keys used by
    existing front ends (``minPrice``, ``maxMileage``, ``colour`` ...).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    make: str = ""
    model: str = ""
    min_price: int | None = Field(default=None, alias="minPrice")
    max_price: int | None = Field(default=None, alias="maxPrice")
    min_mileage: int | None = Field(default=None, alias="minMileage")
    max_mileage: int | None = Field(default=None, alias="maxMileage")
    min_age: int | None = Field(default=None, alias="minAge")
    max_age: int | None = Field(default=None, alias="maxAge")
    color: str | None = Field(default=None, alias="colour")
    vat_qualifying: bool | None = Field(default=None, alias="vatQualifying")
    concurrency: int | None = Field(default=None, ge=1)
    sources: list[str] | None = None

    def to_criteria(self) -> SearchCriteria:
        return SearchCriteria(
            make=self.make,
            model=self.model,
            min_price=self.min_price,
            max_price=self.max_price,
            min_mileage=self.min_mileage,
            max_mileage=self.max_mileage,
            min_age=self.min_age,
            max_age=self.max_age,
            color=self.color,
            vat_qualifying=self.vat_qualifying,
        )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def sse_frame(payload: dict[str, Any]) -> str:
    """Encode one server-sent event."""
    return f"data: {json.dumps(payload)}\n\n"


def connected_payload(total_jobs: int, sources: list[str]) -> dict[str, Any]:
    return {
        "type": "connected",
        "message": "SSE connection established",
        "total_jobs": total_jobs,
        "sources": sources,
        "timestamp": _now(),
    }


def progress_payload(event: ProgressEvent) -> dict[str, Any]:
    return {
        "type": "progress",
        "source_name": event.source_name,
        "status": event.status.value,
        "items": [item.to_dict() for item in event.items],
        "total_jobs": event.total_jobs,
        "current_job": event.completion_ordinal,
        "timestamp": _now(),
    }


def complete_payload(result: AggregateResult) -> dict[str, Any]:
    return {
        "type": "complete",
        "total_items": len(result.items),
        "result": result.to_dict(),
        "timestamp": _now(),
    }


def error_payload(exc: Exception) -> dict[str, Any]:
    payload: dict[str, Any] = {"type": "error", "timestamp": _now()}
    if isinstance(exc, ActionableError):
        payload["error"] = exc.error
        payload["error_type"] = exc.error_type.value
    else:
        payload["error"] = str(exc) or type(exc).__name__
    return payload


def _client_error(exc: ActionableError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"success": False, **exc.to_dict()})


def create_app(settings: Settings, orchestrator: SearchOrchestrator | None = None) -> FastAPI:
    """Build the API around one orchestrator.

    Each request gets its own run (and its own ``RunState``); the
    orchestrator holds configuration only.
    """
    orchestrator = orchestrator or SearchOrchestrator(settings)
    cancel_on_disconnect = settings.server.cancel_on_disconnect

    app = FastAPI(
        title="tradecar-search API",
        description="Multi-source trade vehicle listing search",
        version="0.1.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Cache-Control"],
    )
    # Runs that outlive their client connection
    app.state.detached_runs = set()

    def _prepare(body: SearchRequest) -> tuple[SearchCriteria, list[str]]:
        criteria = body.to_criteria().validate()
        return criteria, orchestrator.planned_sources(body.sources)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/sources")
    async def list_sources() -> dict[str, list[str]]:
        return {
            "registered": sorted(AdapterRegistry.list_registered()),
            "enabled": list(settings.enabled_sources),
        }

    @app.post("/api/scrape")
    async def scrape(body: SearchRequest) -> Response:
        try:
            criteria, sources = _prepare(body)
            result = await orchestrator.run(criteria, body.concurrency, sources=sources)
        except ActionableError as exc:
            if exc.error_type in _CLIENT_ERRORS:
                return _client_error(exc)
            logger.error("Search failed: %s", exc.error)
            return JSONResponse(status_code=500, content={"success": False, "error": exc.error})
        except Exception as exc:
            logger.exception("Search failed")
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": str(exc) or type(exc).__name__},
            )
        return JSONResponse(content={"success": True, "data": result.to_dict()})

    @app.post("/api/scrape-stream")
    async def scrape_stream(body: SearchRequest) -> Response:
        try:
            criteria, sources = _prepare(body)
        except ActionableError as exc:
            if exc.error_type in _CLIENT_ERRORS:
                return _client_error(exc)
            raise

        logger.info("Streaming search: %s %s over %s", criteria.make, criteria.model, sources)
        stream = _event_stream(
            app, orchestrator, criteria, body.concurrency, sources, cancel_on_disconnect
        )
        return StreamingResponse(stream, media_type="text/event-stream", headers=_SSE_HEADERS)

    return app


async def _event_stream(
    app: FastAPI,
    orchestrator: SearchOrchestrator,
    criteria: SearchCriteria,
    concurrency: int | None,
    sources: list[str],
    cancel_on_disconnect: bool,
) -> AsyncIterator[str]:
    """Yield SSE frames for one run.

    The run executes in its own task and hands frames over through a
    queue, so the order frames are written is the order the scheduler
    emitted them.  ``None`` on the queue marks the end of the run.
    """
    queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

    def on_progress(event: ProgressEvent) -> None:
        queue.put_nowait(progress_payload(event))

    async def run() -> None:
        try:
            result = await orchestrator.run(criteria, concurrency, on_progress, sources=sources)
            queue.put_nowait(complete_payload(result))
        except Exception as exc:
            logger.exception("Streaming search failed")
            queue.put_nowait(error_payload(exc))
        finally:
            queue.put_nowait(None)

    task = asyncio.create_task(run(), name="scrape-stream")
    try:
        yield sse_frame(connected_payload(len(sources), sources))
        while True:
            payload = await queue.get()
            if payload is None:
                break
            yield sse_frame(payload)
    finally:
        if not task.done():
            if cancel_on_disconnect:
                logger.info("Client disconnected — cancelling run")
                task.cancel()
            else:
                logger.info("Client disconnected — run continues in the background")
                app.state.detached_runs.add(task)
                task.add_done_callback(app.state.detached_runs.discard)
