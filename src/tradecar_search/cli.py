"""CLI command handlers for tradecar-search.

Each public function corresponds to a CLI subcommand and encapsulates
the wiring, orchestration, and output for that command.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from tradecar_search.adapters import AdapterRegistry
from tradecar_search.config import DEFAULT_SETTINGS_PATH

if TYPE_CHECKING:
    from tradecar_search.config import Settings
    from tradecar_search.pipeline.aggregator import AggregateResult
    from tradecar_search.pipeline.scheduler import ProgressEvent


def _load(args: argparse.Namespace) -> Settings:
    from dotenv import load_dotenv

    from tradecar_search.config import load_settings
    from tradecar_search.logging import configure_file_logging

    # Credentials come from the environment; .env fills in what is unset
    load_dotenv()
    settings = load_settings(args.config)
    if getattr(args, "headed", False):
        settings.browser.headless = False
    configure_file_logging(settings.output.log_dir)
    return settings


def _print_progress(event: ProgressEvent) -> None:
    print(
        f"  [{event.completion_ordinal}/{event.total_jobs}] "
        f"{event.source_name}: {event.status.value} ({len(event.items)} listings)"
    )


def _print_summary(result: AggregateResult) -> None:
    print(f"\n{'=' * 60}")
    print(" Search Results Summary")
    print(f"{'=' * 60}")
    print(f" Run status:      {result.run_status.value}")
    print(f" Sources:         {result.total_jobs}")
    print(f" Total listings:  {len(result.items)}")
    for name, report in result.per_source_status.items():
        detail = report.error or report.reason or f"{report.item_count} listings"
        print(f"   - {name:<16} {report.status.value:<8} {detail}")
    print(f"{'=' * 60}\n")

    for i, item in enumerate(result.items, 1):
        price = f"£{item.price:,}" if item.price is not None else "n/a"
        print(f"{i}. {item.title} — {price}")
        print(f"   {item.source} | {item.registration or '-'} | {item.location or '-'}")
        print(f"   {item.url}")


def handle_search(args: argparse.Namespace) -> None:
    """Run one search across the enabled (or selected) sources."""
    from tradecar_search.adapters.base import SearchCriteria
    from tradecar_search.errors import ActionableError
    from tradecar_search.pipeline.runner import SearchOrchestrator

    settings = _load(args)
    criteria = SearchCriteria(
        make=args.make,
        model=args.model,
        min_price=args.min_price,
        max_price=args.max_price,
        min_mileage=args.min_mileage,
        max_mileage=args.max_mileage,
        min_age=args.min_age,
        max_age=args.max_age,
        color=args.color,
    )
    orchestrator = SearchOrchestrator(settings)

    try:
        result = asyncio.run(
            orchestrator.run(
                criteria,
                args.concurrency,
                _print_progress,
                sources=args.source or None,
            )
        )
    except ActionableError as exc:
        print(f"Error: {exc.error}", file=sys.stderr)
        if exc.suggestion:
            print(f"  {exc.suggestion}", file=sys.stderr)
        sys.exit(2)

    _print_summary(result)

    if args.json is not None:
        out_path = Path(args.json or Path(settings.output.output_dir) / "results.json")
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
        print(f"Exported JSON → {out_path}")


def handle_serve(args: argparse.Namespace) -> None:
    """Serve the HTTP API with uvicorn."""
    import uvicorn

    from tradecar_search.api import create_app

    settings = _load(args)
    host = args.host or settings.server.host
    port = args.port or settings.server.port
    uvicorn.run(create_app(settings), host=host, port=port)


def handle_sources() -> None:
    """List all registered adapter source names."""
    sources = AdapterRegistry.list_registered()
    if not sources:
        print("No adapters registered.")
        return
    print("Registered adapters:")
    for name in sorted(sources):
        mode = "query URL" if AdapterRegistry.supports_query_url(name) else "UI refinement"
        print(f"  - {name} ({mode})")


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="tradecar-search",
        description="Search trade vehicle listings across several dealer sources at once",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # -- search --------------------------------------------------------------
    search_p = sub.add_parser("search", help="Search the enabled sources")
    search_p.add_argument("--make", required=True, help="Vehicle make, e.g. FORD")
    search_p.add_argument("--model", required=True, help="Vehicle model, e.g. FOCUS")
    for flag in ("price", "mileage", "age"):
        search_p.add_argument(f"--min-{flag}", type=int, default=None, metavar="N")
        search_p.add_argument(f"--max-{flag}", type=int, default=None, metavar="N")
    search_p.add_argument("--color", type=str, default=None, help="Colour filter, where supported")
    search_p.add_argument(
        "--source",
        action="append",
        default=None,
        help="Search only this source (repeatable; default: all enabled)",
    )
    search_p.add_argument(
        "--concurrency",
        type=int,
        default=None,
        metavar="K",
        help="Sources searched at once (default: [orchestration].concurrency_limit)",
    )
    search_p.add_argument(
        "--json",
        nargs="?",
        const="",
        default=None,
        metavar="PATH",
        help="Write the result as JSON (default path: [output].output_dir/results.json)",
    )
    search_p.add_argument("--headed", action="store_true", help="Show the browser window")

    # -- serve ---------------------------------------------------------------
    serve_p = sub.add_parser("serve", help="Run the HTTP API")
    serve_p.add_argument("--host", type=str, default=None)
    serve_p.add_argument("--port", type=int, default=None)

    for command_p in (search_p, serve_p):
        command_p.add_argument(
            "--config",
            type=str,
            default=str(DEFAULT_SETTINGS_PATH),
            help=f"Settings file (default: {DEFAULT_SETTINGS_PATH})",
        )

    # -- sources -------------------------------------------------------------
    sub.add_parser("sources", help="List registered adapters")

    return parser
