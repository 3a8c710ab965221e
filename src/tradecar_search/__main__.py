"""CLI entry point for tradecar-search."""

from __future__ import annotations

from tradecar_search.cli import build_parser, handle_search, handle_serve, handle_sources


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "search":
        handle_search(args)
    elif args.command == "serve":
        handle_serve(args)
    elif args.command == "sources":
        handle_sources()


if __name__ == "__main__":
    main()
