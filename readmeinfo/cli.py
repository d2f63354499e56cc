"""CLI entrypoints for readmeinfo commands."""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from pathlib import Path

from .analyzers import analyzer_kind, provides_context
from .config import ConfigError, load_config
from .errors import ReadmeInfoError
from .logging import configure_logging
from .parser import ReadmeParser


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _add_config_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a .readmeinfo.yml file or the directory containing it.",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="readmeinfo",
        description="Extract structured project metadata from README files.",
    )
    _add_verbose_option(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    parse_parser = subparsers.add_parser(
        "parse",
        help="Parse a README and print the result as JSON.",
    )
    _add_verbose_option(parse_parser, suppress_default=True)
    _add_config_option(parse_parser)
    parse_parser.add_argument(
        "path",
        nargs="?",
        default="README.md",
        help="README file or directory to parse; '-' reads standard input.",
    )
    parse_parser.add_argument(
        "--sequential",
        action="store_true",
        help="Run analyzers one at a time instead of in parallel.",
    )
    parse_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-analyzer timeout in seconds.",
    )
    parse_parser.add_argument(
        "--compact",
        action="store_true",
        help="Print JSON on a single line.",
    )

    analyzers_parser = subparsers.add_parser(
        "analyzers",
        help="List registered analyzers in execution order.",
    )
    _add_verbose_option(analyzers_parser, suppress_default=True)
    _add_config_option(analyzers_parser)

    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the HTTP service.",
    )
    _add_verbose_option(serve_parser, suppress_default=True)
    _add_config_option(serve_parser)
    serve_parser.add_argument("--host", default="127.0.0.1", help="Interface to bind.")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to listen on.")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for readmeinfo commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose))

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        parser.exit(1, f"Invalid configuration: {exc}\n")

    if args.command == "parse":
        if args.sequential:
            config.analyzers = replace(config.analyzers, parallel=False)
        if args.timeout is not None:
            if args.timeout <= 0:
                parser.exit(1, "--timeout must be positive\n")
            config.analyzers = replace(config.analyzers, timeout=args.timeout)
        try:
            readme_parser = ReadmeParser(config=config)
        except (ReadmeInfoError, ValueError) as exc:
            parser.exit(1, f"readmeinfo parse failed: {exc}\n")
        if args.path == "-":
            result = readme_parser.parse_content(sys.stdin.read())
        else:
            result = readme_parser.parse_file(args.path)
        print(result.to_json(indent=None if args.compact else 2))
        if not result.success:
            sys.exit(1)
    elif args.command == "analyzers":
        try:
            readme_parser = ReadmeParser(config=config)
        except (ReadmeInfoError, ValueError) as exc:
            parser.exit(1, f"readmeinfo analyzers failed: {exc}\n")
        for analyzer in readme_parser.registry.analyzers:
            marker = " (context)" if provides_context(analyzer) else ""
            print(f"{analyzer.name}\t{analyzer_kind(analyzer).value}{marker}")
    elif args.command == "serve":
        from .service import run_service

        run_service(args.host, args.port, lambda: ReadmeParser(config=config))
    else:  # pragma: no cover - argparse enforces choices
        parser.exit(1, "Unknown command\n")


if __name__ == "__main__":
    main(sys.argv[1:])
