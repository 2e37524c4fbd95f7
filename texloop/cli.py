"""CLI entrypoints for texloop commands."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List

from .config import ConfigError, load_config
from .logging import configure_logging
from .orchestrator import DocumentResult, Orchestrator


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


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="texloop",
        description="Compile LaTeX documents, rerunning auxiliary tools until the output is stable.",
    )
    _add_verbose_option(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser(
        "build",
        help="Build one or more LaTeX main files.",
    )
    _add_verbose_option(build_parser, suppress_default=True)
    build_parser.add_argument(
        "files",
        nargs="+",
        metavar="FILE",
        help="LaTeX main file(s) to build.",
    )
    build_parser.add_argument(
        "--config",
        default=None,
        help="Path to .texloop.yml or its directory (defaults to the first file's directory).",
    )
    build_parser.add_argument(
        "--max-reruns",
        type=int,
        default=None,
        help="Maximum number of compiler reruns; -1 removes the limit.",
    )
    build_parser.add_argument(
        "--jobs",
        type=int,
        default=None,
        help="Number of documents built concurrently.",
    )
    build_parser.add_argument(
        "--source-date-epoch",
        type=int,
        default=None,
        metavar="SECONDS",
        help="Timestamp embedded into the output for reproducible builds.",
    )
    build_parser.add_argument(
        "--log-file",
        default=None,
        help="Also write a detailed log to this file.",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for texloop commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    log_file = Path(args.log_file) if getattr(args, "log_file", None) else None
    configure_logging(verbose=bool(args.verbose), log_file=log_file)

    if args.command != "build":  # pragma: no cover - argparse enforces choices
        parser.exit(1, "Unknown command\n")

    if args.jobs is not None and args.jobs < 1:
        parser.exit(1, "--jobs must be at least 1\n")
    if args.max_reruns is not None and args.max_reruns < -1:
        parser.exit(1, "--max-reruns must be non-negative or -1\n")

    config_path = Path(args.config) if args.config else Path(args.files[0]).expanduser().parent
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        parser.exit(1, f"Invalid configuration: {exc}\n")
    if args.source_date_epoch is not None:
        config.source_date_epoch = args.source_date_epoch

    orchestrator = Orchestrator(config)
    try:
        results = orchestrator.build(
            args.files,
            jobs=args.jobs,
            max_reruns=args.max_reruns,
        )
    except FileNotFoundError as exc:
        parser.exit(1, f"{exc}\n")

    for line in _report(results):
        print(line)
    if not all(result.success for result in results):
        parser.exit(1, "texloop build failed. Run with --verbose for more details.\n")


def _report(results: List[DocumentResult]) -> List[str]:
    lines: List[str] = []
    for result in results:
        outcome = result.outcome
        if outcome is None:
            lines.append(f"{result.descriptor}: build aborted")
        else:
            status = "converged" if outcome.converged else "not converged"
            lines.append(
                f"{result.descriptor}: {_relativize(outcome.output_file)} "
                f"({outcome.compiler_runs} compiler run(s), {status})"
            )
        lines.extend(f"  {diagnostic}" for diagnostic in result.log)
    return lines


def _relativize(path: Path) -> str:
    try:
        return str(path.relative_to(Path.cwd()))
    except ValueError:
        return str(path)


if __name__ == "__main__":  # pragma: no cover
    main()
