#!/usr/bin/env python3

import argparse
import logging
import sys
from pathlib import Path

from diffutils_builder.pipeline import BuildPipeline, PipelineResult
from msys_build_utils.msys import MsysShell

logger = logging.getLogger("builder")


def set_logger_config(verbosity: int):
    logger.propagate = False
    verbosity = min(max(0, verbosity), 2)
    logging_level = {0: logging.ERROR, 1: logging.INFO, 2: logging.DEBUG}.get(
        verbosity, logging.ERROR
    )
    logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    formatter = logging.Formatter("[Builder %(asctime)s ~ %(levelname)s]: %(message)s")
    console_handler.setFormatter(formatter)
    console_handler.setLevel(logging_level)
    logger.handlers.clear()
    logger.addHandler(console_handler)


def _add_shared_flags(subparser: argparse.ArgumentParser):
    subparser.add_argument(
        "-r",
        "--root",
        metavar="ROOT_DIR",
        type=Path,
        default=Path("."),
        help="directory holding config.json / config-default.json, patches, src/ and out/",
    )
    subparser.add_argument("-v", "--verbosity", default=1, choices=[0, 1, 2], type=int)
    subparser.add_argument(
        "-t",
        "--timeout",
        metavar="SECONDS",
        type=float,
        default=None,
        help="kill any single MSYS2 command running longer than this (default: no limit)",
    )


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="diffutils-builder",
        description="Cross-compile GNU diffutils for Windows inside MSYS2.",
    )
    sp = ap.add_subparsers(dest="command", required=True)

    build = sp.add_parser(
        "build", help="Fetch, patch, build, test, install and fingerprint the binaries."
    )
    _add_shared_flags(build)

    sources = sp.add_parser(
        "sources", help="Only fetch, verify, unpack and patch the sources into src/."
    )
    _add_shared_flags(sources)

    return ap


def _report(result: PipelineResult) -> int:
    if result.is_failure():
        logger.critical(f"build aborted: {result.failure}")
        return 1
    if result.source_tree:
        logger.info(f"source tree: {result.source_tree}")
    if result.install_dir:
        logger.info(f"install tree: {result.install_dir}")
    logger.info(f"completed stages: {', '.join(result.completed)}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    set_logger_config(args.verbosity)

    root_dir = args.root.absolute()
    pipeline = BuildPipeline(root_dir, MsysShell.from_environ(timeout=args.timeout))

    match args.command:
        case "build":
            result = pipeline.run()
        case "sources":
            result = pipeline.run_sources()
        case _:
            raise ValueError(f"unknown command {args.command}")

    return _report(result)


def app():
    sys.exit(main())


if __name__ == "__main__":
    app()
