"""Command-line entry point: ``mdsite build`` and ``mdsite dev``."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from .build import compile_site
from .config import (
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_PORT,
    DEFAULT_SOURCE_DIR,
    SiteConfig,
    configure_logging,
)
from .serve import DevServer

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mdsite",
        description="Generate a static site from a folder of markdown files.",
    )
    subparsers = parser.add_subparsers(dest="command")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--input",
        type=Path,
        default=DEFAULT_SOURCE_DIR,
        help="Markdown source folder (default: ./md)",
    )
    common.add_argument(
        "--output",
        type=Path,
        default=DEFAULT_OUTPUT_DIR,
        help="Output folder for the generated site (default: ./public)",
    )
    common.add_argument("--title", type=str, default="", help="Optional site title appended to page titles")
    common.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers.add_parser("build", parents=[common], help="Build static pages for production")
    dev = subparsers.add_parser("dev", parents=[common], help="Start dev server with live reload")
    dev.add_argument("--port", type=int, default=DEFAULT_PORT, help="Preview server port (default: 3000)")
    dev.add_argument(
        "--debounce-ms",
        type=int,
        default=DEFAULT_DEBOUNCE_MS,
        help="Quiet period before a rebuild starts (default: 100)",
    )

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_usage()
        parser.exit(2)
    return args


def config_from_args(args: argparse.Namespace) -> SiteConfig:
    config = SiteConfig(
        source_root=args.input.expanduser().resolve(),
        output_root=args.output.expanduser().resolve(),
        site_title=args.title,
    )
    if args.command == "dev":
        config.port = args.port
        config.debounce_ms = args.debounce_ms
    return config


async def _run_dev(config: SiteConfig) -> None:
    await DevServer(config).run()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)
    config = config_from_args(args)

    try:
        if args.command == "build":
            asyncio.run(compile_site(config, live_reload=False))
        else:
            asyncio.run(_run_dev(config))
    except KeyboardInterrupt:
        logger.info("\nServer stopped.")
    except OSError as exc:
        logger.error("%s", exc)
        return 1
    except Exception:
        logger.exception("Build failed")
        return 1
    return 0
