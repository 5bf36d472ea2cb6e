#!/usr/bin/env python3
"""
Command-line interface for the Claude Code Auto Workflows toolkit.

Commands:
    analyze     workflow run statistics, API usage and workflow file checks
    rate-limit  show the current GitHub API quota
    cache       inspect or clean the response cache
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Dict, List, Optional

import aiohttp

from . import __version__
from .analyzer import WorkflowAnalyzer
from .cache_store import CacheStore
from .config import Config, load_config
from .exceptions import ApiError, ConfigError, RateLimitError, RedactingFilter
from .github_client import GitHubClient
from .models import LogLevel, OutputFormat
from .report import render_data, render_report


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_SIGNAL = {signal.SIGINT: 130, signal.SIGTERM: 143}


def setup_logging(level: LogLevel = LogLevel.INFO):
    """Configure root logging once and attach the credential filter"""
    logging.basicConfig(
        level=level.logging_level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )
    root = logging.getLogger()
    root.setLevel(level.logging_level)
    for handler in root.handlers:
        if not any(isinstance(f, RedactingFilter) for f in handler.filters):
            handler.addFilter(RedactingFilter())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cca-workflows",
        description="Cached, rate-limited GitHub workflow analysis",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", metavar="PATH", help="KEY=value override file")
    parser.add_argument(
        "--format", choices=[fmt.value for fmt in OutputFormat],
        help="output format (overrides OUTPUT_FORMAT)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="analyze workflow runs and workflow files")
    analyze.add_argument(
        "--repo", action="append", dest="repos", metavar="OWNER/REPO",
        help="repository to analyze (repeatable, defaults to GITHUB_REPOSITORY)",
    )
    analyze.add_argument(
        "--workflows-dir", type=Path, default=Path(".github/workflows"),
        help="directory holding workflow YAML files (default: .github/workflows)",
    )
    analyze.add_argument("--efficiency", action="store_true", help="check workflow files for caching, conditionals and matrix use")
    analyze.add_argument("--security", action="store_true", help="check workflow files for secret and permission problems")
    analyze.add_argument("--benchmark", action="store_true", help="benchmark the response cache")

    subparsers.add_parser("rate-limit", help="show the current API quota")

    cache = subparsers.add_parser("cache", help="manage the response cache")
    cache.add_argument("action", choices=["stats", "sweep", "clear"])
    return parser


def _install_signal_handlers(cancel_event: asyncio.Event, received: List[int]):
    loop = asyncio.get_running_loop()

    def handle(signum: int):
        if not received:
            logging.warning(f"Received {signal.Signals(signum).name}, shutting down")
        received.append(signum)
        cancel_event.set()

    for signum in EXIT_SIGNAL:
        try:
            loop.add_signal_handler(signum, handle, signum)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform; KeyboardInterrupt still applies
            pass


def _print_data(data: Dict, output_format: OutputFormat, title: str):
    print(render_data(data, output_format, title))


async def run_analyze(config: Config, args, cancel_event: asyncio.Event) -> int:
    analyzer = WorkflowAnalyzer(config)
    async with aiohttp.ClientSession() as session:
        report = await analyzer.analyze(
            session,
            repositories=args.repos,
            workflows_dir=args.workflows_dir,
            efficiency=args.efficiency,
            security=args.security,
            benchmark=args.benchmark,
            cancel_event=cancel_event,
        )
    print(render_report(report, config.output_format))

    attempted = len(args.repos or []) or (1 if config.github_repository else 0)
    if attempted and len(report.failed_repositories) >= attempted:
        logging.error("Workflow runs could not be fetched for any repository")
        return EXIT_FAILURE
    return EXIT_OK


async def run_rate_limit(config: Config, args) -> int:
    client = GitHubClient(config)
    async with aiohttp.ClientSession() as session:
        usage = await client.get_api_usage(session)
    if usage is None:
        logging.error("Rate limit response did not include core quota information")
        return EXIT_FAILURE
    _print_data(usage.to_dict(), config.output_format, "GitHub API rate limit")
    return EXIT_OK


async def run_cache(config: Config, args) -> int:
    store = CacheStore.from_config(config)
    if args.action == "sweep":
        removed = await store.sweep()
        _print_data({"removed": removed, **store.get_stats()}, config.output_format, "Cache sweep")
    elif args.action == "clear":
        removed = await store.clear()
        _print_data({"removed": removed, **store.get_stats()}, config.output_format, "Cache clear")
    else:
        _print_data(store.get_stats(), config.output_format, "Cache statistics")
    return EXIT_OK


async def run_command(config: Config, args, cancel_event: Optional[asyncio.Event] = None) -> int:
    if cancel_event is None:
        cancel_event = asyncio.Event()
    if args.command == "analyze":
        return await run_analyze(config, args, cancel_event)
    if args.command == "rate-limit":
        return await run_rate_limit(config, args)
    return await run_cache(config, args)


async def _main_async(config: Config, args) -> int:
    cancel_event = asyncio.Event()
    received: List[int] = []
    _install_signal_handlers(cancel_event, received)
    code = await run_command(config, args, cancel_event)
    if received:
        return EXIT_SIGNAL[received[0]]
    return code


def main(argv: Optional[List[str]] = None) -> int:
    """Console entry point; returns the process exit code"""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging()

    try:
        config = load_config(args.config)
        if args.format:
            config = config.with_overrides(output_format=OutputFormat(args.format))
    except ConfigError as e:
        logging.error(str(e))
        return EXIT_CONFIG

    setup_logging(config.log_level)
    logging.debug(f"Effective configuration: {config.to_dict()}")

    try:
        return asyncio.run(_main_async(config, args))
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return EXIT_SIGNAL[signal.SIGINT]
    except (ApiError, RateLimitError) as e:
        logging.error(str(e))
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
