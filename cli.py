"""Command line entry point for running natural-language browser tests."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List

from config import PilotConfig, load_config
from exceptions import PilotError
from reporters import JSONReporter
from runner import TestOrchestrator
from suite_loader import discover_test_files


def _resolve_test_files(args: argparse.Namespace, config: PilotConfig) -> List[Path]:
    if args.paths:
        return discover_test_files([Path(p) for p in args.paths], config.test_pattern)
    return discover_test_files(config.test_dir, config.test_pattern)


async def run_from_cli_args(args: argparse.Namespace, logger: logging.Logger) -> int:
    """Entry point shared by the CLI script."""
    config_path = Path(args.config) if args.config else None
    cli_overrides = {
        "browser": args.browser,
        "headless": True if args.headless else None,
        "target": args.target,
        "no_cache": args.no_cache,
        "debug_ai": True if args.debug_ai else None,
        "verbose": True if args.verbose else None,
        "max_turns": args.max_turns,
        "report_dir": args.report_dir,
    }
    cli_overrides = {k: v for k, v in cli_overrides.items() if v is not None}

    try:
        config = load_config(config_path, cli_overrides)
    except Exception as exc:
        logger.error(f"Failed to load config: {exc}")
        return 1

    runner = TestOrchestrator(config=config, logger=logger)

    if args.clear_cache:
        removed = runner.clear_cache(
            scope="all" if args.all_projects else "project",
            force_purge=args.force_purge,
        )
        print(f"Removed {removed} cache entr{'y' if removed == 1 else 'ies'}")
        return 0

    try:
        files = _resolve_test_files(args, config)
    except PilotError as exc:
        logger.error(str(exc))
        return 1

    if not files:
        logger.error(f"No test files found matching: {', '.join(config.test_pattern)}")
        return 1

    logger.info(f"Found {len(files)} test file(s); target {config.base_url}")
    suite = await runner.run_files(files)

    if config.reporting.reports_folder:
        path = JSONReporter().generate_suite(suite, config.reporting.reports_folder)
        logger.info(f"JSON report: {path}")

    print("\n" + "=" * 60)
    print("TEST SUMMARY")
    print("=" * 60)
    print(f"Files:  {len(suite.files)}")
    print(f"Total:  {suite.total}")
    print(f"Passed: {suite.passed}")
    print(f"Failed: {suite.failed}")
    print(f"Tokens: {suite.usage.input_tokens} in / {suite.usage.output_tokens} out")
    print(f"Duration: {suite.duration_seconds:.1f}s")
    print("=" * 60)

    for file_result in suite.files:
        if file_result.error:
            print(f"  ! {file_result.path}: {file_result.error[:120]}")
        for outcome in file_result.outcomes:
            if not outcome.passed:
                print(f"  - {outcome.name}: {outcome.verdict.reason[:120]}")

    return 0 if suite.all_passed else 1


def _build_arg_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="cachepilot",
        description="Run natural-language browser tests with an AI agent and a replay cache.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                              # Run all tests
  %(prog)s tests/login.e2e.py           # Run one file
  %(prog)s --headless --target http://localhost:8080
  %(prog)s --no-cache                   # Always ask the model
  %(prog)s --clear-cache --force-purge  # Remove every cached trace
        """,
    )
    parser.add_argument("paths", nargs="*", help="Test files or directories (default: config test_dir)")

    browser_group = parser.add_argument_group("Browser Options")
    browser_group.add_argument(
        "--browser",
        choices=["chromium", "firefox", "webkit"],
        help="Browser engine to use (default: chromium)",
    )
    browser_group.add_argument(
        "--headless",
        action="store_true",
        help="Run tests in headless browser mode",
    )
    browser_group.add_argument(
        "--target",
        help="Base URL of the application under test (default: http://localhost:3000)",
    )

    exec_group = parser.add_argument_group("Execution Options")
    exec_group.add_argument(
        "--config",
        help="Path to config file (default: cachepilot.yaml/.json if present)",
    )
    exec_group.add_argument(
        "--max-turns",
        type=int,
        metavar="N",
        help="Model turn budget per test",
    )
    exec_group.add_argument(
        "--debug-ai",
        action="store_true",
        help="Log model replies and tool calls",
    )

    cache_group = parser.add_argument_group("Cache Options")
    cache_group.add_argument(
        "--no-cache",
        action="store_true",
        help="Neither replay nor record cached traces",
    )
    cache_group.add_argument(
        "--clear-cache",
        action="store_true",
        help="Remove outdated cache entries and exit",
    )
    cache_group.add_argument(
        "--force-purge",
        action="store_true",
        help="With --clear-cache, remove every entry",
    )
    cache_group.add_argument(
        "--all-projects",
        action="store_true",
        help="With --clear-cache, act on every project namespace",
    )

    output_group = parser.add_argument_group("Output Options")
    output_group.add_argument(
        "--report-dir",
        help="Write a JSON report to this directory",
    )
    output_group.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output",
    )
    output_group.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-essential output",
    )

    return parser


def main() -> None:
    """Main entry point."""
    parser = _build_arg_parser()
    args = parser.parse_args()

    if args.quiet:
        log_level = logging.WARNING
    elif args.verbose or args.debug_ai:
        log_level = logging.DEBUG
    else:
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format="[%(levelname)s] %(message)s" if not args.verbose else "[%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logger = logging.getLogger("cachepilot")

    try:
        exit_code = asyncio.run(run_from_cli_args(args, logger))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        exit_code = 130
    except PilotError as exc:
        logger.error(f"Error: {exc}")
        exit_code = 1
    except Exception as exc:
        logger.exception(f"Unexpected error: {exc}")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
