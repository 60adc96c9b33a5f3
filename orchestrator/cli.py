"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the supervisor.

- Provides argparse-based CLI
- Loads configuration (YAML file + environment)
- Runs the supervisor, a single pass, or prints a report

============================================================
USAGE
============================================================
python app.py --config supervisor.yaml
python app.py --config supervisor.yaml --once
python app.py --config supervisor.yaml --report --report-format markdown
python app.py --show-jobs

============================================================
EXIT CODES
============================================================
0    success
1    a job failed during --once, or a fatal runtime error
2    invalid configuration
130  interrupted

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from core.exceptions import ConfigurationError
from monitoring.config import JOB_NAMES, SupervisorConfig
from monitoring.reporting import render_markdown
from orchestrator.core import Supervisor, setup_logging
from orchestrator.scheduler import SupervisorScheduler


logger = logging.getLogger(__name__)


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="supervisor",
        description="Self-healing health-monitoring and recovery supervisor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --config supervisor.yaml              # Run until SIGINT/SIGTERM
  %(prog)s --config supervisor.yaml --once       # One pass of every job
  %(prog)s --config supervisor.yaml --report     # Print a health report
  %(prog)s --show-jobs                           # Show job intervals
        """
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        metavar="PATH",
        help="YAML configuration file (default: built-in defaults + environment)",
    )

    # --------------------------------------------------------
    # Run Options
    # --------------------------------------------------------
    run_group = parser.add_argument_group("Run Options")

    run_group.add_argument(
        "--once",
        action="store_true",
        help="Run every job once and exit",
    )

    run_group.add_argument(
        "--report",
        action="store_true",
        help="Print a health report from stored data and exit",
    )

    run_group.add_argument(
        "--report-format",
        type=str,
        choices=["json", "markdown"],
        default="json",
        help="Format for --report (default: json)",
    )

    run_group.add_argument(
        "--show-jobs",
        action="store_true",
        help="Show configured jobs and intervals and exit",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default="text",
        help="Logging format (default: text)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 1.0.0",
    )

    return parser


# ============================================================
# SHOW JOBS
# ============================================================

def show_jobs(config: SupervisorConfig) -> None:
    """Print jobs, intervals and monitored components."""
    print("\nSupervisor jobs")
    print("=" * 60)
    intervals = config.intervals.to_dict()
    for i, name in enumerate(JOB_NAMES, 1):
        print(f"  {i}. {name:20s} every {intervals[name]:g}s")

    print(f"\nMonitored components ({len(config.components)})")
    print("=" * 60)
    for component in config.components:
        endpoint = component.health_check.url if component.health_check else "-"
        restart = "restartable" if component.can_restart else "no recovery command"
        print(f"  {component.name:20s} {component.kind.value:18s} {endpoint} ({restart})")
    print()


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def run_report(config: SupervisorConfig, fmt: str) -> int:
    scheduler = SupervisorScheduler.from_config(config)
    try:
        await scheduler.initialize()
        report = await scheduler.build_report()
    finally:
        await scheduler.close()

    if fmt == "markdown":
        print(render_markdown(report))
    else:
        print(json.dumps(report.to_dict(), indent=2))
    return 0


async def run_once(config: SupervisorConfig) -> int:
    scheduler = SupervisorScheduler.from_config(config)
    try:
        results = await scheduler.run_once()
    finally:
        await scheduler.stop()

    failed = [name for name, ok in results.items() if not ok]
    if failed:
        logger.error(f"Jobs failed: {', '.join(failed)}")
        return 1
    logger.info("Single pass complete")
    return 0


async def async_main(args: argparse.Namespace, config: SupervisorConfig) -> int:
    """
    Async main entry point.

    Returns:
        Exit code
    """
    if args.report:
        return await run_report(config, args.report_format)
    if args.once:
        return await run_once(config)

    supervisor = Supervisor(config)
    await supervisor.run_forever()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level, args.log_format)

    try:
        config = SupervisorConfig.load(Path(args.config) if args.config else None)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if args.show_jobs:
        show_jobs(config)
        return 0

    try:
        return asyncio.run(async_main(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
