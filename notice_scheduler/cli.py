"""
Command-line interface for the notice scheduler.

Provides commands for:
- Running the notice on its cron schedule
- Showing the resolved configuration
- Previewing upcoming fire times
- Firing the notice once

Configuration is resolved from (lowest to highest priority):
1. JSON config file (--config or NOTICE_SCHEDULER_CONFIG)
2. Environment variables (XYC_CONFIG_NAME, XYC_CONFIG_MESSAGE, XYC_CONFIG_CRON)
3. --set KEY=VALUE overrides
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from dotenv import load_dotenv

from notice_scheduler.config import (
    DEFAULT_PREFIX,
    environ_source,
    file_source,
    load,
    merge_sources,
    parse_cron,
)
from notice_scheduler.errors import ConfigurationError, NoticeSchedulerError
from notice_scheduler.jobs import NoticeTask
from notice_scheduler.service import bootstrap

logger = logging.getLogger(__name__)

ENV_CONFIG_PATH = "NOTICE_SCHEDULER_CONFIG"


def setup_logging(log_file: str = None, verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_formatter = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # File handler
    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)


def parse_overrides(items: Optional[List[str]]) -> Dict[str, str]:
    """
    Parse ``KEY=VALUE`` overrides.

    Keys without a dot are taken to live under ``xyc.config``.
    """
    overrides = {}
    for item in items or []:
        key, sep, value = item.partition('=')
        if not sep or not key.strip():
            raise ConfigurationError(f"Invalid override '{item}', expected KEY=VALUE")
        key = key.strip()
        if '.' not in key:
            key = f"{DEFAULT_PREFIX}.{key}"
        overrides[key] = value
    return overrides


def build_source(args: argparse.Namespace) -> Dict[str, str]:
    """Merge config file, environment and command-line overrides."""
    config_path = args.config or os.environ.get(ENV_CONFIG_PATH)
    file_values = file_source(config_path) if config_path else {}

    return merge_sources(
        file_values,
        environ_source(),
        parse_overrides(args.overrides)
    )


def cmd_start(args) -> int:
    """Run the notice on its schedule until interrupted."""
    task, service = bootstrap(build_source(args), foreground=True)
    logger.info(f"Starting notice '{task.config.name}' with cron '{task.config.cron}'")

    try:
        service.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
        service.stop(wait=False)

    logger.info(f"Notice ran {task.count} time(s)")
    return 0


def cmd_show_config(args) -> int:
    """Show the resolved configuration."""
    config = load(build_source(args))
    schedule = parse_cron(config.cron)

    print(f"Name:    {config.name}")
    print(f"Message: {config.message}")
    print(f"Cron:    {config.cron}")
    print(f"Trigger: {schedule.trigger}")
    return 0


def cmd_next_runs(args) -> int:
    """Print upcoming fire times."""
    config = load(build_source(args))
    schedule = parse_cron(config.cron)

    fire_times = schedule.next_fire_times(args.count)
    if not fire_times:
        print("Cron expression never fires")
        return 0

    print(f"Next {len(fire_times)} run(s) for '{config.cron}':")
    for fire_time in fire_times:
        print(f"  {fire_time.isoformat()}")
    return 0


def cmd_run_once(args) -> int:
    """Fire the notice once, immediately."""
    config = load(build_source(args))
    NoticeTask(config).on_trigger()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='notice-scheduler',
        description="Notice Scheduler - print a notice on a cron schedule",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        '-c', '--config',
        type=str,
        help='Path to JSON configuration file'
    )
    parser.add_argument(
        '--set',
        dest='overrides',
        action='append',
        metavar='KEY=VALUE',
        help='Override a configuration value (e.g. --set cron="0/5 * * * * *")'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )
    parser.add_argument(
        '--log-file',
        type=str,
        help='Log file path'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    start_parser = subparsers.add_parser('start', help='Run the notice on its schedule')
    start_parser.set_defaults(func=cmd_start)

    show_config_parser = subparsers.add_parser('show-config', help='Show configuration')
    show_config_parser.set_defaults(func=cmd_show_config)

    next_runs_parser = subparsers.add_parser('next-runs', help='Show upcoming run times')
    next_runs_parser.add_argument(
        '--count', '-n',
        type=int,
        default=5,
        help='Number of run times to show (default: 5)'
    )
    next_runs_parser.set_defaults(func=cmd_next_runs)

    run_once_parser = subparsers.add_parser('run-once', help='Print the notice once')
    run_once_parser.set_defaults(func=cmd_run_once)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point."""
    load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(log_file=args.log_file, verbose=args.verbose)

    try:
        return args.func(args)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1
    except NoticeSchedulerError as e:
        logger.error(f"{e}", exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())
