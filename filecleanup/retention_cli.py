"""
Command-line interface for the file cleanup daemon.

Commands:
  clean        Watch the configured folders and enforce retention and size limits
  run-once     Index the folders, run both passes once and exit
  status       Index the folders and print their tracked sizes
  init-config  Write the default configuration file
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from .retention_config import RetentionConfigManager
from .retention_logging import setup_logging
from .retention_manager import RetentionManager
from .retention_models import FileCleanupError

logger = logging.getLogger(__name__)


def _install_signal_handlers(stop_event: asyncio.Event):
    loop = asyncio.get_running_loop()

    def _request_stop(signum):
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        stop_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _request_stop, signum)
        except (NotImplementedError, RuntimeError):
            # Windows event loops only deliver SIGINT as KeyboardInterrupt
            pass


async def run_daemon(manager: RetentionManager) -> int:
    """Run the cleanup daemon until SIGINT or SIGTERM."""
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    if manager.config.metrics_port:
        manager.metrics.serve(manager.config.metrics_port)

    await manager.run_forever(stop_event)
    return 0


async def run_once(manager: RetentionManager, target: Optional[str]) -> int:
    """Index every target and run both passes one time."""
    await asyncio.to_thread(manager.populate)
    operations = await manager.run_cleanup(target)

    print(f"\nCleanup completed: {len(operations)} operations")
    for operation in operations:
        status_icon = "✓" if operation.status == 'success' else "✗"
        print(f"{status_icon} {operation.policy.value} {operation.target}: "
              f"{operation.files_deleted} files deleted, "
              f"{operation.storage_freed_bytes / 1024 / 1024:.2f} MB freed, "
              f"{operation.remaining_size_mb} MB remaining")
        if operation.error_message:
            print(f"  Error: {operation.error_message}")

    return 0 if all(op.status == 'success' for op in operations) else 1


async def show_status(manager: RetentionManager) -> int:
    """Print the tracked size of every target against its limits."""
    await asyncio.to_thread(manager.populate)
    status = manager.get_retention_status()

    print("File Cleanup Status")
    print("=" * 40)
    for target in status['targets']:
        print(f"\n{target['path']}")
        print(f"  Tracked files: {target['tracked_files']:,}")
        print(f"  Tracked size: {target['tracked_size_mb']} MB")
        print(f"  Retention: {target['retention_days']} days")
        limit = f"{target['size_limit']} {target['size_unit']}"
        if target['size_unit'] == '%':
            limit += " of available space" if target['percent_relative_to_available'] else " of drive size"
        print(f"  Size limit: {limit}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='filecleanup',
        description="Clean files based on their relative size and modification date",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the daemon with the default configuration (~/.fileCleanup/fileCleanup.yaml)
  filecleanup clean

  # Use another configuration file
  filecleanup --config /etc/filecleanup.yaml clean

  # Apply both policies once to a single folder
  filecleanup run-once --target /var/log/app
        """
    )

    parser.add_argument('--config', '-f', default=None,
                        help='Path to configuration file (default: $FILECLEANUP_CONFIG or ~/.fileCleanup/fileCleanup.yaml)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')
    subparsers.add_parser('clean', help='Watch folders and enforce retention and size limits')
    once_parser = subparsers.add_parser('run-once', help='Run both cleanup passes once and exit')
    once_parser.add_argument('--target', help='Only clean this configured folder')
    subparsers.add_parser('status', help='Show tracked folder sizes')
    subparsers.add_parser('init-config', help='Write the default configuration file')
    return parser


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    # Console only until the config names the log file
    setup_logging(verbose=args.verbose)

    try:
        config_manager = RetentionConfigManager(args.config)
        if args.command == 'init-config':
            print(f"Configuration file: {config_manager.config_path}")
            return 0

        config = config_manager.config
        setup_logging(config.log_level, config.log_file_path, config.detailed_log, args.verbose)
        manager = RetentionManager(config)

        if args.command == 'clean':
            return asyncio.run(run_daemon(manager))
        elif args.command == 'run-once':
            return asyncio.run(run_once(manager, args.target))
        elif args.command == 'status':
            return asyncio.run(show_status(manager))
        else:
            print(f"Unknown command: {args.command}")
            return 1

    except FileCleanupError as e:
        logger.critical(f"{type(e).__name__}: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
