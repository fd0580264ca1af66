"""Unified launcher for snapkeeper.

Starts the backup scheduler and the web API in a single process, or runs
a single backup action and exits.

Usage:
    python run.py
    python run.py --config config/config.json --port 5000
    python run.py --pre-update
    python run.py --backup-now
    python run.py --list
    python run.py --restore /path/to/data_2025-02-01_14-30-00.db
    python run.py --export /tmp/copy.db
"""

import argparse
import logging
import os
import signal
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent
DEFAULT_CONFIG = str(PROJECT_ROOT / "config" / "config.json")

logger = logging.getLogger("snapkeeper")


def run_action(args, backup_manager) -> int:
    """Run one of the one-shot actions. Returns the process exit code."""
    from snapkeeper.backup.backup_manager import BackupReason

    if args.list:
        for snapshot in backup_manager.list_backups():
            print(f"{snapshot.timestamp}  {snapshot.size:>12}  {snapshot.filename}")
        return 0

    if args.backup_now or args.pre_update:
        reason = BackupReason.PRE_UPDATE if args.pre_update else BackupReason.MANUAL
        result = backup_manager.create_backup(reason)
    elif args.restore:
        result = backup_manager.recovery.restore_backup(args.restore)
        if not result.success and result.safety_backup_path:
            logger.error("Previous database kept at %s", result.safety_backup_path)
    else:
        result = backup_manager.export_backup_to_path(args.export)

    if result.success:
        logger.info("Done: %s", result.path)
        return 0
    logger.error("Failed: %s", result.error)
    return 1


def main():
    parser = argparse.ArgumentParser(
        description="snapkeeper - database snapshot and restore",
    )
    parser.add_argument(
        "-c", "--config",
        default=DEFAULT_CONFIG,
        help="Path to config.json (default: config/config.json)",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="API host (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        default=5000,
        type=int,
        help="API port (default: 5000)",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    actions = parser.add_mutually_exclusive_group()
    actions.add_argument(
        "--backup-now",
        action="store_true",
        help="Create a manual backup and exit",
    )
    actions.add_argument(
        "--pre-update",
        action="store_true",
        help="Create a pre-update backup and exit",
    )
    actions.add_argument(
        "--list",
        action="store_true",
        help="List snapshots, newest first, and exit",
    )
    actions.add_argument(
        "--restore",
        metavar="PATH",
        help="Restore the live database from PATH and exit",
    )
    actions.add_argument(
        "--export",
        metavar="PATH",
        help="Copy the live database to PATH and exit",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    from snapkeeper.dashboard.app import build_services, create_app, load_config

    settings, backup_manager, scheduler = build_services(load_config(args.config))

    if args.backup_now or args.pre_update or args.list or args.restore or args.export:
        try:
            sys.exit(run_action(args, backup_manager))
        finally:
            settings.close()

    def handle_signal(signum, frame):
        logger.info("Received signal %s, shutting down...", signum)
        scheduler.stop()
        raise KeyboardInterrupt

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    logger.info("Starting snapkeeper...")
    logger.info("  Backups: %s", backup_manager.get_backup_folder())
    logger.info("  API: http://%s:%d", args.host, args.port)

    scheduler.start()
    app = create_app(settings=settings, backup_manager=backup_manager,
                     scheduler=scheduler)

    try:
        app.run(host=args.host, port=args.port, debug=False)
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()
        settings.close()
        logger.info("System stopped.")


if __name__ == "__main__":
    main()
