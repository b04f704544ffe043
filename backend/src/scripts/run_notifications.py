#!/usr/bin/env python3
"""
Run one scheduled notification dispatch batch from the command line.

Performs the same work as GET /api/cron/notifications for schedulers that
invoke a command rather than an HTTP endpoint (system cron, Kubernetes
CronJob). Safe to run repeatedly: users already notified today are skipped.

Usage:
    python -m backend.src.scripts.run_notifications [--hour H --minute M] [--force]

Options:
    --hour      Hour to match notification times on (default: now, or CRON_MATCH_TIME)
    --minute    Minute to match notification times on (default: now, or CRON_MATCH_TIME)
    --force     Process every enabled user regardless of notification time
    --help      Show this help message

Exit codes:
    0   Run completed (even if nothing was sent)
    1   Run failed unexpectedly
    2   Configuration error (e.g. VAPID keys missing); nothing was processed
"""

import argparse
import signal
import sys
from datetime import datetime
from typing import Optional, Tuple


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIGURATION_ERROR = 2


def signal_handler(signum, frame):
    """Handle CTRL+C gracefully."""
    print("\n\nDispatch interrupted by user.")
    sys.exit(130)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Send today's lunar event notifications to due users.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                        # match on the current time
  %(prog)s --hour 8 --minute 0    # match users who chose 08:00
  %(prog)s --force                # ignore notification times

Notes:
  - Users are notified at most once per calendar day
  - --hour and --minute must be given together
        """
    )
    parser.add_argument(
        "--hour",
        type=int,
        default=None,
        help="Hour to match (0-23)",
    )
    parser.add_argument(
        "--minute",
        type=int,
        default=None,
        help="Minute to match (0-59)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Process every enabled user regardless of notification time",
    )
    args = parser.parse_args(argv)

    if (args.hour is None) != (args.minute is None):
        parser.error("--hour and --minute must be given together")
    return args


def resolve_match_time(
    hour: Optional[int],
    minute: Optional[int],
    pinned: Optional[Tuple[int, int]],
    now: datetime,
) -> Tuple[int, int]:
    """
    Pick the (hour, minute) to match on.

    Explicit arguments win, then CRON_MATCH_TIME, then the wall clock.
    """
    if hour is not None and minute is not None:
        return hour, minute
    if pinned:
        return pinned
    return now.hour, now.minute


def run_notifications(
    hour: Optional[int] = None,
    minute: Optional[int] = None,
    force: bool = False,
) -> int:
    """
    Run one dispatch batch and print its summary.

    Args:
        hour: Hour to match, or None for the default
        minute: Minute to match, or None for the default
        force: Bypass the notification time filter

    Returns:
        Process exit code
    """
    # Import here to avoid loading database during argument parsing
    from backend.src.config.settings import get_settings
    from backend.src.db.database import SessionLocal, dispose_engine
    from backend.src.services.dispatch_service import NotificationDispatchService
    from backend.src.services.event_source import StoredEventSource
    from backend.src.services.exceptions import ConfigurationError, ValidationError
    from backend.src.utils.logging_config import init_logging

    init_logging()
    settings = get_settings()
    now = datetime.now()
    match_hour, match_minute = resolve_match_time(
        hour, minute, settings.pinned_match_time, now
    )

    service = NotificationDispatchService.from_settings(
        settings,
        session_factory=SessionLocal,
        event_source=StoredEventSource(SessionLocal),
    )

    try:
        summary = service.run(match_hour, match_minute, now=now, force=force)
    except ConfigurationError as e:
        print(f"\n[CONFIG ERROR] {e.message}")
        if e.setting:
            print(f"  Setting: {e.setting}")
        return EXIT_CONFIGURATION_ERROR
    except ValidationError as e:
        print(f"\n[ERROR] {e.message}")
        return EXIT_FAILURE
    finally:
        dispose_engine()

    print(f"\n[DONE] Match time {summary.match_time}{' (forced)' if summary.force else ''}")
    print(f"  Processed: {summary.processed}")
    print(f"  Sent: {summary.notifications_sent}")
    print(f"  Errors: {summary.errors}")
    print(f"  Skipped: {summary.skipped}")
    if summary.deadline_reached:
        print("  Deadline reached: remaining users deferred to the next run")
    return EXIT_OK


def main(argv=None):
    """Main entry point."""
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    args = parse_args(argv)

    print("=" * 50)
    print("Am Lich: Notification Dispatch")
    print("=" * 50)

    sys.exit(run_notifications(hour=args.hour, minute=args.minute, force=args.force))


if __name__ == "__main__":
    main()
