"""Scheduled retention cleanup."""

import argparse
from dataclasses import replace
import logging
import sys

from gatekeeper.config import settings
from gatekeeper.database import init_db
from gatekeeper.services.cleanup import cleanup_service

LOGGER = logging.getLogger("gatekeeper.cleanup")


def build_parser() -> argparse.ArgumentParser:
    defaults = settings.cleanup
    parser = argparse.ArgumentParser(description="Delete expired and stale auth records.")
    parser.add_argument(
        "--otp-retention-days", type=int, default=defaults.otp_retention_days,
        help="Delete OTP records created before this many days ago.",
    )
    parser.add_argument(
        "--blacklist-retention-days", type=int, default=defaults.blacklist_retention_days,
        help="Delete blacklist entries created before this many days ago.",
    )
    parser.add_argument(
        "--user-retention-days", type=int, default=defaults.user_retention_days,
        help="Age after which never-verified, unused users may be deleted.",
    )
    parser.add_argument(
        "--batch-size", type=int, default=defaults.batch_size,
        help="Rows deleted per statement.",
    )
    parser.add_argument(
        "--cleanup-users", action="store_true", default=defaults.cleanup_users,
        help="Also delete stale never-verified users.",
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Report what would be deleted without deleting it.",
    )
    return parser


def main(argv=None) -> int:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = build_parser().parse_args(argv)
    if args.batch_size < 1:
        LOGGER.error("--batch-size must be at least 1")
        return 1

    config = replace(
        settings.cleanup,
        otp_retention_days=args.otp_retention_days,
        blacklist_retention_days=args.blacklist_retention_days,
        user_retention_days=args.user_retention_days,
        batch_size=args.batch_size,
        cleanup_users=args.cleanup_users,
    )
    init_db()
    if args.dry_run:
        result = cleanup_service.stats(config)
    else:
        result = cleanup_service.run(config)

    for name, count in result.summary.items():
        LOGGER.info("%s: %s", name, count)
    for error in result.errors:
        LOGGER.error(error)
    LOGGER.info(
        "%s %s records",
        "Would remove" if args.dry_run else "Removed",
        result.total_cleaned,
    )
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
