"""Retention cleanup for OTP, blacklist, refresh-token and user rows.

Runs on an external schedule. Each category is processed on its own, so a
failure in one is recorded and the others still run.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from typing import Callable

from sqlalchemy import exists

from gatekeeper.config import CleanupConfig
from gatekeeper.errors import StoreUnavailable
from gatekeeper.models.blacklist import BlacklistEntry
from gatekeeper.models.db_operation import count_records, delete_in_batches
from gatekeeper.models.otp import OtpEntry
from gatekeeper.models.refresh_token import RefreshTokenEntry
from gatekeeper.models.user import UserEntry, UserProfileEntry
from gatekeeper.services.timeutil import utcnow

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CleanupCategory:
    name: str
    table: str
    conditions: Callable[[CleanupConfig, datetime], tuple]
    enabled: Callable[[CleanupConfig], bool] = lambda config: True


@dataclass
class CleanupResult:
    summary: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def total_cleaned(self) -> int:
        return sum(self.summary.values())

    @property
    def success(self) -> bool:
        return not self.errors


def _expired_otps(config: CleanupConfig, now: datetime) -> tuple:
    return (OtpEntry.is_used.is_(False), OtpEntry.expires_at < now)


def _old_otps(config: CleanupConfig, now: datetime) -> tuple:
    return (OtpEntry.created_at < now - timedelta(days=config.otp_retention_days),)


def _expired_blacklist(config: CleanupConfig, now: datetime) -> tuple:
    return (BlacklistEntry.expires_at < now,)


def _old_blacklist(config: CleanupConfig, now: datetime) -> tuple:
    cutoff = now - timedelta(days=config.blacklist_retention_days)
    return (BlacklistEntry.blacklisted_at < cutoff,)


def _expired_refresh_tokens(config: CleanupConfig, now: datetime) -> tuple:
    cutoff = now - timedelta(days=config.refresh_token_grace_days)
    return (RefreshTokenEntry.expires_at < cutoff,)


def _old_users(config: CleanupConfig, now: datetime) -> tuple:
    cutoff = now - timedelta(days=config.user_retention_days)
    return (
        UserEntry.is_verified.is_(False),
        UserEntry.created_at < cutoff,
        ~exists().where(OtpEntry.user_id == UserEntry.id),
        ~exists().where(RefreshTokenEntry.user_id == UserEntry.id),
        ~exists().where(UserProfileEntry.user_id == UserEntry.id),
    )


CATEGORIES = (
    CleanupCategory("expired_otps", "otp", _expired_otps),
    CleanupCategory("old_otps", "otp", _old_otps),
    CleanupCategory("expired_blacklist", "blacklist", _expired_blacklist),
    CleanupCategory("old_blacklist", "blacklist", _old_blacklist),
    CleanupCategory("expired_refresh_tokens", "refresh_token", _expired_refresh_tokens),
    # Destructive: only with an explicit opt-in.
    CleanupCategory(
        "old_users", "user", _old_users, enabled=lambda config: config.cleanup_users
    ),
)


class CleanupService:
    def __init__(self, categories=CATEGORIES) -> None:
        self._categories = categories

    def run(self, config: CleanupConfig) -> CleanupResult:
        result = CleanupResult()
        for category in self._categories:
            if not category.enabled(config):
                continue
            try:
                deleted = delete_in_batches(
                    category.table,
                    *category.conditions(config, utcnow()),
                    batch_size=config.batch_size,
                )
            except (StoreUnavailable, ValueError) as exc:
                LOGGER.error("Cleanup of %s failed: %s", category.name, exc)
                result.summary[category.name] = 0
                result.errors.append(f"{category.name}: {exc}")
                continue
            result.summary[category.name] = deleted
            LOGGER.info("Cleanup removed %s rows from %s", deleted, category.name)
        LOGGER.info(
            "Cleanup finished: %s rows removed, %s errors",
            result.total_cleaned,
            len(result.errors),
        )
        return result

    def stats(self, config: CleanupConfig) -> CleanupResult:
        """Count what ``run`` would delete, without deleting anything."""
        result = CleanupResult()
        now = utcnow()
        for category in self._categories:
            if not category.enabled(config):
                continue
            try:
                result.summary[category.name] = count_records(
                    category.table, *category.conditions(config, now)
                )
            except StoreUnavailable as exc:
                result.summary[category.name] = 0
                result.errors.append(f"{category.name}: {exc}")
        return result


cleanup_service = CleanupService()