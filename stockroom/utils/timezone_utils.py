from __future__ import annotations

from datetime import date, datetime, timezone as dt_timezone

import pytz
from flask import current_app, has_app_context

DEFAULT_TIMEZONE = "UTC"


class TimezoneUtils:
    """Utilities for consistent timezone handling across the service."""

    @staticmethod
    def validate_timezone(tz_name: str | None) -> bool:
        """Return True when pytz recognises the timezone name."""
        if not tz_name:
            return False
        return tz_name in pytz.all_timezones_set

    @staticmethod
    def _get_timezone(tz_name: str):
        if not TimezoneUtils.validate_timezone(tz_name):
            raise ValueError(f"Invalid timezone: {tz_name}")
        return pytz.timezone(tz_name)

    @staticmethod
    def utc_now() -> datetime:
        """Return the current UTC timestamp (timezone aware)."""
        return datetime.now(dt_timezone.utc)

    @staticmethod
    def store_timezone_name() -> str:
        """Timezone the shop runs in; decides which calendar day is 'today'."""
        if has_app_context():
            configured = current_app.config.get("STORE_TIMEZONE")
            if TimezoneUtils.validate_timezone(configured):
                return configured
        return DEFAULT_TIMEZONE

    @staticmethod
    def store_today(now: datetime | None = None) -> date:
        """Return today's date in the store timezone."""
        moment = TimezoneUtils.ensure_timezone_aware(now) if now else TimezoneUtils.utc_now()
        target = TimezoneUtils._get_timezone(TimezoneUtils.store_timezone_name())
        return moment.astimezone(target).date()

    @staticmethod
    def ensure_timezone_aware(
        dt: datetime | None, assume_utc: bool = True
    ) -> datetime | None:
        """Guarantee that a datetime carries timezone information."""
        if dt is None:
            return None
        if dt.tzinfo is None:
            if not assume_utc:
                raise ValueError("Naive datetime provided without explicit timezone handling.")
            return dt.replace(tzinfo=dt_timezone.utc)
        return dt

    @staticmethod
    def to_utc(dt: datetime | None) -> datetime | None:
        """Normalize to UTC so stored timestamps compare by instant, not wall clock."""
        aware = TimezoneUtils.ensure_timezone_aware(dt)
        if aware is None:
            return None
        return aware.astimezone(dt_timezone.utc)

    @staticmethod
    def format_datetime_for_api(dt: datetime | None) -> str | None:
        """ISO-8601 UTC timestamp; naive values from SQLite are treated as UTC."""
        aware = TimezoneUtils.ensure_timezone_aware(dt)
        if aware is None:
            return None
        return aware.astimezone(dt_timezone.utc).isoformat().replace("+00:00", "Z")
