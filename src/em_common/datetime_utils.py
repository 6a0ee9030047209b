"""UTC helpers. Every timestamp the escrow engine stores or compares is tz-aware UTC."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to a naive datetime; convert an aware one."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def minutes_until(expires_at: datetime, now: datetime) -> int:
    """Whole minutes left before ``expires_at`` (0 once passed)."""
    seconds = (ensure_utc(expires_at) - ensure_utc(now)).total_seconds()
    return max(0, int(seconds // 60))
