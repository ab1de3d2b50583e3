from datetime import datetime, timedelta, timezone

UTC = timezone.utc

# Smallest step the datetime type can represent.
TICK = timedelta(microseconds=1)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)
