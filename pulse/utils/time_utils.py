from datetime import datetime, timezone


def utc_now() -> datetime:
    """Naive UTC timestamp truncated to the millisecond.

    MongoDB stores datetimes at millisecond precision and returns them naive,
    so values compare equal before and after a round trip.
    """
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def to_naive_utc(value: datetime) -> datetime:
    """Drop tzinfo after converting to UTC; naive values are assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
