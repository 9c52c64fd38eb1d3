from datetime import datetime, timedelta, timezone

EPOCH = datetime(1970, 1, 1)
ONE_MS = timedelta(milliseconds=1)


def utcnow() -> datetime:
    # naive UTC at millisecond precision, which is what MongoDB hands back
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def to_millis(value: datetime) -> int:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return (value - EPOCH) // ONE_MS


def from_millis(ms: int) -> datetime:
    try:
        return EPOCH + timedelta(milliseconds=ms)
    except OverflowError:
        raise ValueError(f"{ms} ms is outside the supported datetime range")
