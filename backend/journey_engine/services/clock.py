from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC now. Mongo returns naive UTC datetimes, so stored and computed times must match."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
