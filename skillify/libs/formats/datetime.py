from datetime import datetime, timezone


def now() -> datetime:
    """Current UTC time without tzinfo.
    Every timestamp column in the project is stored naive in UTC.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def now_tzinfo() -> datetime:
    return datetime.now(timezone.utc)

