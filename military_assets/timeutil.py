from datetime import datetime, timezone
from typing import Optional


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalise a datetime to aware UTC.
    Naive values are taken to be UTC already (that is how SQLite hands them back).
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
