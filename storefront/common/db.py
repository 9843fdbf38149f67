from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def iso_utc(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 text for a stored timestamp; naive values (SQLite) are UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()
