from datetime import datetime, timezone

from sqlalchemy.orm import Session


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def db_now(db: Session) -> datetime:
    """Current UTC time in the form the bound database stores it.

    SQLite drops tzinfo on round-trip, so comparisons against loaded values
    need a naive UTC value there.
    """
    bind = db.get_bind()
    if bind is not None and bind.dialect.name == "sqlite":
        return utc_now().replace(tzinfo=None)
    return utc_now()


def as_aware(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
