"""
Base Model for SQLModel ORM

Provides the shared timestamp columns for billing tables.
"""

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Timezone-aware current time used for every billing timestamp."""
    return datetime.now(timezone.utc)


def as_uuid(value: Any) -> Optional[UUID]:
    """Coerce an id to UUID; malformed ids become None (they match no row)."""
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class TimestampMixin(SQLModel):
    """Mixin providing ``created_at`` / ``updated_at`` columns."""

    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
        nullable=False,
        description="Record creation timestamp (UTC)",
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
        nullable=False,
        sa_column_kwargs={"onupdate": utcnow},
        description="Last update timestamp (UTC)",
    )
