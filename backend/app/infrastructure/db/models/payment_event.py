"""
Payment Event Database Models

Append-only audit trail and the webhook de-duplication table.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB, UUID as PGUUID
from sqlmodel import Field, SQLModel

from app.infrastructure.db.models.base import utcnow


class PaymentEventLogModel(SQLModel, table=True):
    """Audit record of gateway traffic and reconciliation attempts."""

    __tablename__ = "payment_event_logs"

    id: UUID = Field(default_factory=uuid4, sa_column=Column(PGUUID(as_uuid=True), primary_key=True))
    provider: str = Field(default="efi")
    event_type: str = Field(index=True)
    body: Optional[Any] = Field(default=None, sa_column=Column(JSONB, nullable=True))
    headers: Optional[Any] = Field(default=None, sa_column=Column(JSONB, nullable=True))
    ip: str = Field(default="")
    received_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), nullable=False)


class ProcessedWebhookEventModel(SQLModel, table=True):
    """Keys of webhook events already applied."""

    __tablename__ = "processed_webhook_events"

    event_id: str = Field(sa_column=Column(String(255), primary_key=True))
    event_type: str = Field(sa_column=Column(String(100), nullable=False))
    processed_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
        nullable=False,
        index=True,
    )
