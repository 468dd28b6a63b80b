"""
Subscription Database Model

SQLModel table linking a company to a plan and to a gateway subscription.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Column, DateTime
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlmodel import Field, SQLModel

from app.infrastructure.db.models.base import utcnow


class SubscriptionModel(SQLModel, table=True):
    """
    Subscription table.

    ``efi_subscription_id`` is unique so rows can be upserted by the
    gateway id. A company may briefly hold more than one non-canceled row
    while a checkout or plan change is in flight.
    """

    __tablename__ = "subscriptions"

    id: UUID = Field(default_factory=uuid4, sa_column=Column(PGUUID(as_uuid=True), primary_key=True))
    company_id: UUID = Field(sa_column=Column(PGUUID(as_uuid=True), index=True, nullable=False))
    plan_id: Optional[UUID] = Field(default=None, sa_column=Column(PGUUID(as_uuid=True), nullable=True))

    status: str = Field(default="waiting", index=True)

    # Efí IDs
    efi_subscription_id: Optional[int] = Field(
        default=None,
        sa_column=Column(BigInteger, unique=True, index=True, nullable=True),
    )
    last_charge_id: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), nullable=False)
    started_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    canceled_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), nullable=False)
