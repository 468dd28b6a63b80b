"""
Transaction Database Model

One row per gateway charge attempt.
"""

from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Column
from sqlalchemy.dialects.postgresql import JSONB, UUID as PGUUID
from sqlmodel import Field

from app.infrastructure.db.models.base import TimestampMixin


class TransactionModel(TimestampMixin, table=True):
    """Charge attempt keyed by the unique gateway ``efi_charge_id``."""

    __tablename__ = "transactions"

    id: UUID = Field(default_factory=uuid4, sa_column=Column(PGUUID(as_uuid=True), primary_key=True))
    company_id: Optional[UUID] = Field(default=None, sa_column=Column(PGUUID(as_uuid=True), index=True))
    subscription_id: Optional[UUID] = Field(default=None, sa_column=Column(PGUUID(as_uuid=True)))
    plan_id: Optional[UUID] = Field(default=None, sa_column=Column(PGUUID(as_uuid=True)))

    efi_subscription_id: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    efi_charge_id: Optional[int] = Field(
        default=None,
        sa_column=Column(BigInteger, unique=True, index=True, nullable=True),
    )

    method: str = Field(default="credit_card")
    status: str = Field(default="waiting")
    amount_cents: int = Field(default=0)
    currency: str = Field(default="BRL")
    response_json: Optional[Any] = Field(default=None, sa_column=Column(JSONB, nullable=True))
