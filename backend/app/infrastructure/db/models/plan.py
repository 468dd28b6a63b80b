"""
Plan Database Model

SQLModel table for the billing plan catalog.
"""

from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Column
from sqlalchemy.dialects.postgresql import JSONB, UUID as PGUUID
from sqlmodel import Field

from app.infrastructure.db.models.base import TimestampMixin


class PlanModel(TimestampMixin, table=True):
    """
    Plan catalog table.

    ``efi_plan_id`` is created lazily at the gateway on the first checkout
    and written once (see ``PlanRepository.set_efi_plan_id_if_absent``).
    """

    __tablename__ = "plans"

    id: UUID = Field(default_factory=uuid4, sa_column=Column(PGUUID(as_uuid=True), primary_key=True))
    slug: str = Field(unique=True, index=True)
    name: str
    description: Optional[str] = Field(default=None)

    price_cents: int = Field(default=0)
    currency: str = Field(default="BRL")
    interval_months: int = Field(default=1)
    trial_days: int = Field(default=0)
    max_employees: Optional[int] = Field(default=None)

    efi_plan_id: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))

    active: bool = Field(default=True)
    is_public: bool = Field(default=False)
    features_json: Optional[Any] = Field(default=None, sa_column=Column(JSONB, nullable=True))
