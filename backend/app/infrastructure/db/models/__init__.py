"""
SQLModel ORM Models for the Billing Service

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from app.infrastructure.db.models.base import TimestampMixin, as_uuid, utcnow
from app.infrastructure.db.models.company import (
    CompanyModel,
    CompanyUserModel,
    UserModel,
)
from app.infrastructure.db.models.plan import PlanModel
from app.infrastructure.db.models.subscription import SubscriptionModel
from app.infrastructure.db.models.transaction import TransactionModel
from app.infrastructure.db.models.payment_event import (
    PaymentEventLogModel,
    ProcessedWebhookEventModel,
)


__all__ = [
    # Base
    "TimestampMixin",
    "as_uuid",
    "utcnow",
    # Tenants
    "CompanyModel",
    "CompanyUserModel",
    "UserModel",
    # Billing
    "PlanModel",
    "SubscriptionModel",
    "TransactionModel",
    # Audit
    "PaymentEventLogModel",
    "ProcessedWebhookEventModel",
]
