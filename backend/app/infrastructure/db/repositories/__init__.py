"""
Repository Layer for the Billing Service

Exports all repository classes and their singleton providers.
"""

from app.infrastructure.db.repositories.company_repository import (
    CompanyRepository,
    UserAccessRepository,
    get_company_repository,
    get_user_access_repository,
)
from app.infrastructure.db.repositories.plan_repository import (
    PlanRepository,
    get_plan_repository,
)
from app.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
    get_subscription_repository,
)
from app.infrastructure.db.repositories.transaction_repository import (
    TransactionRepository,
    get_transaction_repository,
)
from app.infrastructure.db.repositories.payment_event_log_repository import (
    PaymentEventLogRepository,
    get_payment_event_log_repository,
)
from app.infrastructure.db.repositories.webhook_event_repository import (
    WebhookEventRepository,
    get_webhook_event_repository,
)


__all__ = [
    # Tenants
    "CompanyRepository",
    "UserAccessRepository",
    "get_company_repository",
    "get_user_access_repository",
    # Billing
    "PlanRepository",
    "get_plan_repository",
    "SubscriptionRepository",
    "get_subscription_repository",
    "TransactionRepository",
    "get_transaction_repository",
    # Audit
    "PaymentEventLogRepository",
    "get_payment_event_log_repository",
    "WebhookEventRepository",
    "get_webhook_event_repository",
]
