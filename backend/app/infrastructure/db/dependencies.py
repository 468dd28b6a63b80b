"""
Dependency Injection Providers for the Billing Service

FastAPI dependency aliases for database sessions and repositories.
Routes depend on these aliases so tests can swap implementations through
``app.dependency_overrides``.
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.infrastructure.db.database import get_session
from app.infrastructure.db.repositories import (
    CompanyRepository,
    PlanRepository,
    SubscriptionRepository,
    TransactionRepository,
    UserAccessRepository,
    get_company_repository,
    get_plan_repository,
    get_subscription_repository,
    get_transaction_repository,
    get_user_access_repository,
)


# Type alias for session dependency
SessionDep = Annotated[AsyncSession, Depends(get_session)]

# Type aliases for repository dependencies
CompanyRepoDep = Annotated[CompanyRepository, Depends(get_company_repository)]
UserAccessRepoDep = Annotated[UserAccessRepository, Depends(get_user_access_repository)]
PlanRepoDep = Annotated[PlanRepository, Depends(get_plan_repository)]
SubscriptionRepoDep = Annotated[SubscriptionRepository, Depends(get_subscription_repository)]
TransactionRepoDep = Annotated[TransactionRepository, Depends(get_transaction_repository)]
