"""
Company Repository

Tenant reads and entitlement writes, plus membership checks used by the
authorization dependencies.
"""

import logging
from typing import Optional

from sqlmodel import select
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from app.domain.billing import Company
from app.infrastructure.db.database import get_session_context
from app.infrastructure.db.models import (
    CompanyModel,
    CompanyUserModel,
    UserModel,
    as_uuid,
)
from app.infrastructure.exceptions import DatabaseError


logger = logging.getLogger(__name__)


class CompanyRepository:
    """Repository for tenant rows."""

    async def get(self, company_id: str) -> Optional[Company]:
        company_uuid = as_uuid(company_id)
        if company_uuid is None:
            return None
        try:
            async with get_session_context() as session:
                model = await session.get(CompanyModel, company_uuid)
                return self._to_domain(model) if model else None
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error loading company: {e}", "select", "companies", e)

    async def list_all(self) -> list[Company]:
        """All companies ordered by name."""
        try:
            async with get_session_context() as session:
                result = await session.execute(select(CompanyModel).order_by(CompanyModel.name))
                return [self._to_domain(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error listing companies: {e}", "select", "companies", e)

    async def set_plan(
        self,
        company_id: str,
        plan_slug: str,
        max_employees: Optional[int],
        current_subscription_id: Optional[str] = None,
    ) -> bool:
        """
        Overwrite a tenant's entitlement and current-subscription pointer.

        Passing ``current_subscription_id=None`` clears the pointer
        (used for the free-plan fallback).
        """
        try:
            async with get_session_context() as session:
                stmt = (
                    update(CompanyModel)
                    .where(CompanyModel.id == as_uuid(company_id))
                    .values(
                        plan=plan_slug,
                        maxemployees=max_employees,
                        current_subscription_id=as_uuid(current_subscription_id),
                    )
                )
                result = await session.execute(stmt)
                logger.info(f"Company {company_id} set to plan {plan_slug} ({max_employees} seats)")
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error updating company plan: {e}", "update", "companies", e)

    def _to_domain(self, model: CompanyModel) -> Company:
        return Company(
            id=str(model.id),
            name=model.name or "",
            plan=model.plan,
            maxemployees=model.maxemployees,
            current_subscription_id=(
                str(model.current_subscription_id) if model.current_subscription_id else None
            ),
            plan_features=model.plan_features,
        )


class UserAccessRepository:
    """Platform-admin flag and tenant membership lookups."""

    async def is_admin(self, user_id: str) -> bool:
        user_uuid = as_uuid(user_id)
        if user_uuid is None:
            return False
        try:
            async with get_session_context() as session:
                result = await session.execute(
                    select(UserModel.is_admin).where(UserModel.id == user_uuid)
                )
                return bool(result.scalar_one_or_none())
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error loading user: {e}", "select", "users", e)

    async def belongs_to_company(self, user_id: str, company_id: str) -> bool:
        user_uuid, company_uuid = as_uuid(user_id), as_uuid(company_id)
        if user_uuid is None or company_uuid is None:
            return False
        try:
            async with get_session_context() as session:
                result = await session.execute(
                    select(CompanyUserModel.id)
                    .where(CompanyUserModel.user_id == user_uuid)
                    .where(CompanyUserModel.company_id == company_uuid)
                    .limit(1)
                )
                return result.first() is not None
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error loading membership: {e}", "select", "companies_users", e)


_company_repo_instance: Optional[CompanyRepository] = None
_user_access_repo_instance: Optional[UserAccessRepository] = None


def get_company_repository() -> CompanyRepository:
    """Get or create company repository singleton."""
    global _company_repo_instance

    if _company_repo_instance is None:
        _company_repo_instance = CompanyRepository()

    return _company_repo_instance


def get_user_access_repository() -> UserAccessRepository:
    """Get or create user access repository singleton."""
    global _user_access_repo_instance

    if _user_access_repo_instance is None:
        _user_access_repo_instance = UserAccessRepository()

    return _user_access_repo_instance
