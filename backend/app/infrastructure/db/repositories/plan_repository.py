"""
Plan Repository

Data access layer for the plan catalog.
"""

import logging
from typing import Any, Optional

from sqlmodel import select
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from app.domain.billing import Plan
from app.infrastructure.db.database import get_session_context
from app.infrastructure.db.models import PlanModel, as_uuid, utcnow
from app.infrastructure.exceptions import DatabaseError


logger = logging.getLogger(__name__)

TABLE = "plans"

# Columns an operator may change through the admin console.
UPDATABLE_FIELDS = frozenset({
    "name",
    "description",
    "price_cents",
    "interval_months",
    "trial_days",
    "max_employees",
    "is_public",
    "active",
    "features_json",
    "slug",
})


class PlanRepository:
    """Repository for plan catalog reads and admin writes."""

    async def get(self, plan_id: str) -> Optional[Plan]:
        """
        Get plan by local id.

        Args:
            plan_id: Plan UUID as string

        Returns:
            Plan domain model or None (also for malformed ids)
        """
        plan_uuid = as_uuid(plan_id)
        if plan_uuid is None:
            return None
        try:
            async with get_session_context() as session:
                model = await session.get(PlanModel, plan_uuid)
                return self._to_domain(model) if model else None
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error loading plan: {e}", "select", TABLE, e)

    async def slug_exists(self, slug: str) -> bool:
        try:
            async with get_session_context() as session:
                result = await session.execute(select(PlanModel.id).where(PlanModel.slug == slug))
                return result.first() is not None
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error checking plan slug: {e}", "select", TABLE, e)

    async def list_filtered(
        self,
        is_public: Optional[bool] = None,
        active: Optional[bool] = None,
    ) -> list[Plan]:
        """List plans ordered by price, optionally filtered by visibility/status."""
        try:
            async with get_session_context() as session:
                statement = select(PlanModel)
                if is_public is not None:
                    statement = statement.where(PlanModel.is_public == is_public)
                if active is not None:
                    statement = statement.where(PlanModel.active == active)
                statement = statement.order_by(PlanModel.price_cents.asc())
                result = await session.execute(statement)
                return [self._to_domain(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error listing plans: {e}", "select", TABLE, e)

    async def create(self, **values: Any) -> Plan:
        """Insert a plan row."""
        try:
            async with get_session_context() as session:
                model = PlanModel(**values)
                session.add(model)
                await session.flush()
                await session.refresh(model)
                logger.info(f"Created plan {model.slug} ({model.id})")
                return self._to_domain(model)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error creating plan: {e}", "insert", TABLE, e)

    async def update(self, plan_id: str, patch: dict[str, Any]) -> Optional[Plan]:
        """
        Apply a whitelisted patch to a plan.

        Unknown keys are dropped. Returns None when the plan does not exist.
        """
        plan_uuid = as_uuid(plan_id)
        if plan_uuid is None:
            return None
        values = {k: v for k, v in patch.items() if k in UPDATABLE_FIELDS}
        try:
            async with get_session_context() as session:
                model = await session.get(PlanModel, plan_uuid)
                if model is None:
                    return None
                for key, value in values.items():
                    setattr(model, key, value)
                model.updated_at = utcnow()
                await session.flush()
                await session.refresh(model)
                return self._to_domain(model)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error updating plan: {e}", "update", TABLE, e)

    async def set_efi_plan_id_if_absent(self, plan_id: str, efi_plan_id: int) -> bool:
        """
        Compare-and-swap the gateway plan id.

        Only writes when the column is still NULL, so two concurrent
        checkouts cannot both assign a gateway plan.

        Returns:
            True when this call stored the id, False when another writer won
        """
        try:
            async with get_session_context() as session:
                stmt = (
                    update(PlanModel)
                    .where(PlanModel.id == as_uuid(plan_id))
                    .where(PlanModel.efi_plan_id.is_(None))
                    .values(efi_plan_id=efi_plan_id, updated_at=utcnow())
                )
                result = await session.execute(stmt)
                return result.rowcount == 1
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error storing gateway plan id: {e}", "update", TABLE, e)

    def _to_domain(self, model: PlanModel) -> Plan:
        """Convert database model to domain entity."""
        return Plan(
            id=str(model.id),
            slug=model.slug,
            name=model.name,
            description=model.description,
            price_cents=model.price_cents or 0,
            currency=model.currency or "BRL",
            interval_months=model.interval_months or 1,
            trial_days=model.trial_days or 0,
            max_employees=model.max_employees,
            efi_plan_id=model.efi_plan_id,
            active=bool(model.active),
            is_public=bool(model.is_public),
            features_json=model.features_json,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


_plan_repo_instance: Optional[PlanRepository] = None


def get_plan_repository() -> PlanRepository:
    """Get or create plan repository singleton."""
    global _plan_repo_instance

    if _plan_repo_instance is None:
        _plan_repo_instance = PlanRepository()

    return _plan_repo_instance
