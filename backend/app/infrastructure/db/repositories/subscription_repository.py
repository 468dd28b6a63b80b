"""
Subscription Repository

Data access layer for subscription persistence.
Follows Repository pattern for Clean Architecture.

Activation and the "make current" operation update the subscription row
and the tenant entitlement (pointer, plan slug, seat limit) in a single
transaction.
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import select
from sqlalchemy import case, func, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.billing import Subscription, SubscriptionStatus, get_seat_limit
from app.infrastructure.db.database import get_session_context
from app.infrastructure.db.models import (
    CompanyModel,
    PlanModel,
    SubscriptionModel,
    as_uuid,
    utcnow,
)
from app.infrastructure.exceptions import DatabaseError


logger = logging.getLogger(__name__)

TABLE = "subscriptions"


class SubscriptionRepository:
    """
    Repository for subscription data access.

    Implements queries and commands with domain model mapping.
    Uses async SQLModel for database operations.
    """

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get(self, subscription_id: str) -> Optional[Subscription]:
        """Get subscription by local id."""
        sub_uuid = as_uuid(subscription_id)
        if sub_uuid is None:
            return None
        try:
            async with get_session_context() as session:
                model = await session.get(SubscriptionModel, sub_uuid)
                return self._to_domain(model) if model else None
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error loading subscription: {e}", "select", TABLE, e)

    async def get_by_efi_id(self, efi_subscription_id: int) -> Optional[Subscription]:
        """
        Get subscription by Efí subscription ID.

        Args:
            efi_subscription_id: Gateway subscription id

        Returns:
            Subscription domain model or None
        """
        try:
            async with get_session_context() as session:
                model = await self._get_model_by_efi_id(session, efi_subscription_id)
                return self._to_domain(model) if model else None
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error loading subscription: {e}", "select", TABLE, e)

    async def get_active_for_company(
        self,
        company_id: str,
        exclude_id: Optional[str] = None,
    ) -> Optional[Subscription]:
        """Most recently started active subscription of a company."""
        company_uuid = as_uuid(company_id)
        if company_uuid is None:
            return None
        try:
            async with get_session_context() as session:
                statement = (
                    select(SubscriptionModel)
                    .where(SubscriptionModel.company_id == company_uuid)
                    .where(SubscriptionModel.status == SubscriptionStatus.ACTIVE.value)
                )
                if exclude_id:
                    statement = statement.where(SubscriptionModel.id != as_uuid(exclude_id))
                statement = statement.order_by(
                    SubscriptionModel.started_at.desc().nulls_last(),
                    SubscriptionModel.created_at.desc(),
                ).limit(1)
                result = await session.execute(statement)
                model = result.scalars().first()
                return self._to_domain(model) if model else None
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error loading active subscription: {e}", "select", TABLE, e)

    async def list_for_company(self, company_id: str) -> list[Subscription]:
        """All subscriptions of a company, newest first."""
        company_uuid = as_uuid(company_id)
        if company_uuid is None:
            return []
        try:
            async with get_session_context() as session:
                statement = (
                    select(SubscriptionModel)
                    .where(SubscriptionModel.company_id == company_uuid)
                    .order_by(SubscriptionModel.created_at.desc())
                )
                result = await session.execute(statement)
                return [self._to_domain(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error listing subscriptions: {e}", "select", TABLE, e)

    async def list_open(
        self,
        company_id: str,
        exclude_efi_subscription_id: Optional[int] = None,
    ) -> list[Subscription]:
        """
        Non-canceled subscriptions of a company that have a gateway id.

        Args:
            company_id: Tenant id
            exclude_efi_subscription_id: Gateway id to leave out (the one being kept)
        """
        company_uuid = as_uuid(company_id)
        if company_uuid is None:
            return []
        try:
            async with get_session_context() as session:
                statement = (
                    select(SubscriptionModel)
                    .where(SubscriptionModel.company_id == company_uuid)
                    .where(SubscriptionModel.status != SubscriptionStatus.CANCELED.value)
                    .where(SubscriptionModel.efi_subscription_id.is_not(None))
                )
                if exclude_efi_subscription_id is not None:
                    statement = statement.where(
                        SubscriptionModel.efi_subscription_id != exclude_efi_subscription_id
                    )
                statement = statement.order_by(SubscriptionModel.created_at.desc())
                result = await session.execute(statement)
                return [self._to_domain(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error listing open subscriptions: {e}", "select", TABLE, e)

    async def list_all(self) -> list[Subscription]:
        """Every subscription, newest first (admin overview)."""
        try:
            async with get_session_context() as session:
                statement = select(SubscriptionModel).order_by(SubscriptionModel.created_at.desc())
                result = await session.execute(statement)
                return [self._to_domain(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error listing subscriptions: {e}", "select", TABLE, e)

    async def companies_with_multiple_open(self) -> list[str]:
        """Companies holding more than one non-canceled gateway subscription."""
        try:
            async with get_session_context() as session:
                statement = (
                    select(SubscriptionModel.company_id)
                    .where(SubscriptionModel.status != SubscriptionStatus.CANCELED.value)
                    .where(SubscriptionModel.efi_subscription_id.is_not(None))
                    .group_by(SubscriptionModel.company_id)
                    .having(func.count() > 1)
                )
                result = await session.execute(statement)
                return [str(company_id) for company_id in result.scalars().all()]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error scanning subscriptions: {e}", "select", TABLE, e)

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def insert_waiting(
        self,
        company_id: str,
        plan_id: str,
        efi_subscription_id: int,
    ) -> Optional[Subscription]:
        """
        Record a freshly created gateway subscription as ``waiting``.

        A row that already exists for the gateway id is left untouched.
        """
        try:
            async with get_session_context() as session:
                now = utcnow()
                stmt = pg_insert(SubscriptionModel).values(
                    id=uuid4(),
                    company_id=as_uuid(company_id),
                    plan_id=as_uuid(plan_id),
                    efi_subscription_id=efi_subscription_id,
                    status=SubscriptionStatus.WAITING.value,
                    created_at=now,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_nothing(index_elements=["efi_subscription_id"])
                await session.execute(stmt)

                model = await self._get_model_by_efi_id(session, efi_subscription_id)
                return self._to_domain(model) if model else None
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error inserting subscription: {e}", "insert", TABLE, e)

    async def upsert_by_efi_id(
        self,
        company_id: str,
        plan_id: str,
        efi_subscription_id: int,
        status: SubscriptionStatus,
        last_charge_id: Optional[int] = None,
    ) -> Subscription:
        """
        Create or update a subscription keyed by its gateway id.

        Uses PostgreSQL upsert for atomicity. ``started_at`` is only set
        when the row becomes active, and an active row is never demoted.
        """
        try:
            async with get_session_context() as session:
                now = utcnow()
                active = status == SubscriptionStatus.ACTIVE

                stmt = pg_insert(SubscriptionModel).values(
                    id=uuid4(),
                    company_id=as_uuid(company_id),
                    plan_id=as_uuid(plan_id),
                    efi_subscription_id=efi_subscription_id,
                    status=status.value,
                    last_charge_id=last_charge_id,
                    started_at=now if active else None,
                    created_at=now,
                    updated_at=now,
                )
                table = SubscriptionModel.__table__
                stmt = stmt.on_conflict_do_update(
                    index_elements=["efi_subscription_id"],
                    set_={
                        "company_id": stmt.excluded.company_id,
                        "plan_id": stmt.excluded.plan_id,
                        "status": case(
                            (table.c.status == SubscriptionStatus.ACTIVE.value, table.c.status),
                            else_=stmt.excluded.status,
                        ),
                        "last_charge_id": func.coalesce(stmt.excluded.last_charge_id, table.c.last_charge_id),
                        "started_at": func.coalesce(table.c.started_at, stmt.excluded.started_at),
                        "updated_at": now,
                    },
                )
                await session.execute(stmt)

                model = await self._get_model_by_efi_id(session, efi_subscription_id)
                logger.info(
                    f"Upserted subscription efi={efi_subscription_id} "
                    f"company={company_id} status={model.status}"
                )
                return self._to_domain(model)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error upserting subscription: {e}", "upsert", TABLE, e)

    async def mark_canceled(self, subscription_id: str) -> bool:
        """
        Mark a subscription canceled locally. Returns False when missing.

        When it was the tenant's current subscription, the pointer moves to
        the most recently started active one, or is cleared, in the same
        transaction.
        """
        sub_uuid = as_uuid(subscription_id)
        if sub_uuid is None:
            return False
        try:
            async with get_session_context() as session:
                now = utcnow()
                stmt = (
                    update(SubscriptionModel)
                    .where(SubscriptionModel.id == sub_uuid)
                    .values(
                        status=SubscriptionStatus.CANCELED.value,
                        canceled_at=now,
                        updated_at=now,
                    )
                )
                result = await session.execute(stmt)
                if result.rowcount == 0:
                    return False
                await self._release_pointer(session, sub_uuid)
                return True
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error canceling subscription: {e}", "update", TABLE, e)

    async def activate(
        self,
        subscription_id: str,
        charge_id: Optional[int] = None,
    ) -> Optional[Subscription]:
        """
        Activate a subscription and grant its plan to the tenant.

        Sets ``status=active``, keeps an existing ``started_at``, records the
        charge, and repoints the company at this subscription with the plan
        slug and seat limit, all in one transaction.

        Canceled is terminal: a canceled row is left untouched.

        Returns:
            Updated subscription, or None when it does not exist or is canceled
        """
        sub_uuid = as_uuid(subscription_id)
        if sub_uuid is None:
            return None
        try:
            async with get_session_context() as session:
                model = await session.get(SubscriptionModel, sub_uuid, with_for_update=True)
                if model is None:
                    return None
                if model.status == SubscriptionStatus.CANCELED.value:
                    logger.warning(f"Refusing to activate canceled subscription {model.id}")
                    return None

                now = utcnow()
                model.status = SubscriptionStatus.ACTIVE.value
                model.started_at = model.started_at or now
                if charge_id is not None:
                    model.last_charge_id = charge_id
                model.updated_at = now

                await self._grant_entitlement(session, model)
                await session.flush()

                logger.info(f"Activated subscription {model.id} for company {model.company_id}")
                return self._to_domain(model)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error activating subscription: {e}", "update", TABLE, e)

    async def make_current(self, subscription_id: str) -> Optional[Subscription]:
        """Point the tenant at this subscription and apply its entitlement."""
        sub_uuid = as_uuid(subscription_id)
        if sub_uuid is None:
            return None
        try:
            async with get_session_context() as session:
                model = await session.get(SubscriptionModel, sub_uuid)
                if model is None:
                    return None
                await self._grant_entitlement(session, model)
                logger.info(f"Subscription {model.id} is now current for company {model.company_id}")
                return self._to_domain(model)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error updating tenant entitlement: {e}", "update", "companies", e)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _get_model_by_efi_id(
        self,
        session: AsyncSession,
        efi_subscription_id: int,
    ) -> Optional[SubscriptionModel]:
        statement = select(SubscriptionModel).where(
            SubscriptionModel.efi_subscription_id == efi_subscription_id
        )
        result = await session.execute(statement)
        return result.scalar_one_or_none()

    async def _release_pointer(self, session: AsyncSession, canceled_id: UUID) -> None:
        result = await session.execute(
            select(CompanyModel).where(CompanyModel.current_subscription_id == canceled_id)
        )
        company = result.scalars().first()
        if company is None:
            return

        result = await session.execute(
            select(SubscriptionModel)
            .where(SubscriptionModel.company_id == company.id)
            .where(SubscriptionModel.id != canceled_id)
            .where(SubscriptionModel.status == SubscriptionStatus.ACTIVE.value)
            .order_by(
                SubscriptionModel.started_at.desc().nulls_last(),
                SubscriptionModel.created_at.desc(),
            )
            .limit(1)
        )
        replacement = result.scalars().first()
        if replacement is not None:
            await self._grant_entitlement(session, replacement)
            logger.info(f"Company {company.id} now points at subscription {replacement.id}")
            return

        await session.execute(
            update(CompanyModel)
            .where(CompanyModel.id == company.id)
            .values(current_subscription_id=None)
        )
        logger.info(f"Company {company.id} has no current subscription after cancel of {canceled_id}")

    async def _grant_entitlement(self, session: AsyncSession, model: SubscriptionModel) -> None:
        values = {"current_subscription_id": model.id}
        plan = await session.get(PlanModel, model.plan_id) if model.plan_id else None
        if plan is not None:
            values["plan"] = plan.slug
            values["maxemployees"] = get_seat_limit(plan.slug, plan.max_employees)

        await session.execute(
            update(CompanyModel)
            .where(CompanyModel.id == model.company_id)
            .values(**values)
        )

    # =========================================================================
    # Mapping Methods
    # =========================================================================

    def _to_domain(self, model: SubscriptionModel) -> Subscription:
        """Convert database model to domain entity."""
        return Subscription(
            id=str(model.id),
            company_id=str(model.company_id),
            plan_id=str(model.plan_id) if model.plan_id else None,
            status=SubscriptionStatus(model.status),
            efi_subscription_id=model.efi_subscription_id,
            last_charge_id=model.last_charge_id,
            created_at=model.created_at,
            started_at=model.started_at,
            canceled_at=model.canceled_at,
            updated_at=model.updated_at,
        )


# =============================================================================
# Singleton Instance
# =============================================================================

_subscription_repo_instance: Optional[SubscriptionRepository] = None


def get_subscription_repository() -> SubscriptionRepository:
    """Get or create subscription repository singleton."""
    global _subscription_repo_instance

    if _subscription_repo_instance is None:
        _subscription_repo_instance = SubscriptionRepository()

    return _subscription_repo_instance
