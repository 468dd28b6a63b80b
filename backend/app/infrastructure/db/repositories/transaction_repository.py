"""
Transaction Repository

One row per gateway charge, upserted by ``efi_charge_id``.
"""

import logging
from typing import Any, Optional
from uuid import uuid4

from sqlmodel import select
from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError

from app.domain.billing import Transaction, TransactionStatus
from app.infrastructure.db.database import get_session_context
from app.infrastructure.db.models import TransactionModel, as_uuid, utcnow
from app.infrastructure.exceptions import DatabaseError


logger = logging.getLogger(__name__)

TABLE = "transactions"


class TransactionRepository:
    """Repository for charge attempts."""

    async def upsert_by_charge_id(
        self,
        company_id: str,
        subscription_id: Optional[str],
        plan_id: Optional[str],
        efi_subscription_id: int,
        efi_charge_id: int,
        amount_cents: int,
        currency: str,
        status: TransactionStatus = TransactionStatus.WAITING,
        response_json: Optional[Any] = None,
    ) -> None:
        """
        Create or refresh the transaction of a gateway charge.

        A charge already marked ``paid`` keeps its status.
        """
        try:
            async with get_session_context() as session:
                now = utcnow()
                stmt = pg_insert(TransactionModel).values(
                    id=uuid4(),
                    company_id=as_uuid(company_id),
                    subscription_id=as_uuid(subscription_id),
                    plan_id=as_uuid(plan_id),
                    efi_subscription_id=efi_subscription_id,
                    efi_charge_id=efi_charge_id,
                    method="credit_card",
                    status=status.value,
                    amount_cents=amount_cents,
                    currency=currency,
                    response_json=response_json,
                    created_at=now,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["efi_charge_id"],
                    set_={
                        "subscription_id": stmt.excluded.subscription_id,
                        "amount_cents": stmt.excluded.amount_cents,
                        "response_json": stmt.excluded.response_json,
                        "updated_at": now,
                    },
                )
                await session.execute(stmt)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error upserting transaction: {e}", "upsert", TABLE, e)

    async def mark_paid(self, efi_charge_id: int) -> bool:
        """Mark a charge's transaction paid. Returns False when no row matches."""
        try:
            async with get_session_context() as session:
                stmt = (
                    update(TransactionModel)
                    .where(TransactionModel.efi_charge_id == efi_charge_id)
                    .values(status=TransactionStatus.PAID.value, updated_at=utcnow())
                )
                result = await session.execute(stmt)
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error marking transaction paid: {e}", "update", TABLE, e)

    async def recent(self, limit: int = 500) -> list[Transaction]:
        """Most recent transactions across all tenants."""
        try:
            async with get_session_context() as session:
                statement = (
                    select(TransactionModel)
                    .order_by(TransactionModel.created_at.desc())
                    .limit(limit)
                )
                result = await session.execute(statement)
                return [self._to_domain(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error listing transactions: {e}", "select", TABLE, e)

    def _to_domain(self, model: TransactionModel) -> Transaction:
        return Transaction(
            id=str(model.id),
            company_id=str(model.company_id) if model.company_id else None,
            subscription_id=str(model.subscription_id) if model.subscription_id else None,
            plan_id=str(model.plan_id) if model.plan_id else None,
            efi_subscription_id=model.efi_subscription_id,
            efi_charge_id=model.efi_charge_id,
            method=model.method,
            status=TransactionStatus(model.status),
            amount_cents=model.amount_cents or 0,
            currency=model.currency,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


_transaction_repo_instance: Optional[TransactionRepository] = None


def get_transaction_repository() -> TransactionRepository:
    """Get or create transaction repository singleton."""
    global _transaction_repo_instance

    if _transaction_repo_instance is None:
        _transaction_repo_instance = TransactionRepository()

    return _transaction_repo_instance
