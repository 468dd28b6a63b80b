"""
Unit tests for SubscriptionRepository state changes.

The async session is replaced with a mock so the statements the
repository issues can be inspected without a database.
"""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import pytest
from sqlalchemy.sql.dml import Update

from app.domain.billing import SubscriptionStatus
from app.infrastructure.db.models import CompanyModel, SubscriptionModel
from app.infrastructure.db.repositories import subscription_repository as module
from app.infrastructure.db.repositories.subscription_repository import SubscriptionRepository

from tests.conftest import COMPANY_ID


SUB_ID = "44444444-4444-4444-4444-444444444444"
OTHER_ID = "55555555-5555-5555-5555-555555555555"


def _result(first=None, rowcount=1):
    result = MagicMock()
    result.rowcount = rowcount
    result.scalars.return_value.first.return_value = first
    return result


def _company_pointer(statement):
    assert isinstance(statement, Update)
    assert statement.table.name == "companies"
    return statement.compile().params["current_subscription_id"]


@pytest.fixture
def session(monkeypatch):
    session = AsyncMock()

    @asynccontextmanager
    async def fake_session_context():
        yield session

    monkeypatch.setattr(module, "get_session_context", fake_session_context)
    return session


@pytest.fixture
def repo():
    return SubscriptionRepository()


def _subscription_model(sub_id: str, status: SubscriptionStatus) -> SubscriptionModel:
    return SubscriptionModel(
        id=UUID(sub_id),
        company_id=UUID(COMPANY_ID),
        plan_id=None,
        status=status.value,
        efi_subscription_id=9001,
    )


class TestMarkCanceled:

    @pytest.mark.asyncio
    async def test_missing_row_returns_false(self, repo, session):
        session.execute.side_effect = [_result(rowcount=0)]

        assert await repo.mark_canceled(SUB_ID) is False
        assert session.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_non_current_row_leaves_company_alone(self, repo, session):
        session.execute.side_effect = [_result(), _result(first=None)]

        assert await repo.mark_canceled(SUB_ID) is True
        assert session.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_current_row_without_replacement_clears_pointer(self, repo, session):
        company = CompanyModel(id=UUID(COMPANY_ID), name="Acme", current_subscription_id=UUID(SUB_ID))
        session.execute.side_effect = [
            _result(),
            _result(first=company),
            _result(first=None),
            _result(),
        ]

        assert await repo.mark_canceled(SUB_ID) is True

        last_statement = session.execute.await_args_list[-1].args[0]
        assert _company_pointer(last_statement) is None

    @pytest.mark.asyncio
    async def test_current_row_moves_pointer_to_active_replacement(self, repo, session):
        company = CompanyModel(id=UUID(COMPANY_ID), name="Acme", current_subscription_id=UUID(SUB_ID))
        replacement = _subscription_model(OTHER_ID, SubscriptionStatus.ACTIVE)
        session.execute.side_effect = [
            _result(),
            _result(first=company),
            _result(first=replacement),
            _result(),
        ]

        assert await repo.mark_canceled(SUB_ID) is True

        last_statement = session.execute.await_args_list[-1].args[0]
        assert _company_pointer(last_statement) == UUID(OTHER_ID)


class TestActivate:

    @pytest.mark.asyncio
    async def test_canceled_subscription_is_never_reactivated(self, repo, session):
        model = _subscription_model(SUB_ID, SubscriptionStatus.CANCELED)
        session.get.return_value = model

        assert await repo.activate(SUB_ID, 5001) is None

        assert model.status == SubscriptionStatus.CANCELED.value
        assert model.last_charge_id is None
        session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pending_subscription_is_activated_and_made_current(self, repo, session):
        model = _subscription_model(SUB_ID, SubscriptionStatus.PENDING_PAYMENT)
        session.get.return_value = model

        activated = await repo.activate(SUB_ID, 5001)

        assert activated.status == SubscriptionStatus.ACTIVE
        assert activated.last_charge_id == 5001
        assert activated.started_at is not None
        statement = session.execute.await_args.args[0]
        assert _company_pointer(statement) == UUID(SUB_ID)
