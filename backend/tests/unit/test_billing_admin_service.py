"""
Unit tests for the admin billing console service.
"""

import pytest

from app.config.settings import Settings
from app.domain.billing import Plan, SubscriptionStatus, Transaction
from app.infrastructure.exceptions import GatewayError, NotFoundError, ValidationError
from app.infrastructure.services.billing_admin_service import BillingAdminService

from tests.conftest import COMPANY_ID, PLAN_ID


@pytest.fixture
def service(mock_efi, mock_company_repo, mock_plan_repo, mock_sub_repo, mock_tx_repo, mock_audit):
    return BillingAdminService(
        efi_provider=lambda: mock_efi,
        companies=mock_company_repo,
        plans=mock_plan_repo,
        subscriptions=mock_sub_repo,
        transactions=mock_tx_repo,
        audit=mock_audit,
        settings=Settings(_env_file=None, site_url="https://app.example.com/"),
    )


class TestOverview:

    @pytest.mark.asyncio
    async def test_groups_subscriptions_and_transactions_by_company(
        self, service, mock_company_repo, mock_sub_repo, mock_plan_repo, mock_tx_repo,
        sample_company, sample_plan, make_subscription
    ):
        current = make_subscription(sub_id="cur", efi_subscription_id=1)
        older = make_subscription(sub_id="old", efi_subscription_id=2, status=SubscriptionStatus.CANCELED)
        mock_company_repo.list_all.return_value = [
            sample_company.model_copy(update={"current_subscription_id": "cur"})
        ]
        mock_sub_repo.list_all.return_value = [current, older]
        mock_plan_repo.list_filtered.return_value = [sample_plan]
        mock_tx_repo.recent.return_value = [
            Transaction(id=str(i), company_id=COMPANY_ID, efi_charge_id=i) for i in range(60)
        ]

        overview = await service.overview()

        company = overview["companies"][0]
        assert company["id"] == COMPANY_ID
        assert [s["id"] for s in company["subscriptions"]] == ["cur", "old"]
        assert company["subscriptions"][0]["is_current"] is True
        assert company["subscriptions"][1]["is_current"] is False
        assert company["subscriptions"][0]["plan"] == {
            "id": PLAN_ID, "slug": "business", "name": "Business", "price_cents": 5000
        }
        assert len(company["transactions"]) == 50
        mock_tx_repo.recent.assert_awaited_once_with(500)


class TestActions:

    @pytest.mark.asyncio
    async def test_unknown_action(self, service):
        with pytest.raises(ValidationError, match="unknown action"):
            await service.perform("explode", {})

    @pytest.mark.asyncio
    async def test_refresh_returns_gateway_detail(self, service, mock_efi):
        result = await service.perform("refresh", {"efi_subscription_id": "9001"})

        assert result == {"ok": True, "subscription": {"subscription_id": 9001, "status": "active"}}
        mock_efi.detail_subscription.assert_awaited_once_with(9001)

    @pytest.mark.asyncio
    async def test_cancel_current_promotes_replacement(
        self, service, mock_efi, mock_sub_repo, mock_company_repo, sample_company, make_subscription
    ):
        sub = make_subscription(sub_id="cur", efi_subscription_id=1)
        replacement = make_subscription(sub_id="next", efi_subscription_id=2)
        mock_sub_repo.get.return_value = sub
        mock_company_repo.get.return_value = sample_company.model_copy(update={"current_subscription_id": "cur"})
        mock_sub_repo.get_active_for_company.return_value = replacement

        result = await service.perform("cancel", {"subscription_id": "cur"})

        mock_efi.cancel_subscription.assert_awaited_once_with(1)
        mock_sub_repo.mark_canceled.assert_awaited_once_with("cur")
        mock_sub_repo.get_active_for_company.assert_awaited_once_with(COMPANY_ID, exclude_id="cur")
        mock_sub_repo.make_current.assert_awaited_once_with("next")
        assert result["current_subscription_id"] == "next"

    @pytest.mark.asyncio
    async def test_cancel_last_subscription_falls_back_to_free(
        self, service, mock_efi, mock_sub_repo, mock_company_repo, sample_company, make_subscription
    ):
        mock_sub_repo.get.return_value = make_subscription(sub_id="cur", efi_subscription_id=1)
        mock_company_repo.get.return_value = sample_company.model_copy(update={"current_subscription_id": "cur"})
        mock_efi.cancel_subscription.side_effect = GatewayError("down", status_code=500)

        result = await service.perform("cancel", {"subscription_id": "cur"})

        mock_sub_repo.mark_canceled.assert_awaited_once_with("cur")
        mock_company_repo.set_plan.assert_awaited_once_with(COMPANY_ID, "free", 3, current_subscription_id=None)
        assert result["gateway"]["ok"] is False
        assert result["fallback_plan"] == "free"

    @pytest.mark.asyncio
    async def test_cancel_unknown_subscription(self, service, mock_sub_repo):
        mock_sub_repo.get.return_value = None

        with pytest.raises(NotFoundError):
            await service.perform("cancel", {"subscription_id": "missing"})

    @pytest.mark.asyncio
    async def test_mark_actual_missing(self, service, mock_sub_repo):
        mock_sub_repo.make_current.return_value = None

        with pytest.raises(NotFoundError):
            await service.perform("mark_actual", {"subscription_id": "missing"})

    @pytest.mark.asyncio
    async def test_mark_actual_requires_id(self, service):
        with pytest.raises(ValidationError, match="subscription_id"):
            await service.perform("mark_actual", {})

    @pytest.mark.asyncio
    async def test_plans_create_uses_unique_slug(self, service, mock_efi, mock_plan_repo):
        mock_plan_repo.slug_exists.side_effect = [True, True, False]
        mock_plan_repo.create.side_effect = lambda **values: Plan(id=PLAN_ID, **values)

        result = await service.perform("plans_create", {"name": "Plano Pró", "price_cents": 9900})

        mock_efi.create_plan.assert_awaited_once_with("Plano Pró", interval=1, repeats=None)
        values = mock_plan_repo.create.call_args.kwargs
        assert values["slug"] == "plano-pro-3"
        assert values["efi_plan_id"] == 7001
        assert values["max_employees"] == 5
        assert values["is_public"] is False
        assert result["plan"]["slug"] == "plano-pro-3"

    @pytest.mark.asyncio
    async def test_plans_create_rejects_bad_payload(self, service, mock_efi):
        with pytest.raises(ValidationError):
            await service.perform("plans_create", {"name": "", "price_cents": -1})

        mock_efi.create_plan.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_plans_update_requires_patch(self, service):
        with pytest.raises(ValidationError, match="patch"):
            await service.perform("plans_update", {"id": PLAN_ID})

    @pytest.mark.asyncio
    async def test_checkout_link(self, service):
        result = await service.perform("checkout_link", {"plan_id": PLAN_ID, "company_id": COMPANY_ID})

        assert result["url"] == f"https://app.example.com/checkout?planId={PLAN_ID}&companyId={COMPANY_ID}"

    @pytest.mark.asyncio
    async def test_reconcile_single_company_with_keep(self, service, mock_sub_repo, mock_efi, make_subscription):
        mock_sub_repo.list_open.return_value = [make_subscription(sub_id="stale", efi_subscription_id=2)]

        result = await service.perform(
            "reconcile", {"company_id": COMPANY_ID, "keep_efi_subscription_id": "1"}
        )

        mock_sub_repo.list_open.assert_awaited_once_with(COMPANY_ID, 1)
        mock_efi.cancel_subscription.assert_awaited_once_with(2)
        assert result["reports"][0]["canceled"] == 1
