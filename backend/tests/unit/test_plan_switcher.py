"""
Unit tests for plan changes.

The switcher shares the checkout steps with a real SubscriptionProvisioner
built on mocked repositories and gateway.
"""

import pytest
from unittest.mock import AsyncMock

from app.config.settings import Settings
from app.domain.billing import ChangePlanRequest, SubscriptionStatus
from app.infrastructure.exceptions import GatewayError, NotFoundError, ValidationError
from app.infrastructure.services.plan_switcher import PlanSwitcher
from app.infrastructure.services.subscription_provisioner import SubscriptionProvisioner

from tests.conftest import COMPANY_ID, PLAN_ID


@pytest.fixture
def switcher(mock_efi, mock_plan_repo, mock_sub_repo, mock_tx_repo, mock_audit, sample_plan, make_subscription):
    mock_plan_repo.get.return_value = sample_plan.model_copy(update={"efi_plan_id": 7001})
    mock_sub_repo.upsert_by_efi_id.return_value = make_subscription(
        sub_id="44444444-4444-4444-4444-444444444444",
        efi_subscription_id=9001,
        status=SubscriptionStatus.PENDING_PAYMENT,
    )
    provisioner = SubscriptionProvisioner(
        mock_efi,
        plans=mock_plan_repo,
        subscriptions=mock_sub_repo,
        transactions=mock_tx_repo,
        audit=mock_audit,
        reconciler=AsyncMock(),
        settings=Settings(_env_file=None),
    )
    return PlanSwitcher(mock_efi, provisioner=provisioner, subscriptions=mock_sub_repo, audit=mock_audit)


@pytest.fixture
def change_payload(sample_customer, sample_billing_address):
    return {
        "company_id": COMPANY_ID,
        "plan_id": PLAN_ID,
        "payment_token": "tok_0123456789abcdef",
        "customer": sample_customer,
        "billing_address": sample_billing_address,
    }


class TestChangePlan:
    """Tests for PlanSwitcher.change_plan."""

    @pytest.mark.asyncio
    async def test_cancels_old_and_opens_new(
        self, switcher, change_payload, mock_efi, mock_sub_repo, make_subscription
    ):
        old = make_subscription(efi_subscription_id=1234, status=SubscriptionStatus.ACTIVE)
        mock_sub_repo.get_active_for_company.return_value = old

        result = await switcher.change_plan(ChangePlanRequest(**change_payload))

        mock_efi.cancel_subscription.assert_awaited_once_with(1234)
        mock_sub_repo.mark_canceled.assert_awaited_once_with(old.id)
        assert result.canceled_old.efi_subscription_id == 1234
        assert result.canceled_old.ok is True
        assert result.new_subscription_id == 9001
        assert result.new_charge_id == 5001
        assert result.new_status == SubscriptionStatus.PENDING_PAYMENT
        assert result.stage == "define-payment"

    @pytest.mark.asyncio
    async def test_item_defaults_to_plan_price(self, switcher, change_payload, mock_efi):
        await switcher.change_plan(ChangePlanRequest(**change_payload))

        assert mock_efi.create_subscription.call_args.kwargs["items"] == [
            {"name": "Business", "value": 5000, "amount": 1}
        ]

    @pytest.mark.asyncio
    async def test_requested_item_overrides_plan_price(self, switcher, change_payload, mock_efi):
        change_payload["item"] = {"name": "Business anual", "value": 4500, "amount": 2}

        await switcher.change_plan(ChangePlanRequest(**change_payload))

        assert mock_efi.create_subscription.call_args.kwargs["items"] == [
            {"name": "Business anual", "value": 4500, "amount": 2}
        ]

    @pytest.mark.asyncio
    async def test_benign_cancel_error_still_marks_canceled(
        self, switcher, change_payload, mock_efi, mock_sub_repo, make_subscription
    ):
        old = make_subscription(efi_subscription_id=1234)
        mock_sub_repo.get_active_for_company.return_value = old
        mock_efi.cancel_subscription.side_effect = GatewayError("gone", stage="cancel-old", status_code=404)

        result = await switcher.change_plan(ChangePlanRequest(**change_payload))

        assert result.canceled_old.ok is True
        mock_sub_repo.mark_canceled.assert_awaited_once_with(old.id)

    @pytest.mark.asyncio
    async def test_failed_cancel_leaves_old_subscription(
        self, switcher, change_payload, mock_efi, mock_sub_repo, mock_audit, make_subscription
    ):
        mock_sub_repo.get_active_for_company.return_value = make_subscription(efi_subscription_id=1234)
        mock_efi.cancel_subscription.side_effect = GatewayError("timeout", stage="cancel-old", status_code=500)

        result = await switcher.change_plan(ChangePlanRequest(**change_payload))

        assert result.canceled_old.ok is False
        assert result.new_subscription_id == 9001
        mock_sub_repo.mark_canceled.assert_not_awaited()
        event_types = [c.args[0] for c in mock_audit.record.await_args_list]
        assert "change-plan-cancel-old" in event_types

    @pytest.mark.asyncio
    async def test_no_current_subscription(self, switcher, change_payload, mock_efi):
        result = await switcher.change_plan(ChangePlanRequest(**change_payload))

        assert result.canceled_old is None
        mock_efi.cancel_subscription.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gateway_plan_created_with_ensure_stage(
        self, switcher, change_payload, mock_plan_repo, sample_plan, mock_efi
    ):
        mock_plan_repo.get.return_value = sample_plan
        mock_plan_repo.set_efi_plan_id_if_absent.return_value = True

        await switcher.change_plan(ChangePlanRequest(**change_payload))

        assert mock_efi.create_plan.call_args.kwargs["stage"] == "ensure-efi-plan"

    @pytest.mark.asyncio
    async def test_unknown_plan(self, switcher, change_payload, mock_plan_repo, mock_efi):
        mock_plan_repo.get.return_value = None

        with pytest.raises(NotFoundError) as exc:
            await switcher.change_plan(ChangePlanRequest(**change_payload))

        assert exc.value.stage == "load-plan"
        mock_efi.cancel_subscription.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_customer_field(self, switcher, change_payload, mock_efi):
        change_payload["customer"]["cpf"] = ""

        with pytest.raises(ValidationError, match=r"customer\[cpf\]"):
            await switcher.change_plan(ChangePlanRequest(**change_payload))

        mock_efi.create_subscription.assert_not_awaited()
