"""
Plan Switcher

Moves a tenant to another plan: cancel the current gateway subscription,
then open a new one through the same steps as a first checkout.
"""

import logging
from typing import Optional

from app.domain.billing import (
    CanceledOld,
    ChangePlanRequest,
    ChangePlanResult,
    CheckoutStage,
    Plan,
    validate_change_plan_request,
    validate_item_numbers,
)
from app.infrastructure.db.repositories import (
    PaymentEventLogRepository,
    SubscriptionRepository,
    get_payment_event_log_repository,
    get_subscription_repository,
)
from app.infrastructure.exceptions import DatabaseError
from app.infrastructure.payments.efi_service import EfiService
from app.infrastructure.services.subscription_provisioner import SubscriptionProvisioner
from app.infrastructure.services.subscription_reconciler import cancel_on_gateway


logger = logging.getLogger(__name__)


class PlanSwitcher:
    """Orchestrates a plan change for a tenant."""

    def __init__(
        self,
        efi: EfiService,
        provisioner: Optional[SubscriptionProvisioner] = None,
        subscriptions: Optional[SubscriptionRepository] = None,
        audit: Optional[PaymentEventLogRepository] = None,
    ):
        self._efi = efi
        self._provisioner = provisioner or SubscriptionProvisioner(efi)
        self._subscriptions = subscriptions or get_subscription_repository()
        self._audit = audit or get_payment_event_log_repository()

    async def change_plan(self, request: ChangePlanRequest) -> ChangePlanResult:
        """
        Change the tenant's plan.

        A failed cancel of the old subscription does not stop the change;
        it is reported as ``canceled_old.ok = False`` and left for the
        reconciler.

        Raises:
            ValidationError: missing/invalid field (stage ``init``)
            NotFoundError: target plan does not exist (stage ``load-plan``)
            GatewayError: plan/subscription/payment call rejected
        """
        validate_change_plan_request(request)

        plan = await self._provisioner.load_plan(request.plan_id)
        item_name, value_cents, quantity = self._resolve_item(request, plan)

        efi_plan_id = await self._provisioner.ensure_gateway_plan(
            plan, stage=CheckoutStage.ENSURE_EFI_PLAN.value
        )

        canceled_old = await self._cancel_current(request.company_id)

        opened = await self._provisioner.open_subscription(
            company_id=request.company_id,
            plan=plan,
            efi_plan_id=efi_plan_id,
            item_name=item_name,
            value_cents=value_cents,
            quantity=quantity,
            metadata=request.metadata,
            customer=request.customer,
            billing_address=request.billing_address,
            payment_token=request.payment_token,
        )

        await self._provisioner.reconcile_quietly(request.company_id, opened.subscription_id)

        logger.info(
            f"Company {request.company_id} moved to plan {plan.slug}: "
            f"new={opened.subscription_id} old={canceled_old}"
        )
        return ChangePlanResult(
            stage=CheckoutStage.DEFINE_PAYMENT.value,
            new_subscription_id=opened.subscription_id,
            new_charge_id=opened.charge_id,
            new_status=opened.status,
            canceled_old=canceled_old,
        )

    def _resolve_item(self, request: ChangePlanRequest, plan: Plan) -> tuple[str, int, int]:
        """Use the requested line item, defaulting to the plan's name and price."""
        item = request.item
        if item is not None and item.value is not None:
            value_cents, quantity = validate_item_numbers(item.value, item.amount)
            return (item.name or plan.name), value_cents, quantity
        value_cents, quantity = validate_item_numbers(float(plan.price_cents), 1)
        return plan.name, value_cents, quantity

    async def _cancel_current(self, company_id: str) -> Optional[CanceledOld]:
        old = await self._subscriptions.get_active_for_company(company_id)
        if old is None or old.efi_subscription_id is None:
            return None

        attempt = await cancel_on_gateway(self._efi, old.efi_subscription_id)
        if attempt.ok:
            try:
                await self._subscriptions.mark_canceled(old.id)
            except DatabaseError as e:
                logger.error(f"Could not mark subscription {old.id} canceled: {e.message}")
        else:
            logger.warning(
                f"Old Efí subscription {old.efi_subscription_id} not canceled "
                f"({attempt.status_code}); leaving it to the reconciler"
            )

        await self._audit.record(
            "change-plan-cancel-old",
            {
                "company_id": company_id,
                "efi_subscription_id": old.efi_subscription_id,
                "stage": CheckoutStage.CANCEL_OLD.value,
                "ok": attempt.ok,
                "status": attempt.status_code,
                "error": attempt.error,
            },
        )
        return CanceledOld(efi_subscription_id=old.efi_subscription_id, ok=attempt.ok)
