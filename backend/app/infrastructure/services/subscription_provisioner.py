"""
Subscription Provisioner

First-checkout orchestration: validate, load the plan, make sure it exists
at the gateway, open a gateway subscription, bind the card, persist the
local view and converge stale subscriptions.

Gateway failures abort the request with their stage. Persistence failures
after a successful gateway call are logged and audited instead, since the
gateway side already exists and the webhook/reconciler will catch up.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from app.config.settings import Settings, get_settings
from app.domain.billing import (
    BillingAddress,
    CheckoutMetadata,
    CheckoutStage,
    CustomerInfo,
    Plan,
    SubscribeRequest,
    SubscribeResult,
    Subscription,
    SubscriptionStatus,
    TransactionStatus,
    build_custom_id,
    is_https,
    mask,
    validate_checkout_fields,
)
from app.infrastructure.db.repositories import (
    PaymentEventLogRepository,
    PlanRepository,
    SubscriptionRepository,
    TransactionRepository,
    get_payment_event_log_repository,
    get_plan_repository,
    get_subscription_repository,
    get_transaction_repository,
)
from app.infrastructure.exceptions import DatabaseError, NotFoundError
from app.infrastructure.payments.efi_service import EfiService
from app.infrastructure.services.subscription_reconciler import SubscriptionReconciler


logger = logging.getLogger(__name__)


@dataclass
class OpenedSubscription:
    """Result of steps 3-7, shared by checkout and plan change."""

    subscription_id: int
    charge_id: Optional[int]
    status: SubscriptionStatus
    local: Optional[Subscription] = None


def with_webhook_token(url: str, token: Optional[str]) -> str:
    """Append ``t=<token>`` to a notification URL unless it already has one."""
    if not token:
        return url
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    if any(key == "t" for key, _ in query):
        return url
    query.append(("t", token))
    return urlunsplit(parts._replace(query=urlencode(query)))


class SubscriptionProvisioner:
    """
    Orchestrates a first checkout for a tenant.

    Collaborators are injected so tests can replace them; by default the
    repository singletons are used.
    """

    def __init__(
        self,
        efi: EfiService,
        plans: Optional[PlanRepository] = None,
        subscriptions: Optional[SubscriptionRepository] = None,
        transactions: Optional[TransactionRepository] = None,
        audit: Optional[PaymentEventLogRepository] = None,
        reconciler: Optional[SubscriptionReconciler] = None,
        settings: Optional[Settings] = None,
    ):
        self._efi = efi
        self._plans = plans or get_plan_repository()
        self._subscriptions = subscriptions or get_subscription_repository()
        self._transactions = transactions or get_transaction_repository()
        self._audit = audit or get_payment_event_log_repository()
        self._reconciler = reconciler or SubscriptionReconciler(
            efi, subscriptions=self._subscriptions, audit=self._audit
        )
        self._settings = settings or get_settings()

    # =========================================================================
    # Checkout
    # =========================================================================

    async def subscribe(self, request: SubscribeRequest) -> SubscribeResult:
        """
        Run a first checkout end to end.

        Raises:
            ValidationError: missing/invalid field (stage ``init``)
            NotFoundError: plan does not exist (stage ``load-plan``)
            GatewayError: gateway rejected a call (stage of that call)
        """
        value_cents, quantity = validate_checkout_fields(request)

        logger.info(
            f"Checkout requested: company={mask(request.company_id)} "
            f"plan={mask(request.plan_uuid)} slug={request.plan_slug} "
            f"item={request.item.name}/{value_cents}x{quantity} "
            f"token={mask(request.payment_token, 6)}"
        )

        plan = await self.load_plan(request.plan_uuid)
        efi_plan_id = await self.ensure_gateway_plan(plan, stage=CheckoutStage.CREATE_PLAN.value)

        opened = await self.open_subscription(
            company_id=request.company_id,
            plan=plan,
            efi_plan_id=efi_plan_id,
            item_name=request.item.name,
            value_cents=value_cents,
            quantity=quantity,
            metadata=request.metadata,
            customer=request.customer,
            billing_address=request.billing_address,
            payment_token=request.payment_token,
        )

        await self.reconcile_quietly(request.company_id, opened.subscription_id)

        return SubscribeResult(
            subscription_id=opened.subscription_id,
            charge_id=opened.charge_id,
            status=opened.status,
            stage=CheckoutStage.DEFINE_PAYMENT.value,
        )

    async def load_plan(self, plan_id: str) -> Plan:
        plan = await self._plans.get(plan_id)
        if plan is None:
            raise NotFoundError(
                f"Plan not found: {plan_id}",
                operation="select",
                table="plans",
                stage=CheckoutStage.LOAD_PLAN.value,
            )
        return plan

    async def ensure_gateway_plan(self, plan: Plan, stage: str) -> int:
        """
        Return the plan's gateway id, creating it on first use.

        The id is stored with a compare-and-swap. When a concurrent checkout
        stored one first, that id is reused and ours is left unused.
        """
        if plan.efi_plan_id:
            return plan.efi_plan_id

        created = await self._efi.create_plan(
            plan.name,
            interval=plan.interval_months or 1,
            repeats=None,
            stage=stage,
        )

        try:
            stored = await self._plans.set_efi_plan_id_if_absent(plan.id, created)
        except DatabaseError as e:
            logger.error(f"Could not store Efí plan {created} on plan {plan.id}: {e.message}")
            return created

        if stored:
            return created

        current = await self._plans.get(plan.id)
        if current is not None and current.efi_plan_id:
            logger.warning(
                f"Plan {plan.slug} got Efí plan {current.efi_plan_id} concurrently; "
                f"abandoning {created}"
            )
            return current.efi_plan_id
        return created

    # =========================================================================
    # Shared steps
    # =========================================================================

    async def open_subscription(
        self,
        company_id: str,
        plan: Plan,
        efi_plan_id: int,
        item_name: str,
        value_cents: int,
        quantity: int,
        metadata: Optional[CheckoutMetadata],
        customer: CustomerInfo,
        billing_address: BillingAddress,
        payment_token: str,
    ) -> OpenedSubscription:
        """Create the gateway subscription, bind the card and persist the result."""
        created = await self._efi.create_subscription(
            efi_plan_id,
            items=[{"name": item_name, "value": value_cents, "amount": quantity}],
            metadata=self.build_metadata(company_id, plan.slug, metadata),
        )

        try:
            await self._subscriptions.insert_waiting(company_id, plan.id, created.subscription_id)
        except DatabaseError as e:
            logger.warning(f"Could not insert waiting subscription {created.subscription_id}: {e.message}")
            await self._audit.record(
                "insert-local-sub-error",
                {
                    "company_id": company_id,
                    "efi_subscription_id": created.subscription_id,
                    "stage": CheckoutStage.INSERT_LOCAL.value,
                    "error": e.message,
                },
            )

        binding = await self._efi.define_subscription_payment_method(
            created.subscription_id,
            payment_token=payment_token,
            billing_address=billing_address,
            customer=customer,
        )

        status = (
            SubscriptionStatus.ACTIVE
            if binding.status == SubscriptionStatus.ACTIVE.value
            else SubscriptionStatus.PENDING_PAYMENT
        )
        charge_id = binding.charge_id or created.first_charge_id

        local = await self._persist(
            company_id=company_id,
            plan=plan,
            efi_subscription_id=created.subscription_id,
            status=status,
            charge_id=charge_id,
            amount_cents=value_cents * quantity,
        )

        logger.info(
            f"Opened Efí subscription {created.subscription_id} for company {company_id}: "
            f"gateway={binding.status} local={status.value} charge={charge_id}"
        )
        return OpenedSubscription(
            subscription_id=created.subscription_id,
            charge_id=charge_id,
            status=status,
            local=local,
        )

    def build_metadata(
        self,
        company_id: str,
        plan_slug: str,
        requested: Optional[CheckoutMetadata],
    ) -> dict:
        """Gateway metadata: sanitized ``custom_id`` plus an HTTPS notification URL."""
        requested = requested or CheckoutMetadata()
        metadata = {"custom_id": build_custom_id(company_id, plan_slug, requested.custom_id)}

        if is_https(requested.notification_url):
            metadata["notification_url"] = requested.notification_url.strip()
        else:
            if requested.notification_url:
                logger.warning("Ignoring non-HTTPS notification_url from checkout request")
            fallback = self._settings.efi_webhook_url
            if is_https(fallback):
                tokens = self._settings.webhook_tokens
                metadata["notification_url"] = with_webhook_token(
                    fallback.strip(), tokens[0] if tokens else None
                )
        return metadata

    async def reconcile_quietly(self, company_id: str, keep_efi_subscription_id: int) -> None:
        """Run the reconciler; failures are audited and never reach the caller."""
        try:
            await self._reconciler.reconcile(company_id, keep_efi_subscription_id)
        except Exception as e:
            logger.error(f"Cleanup after checkout failed for company {company_id}: {e}")
            await self._audit.record(
                "cleanup-error",
                {
                    "company_id": company_id,
                    "keepEfiId": keep_efi_subscription_id,
                    "message": str(e),
                },
            )

    async def _persist(
        self,
        company_id: str,
        plan: Plan,
        efi_subscription_id: int,
        status: SubscriptionStatus,
        charge_id: Optional[int],
        amount_cents: int,
    ) -> Optional[Subscription]:
        local: Optional[Subscription] = None
        try:
            local = await self._subscriptions.upsert_by_efi_id(
                company_id,
                plan.id,
                efi_subscription_id,
                status,
                last_charge_id=charge_id,
            )
        except DatabaseError as e:
            logger.error(f"Could not upsert subscription {efi_subscription_id}: {e.message}")
            await self._audit.record(
                "upsert-local-sub-error",
                {"company_id": company_id, "efi_subscription_id": efi_subscription_id, "error": e.message},
            )

        if charge_id:
            try:
                await self._transactions.upsert_by_charge_id(
                    company_id=company_id,
                    subscription_id=local.id if local else None,
                    plan_id=plan.id,
                    efi_subscription_id=efi_subscription_id,
                    efi_charge_id=charge_id,
                    amount_cents=amount_cents,
                    currency=plan.currency or self._settings.billing_currency,
                    status=TransactionStatus.WAITING,
                )
            except DatabaseError as e:
                logger.error(f"Could not upsert transaction for charge {charge_id}: {e.message}")
                await self._audit.record(
                    "upsert-transaction-error",
                    {"company_id": company_id, "charge_id": charge_id, "error": e.message},
                )

        if status == SubscriptionStatus.ACTIVE and local is not None:
            try:
                local = await self._subscriptions.activate(local.id, charge_id) or local
            except DatabaseError as e:
                logger.error(f"Could not activate subscription {local.id}: {e.message}")
                await self._audit.record(
                    "activate-error",
                    {"company_id": company_id, "subscription_id": local.id, "error": e.message},
                )
        return local
