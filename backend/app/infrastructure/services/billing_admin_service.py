"""
Billing Admin Service

Operator console for tenant billing: an overview of every company with
its subscriptions and recent charges, and a set of named actions to
repair or adjust billing state by hand.
"""

import logging
from dataclasses import asdict
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlencode

from pydantic import ValidationError as PydanticValidationError

from app.config.settings import Settings, get_settings
from app.domain.billing import PlanCreateRequest, slugify
from app.infrastructure.db.repositories import (
    CompanyRepository,
    PaymentEventLogRepository,
    PlanRepository,
    SubscriptionRepository,
    TransactionRepository,
    get_company_repository,
    get_payment_event_log_repository,
    get_plan_repository,
    get_subscription_repository,
    get_transaction_repository,
)
from app.infrastructure.exceptions import NotFoundError, ValidationError
from app.infrastructure.payments.efi_service import EfiService, get_efi_service
from app.infrastructure.services.subscription_reconciler import (
    SubscriptionReconciler,
    cancel_on_gateway,
)


logger = logging.getLogger(__name__)

OVERVIEW_TRANSACTION_WINDOW = 500
TRANSACTIONS_PER_COMPANY = 50


def _required(arguments: dict[str, Any], key: str) -> Any:
    value = arguments.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"Missing required parameter: {key}", details={"field": key})
    return value


def _as_int(value: Any, key: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {key}: expected an integer", details={"field": key})


def _optional_bool(value: Any) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes")


class BillingAdminService:
    """
    Admin billing operations.

    The gateway client is resolved lazily so read-only operations work
    without Efí credentials configured.
    """

    def __init__(
        self,
        efi_provider: Callable[[], EfiService] = get_efi_service,
        companies: Optional[CompanyRepository] = None,
        plans: Optional[PlanRepository] = None,
        subscriptions: Optional[SubscriptionRepository] = None,
        transactions: Optional[TransactionRepository] = None,
        audit: Optional[PaymentEventLogRepository] = None,
        settings: Optional[Settings] = None,
    ):
        self._efi_provider = efi_provider
        self._companies = companies or get_company_repository()
        self._plans = plans or get_plan_repository()
        self._subscriptions = subscriptions or get_subscription_repository()
        self._transactions = transactions or get_transaction_repository()
        self._audit = audit or get_payment_event_log_repository()
        self._settings = settings or get_settings()

        self._actions: dict[str, Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]] = {
            "refresh": self.refresh,
            "cancel": self.cancel,
            "mark_actual": self.mark_actual,
            "reconcile": self.reconcile,
            "plans_list": self.plans_list,
            "plans_create": self.plans_create,
            "plans_update": self.plans_update,
            "checkout_link": self.checkout_link,
        }

    @property
    def actions(self) -> list[str]:
        return sorted(self._actions)

    def _reconciler(self) -> SubscriptionReconciler:
        return SubscriptionReconciler(
            self._efi_provider(),
            subscriptions=self._subscriptions,
            companies=self._companies,
            audit=self._audit,
        )

    # =========================================================================
    # Overview
    # =========================================================================

    async def overview(self) -> dict[str, Any]:
        """
        Every company with its subscriptions (newest first, plan nested,
        current flagged) and its most recent transactions.
        """
        companies = await self._companies.list_all()
        subscriptions = await self._subscriptions.list_all()
        plans = {p.id: p for p in await self._plans.list_filtered()}
        transactions = await self._transactions.recent(OVERVIEW_TRANSACTION_WINDOW)

        subs_by_company: dict[str, list[dict]] = {}
        current_ids = {c.id: c.current_subscription_id for c in companies}
        for sub in subscriptions:
            plan = plans.get(sub.plan_id) if sub.plan_id else None
            row = sub.model_dump(mode="json")
            row["plan"] = (
                {"id": plan.id, "slug": plan.slug, "name": plan.name, "price_cents": plan.price_cents}
                if plan
                else None
            )
            row["is_current"] = current_ids.get(sub.company_id) == sub.id
            subs_by_company.setdefault(sub.company_id, []).append(row)

        txs_by_company: dict[str, list[dict]] = {}
        for tx in transactions:
            if not tx.company_id:
                continue
            bucket = txs_by_company.setdefault(tx.company_id, [])
            if len(bucket) < TRANSACTIONS_PER_COMPANY:
                bucket.append(tx.model_dump(mode="json"))

        return {
            "companies": [
                {
                    "id": c.id,
                    "name": c.name,
                    "plan": c.plan,
                    "maxemployees": c.maxemployees,
                    "current_subscription_id": c.current_subscription_id,
                    "subscriptions": subs_by_company.get(c.id, []),
                    "transactions": txs_by_company.get(c.id, []),
                }
                for c in companies
            ]
        }

    # =========================================================================
    # Actions
    # =========================================================================

    async def perform(self, action: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """
        Dispatch a named admin action.

        Raises:
            ValidationError: unknown action or missing argument
        """
        handler = self._actions.get(action)
        if handler is None:
            raise ValidationError("unknown action", details={"action": action})
        logger.info(f"Admin billing action '{action}'")
        return await handler(arguments)

    async def refresh(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Fetch the gateway's view of a subscription."""
        efi_id = _as_int(_required(arguments, "efi_subscription_id"), "efi_subscription_id")
        detail = await self._efi_provider().detail_subscription(efi_id)
        return {"ok": True, "subscription": detail}

    async def cancel(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """
        Cancel a subscription at the gateway (errors tolerated) and locally.

        When it was the tenant's current subscription, the most recently
        started active one takes over; without one the tenant drops to the
        free plan.
        """
        subscription_id = _required(arguments, "subscription_id")
        sub = await self._subscriptions.get(subscription_id)
        if sub is None:
            raise NotFoundError(f"Subscription not found: {subscription_id}", "select", "subscriptions")

        efi_id = arguments.get("efi_subscription_id") or sub.efi_subscription_id
        gateway: Optional[dict] = None
        if efi_id:
            attempt = await cancel_on_gateway(self._efi_provider(), _as_int(efi_id, "efi_subscription_id"))
            gateway = {"ok": attempt.ok, "status": attempt.status_code, "error": attempt.error}
            if not attempt.ok:
                logger.warning(f"Gateway cancel of {efi_id} failed ({attempt.status_code}); canceling locally anyway")

        company = await self._companies.get(sub.company_id)
        await self._subscriptions.mark_canceled(sub.id)
        await self._audit.record(
            "admin-cancel",
            {"subscription_id": sub.id, "efi_subscription_id": efi_id, "gateway": gateway},
        )

        result: dict[str, Any] = {"ok": True, "gateway": gateway, "current_subscription_id": None}
        if company is None or company.current_subscription_id != sub.id:
            result["current_subscription_id"] = company.current_subscription_id if company else None
            return result

        replacement = await self._subscriptions.get_active_for_company(sub.company_id, exclude_id=sub.id)
        if replacement is not None:
            await self._subscriptions.make_current(replacement.id)
            result["current_subscription_id"] = replacement.id
        else:
            await self._companies.set_plan(
                sub.company_id,
                self._settings.free_plan_slug,
                self._settings.free_plan_max_employees,
                current_subscription_id=None,
            )
            result["fallback_plan"] = self._settings.free_plan_slug
        return result

    async def mark_actual(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Make a subscription the tenant's current one and apply its plan."""
        subscription_id = _required(arguments, "subscription_id")
        sub = await self._subscriptions.make_current(subscription_id)
        if sub is None:
            raise NotFoundError(f"Subscription not found: {subscription_id}", "select", "subscriptions")
        return {"ok": True, "subscription": sub.model_dump(mode="json")}

    async def reconcile(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Converge one tenant (optionally keeping a given gateway id) or all of them."""
        reconciler = self._reconciler()
        company_id = arguments.get("company_id")
        keep = arguments.get("keep_efi_subscription_id")

        if company_id and keep:
            reports = [await reconciler.reconcile(company_id, _as_int(keep, "keep_efi_subscription_id"))]
        elif company_id:
            reports = [await reconciler.converge(company_id)]
        else:
            reports = await reconciler.reconcile_all()

        return {"ok": True, "reports": [asdict(r) | {"canceled": r.canceled} for r in reports]}

    async def plans_list(self, arguments: dict[str, Any]) -> dict[str, Any]:
        plans = await self._plans.list_filtered(
            is_public=_optional_bool(arguments.get("is_public")),
            active=_optional_bool(arguments.get("active")),
        )
        return {"ok": True, "plans": [p.model_dump(mode="json") for p in plans]}

    async def plans_create(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """
        Create a catalog plan.

        The gateway plan is created first; the slug is made unique by
        suffixing ``-2``, ``-3`` ... when taken.
        """
        try:
            payload = PlanCreateRequest.model_validate(arguments)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid plan payload",
                details={"errors": e.errors(include_url=False)},
            )

        efi_plan_id = await self._efi_provider().create_plan(
            payload.name,
            interval=payload.interval_months,
            repeats=None,
        )
        slug = await self._unique_slug(slugify(payload.slug or payload.name) or "plan")

        plan = await self._plans.create(
            slug=slug,
            name=payload.name,
            description=payload.description,
            price_cents=payload.price_cents,
            currency=self._settings.billing_currency,
            interval_months=payload.interval_months,
            trial_days=payload.trial_days,
            max_employees=payload.max_employees,
            efi_plan_id=efi_plan_id,
            is_public=payload.is_public,
            active=payload.active,
            features_json=payload.features_json,
        )
        return {"ok": True, "plan": plan.model_dump(mode="json")}

    async def plans_update(self, arguments: dict[str, Any]) -> dict[str, Any]:
        plan_id = _required(arguments, "id")
        patch = arguments.get("patch")
        if not isinstance(patch, dict):
            raise ValidationError("Missing required parameter: patch", details={"field": "patch"})

        plan = await self._plans.update(plan_id, patch)
        if plan is None:
            raise NotFoundError(f"Plan not found: {plan_id}", "select", "plans")
        return {"ok": True, "plan": plan.model_dump(mode="json")}

    async def checkout_link(self, arguments: dict[str, Any]) -> dict[str, Any]:
        plan_id = _required(arguments, "plan_id")
        company_id = _required(arguments, "company_id")
        base = self._settings.site_url or self._settings.frontend_url.rstrip("/")
        query = urlencode({"planId": plan_id, "companyId": company_id})
        return {"ok": True, "url": f"{base}/checkout?{query}"}

    async def _unique_slug(self, base: str) -> str:
        candidate, n = base, 2
        while await self._plans.slug_exists(candidate):
            candidate = f"{base}-{n}"
            n += 1
        return candidate
