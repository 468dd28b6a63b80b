"""
Stale-Subscription Reconciler

Converges a tenant toward a single live gateway subscription by canceling
every other non-canceled one, at the gateway first and locally second.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from app.domain.billing import Subscription, SubscriptionStatus
from app.infrastructure.db.repositories import (
    CompanyRepository,
    PaymentEventLogRepository,
    SubscriptionRepository,
    get_company_repository,
    get_payment_event_log_repository,
    get_subscription_repository,
)
from app.infrastructure.exceptions import DatabaseError, GatewayError
from app.infrastructure.payments.efi_service import EfiService


logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class CancelAttempt:
    """Outcome of one gateway cancel. ``ok`` is also True for benign errors."""

    efi_subscription_id: int
    ok: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    data: Optional[object] = None
    subscription_id: Optional[str] = None


@dataclass
class ReconciliationReport:
    company_id: str
    kept_efi_subscription_id: Optional[int]
    scanned: int = 0
    attempts: list[CancelAttempt] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def canceled(self) -> int:
        return sum(1 for a in self.attempts if a.ok)


async def cancel_on_gateway(efi: EfiService, efi_subscription_id: int) -> CancelAttempt:
    """
    Cancel one gateway subscription.

    400/404/409 mean the subscription is already gone and count as success.
    """
    try:
        await efi.cancel_subscription(efi_subscription_id)
        return CancelAttempt(efi_subscription_id=efi_subscription_id, ok=True)
    except GatewayError as e:
        return CancelAttempt(
            efi_subscription_id=efi_subscription_id,
            ok=e.is_benign,
            status_code=e.status_code,
            error=e.message,
            data=e.raw,
        )


def pick_subscription_to_keep(
    subscriptions: list[Subscription],
    current_subscription_id: Optional[str],
) -> Optional[Subscription]:
    """
    Choose the survivor among a tenant's open subscriptions (newest first).

    The tenant's current pointer wins, then the most recently started
    active subscription, then the most recently created one.
    """
    if not subscriptions:
        return None
    for sub in subscriptions:
        if current_subscription_id and sub.id == current_subscription_id:
            return sub

    active = [s for s in subscriptions if s.status == SubscriptionStatus.ACTIVE]
    if active:
        return max(active, key=lambda s: s.started_at or _EPOCH)
    return subscriptions[0]


class SubscriptionReconciler:
    """Cancels a tenant's superseded gateway subscriptions and audits each step."""

    def __init__(
        self,
        efi: EfiService,
        subscriptions: Optional[SubscriptionRepository] = None,
        companies: Optional[CompanyRepository] = None,
        audit: Optional[PaymentEventLogRepository] = None,
    ):
        self._efi = efi
        self._subscriptions = subscriptions or get_subscription_repository()
        self._companies = companies or get_company_repository()
        self._audit = audit or get_payment_event_log_repository()

    async def reconcile(
        self,
        company_id: str,
        keep_efi_subscription_id: Optional[int],
    ) -> ReconciliationReport:
        """
        Cancel every non-canceled subscription of the company except the kept one.

        Gateway success or a benign error marks the row canceled locally;
        any other gateway error leaves it for a later run.
        """
        report = ReconciliationReport(
            company_id=company_id,
            kept_efi_subscription_id=keep_efi_subscription_id,
        )
        try:
            stale = await self._subscriptions.list_open(company_id, keep_efi_subscription_id)
        except DatabaseError as e:
            report.error = e.message
            stale = []

        report.scanned = len(stale)
        await self._audit.record(
            "cleanup-scan",
            {
                "company_id": company_id,
                "count": report.scanned,
                "keepEfiId": keep_efi_subscription_id,
                "error": report.error,
            },
        )

        for sub in stale:
            attempt = await cancel_on_gateway(self._efi, sub.efi_subscription_id)
            attempt.subscription_id = sub.id
            local_error: Optional[str] = None
            if attempt.ok:
                try:
                    await self._subscriptions.mark_canceled(sub.id)
                except DatabaseError as e:
                    local_error = e.message
                    logger.error(
                        f"Efí subscription {sub.efi_subscription_id} canceled but local row "
                        f"{sub.id} could not be updated: {e.message}"
                    )
            else:
                logger.warning(
                    f"Could not cancel Efí subscription {sub.efi_subscription_id} "
                    f"for company {company_id}: {attempt.status_code} {attempt.error}"
                )
            report.attempts.append(attempt)

            await self._audit.record(
                "cleanup-cancel-old",
                {
                    "company_id": company_id,
                    "efi_subscription_id": sub.efi_subscription_id,
                    "ok": attempt.ok,
                    "error": attempt.error,
                    "status": attempt.status_code,
                    "data": attempt.data,
                    "local_error": local_error,
                },
            )

        if report.attempts:
            logger.info(
                f"Reconciled company {company_id}: {report.canceled}/{len(report.attempts)} "
                f"stale subscriptions canceled, kept {keep_efi_subscription_id}"
            )
        return report

    async def converge(self, company_id: str) -> ReconciliationReport:
        """Reconcile one company, choosing which subscription survives."""
        company = await self._companies.get(company_id)
        open_subs = await self._subscriptions.list_open(company_id)
        keep = pick_subscription_to_keep(
            open_subs,
            company.current_subscription_id if company else None,
        )
        return await self.reconcile(company_id, keep.efi_subscription_id if keep else None)

    async def reconcile_all(self) -> list[ReconciliationReport]:
        """Converge every company holding more than one open subscription."""
        reports = []
        for company_id in await self._subscriptions.companies_with_multiple_open():
            try:
                reports.append(await self.converge(company_id))
            except DatabaseError as e:
                logger.error(f"Reconciliation of company {company_id} failed: {e.message}")
                reports.append(
                    ReconciliationReport(company_id=company_id, kept_efi_subscription_id=None, error=e.message)
                )
        logger.info(f"Reconciliation pass finished for {len(reports)} companies")
        return reports
