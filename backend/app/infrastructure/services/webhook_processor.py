"""
Webhook Processor

Applies gateway payment notifications to the local store.

The gateway posts a notification token; it is resolved through the
notifications API into the event history and the last event is applied.
Bodies that already carry ``{subscription_id, status, charge_id}`` are
used as they are when there is no token or it cannot be resolved.

Only ``paid`` notifications for a known, non-canceled subscription change
anything: the subscription becomes active, the tenant is pointed at it
with the plan entitlement, and the charge is marked paid. Each applied
event is recorded so redeliveries are acknowledged without re-applying.
"""

import hashlib
import logging
from enum import Enum
from typing import Any, Callable, Optional

from app.domain.billing import SubscriptionStatus, WebhookNotification, mask
from app.infrastructure.db.repositories import (
    PaymentEventLogRepository,
    SubscriptionRepository,
    TransactionRepository,
    WebhookEventRepository,
    get_payment_event_log_repository,
    get_subscription_repository,
    get_transaction_repository,
    get_webhook_event_repository,
)
from app.infrastructure.exceptions import ConfigurationError, GatewayError
from app.infrastructure.payments.efi_service import EfiService, get_efi_service


logger = logging.getLogger(__name__)

PAID = "paid"


class WebhookOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    UNKNOWN_SUBSCRIPTION = "unknown_subscription"
    CANCELED_SUBSCRIPTION = "canceled_subscription"


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def event_key(notification: WebhookNotification) -> str:
    """
    Idempotency key of a notification.

    The gateway notification token when present, otherwise a digest of
    ``(subscription_id, status, charge_id)``.
    """
    if notification.notification:
        return f"efi:{notification.notification}"
    raw = "|".join(
        str(part if part is not None else "")
        for part in (notification.subscription_id, notification.status, notification.charge_id)
    )
    return "efi:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()


class WebhookProcessor:
    """
    Processes authenticated gateway notifications.

    The gateway client is resolved lazily: only token callbacks need it.
    """

    def __init__(
        self,
        subscriptions: Optional[SubscriptionRepository] = None,
        transactions: Optional[TransactionRepository] = None,
        events: Optional[WebhookEventRepository] = None,
        audit: Optional[PaymentEventLogRepository] = None,
        efi_provider: Callable[[], EfiService] = get_efi_service,
    ):
        self._subscriptions = subscriptions or get_subscription_repository()
        self._transactions = transactions or get_transaction_repository()
        self._events = events or get_webhook_event_repository()
        self._audit = audit or get_payment_event_log_repository()
        self._efi_provider = efi_provider

    async def process(
        self,
        notification: WebhookNotification,
        headers: Optional[dict] = None,
        ip: str = "",
    ) -> WebhookOutcome:
        """
        Apply one notification.

        Returns:
            What happened; every outcome is acknowledged to the gateway
        """
        if notification.notification:
            notification = await self.resolve(notification, headers=headers, ip=ip)

        status = str(notification.status or "").strip().lower()
        efi_subscription_id = _to_int(notification.subscription_id)

        if status != PAID or efi_subscription_id is None:
            logger.info(
                f"Ignoring Efí notification status={status or '(none)'} "
                f"subscription={notification.subscription_id}"
            )
            return WebhookOutcome.IGNORED

        key = event_key(notification)
        if await self._events.is_processed(key):
            logger.info(f"Notification {key} already processed, skipping")
            return WebhookOutcome.DUPLICATE

        subscription = await self._subscriptions.get_by_efi_id(efi_subscription_id)
        if subscription is None:
            logger.warning(f"Paid notification for unknown Efí subscription {efi_subscription_id}")
            return WebhookOutcome.UNKNOWN_SUBSCRIPTION

        charge_id = _to_int(notification.charge_id)
        canceled = subscription.status == SubscriptionStatus.CANCELED

        if canceled:
            logger.warning(
                f"Paid charge {charge_id} for canceled subscription {subscription.id} "
                f"(efi={efi_subscription_id}); entitlement left unchanged"
            )
        else:
            await self._subscriptions.activate(subscription.id, charge_id)

        if charge_id is not None:
            if not await self._transactions.mark_paid(charge_id):
                logger.warning(f"No transaction found for paid charge {charge_id}")

        await self._events.mark_processed(key, PAID)
        await self._audit.record(
            "incoming",
            notification.model_dump(),
            headers=headers,
            ip=ip,
        )

        if canceled:
            return WebhookOutcome.CANCELED_SUBSCRIPTION

        logger.info(
            f"Activated subscription {subscription.id} (efi={efi_subscription_id}) "
            f"for company {subscription.company_id} from paid charge {charge_id}"
        )
        return WebhookOutcome.APPLIED

    async def resolve(
        self,
        notification: WebhookNotification,
        headers: Optional[dict] = None,
        ip: str = "",
    ) -> WebhookNotification:
        """
        Replace a token callback with the last event it resolves to.

        The notification is returned unchanged when the token cannot be
        resolved or resolves to no usable event.
        """
        token = notification.notification
        try:
            history = await self._efi_provider().get_notification(token)
        except (ConfigurationError, GatewayError) as e:
            logger.warning(f"Could not resolve Efí notification {mask(token, 6)}: {e.message}")
            await self._audit.record(
                "resolve-error",
                {"token": mask(token, 6), "message": e.message},
                headers=headers,
                ip=ip,
            )
            return notification

        events = [WebhookNotification.from_payload(event) for event in history]
        events = [event for event in events if event.has_event]
        await self._audit.record(
            "resolved",
            {"token": mask(token, 6), "count": len(events), "raw_len": len(history)},
            headers=headers,
            ip=ip,
        )
        if not events:
            return notification

        return events[-1].model_copy(update={"notification": token})

    async def purge_processed_events(self, older_than_days: int) -> int:
        """Drop de-duplication keys older than the retention window."""
        return await self._events.purge_older_than(older_than_days)
