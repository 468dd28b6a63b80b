"""
Efí Webhook Handler

Receives asynchronous payment notifications from the Efí gateway.

Authentication is a shared secret (``EFI_WEBHOOK_TOKEN``, comma-separated
for rotation) carried in the ``X-Webhook-Token`` header or the ``t`` query
parameter. Once authenticated the endpoint always acknowledges with
``200 {"received": true}`` so the gateway stops redelivering; processing
failures are logged.
"""

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError as PydanticValidationError

from app.config.settings import get_settings
from app.api.dependencies import get_webhook_processor
from app.domain.billing import WebhookAck, WebhookNotification
from app.infrastructure.exceptions import BillingServiceError, WebhookAuthenticationError
from app.infrastructure.services.webhook_processor import WebhookProcessor


logger = logging.getLogger(__name__)

router = APIRouter()

TOKEN_HEADER = "x-webhook-token"
TOKEN_QUERY_PARAM = "t"
FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")

# Never copied into the audit log.
_SECRET_HEADERS = frozenset({TOKEN_HEADER, "authorization", "cookie"})


def verify_webhook_token(presented: Optional[str], accepted: list[str]) -> bool:
    """Constant-time check of the presented token against every accepted one."""
    if not presented:
        return False
    matched = False
    for token in accepted:
        if secrets.compare_digest(presented.encode("utf-8"), token.encode("utf-8")):
            matched = True
    return matched


def _audit_headers(request: Request) -> dict[str, str]:
    return {k: v for k, v in request.headers.items() if k.lower() not in _SECRET_HEADERS}


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


async def _read_payload(request: Request) -> dict:
    """JSON object or form fields; anything else reads as empty."""
    content_type = request.headers.get("content-type", "").lower()
    if content_type.startswith(FORM_CONTENT_TYPES):
        form = await request.form()
        return {key: value for key, value in form.items() if isinstance(value, str)}
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Efí notification body is not valid JSON")
        return {}
    return payload if isinstance(payload, dict) else {}


async def _read_notification(request: Request) -> WebhookNotification:
    payload = await _read_payload(request)
    try:
        return WebhookNotification.from_payload(payload)
    except PydanticValidationError as e:
        logger.warning(f"Malformed Efí notification: {e}")
        return WebhookNotification()


@router.post("/webhooks/efi", response_model=WebhookAck)
async def efi_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """
    Handle an Efí payment notification.

    Raises:
        WebhookAuthenticationError: a token is configured and the request lacks it (401)
    """
    accepted = get_settings().webhook_tokens
    if accepted:
        presented = request.headers.get(TOKEN_HEADER) or request.query_params.get(TOKEN_QUERY_PARAM)
        if not verify_webhook_token(presented, accepted):
            logger.warning(f"Rejected Efí notification from {_client_ip(request)}: bad or missing token")
            raise WebhookAuthenticationError("Invalid webhook token")
    else:
        logger.warning("EFI_WEBHOOK_TOKEN is not set; accepting unauthenticated Efí notification")

    notification = await _read_notification(request)

    try:
        outcome = await processor.process(
            notification,
            headers=_audit_headers(request),
            ip=_client_ip(request),
        )
        logger.info(f"Efí notification for subscription {notification.subscription_id}: {outcome.value}")
    except BillingServiceError as e:
        logger.error(f"Error processing Efí notification {notification.subscription_id}: {e}")

    return WebhookAck()
