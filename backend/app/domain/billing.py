"""
Billing Domain Models

Domain models for tenant billing following Clean Architecture.
Enums, DTOs, domain entities and the plan entitlement table for the
subscription bounded context.
"""

import math
import re
import unicodedata
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field

from app.infrastructure.exceptions import ValidationError


class SubscriptionStatus(str, Enum):
    """Local subscription lifecycle status."""
    WAITING = "waiting"
    PENDING_PAYMENT = "pending_payment"
    ACTIVE = "active"
    CANCELED = "canceled"


class TransactionStatus(str, Enum):
    """Charge attempt status."""
    WAITING = "waiting"
    PAID = "paid"
    FAILED = "failed"


class CheckoutStage(str, Enum):
    """Pipeline stage reported back to the caller on success or failure."""
    INIT = "init"
    LOAD_PLAN = "load-plan"
    CREATE_PLAN = "create-plan"
    ENSURE_EFI_PLAN = "ensure-efi-plan"
    CANCEL_OLD = "cancel-old"
    CREATE_SUBSCRIPTION = "create-subscription"
    INSERT_LOCAL = "insert-local"
    DEFINE_PAYMENT = "define-payment"


# =============================================================================
# Domain Entities
# =============================================================================

class Company(BaseModel):
    """Tenant (company) billing view."""
    id: str
    name: str
    plan: Optional[str] = None
    maxemployees: Optional[int] = None
    current_subscription_id: Optional[str] = None
    plan_features: Optional[dict] = None

    class Config:
        from_attributes = True


class Plan(BaseModel):
    """Catalog plan. ``efi_plan_id`` is assigned lazily on first checkout."""
    id: str
    slug: str
    name: str
    description: Optional[str] = None
    price_cents: int = 0
    currency: str = "BRL"
    interval_months: int = 1
    trial_days: int = 0
    max_employees: Optional[int] = None
    efi_plan_id: Optional[int] = None
    active: bool = True
    is_public: bool = False
    features_json: Optional[Any] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Subscription(BaseModel):
    """Core reconciliation entity."""
    id: Optional[str] = None
    company_id: str
    plan_id: Optional[str] = None
    status: SubscriptionStatus = SubscriptionStatus.WAITING
    efi_subscription_id: Optional[int] = None
    last_charge_id: Optional[int] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Transaction(BaseModel):
    """One row per charge attempt."""
    id: Optional[str] = None
    company_id: Optional[str] = None
    subscription_id: Optional[str] = None
    plan_id: Optional[str] = None
    efi_subscription_id: Optional[int] = None
    efi_charge_id: Optional[int] = None
    method: str = "credit_card"
    status: TransactionStatus = TransactionStatus.WAITING
    amount_cents: int = 0
    currency: str = "BRL"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =============================================================================
# Request/Response DTOs
# =============================================================================

class _LooseModel(BaseModel):
    """Checkout payloads come from a browser form: accept numbers as text."""
    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")


class CheckoutItem(_LooseModel):
    """Single line item billed by the gateway subscription."""
    name: Optional[str] = None
    value: Optional[float] = Field(default=None, description="Unit value in cents")
    amount: Optional[float] = Field(default=None, description="Quantity (defaults to 1)")


class CheckoutMetadata(_LooseModel):
    custom_id: Optional[str] = None
    notification_url: Optional[str] = None


class CustomerInfo(_LooseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    cpf: Optional[str] = None
    phone_number: Optional[str] = None
    birth: Optional[str] = None


class BillingAddress(_LooseModel):
    street: Optional[str] = None
    number: Optional[str] = None
    neighborhood: Optional[str] = None
    zipcode: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None


class SubscribeRequest(_LooseModel):
    """Request DTO for a first checkout."""
    plan_uuid: Optional[str] = Field(default=None, description="Local plan id")
    plan_slug: Optional[str] = None
    company_id: Optional[str] = None
    item: Optional[CheckoutItem] = None
    metadata: Optional[CheckoutMetadata] = None
    customer: Optional[CustomerInfo] = None
    billing_address: Optional[BillingAddress] = None
    payment_token: Optional[str] = Field(
        default=None, description="Card token produced client-side by the gateway JS"
    )


class ChangePlanRequest(_LooseModel):
    """Request DTO for migrating a tenant to another plan."""
    company_id: Optional[str] = None
    plan_id: Optional[str] = None
    payment_token: Optional[str] = None
    customer: Optional[CustomerInfo] = None
    billing_address: Optional[BillingAddress] = None
    metadata: Optional[CheckoutMetadata] = None
    item: Optional[CheckoutItem] = None


class SubscribeResult(BaseModel):
    """Response DTO for a successful checkout."""
    subscription_id: int
    charge_id: Optional[int] = None
    status: SubscriptionStatus
    stage: str


class CanceledOld(BaseModel):
    efi_subscription_id: Optional[int] = None
    ok: bool


class ChangePlanResult(BaseModel):
    """Response DTO for a successful plan change."""
    stage: str
    new_subscription_id: int
    new_charge_id: Optional[int] = None
    new_status: Optional[SubscriptionStatus] = None
    canceled_old: Optional[CanceledOld] = None


_NOTIFICATION_TOKEN_KEYS = ("notification", "token", "notification_token")
_STATUS_KEYS = ("current", "status", "situation", "value", "label", "event", "name")


def _dig(payload: dict, *paths: str) -> Any:
    """First non-empty value among dotted paths (``subscription.id``)."""
    for path in paths:
        value: Any = payload
        for key in path.split("."):
            value = value.get(key) if isinstance(value, dict) else None
        if value not in (None, ""):
            return value
    return None


def extract_status(value: Any) -> Optional[str]:
    """
    Normalize a gateway status.

    Accepts a plain string, a ``{"current": ..., "previous": ...}`` object,
    or a list of those (the last entry wins).
    """
    if isinstance(value, list):
        return extract_status(value[-1]) if value else None
    if isinstance(value, dict):
        for key in _STATUS_KEYS:
            if isinstance(value.get(key), str):
                return extract_status(value[key])
        return None
    if isinstance(value, str) and value.strip():
        return value.strip().lower()
    return None


class WebhookNotification(BaseModel):
    """
    Inbound gateway notification. Unknown fields are ignored.

    ``notification`` is the callback token the gateway posts; it resolves
    to the event history through the notifications API.
    """
    model_config = ConfigDict(extra="ignore")

    subscription_id: Optional[Any] = None
    status: Optional[Any] = None
    charge_id: Optional[Any] = None
    notification: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict) -> "WebhookNotification":
        """Pick the ids and status out of a flat body or a gateway event."""
        token = _dig(payload, *_NOTIFICATION_TOKEN_KEYS)
        status = _dig(
            payload,
            "status", "situation", "event", "data.status", "charge.status", "subscription.status",
        )
        return cls(
            subscription_id=_dig(
                payload,
                "subscription_id", "subscription.id", "identifiers.subscription_id", "data.subscription_id",
            ),
            charge_id=_dig(payload, "charge_id", "charge.id", "identifiers.charge_id", "data.charge_id"),
            status=extract_status(status),
            notification=str(token) if token is not None else None,
        )

    @property
    def has_event(self) -> bool:
        return any(v not in (None, "") for v in (self.subscription_id, self.charge_id, self.status))


class WebhookAck(BaseModel):
    received: bool = True


class AdminActionRequest(BaseModel):
    """``{action, ...}``; the remaining keys are the action's arguments."""
    model_config = ConfigDict(extra="allow")

    action: str = ""

    @property
    def arguments(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class PlanCreateRequest(BaseModel):
    """Admin payload for a new catalog plan."""
    name: str = Field(min_length=1)
    price_cents: int = Field(ge=0)
    slug: Optional[str] = None
    description: Optional[str] = None
    interval_months: int = Field(default=1, ge=1)
    trial_days: int = Field(default=0, ge=0)
    max_employees: Optional[int] = 5
    is_public: bool = False
    active: bool = True
    features_json: Optional[Any] = None


# =============================================================================
# Plan Entitlements (Business Logic)
# =============================================================================

# Seat limit granted per plan slug. None means unlimited.
PLAN_SEAT_LIMITS: dict[str, Optional[int]] = {
    "free": 3,
    "starter": 10,
    "basic": 10,
    "business": 25,
    "pro": 50,
    "enterprise": None,
}


def get_seat_limit(slug: Optional[str], fallback: Optional[int] = None) -> Optional[int]:
    """Seat limit for a plan slug, using the plan row's own limit when unlisted."""
    if slug and slug in PLAN_SEAT_LIMITS:
        return PLAN_SEAT_LIMITS[slug]
    return fallback


# =============================================================================
# Helpers
# =============================================================================

_CUSTOM_ID_INVALID = re.compile(r"[^\w\- ]+", re.ASCII)


def sanitize_custom_id(value: str, max_len: int = 64) -> str:
    """Keep ``[A-Za-z0-9_ -]``, turn everything else into dashes, cap the length."""
    normalized = unicodedata.normalize("NFKD", value)
    cleaned = _CUSTOM_ID_INVALID.sub("-", normalized)
    cleaned = re.sub(r"\s+", "-", cleaned)
    cleaned = re.sub(r"-+", "-", cleaned)
    return cleaned.strip("-")[:max_len]


def slugify(value: str) -> str:
    """Lowercase ASCII slug: ``Plano Pró Anual`` -> ``plano-pro-anual``."""
    ascii_text = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", ascii_text.lower()).strip("-")


def build_custom_id(company_id: str, plan_slug: str, requested: Optional[str] = None) -> str:
    """Opaque tenant correlation id sent to the gateway as metadata."""
    if requested and requested.strip():
        return sanitize_custom_id(requested)
    return sanitize_custom_id(f"company:{company_id}|plan:{plan_slug}")


def is_https(url: Optional[str]) -> bool:
    if not url:
        return False
    try:
        parsed = urlparse(str(url).strip())
    except ValueError:
        return False
    return parsed.scheme == "https" and bool(parsed.netloc)


def digits_only(value: Any) -> str:
    return re.sub(r"\D", "", str(value))


def mask(value: Optional[Any], keep: int = 3) -> str:
    """Mask a secret for logs, keeping only both ends."""
    if value is None or value == "":
        return "(empty)"
    text = str(value)
    if len(text) <= keep * 2:
        return text
    return f"{text[:keep]}...{text[-keep:]}"


def _require(value: Any, label: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(
            f"Missing required parameter: {label}",
            details={"field": label},
            stage=CheckoutStage.INIT.value,
        )


def validate_payer_fields(
    payment_token: Optional[str],
    customer: Optional[CustomerInfo],
    billing_address: Optional[BillingAddress],
) -> None:
    """Validate the card token, customer identity and billing address."""
    customer = customer or CustomerInfo()
    address = billing_address or BillingAddress()

    _require(payment_token, "payment_token")
    for field in ("name", "email", "cpf", "phone_number", "birth"):
        _require(getattr(customer, field), f"customer[{field}]")
    for field in ("street", "number", "neighborhood", "zipcode", "city", "state"):
        _require(getattr(address, field), f"billing_address[{field}]")


def validate_item_numbers(value: Optional[float], amount: Optional[float]) -> tuple[int, int]:
    """
    Validate line-item numbers and return ``(value_cents, quantity)``.

    Raises:
        ValidationError: value not finite, under one cent once rounded, or
            amount not an integer >= 1
    """
    if value is None or not math.isfinite(value) or int(round(value)) < 1:
        raise ValidationError(
            "Invalid item[value]: must be a positive amount in cents",
            details={"field": "item[value]"},
            stage=CheckoutStage.INIT.value,
        )
    quantity = 1 if amount is None else amount
    if not math.isfinite(quantity) or quantity < 1 or quantity != int(quantity):
        raise ValidationError(
            "Invalid item[amount]: must be an integer >= 1",
            details={"field": "item[amount]"},
            stage=CheckoutStage.INIT.value,
        )
    return int(round(value)), int(quantity)


def validate_checkout_fields(request: SubscribeRequest) -> tuple[int, int]:
    """
    Validate every field a first checkout needs before any external call.

    Returns:
        ``(value_cents, quantity)`` of the line item
    """
    item = request.item or CheckoutItem()

    _require(request.plan_uuid, "plan_uuid")
    _require(request.company_id, "company_id")
    _require(item.name, "item[name]")
    _require(item.value, "item[value]")
    validate_payer_fields(request.payment_token, request.customer, request.billing_address)
    return validate_item_numbers(item.value, item.amount)


def validate_change_plan_request(request: ChangePlanRequest) -> None:
    """Validate a plan change; the item is optional and defaults to the plan price."""
    _require(request.company_id, "company_id")
    _require(request.plan_id, "plan_id")
    validate_payer_fields(request.payment_token, request.customer, request.billing_address)
