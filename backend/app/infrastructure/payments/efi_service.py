"""
Efí Payment Gateway Service

Clean Architecture infrastructure service for the Efí (Gerencianet)
subscriptions API. Wraps the blocking ``efipay`` SDK behind async methods
that return plain values and raise ``GatewayError`` on any failure.

- Credentials are validated before the first network call.
- Every call is observable through injectable hooks (no transport patching).
- No retries: the caller decides what a failure means at its stage.
"""

import base64
import binascii
import logging
import os
import re
import tempfile
import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Iterable, Optional

from efipay import EfiPay
from fastapi.concurrency import run_in_threadpool

from app.config.settings import Settings, get_settings
from app.domain.billing import (
    BillingAddress,
    CheckoutStage,
    CustomerInfo,
    digits_only,
    mask,
)
from app.infrastructure.exceptions import ConfigurationError, GatewayError


logger = logging.getLogger(__name__)

_CERT_BLOCK = re.compile(r"-----BEGIN CERTIFICATE-----")
_KEY_BLOCK = re.compile(r"-----BEGIN (?:RSA |EC |ENCRYPTED )?PRIVATE KEY-----")

SENSITIVE_KEYS = frozenset({"payment_token", "cpf", "client_secret", "phone_number", "birth"})

UNAUTHORIZED_HINT = (
    "401 Unauthorized: check EFI_SANDBOX and that the client id/secret "
    "belong to the account that issued the certificate."
)


# =============================================================================
# Credentials
# =============================================================================

def _clean(value: Optional[str]) -> str:
    return (value or "").replace("\r", "").replace("\n", "").strip()


def _resolve_cert_path(raw: Optional[str]) -> Optional[str]:
    if not raw or not raw.strip():
        return None
    path = raw.strip().replace("\\", "/")
    if not os.path.isabs(path):
        path = os.path.join(os.getcwd(), path)
    return path


def _write_pem_from_base64(encoded: str) -> str:
    try:
        pem = base64.b64decode(encoded.strip(), validate=False)
    except (binascii.Error, ValueError) as e:
        raise ConfigurationError(
            "EFI_CERT_PEM_BASE64 is not valid base64",
            missing_keys=["EFI_CERT_PEM_BASE64"],
            original_error=e,
        )
    handle = tempfile.NamedTemporaryFile(prefix="efi-cert-", suffix=".pem", delete=False)
    with handle:
        handle.write(pem)
    return handle.name


def _check_pem_bundle(path: str) -> None:
    if not os.path.isfile(path):
        raise ConfigurationError(
            f"Certificate file not found: {path}",
            hint="Check EFI_CERT_PATH (relative paths resolve against the working directory).",
        )
    with open(path, "r", encoding="utf-8", errors="ignore") as fh:
        text = fh.read()
    if not _CERT_BLOCK.search(text) or not _KEY_BLOCK.search(text):
        raise ConfigurationError(
            "Invalid certificate: the .pem bundle must contain a PRIVATE KEY and a CERTIFICATE",
            hint="Concatenate key and certificate into one .pem (PRIVATE KEY first, then CERTIFICATE).",
        )


@dataclass(frozen=True)
class EfiCredentials:
    """Validated client credentials and mTLS certificate for the gateway."""

    client_id: str
    client_secret: str
    certificate: str
    sandbox: bool = True
    certificate_key: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "EfiCredentials":
        """
        Build credentials from settings, failing fast on anything missing.

        Raises:
            ConfigurationError: missing client id/secret/certificate, missing
                certificate file, or a PEM bundle without key and certificate
        """
        client_id = _clean(settings.efi_client_id)
        client_secret = _clean(settings.efi_client_secret)
        if client_id != (settings.efi_client_id or ""):
            logger.warning("EFI_CLIENT_ID had surrounding whitespace or line breaks; normalized")
        if client_secret != (settings.efi_client_secret or ""):
            logger.warning("EFI_CLIENT_SECRET had surrounding whitespace or line breaks; normalized")

        certificate = _resolve_cert_path(settings.efi_cert_path)
        if certificate is None and settings.efi_cert_pem_base64:
            certificate = _write_pem_from_base64(settings.efi_cert_pem_base64)

        missing = []
        if not client_id:
            missing.append("EFI_CLIENT_ID")
        if not client_secret:
            missing.append("EFI_CLIENT_SECRET")
        if not certificate:
            missing.append("EFI_CERT_PATH")
        if missing:
            raise ConfigurationError(
                "Efí credentials are incomplete on the server",
                missing_keys=missing,
                hint="Set EFI_CLIENT_ID, EFI_CLIENT_SECRET and EFI_CERT_PATH (or EFI_CERT_PEM_BASE64).",
            )

        _check_pem_bundle(certificate)

        logger.info(
            f"Efí credentials loaded: sandbox={settings.efi_sandbox} "
            f"client_id={mask(client_id)} client_secret={mask(client_secret)} "
            f"certificate={certificate} password={'yes' if settings.efi_cert_password else 'no'}"
        )
        return cls(
            client_id=client_id,
            client_secret=client_secret,
            certificate=certificate,
            sandbox=settings.efi_sandbox,
            certificate_key=settings.efi_cert_password or None,
        )

    def to_options(self) -> dict[str, Any]:
        """SDK constructor options."""
        options: dict[str, Any] = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "sandbox": self.sandbox,
            "certificate": self.certificate,
        }
        if self.certificate_key:
            options["certificate_key"] = self.certificate_key
        return options


# =============================================================================
# Results and hooks
# =============================================================================

@dataclass
class CreatedSubscription:
    subscription_id: int
    charges: list[dict] = field(default_factory=list)

    @property
    def first_charge_id(self) -> Optional[int]:
        for charge in self.charges:
            if charge.get("charge_id") is not None:
                return int(charge["charge_id"])
        return None


@dataclass
class PaymentBinding:
    charge_id: Optional[int]
    status: str


@dataclass
class GatewayCall:
    """What a hook sees after every SDK call."""

    operation: str
    params: Optional[dict]
    body: Optional[dict]
    response: Any = None
    error: Optional[BaseException] = None
    elapsed_ms: float = 0.0


GatewayHook = Callable[[GatewayCall], None]


def redact(value: Any) -> Any:
    """Recursively mask sensitive keys in a request/response payload."""
    if isinstance(value, dict):
        return {
            k: (mask(v, 6 if k == "payment_token" else 3) if k in SENSITIVE_KEYS else redact(v))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact(v) for v in value]
    return value


def log_gateway_call(call: GatewayCall) -> None:
    """Debug hook: trace every gateway call with secrets masked."""
    if call.error is not None:
        logger.error(
            f"[EFI] {call.operation} failed after {call.elapsed_ms:.0f}ms "
            f"params={call.params} body={redact(call.body)} error={call.error!r}"
        )
        return
    logger.info(
        f"[EFI] {call.operation} {call.elapsed_ms:.0f}ms params={call.params} "
        f"body={redact(call.body)} response={redact(call.response)}"
    )


# =============================================================================
# Service
# =============================================================================

class EfiService:
    """
    Efí subscriptions API client.

    Stateless apart from the SDK client; safe to share across requests.
    """

    def __init__(
        self,
        credentials: EfiCredentials,
        client: Optional[Any] = None,
        hooks: Iterable[GatewayHook] = (),
    ):
        self._credentials = credentials
        self._client = client if client is not None else EfiPay(credentials.to_options())
        self._hooks = tuple(hooks)

    # =========================================================================
    # Plans
    # =========================================================================

    async def create_plan(
        self,
        name: str,
        interval: int = 1,
        repeats: Optional[int] = None,
        stage: str = CheckoutStage.CREATE_PLAN.value,
    ) -> int:
        """
        Create a gateway plan.

        Args:
            name: Plan name shown on the gateway
            interval: Months between charges
            repeats: Number of charges (None = until canceled)

        Returns:
            Gateway ``plan_id``
        """
        body = {"name": name, "interval": interval, "repeats": repeats}
        data = await self._call("create_plan", stage, body=body)

        plan_id = data.get("plan_id")
        if plan_id is None:
            raise GatewayError("Gateway did not return plan_id", stage=stage, raw=data)
        logger.info(f"Created Efí plan {plan_id} ({name})")
        return int(plan_id)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def create_subscription(
        self,
        plan_id: int,
        items: list[dict],
        metadata: Optional[dict] = None,
    ) -> CreatedSubscription:
        """Create a subscription under a gateway plan."""
        stage = CheckoutStage.CREATE_SUBSCRIPTION.value
        body: dict[str, Any] = {"items": items}
        if metadata:
            body["metadata"] = metadata

        data = await self._call("create_subscription", stage, params={"id": int(plan_id)}, body=body)

        subscription_id = data.get("subscription_id")
        if subscription_id is None:
            raise GatewayError("Gateway did not return subscription_id", stage=stage, raw=data)
        charges = data.get("charges") or []
        logger.info(f"Created Efí subscription {subscription_id} on plan {plan_id}")
        return CreatedSubscription(subscription_id=int(subscription_id), charges=list(charges))

    async def define_subscription_payment_method(
        self,
        subscription_id: int,
        payment_token: str,
        billing_address: BillingAddress,
        customer: CustomerInfo,
    ) -> PaymentBinding:
        """
        Bind a tokenized card to a subscription.

        Zipcode, CPF and phone are sent as digits only; state is uppercased.
        """
        stage = CheckoutStage.DEFINE_PAYMENT.value
        body = {
            "payment": {
                "credit_card": {
                    "payment_token": payment_token,
                    "billing_address": {
                        "street": str(billing_address.street),
                        "number": str(billing_address.number),
                        "neighborhood": str(billing_address.neighborhood),
                        "zipcode": digits_only(billing_address.zipcode),
                        "city": str(billing_address.city),
                        "state": str(billing_address.state).upper(),
                    },
                    "customer": {
                        "name": str(customer.name),
                        "email": str(customer.email),
                        "cpf": digits_only(customer.cpf),
                        "phone_number": digits_only(customer.phone_number),
                        "birth": str(customer.birth),
                    },
                }
            }
        }
        data = await self._call(
            "define_subscription_pay_method",
            stage,
            params={"id": int(subscription_id)},
            body=body,
        )

        charge_id = data.get("charge_id")
        return PaymentBinding(
            charge_id=int(charge_id) if charge_id is not None else None,
            status=str(data.get("status") or "waiting"),
        )

    async def cancel_subscription(
        self,
        subscription_id: int,
        stage: str = CheckoutStage.CANCEL_OLD.value,
    ) -> bool:
        """
        Cancel a gateway subscription.

        Raises:
            GatewayError: check ``is_benign`` for already-canceled/missing
        """
        await self._call("cancel_subscription", stage, params={"id": int(subscription_id)})
        logger.info(f"Canceled Efí subscription {subscription_id}")
        return True

    async def detail_subscription(self, subscription_id: int) -> dict:
        """Fetch the gateway view of a subscription."""
        return await self._call(
            "detail_subscription",
            "detail-subscription",
            params={"id": int(subscription_id)},
        )

    # =========================================================================
    # Notifications
    # =========================================================================

    async def get_notification(self, token: str) -> list[dict]:
        """
        Resolve a callback notification token into its event history.

        Returns:
            Events oldest first, each carrying ``identifiers`` and ``status``
        """
        data = await self._call("get_notification", "get-notification", params={"token": token})
        events = data.get("data", data) if isinstance(data, dict) else data
        if isinstance(events, dict):
            events = [events]
        return [e for e in events or [] if isinstance(e, dict)]

    # =========================================================================
    # Transport
    # =========================================================================

    async def _call(
        self,
        operation: str,
        stage: str,
        params: Optional[dict] = None,
        body: Optional[dict] = None,
    ) -> dict:
        method = getattr(self._client, operation)
        kwargs: dict[str, Any] = {}
        if params is not None:
            kwargs["params"] = params
        if body is not None:
            kwargs["body"] = body

        call = GatewayCall(operation=operation, params=params, body=body)
        started = time.perf_counter()
        try:
            call.response = await run_in_threadpool(method, **kwargs)
        except Exception as e:
            call.error = e
            raise self._error_from_exception(e, stage) from e
        finally:
            call.elapsed_ms = (time.perf_counter() - started) * 1000
            self._emit(call)

        return self._unwrap(call.response, stage)

    def _emit(self, call: GatewayCall) -> None:
        for hook in self._hooks:
            try:
                hook(call)
            except Exception as e:
                logger.warning(f"Gateway hook {hook!r} failed: {e}")

    @staticmethod
    def _unwrap(response: Any, stage: str) -> dict:
        """Return ``data`` of a success envelope or raise ``GatewayError``."""
        if not isinstance(response, dict):
            raise GatewayError("Unexpected gateway response", stage=stage, raw=response)

        code = response.get("code")
        if "error" not in response and (code is None or code == 200):
            data = response.get("data", response)
            return data if isinstance(data, dict) else {"data": data}

        error = response.get("error")
        description = response.get("error_description")
        if isinstance(code, int) and 100 <= code <= 599:
            status_code = code
        else:
            status_code = 400

        message = description.get("message") if isinstance(description, dict) else description
        raise GatewayError(
            str(message or error or "Gateway call failed"),
            stage=stage,
            status_code=status_code,
            code=code,
            description=description,
            raw=response,
            hint=UNAUTHORIZED_HINT if status_code == 401 else None,
        )

    @staticmethod
    def _error_from_exception(error: Exception, stage: str) -> GatewayError:
        response = getattr(error, "response", None)
        status_code = getattr(response, "status_code", 0) or 0
        raw: Any = None
        if response is not None:
            try:
                raw = response.json()
            except ValueError:
                raw = getattr(response, "text", None)

        code = description = None
        if isinstance(raw, dict):
            code = raw.get("code")
            description = raw.get("error_description") or raw.get("error")

        unauthorized = status_code == 401 or "unauthorized" in str(error).lower()
        return GatewayError(
            str(description or error or "Gateway call failed"),
            stage=stage,
            status_code=status_code,
            code=code,
            description=description,
            raw=raw,
            original_error=error,
            hint=UNAUTHORIZED_HINT if unauthorized else None,
        )


# =============================================================================
# Provider
# =============================================================================

@lru_cache
def get_efi_service() -> EfiService:
    """
    Get the shared gateway service (FastAPI dependency).

    Raises:
        ConfigurationError: credentials or certificate missing/invalid
    """
    settings = get_settings()
    credentials = EfiCredentials.from_settings(settings)
    hooks = (log_gateway_call,) if settings.efi_debug_http else ()
    return EfiService(credentials, hooks=hooks)
