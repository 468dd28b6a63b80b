"""
API Dependencies

FastAPI dependency injection for authentication, tenant authorization and
the billing services.

Security: JWT tokens are verified cryptographically using Supabase JWKS (ES256)
with HS256 fallback via the JWT secret. Never decode without verification.
"""

import logging
from typing import Optional

import jwt
from jwt import PyJWKClient
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.config.settings import get_settings
from app.infrastructure.db.repositories import (
    UserAccessRepository,
    get_user_access_repository,
)
from app.infrastructure.exceptions import PermissionDeniedError
from app.infrastructure.payments.efi_service import EfiService, get_efi_service
from app.infrastructure.services.billing_admin_service import BillingAdminService
from app.infrastructure.services.plan_switcher import PlanSwitcher
from app.infrastructure.services.subscription_provisioner import SubscriptionProvisioner
from app.infrastructure.services.webhook_processor import WebhookProcessor


logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

# PyJWKClient caches keys internally and refreshes them periodically.
_jwks_client: Optional[PyJWKClient] = None


def _get_jwks_client() -> PyJWKClient:
    """Return a singleton PyJWKClient for the Supabase JWKS endpoint."""
    global _jwks_client
    if _jwks_client is None:
        settings = get_settings()
        jwks_url = f"{settings.supabase_url}/auth/v1/.well-known/jwks.json"
        _jwks_client = PyJWKClient(jwks_url, cache_keys=True)
    return _jwks_client


def _decode_with_jwks(token: str, issuer: str) -> dict:
    """Verify JWT using Supabase JWKS endpoint (ES256 asymmetric keys)."""
    client = _get_jwks_client()
    signing_key = client.get_signing_key_from_jwt(token)
    return jwt.decode(
        token,
        signing_key.key,
        algorithms=["ES256"],
        issuer=issuer,
        audience="authenticated",
        options={"require": ["exp", "sub", "iss"]},
    )


def _decode_with_secret(token: str, secret: str, issuer: str) -> dict:
    """Verify JWT using HS256 symmetric secret (legacy Supabase signing)."""
    return jwt.decode(
        token,
        secret,
        algorithms=["HS256"],
        issuer=issuer,
        audience="authenticated",
        options={"require": ["exp", "sub", "iss"]},
    )


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Extract and verify user ID from a Supabase JWT.

    Verification strategy (in order):
      1. JWKS (ES256), when ``SUPABASE_URL`` is configured.
      2. HS256 with ``SUPABASE_JWT_SECRET``.

    Returns:
        Authenticated user ID (``sub`` claim).

    Raises:
        HTTPException 401: token missing, expired, or invalid.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = credentials.credentials
    settings = get_settings()
    issuer = f"{settings.supabase_url}/auth/v1"

    payload: Optional[dict] = None

    if settings.supabase_url:
        try:
            payload = _decode_with_jwks(token, issuer)
        except (jwt.exceptions.PyJWKClientError, jwt.InvalidTokenError) as jwks_err:
            logger.debug("JWKS verification failed, trying HS256 fallback: %s", jwks_err)

    if payload is None and settings.supabase_jwt_secret:
        try:
            payload = _decode_with_secret(
                token, settings.supabase_jwt_secret, issuer
            )
        except jwt.ExpiredSignatureError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired",
            )
        except jwt.InvalidTokenError as e:
            logger.warning("HS256 JWT verification also failed: %s", e)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or unverifiable token",
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user ID",
        )

    return user_id


# =============================================================================
# Authorization
# =============================================================================

async def require_admin(
    user_id: str = Depends(get_current_user_id),
    access: UserAccessRepository = Depends(get_user_access_repository),
) -> str:
    """
    Require a platform administrator.

    Raises:
        HTTPException 403: authenticated but not an admin
    """
    if not await access.is_admin(user_id):
        logger.warning(f"User {user_id} denied admin billing access")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user_id


async def ensure_company_access(
    user_id: str,
    company_id: Optional[str],
    access: UserAccessRepository,
) -> None:
    """
    Allow members of the company and platform admins.

    A missing ``company_id`` is left to request validation.

    Raises:
        PermissionDeniedError: caller may not bill this company
    """
    if not company_id:
        return
    if await access.belongs_to_company(user_id, company_id):
        return
    if await access.is_admin(user_id):
        return
    raise PermissionDeniedError(
        "You do not have access to this company",
        details={"company_id": company_id},
    )


# =============================================================================
# Service providers
# =============================================================================

def get_subscription_provisioner(
    efi: EfiService = Depends(get_efi_service),
) -> SubscriptionProvisioner:
    return SubscriptionProvisioner(efi)


def get_plan_switcher(
    efi: EfiService = Depends(get_efi_service),
) -> PlanSwitcher:
    return PlanSwitcher(efi)


def get_webhook_processor() -> WebhookProcessor:
    return WebhookProcessor()


def get_billing_admin_service() -> BillingAdminService:
    return BillingAdminService()
