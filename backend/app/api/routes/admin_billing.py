"""
Admin Billing Routes

Operator console for tenant billing. Every endpoint requires a platform
administrator.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.dependencies import get_billing_admin_service, require_admin
from app.domain.billing import AdminActionRequest
from app.infrastructure.exceptions import BillingServiceError, status_code_for
from app.infrastructure.services.billing_admin_service import BillingAdminService


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/admin/billing/overview")
async def billing_overview(
    admin_id: str = Depends(require_admin),
    service: BillingAdminService = Depends(get_billing_admin_service),
):
    """Every company with its subscriptions and most recent transactions."""
    try:
        return await service.overview()
    except BillingServiceError as e:
        logger.error(f"Admin overview failed: {e}")
        return JSONResponse(status_code=status_code_for(e), content={"ok": False, **e.to_dict()})


@router.post("/admin/billing/action")
async def billing_action(
    request: AdminActionRequest,
    admin_id: str = Depends(require_admin),
    service: BillingAdminService = Depends(get_billing_admin_service),
):
    """
    Run a named billing action.

    Actions: ``refresh``, ``cancel``, ``mark_actual``, ``reconcile``,
    ``plans_list``, ``plans_create``, ``plans_update``, ``checkout_link``.
    Failures answer ``{"ok": false, "error": ...}``.
    """
    logger.info(f"Admin {admin_id} requested billing action '{request.action}'")
    try:
        return await service.perform(request.action, request.arguments)
    except BillingServiceError as e:
        logger.warning(f"Admin billing action '{request.action}' failed: {e}")
        return JSONResponse(status_code=status_code_for(e), content={"ok": False, **e.to_dict()})
