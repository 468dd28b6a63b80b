"""
Billing API Routes

Checkout endpoints for tenants: first subscription and plan change.

Failures propagate as ``BillingServiceError`` subclasses and are rendered
by the application exception handlers as ``{error, stage?, hint?, details?}``.
"""

import logging

from fastapi import APIRouter, Depends

from app.api.dependencies import (
    ensure_company_access,
    get_current_user_id,
    get_plan_switcher,
    get_subscription_provisioner,
)
from app.domain.billing import (
    ChangePlanRequest,
    ChangePlanResult,
    SubscribeRequest,
    SubscribeResult,
)
from app.infrastructure.db.dependencies import UserAccessRepoDep
from app.infrastructure.services.plan_switcher import PlanSwitcher
from app.infrastructure.services.subscription_provisioner import SubscriptionProvisioner


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/billing/subscribe", response_model=SubscribeResult, response_model_exclude_none=True)
async def subscribe(
    request: SubscribeRequest,
    access: UserAccessRepoDep,
    user_id: str = Depends(get_current_user_id),
    provisioner: SubscriptionProvisioner = Depends(get_subscription_provisioner),
):
    """
    Subscribe a tenant to a plan with a tokenized credit card.

    Returns the gateway subscription id, the first charge id when the
    gateway produced one, and the resulting local status.
    """
    await ensure_company_access(user_id, request.company_id, access)

    logger.info(f"User {user_id} subscribing company {request.company_id} to plan {request.plan_uuid}")
    return await provisioner.subscribe(request)


@router.post("/billing/change-plan", response_model=ChangePlanResult, response_model_exclude_none=True)
async def change_plan(
    request: ChangePlanRequest,
    access: UserAccessRepoDep,
    user_id: str = Depends(get_current_user_id),
    switcher: PlanSwitcher = Depends(get_plan_switcher),
):
    """
    Move a tenant to another plan.

    The current subscription is canceled at the gateway before the new
    one is opened; ``canceled_old.ok`` is false when that cancel failed
    and the old subscription was left for the reconciler.
    """
    await ensure_company_access(user_id, request.company_id, access)

    logger.info(f"User {user_id} changing company {request.company_id} to plan {request.plan_id}")
    return await switcher.change_plan(request)
