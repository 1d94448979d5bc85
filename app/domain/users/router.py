"""User router - FastAPI endpoints for accounts and account relationships"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...shared.errors import empty_response, respond_with_success
from .schemas import (
    AddDeviceRequest,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    PaymentApprovalBody,
    ResetPasswordRequest,
    StripePaymentSetupRequest,
    TrustedProviderBody,
    UserCreate,
    UserUpdate,
)
from .service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Users"])


def get_user_service(db: Session = Depends(get_db)) -> UserService:
    """Dependency injection for UserService"""
    return UserService(db)


# ============================================================================
# ACCOUNTS
# ============================================================================


@router.get("")
async def get_users(
    searchTerm: Optional[str] = Query(None),
    role: Optional[str] = Query(None),
    limitByHorse: Optional[str] = Query(None),
    excludeIds: Optional[str] = Query(None),
    limit: int = Query(20),
    skip: int = Query(0),
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    """Search users who have finished account setup"""
    return service.get_users(current_user, searchTerm, role, bool(limitByHorse), excludeIds, limit or 20, skip)


@router.post("/signup")
async def signup(data: UserCreate, service: UserService = Depends(get_user_service)):
    return service.signup(data)


@router.get("/stripeRedirect")
async def stripe_redirect(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    service: UserService = Depends(get_user_service),
):
    """Stripe Connect OAuth landing; sends the browser to the approve or deny page"""
    return RedirectResponse(await service.finish_stripe_connect(code, state), status_code=302)


@router.get("/stripe/dashboardUrl")
async def stripe_dashboard_url(
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    return await service.get_dashboard_url(current_user)


@router.post("/stripe/webhookConnect")
async def stripe_webhook_connect(request: Request, service: UserService = Depends(get_user_service)):
    event = await request.json()
    logger.info(f"📬 Stripe Connect webhook: {event.get('type')}")
    await service.handle_connect_webhook(event)
    return empty_response(200)


@router.post("/stripe/webhookMaster")
async def stripe_webhook_master(request: Request, service: UserService = Depends(get_user_service)):
    event = await request.json()
    logger.info(f"📬 Stripe platform webhook: {event.get('type')}")
    await service.handle_master_webhook(event)
    return empty_response(200)


@router.put("/me")
async def update_me(
    data: UserUpdate,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    return service.update_me(current_user, data)


@router.delete("/me")
async def delete_me(
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    service.delete_me(current_user)
    return empty_response()


@router.post("/me/stripePaymentSetup")
async def stripe_payment_setup(
    data: StripePaymentSetupRequest,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    await service.setup_stripe_payment(current_user, data.id)
    return empty_response(200)


# ============================================================================
# PASSWORDS
# ============================================================================


@router.put("/me/password")
async def change_password(
    data: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    return respond_with_success(service.change_password(current_user, data.oldPassword, data.newPassword))


@router.put("/me/forgot")
async def forgot_password(data: ForgotPasswordRequest, service: UserService = Depends(get_user_service)):
    return respond_with_success(await service.forgot_password(data.email))


@router.get("/me/reset/{token}")
async def check_reset_token(token: str, service: UserService = Depends(get_user_service)):
    return respond_with_success(service.check_reset_token(token))


@router.put("/me/reset/{token}")
async def reset_password(
    token: str, data: ResetPasswordRequest, service: UserService = Depends(get_user_service)
):
    return respond_with_success(await service.reset_password(token, data.password))


@router.post("/addDevice")
async def add_device(
    data: AddDeviceRequest,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    return respond_with_success(service.add_device(current_user, data.deviceId))


# ============================================================================
# PAYMENT APPROVERS
# ============================================================================


@router.post("/approvals/addPaymentApproval")
async def add_payment_approval(
    data: PaymentApprovalBody,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    return await service.add_payment_approval(current_user, data)


@router.put("/approvals/updatePaymentApproval")
async def update_payment_approval(
    data: PaymentApprovalBody,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    return await service.update_payment_approval(current_user, data)


@router.delete("/approvals/deletePaymentApproval/{approval_id}")
async def delete_payment_approval(
    approval_id: int,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    return service.delete_payment_approval(current_user, approval_id)


@router.get("/approvals/ownerAuthorizations")
async def owner_authorizations(
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    return service.get_owner_authorizations(current_user)


# ============================================================================
# TRUSTED SERVICE PROVIDERS
# ============================================================================


@router.get("/providers/grouped")
async def grouped_providers(
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    return service.get_grouped_providers(current_user)


@router.post("/providers/addServiceProvider")
async def add_service_provider(
    data: TrustedProviderBody,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    return await service.add_service_provider(current_user, data)


@router.delete("/providers/deleteServiceProvider/{trusted_id}")
async def delete_service_provider(
    trusted_id: int,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    return await service.delete_service_provider(current_user, trusted_id)


# Registered last so the literal paths above win
@router.get("/{user_id}")
async def get_user(
    user_id: str,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    return service.get_user(user_id, current_user)
