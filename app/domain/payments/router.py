"""Payment router - FastAPI endpoints for payments"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...shared.errors import respond_with_success
from .schemas import MarkAsPaidRequest, PaymentCreate, PaymentUpdate, ReportUnapprovedRequest
from .service import PaymentService

router = APIRouter(prefix="/api/payments", tags=["Payments"])


def get_payment_service(db: Session = Depends(get_db)) -> PaymentService:
    """Dependency injection for PaymentService"""
    return PaymentService(db)


# =============================================================================
# Reads
# =============================================================================


@router.get("")
async def get_payments(
    horseManager: Optional[str] = Query(None),
    serviceProvider: Optional[str] = Query(None),
    sort: Optional[str] = Query(None),
    limit: int = Query(20),
    skip: int = Query(0),
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return service.get_payments(current_user, bool(horseManager), bool(serviceProvider), sort, limit or 20, skip)


@router.get("/requestPayment")
async def request_payment(
    requests: list[int] = Query([]),
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Push a payment reminder to the trainers of unpaid requests"""
    await service.request_payment(requests)
    return respond_with_success("Success")


@router.get("/{payment_id}")
async def get_payment(
    payment_id: int,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return service.get_payment(current_user, payment_id)


# =============================================================================
# Writes
# =============================================================================


@router.post("/markAsPaid")
async def mark_as_paid(
    data: MarkAsPaidRequest,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return await service.mark_as_paid(current_user, data)


@router.post("/reportUnapproved")
async def report_unapproved(
    data: ReportUnapprovedRequest,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    await service.report_unapproved(data)
    return respond_with_success("Email successfully sent.")


@router.post("")
async def create_payment(
    data: PaymentCreate,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return await service.create_payment(current_user, data)


@router.put("/{payment_id}")
@router.patch("/{payment_id}")
async def update_payment(
    payment_id: int,
    data: PaymentUpdate,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return service.update_payment(payment_id, data)
