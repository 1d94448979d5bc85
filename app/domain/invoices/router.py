"""Invoice router - FastAPI endpoints for invoices"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...shared.errors import respond_with_success
from .schemas import (
    ApprovalRequest,
    ExportRequest,
    InvoiceCreate,
    InvoiceUpdate,
    PaymentReminderRequest,
    SubmissionRequest,
)
from .service import InvoiceService

router = APIRouter(prefix="/api/invoices", tags=["Invoices"])


def get_invoice_service(db: Session = Depends(get_db)) -> InvoiceService:
    """Dependency injection for InvoiceService"""
    return InvoiceService(db)


# =============================================================================
# Reads
# =============================================================================


@router.get("")
async def get_invoices(
    horseManager: Optional[str] = Query(None),
    serviceProvider: Optional[str] = Query(None),
    outstanding: Optional[str] = Query(None),
    complete: Optional[str] = Query(None),
    sort: Optional[str] = Query(None),
    limit: int = Query(20),
    skip: int = Query(0),
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    return service.get_invoices(
        current_user,
        bool(horseManager),
        bool(serviceProvider),
        bool(outstanding),
        bool(complete),
        sort,
        limit or 20,
        skip,
    )


@router.get("/{invoice_id}")
async def get_invoice(
    invoice_id: int,
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    return service.get_invoice(invoice_id)


# =============================================================================
# Reminders and export
# =============================================================================


@router.post("/requestSubmission")
async def request_submission(
    data: SubmissionRequest,
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    await service.request_submission(current_user, data)
    return respond_with_success("Success")


@router.post("/requestApproval")
async def request_approval(
    data: ApprovalRequest,
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    await service.request_approval(current_user, data)
    return respond_with_success("Email and push successfully sent.")


@router.post("/requestApprovalIncrease")
async def request_approval_increase(
    data: ApprovalRequest,
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    await service.request_approval(current_user, data, increase=True)
    return respond_with_success("Email and push successfully sent.")


@router.post("/requestPayment")
async def request_payment(
    data: PaymentReminderRequest,
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    await service.request_payment(data.id)
    return respond_with_success("Email and push successfully sent.")


@router.post("/exportToCsv")
async def export_to_csv(
    data: ExportRequest,
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    message = await service.export_to_csv(current_user, data)
    return respond_with_success(message)


# =============================================================================
# Writes
# =============================================================================


@router.post("")
async def create_invoice(
    data: InvoiceCreate,
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.create_invoice(current_user, data)


@router.put("/{invoice_id}")
@router.patch("/{invoice_id}")
async def update_invoice(
    invoice_id: int,
    data: InvoiceUpdate,
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.update_invoice(current_user, invoice_id, data)


@router.delete("/{invoice_id}")
async def delete_invoice(
    invoice_id: int,
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    await service.delete_invoice(current_user, invoice_id)
    return respond_with_success("Invoice successfully deleted")
