"""Invoice schemas - Pydantic models for invoice request bodies"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from ..requests.schemas import ServiceLine


class InvoiceRequestLine(BaseModel):
    """A request on an invoice, with its services when they are being edited"""

    id: Any = Field(None, alias="_id")
    services: Optional[list[ServiceLine]] = None

    class Config:
        populate_by_name = True


class InvoiceCreate(BaseModel):
    horse: Any = Field(None, alias="_horse")
    requests: list[Any] = Field(default_factory=list, alias="_requests")
    tip: Optional[float] = None

    class Config:
        populate_by_name = True


class InvoiceUpdate(BaseModel):
    requests: list[InvoiceRequestLine] = Field(default_factory=list, alias="_requests")
    tip: Optional[float] = None

    class Config:
        populate_by_name = True


class SubmissionRequest(BaseModel):
    requests: list[dict] = []


class ApprovalRequest(BaseModel):
    invoiceId: int
    ownerId: int
    amountOwed: float = 0


class PaymentReminderRequest(BaseModel):
    id: int = Field(..., alias="_id")

    class Config:
        populate_by_name = True


class ExportRequest(BaseModel):
    """Filters for the emailed CSV export"""

    userType: Optional[str] = None
    paymentType: Optional[str] = None
    complete: Optional[bool] = None
    serviceProviders: list[Any] = []
    horseManagers: list[Any] = []
    horses: list[Any] = []
    sinceDate: Optional[str] = None
    untilDate: Optional[str] = None
