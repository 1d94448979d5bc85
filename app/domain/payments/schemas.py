"""Payment schemas - Pydantic models for payment bodies"""

from typing import Any, Optional

from pydantic import BaseModel, Field


class PaymentCreate(BaseModel):
    """
    Body sent when a payer settles their share of an invoice.
    invoiceTotal and percentOfInvoice are accepted from older clients, but
    the charge is always computed from the stored invoice and payer share.
    """

    invoice: Any = Field(None, alias="_invoice")
    payingUser: Any = Field(None, alias="_payingUser")
    percentOfInvoice: Optional[float] = None
    invoiceTotal: Optional[float] = None
    tip: Optional[float] = 0
    uuid: Optional[str] = None

    class Config:
        populate_by_name = True


class PaymentUpdate(BaseModel):
    amount: Optional[float] = None
    tip: Optional[float] = None
    percentOfInvoice: Optional[float] = None
    paidOutsideApp: Optional[bool] = None


class MarkAsPaidRequest(BaseModel):
    invoice: Any = None


class UnapprovedInvoice(BaseModel):
    """Pending invoice an approver cannot cover"""

    total: float = 0
    tipAmount: float = 0
    payingUser: dict = Field(default_factory=dict, alias="_payingUser")
    currentUser: dict = Field(default_factory=dict, alias="_currentUser")
    approvedMax: Any = None

    class Config:
        populate_by_name = True


class ReportUnapprovedRequest(BaseModel):
    requests: list[UnapprovedInvoice] = []
