"""Invoice repository - Database operations for invoices"""

from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models import User
from ...models_invoice import Invoice, InvoiceApproval, InvoicePayer, Payment

SORT_COLUMNS = {
    "createdAt": Invoice.created_at,
    "paidInFullAt": Invoice.paid_in_full_at,
    "amount": Invoice.amount,
}


def invoice_order(sort: Optional[str]):
    sort = sort or "-createdAt"
    descending = sort.startswith("-")
    column = SORT_COLUMNS.get(sort.lstrip("-"), Invoice.created_at)
    return column.desc() if descending else column.asc()


def paid_by(user_ids: list[int]):
    return Invoice.paying_users.any(InvoicePayer.user_id.in_(user_ids))


def payable_by(user_id: int):
    """Paying user or payment approver"""
    return or_(
        Invoice.paying_users.any(InvoicePayer.user_id == user_id),
        Invoice.payment_approvals.any(InvoiceApproval.approver_id == user_id),
    )


def provided_by(user_ids: list[int]):
    """Main provider or reassignee"""
    return or_(Invoice.service_provider_id.in_(user_ids), Invoice.reassignees.any(User.id.in_(user_ids)))


def is_outstanding():
    return (Invoice.paid_in_full_at.is_(None)) & (Invoice.paid_outside_app_at.is_(None))


def is_complete():
    return or_(Invoice.paid_in_full_at.isnot(None), Invoice.paid_outside_app_at.isnot(None))


class InvoiceRepository:
    """Repository for invoice database operations"""

    @staticmethod
    def get_invoice_by_id(db: Session, invoice_id: Optional[int]) -> Optional[Invoice]:
        if invoice_id is None:
            return None
        return db.query(Invoice).filter(Invoice.id == invoice_id).first()

    @staticmethod
    def find_page(db: Session, filters: list, sort: Optional[str], limit: int, skip: int) -> tuple[list[Invoice], int]:
        query = db.query(Invoice).filter(*filters)
        count = query.count()
        invoices = query.order_by(invoice_order(sort), Invoice.id.desc()).offset(skip).limit(limit).all()
        return invoices, count

    @staticmethod
    def find_all(db: Session, filters: list, sort: Optional[str]) -> list[Invoice]:
        return db.query(Invoice).filter(*filters).order_by(invoice_order(sort), Invoice.id.desc()).all()

    @staticmethod
    def get_payments(db: Session, invoice_id: int) -> list[Payment]:
        return db.query(Payment).filter(Payment.invoice_id == invoice_id).order_by(Payment.id.asc()).all()

    @staticmethod
    def has_payments(db: Session, invoice_id: int) -> bool:
        query = db.query(Payment).filter(Payment.invoice_id == invoice_id)
        return db.query(query.exists()).scalar()

    @staticmethod
    def get_payments_by_invoice(db: Session, invoice_ids: list[int]) -> dict[int, list[Payment]]:
        grouped: dict[int, list[Payment]] = {invoice_id: [] for invoice_id in invoice_ids}
        if not invoice_ids:
            return grouped
        payments = db.query(Payment).filter(Payment.invoice_id.in_(invoice_ids)).order_by(Payment.id.asc()).all()
        for payment in payments:
            grouped[payment.invoice_id].append(payment)
        return grouped
