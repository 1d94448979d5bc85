"""Payment repository - Database operations for payments"""

from typing import Optional

from sqlalchemy import String, cast, or_
from sqlalchemy.orm import Session

from ...models import Request
from ...models_invoice import Payment

SORT_COLUMNS = {
    "date": Payment.date,
    "createdAt": Payment.created_at,
    "amount": Payment.amount,
}


def payment_order(sort: Optional[str]):
    sort = sort or "-date"
    descending = sort.startswith("-")
    column = SORT_COLUMNS.get(sort.lstrip("-"), Payment.date)
    return column.desc() if descending else column.asc()


def approved_by(user_id: int):
    """Membership in the JSON approvers list, stored as text like [3, 14]"""
    text = cast(Payment.approvers, String)
    return or_(
        text == f"[{user_id}]",
        text.like(f"[{user_id},%"),
        text.like(f"%, {user_id},%"),
        text.like(f"%, {user_id}]"),
    )


def page(query, sort: Optional[str], limit: int, skip: int) -> tuple[list[Payment], int]:
    """One sorted page of the query plus the total match count"""
    count = query.count()
    payments = query.order_by(payment_order(sort), Payment.id.desc()).offset(skip).limit(limit).all()
    return payments, count


class PaymentRepository:
    """Repository for payment database operations"""

    @staticmethod
    def get_payment_by_id(db: Session, payment_id: int) -> Optional[Payment]:
        return db.query(Payment).filter(Payment.id == payment_id).first()

    @staticmethod
    def find_for_manager(
        db: Session, user_id: int, sort: Optional[str], limit: int, skip: int
    ) -> tuple[list[Payment], int]:
        """Payments the user made, submitted, was charged for or approves"""
        query = db.query(Payment).filter(
            or_(
                Payment.horse_manager_id == user_id,
                Payment.payment_submitted_by_id == user_id,
                Payment.paying_user_id == user_id,
                approved_by(user_id),
            )
        )
        return page(query, sort, limit, skip)

    @staticmethod
    def find_for_provider(
        db: Session, user_id: int, sort: Optional[str], limit: int, skip: int
    ) -> tuple[list[Payment], int]:
        """Payments covering paid requests the user provided or was reassigned"""
        paid_requests = Request.paid_at.isnot(None) & or_(
            Request.service_provider_id == user_id, Request.reassigned_to_id == user_id
        )
        query = db.query(Payment).filter(Payment.requests.any(paid_requests))
        return page(query, sort, limit, skip)

    @staticmethod
    def get_payments_for_invoice(db: Session, invoice_id: int) -> list[Payment]:
        return db.query(Payment).filter(Payment.invoice_id == invoice_id).order_by(Payment.id.asc()).all()

    @staticmethod
    def has_payment_for_payer(db: Session, invoice_id: int, paying_user_id: int) -> bool:
        query = db.query(Payment).filter(Payment.invoice_id == invoice_id, Payment.paying_user_id == paying_user_id)
        return db.query(query.exists()).scalar()

    @staticmethod
    def get_unpaid_requests(db: Session, request_ids: list[int]) -> list[Request]:
        if not request_ids:
            return []
        return db.query(Request).filter(Request.id.in_(request_ids), Request.paid_at.is_(None)).all()
