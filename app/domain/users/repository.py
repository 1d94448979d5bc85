"""User repository - Database operations for users and their approvals"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, cast, or_
from sqlalchemy.orm import Session

from ...models import HORSE_MANAGER, Horse, HorseOwner, PaymentApproval, Request, TrustedProvider, User
from ...models_invoice import Invoice, InvoiceApproval


def has_role(role: str):
    """Filter clause for a role stored in the JSON roles list"""
    return cast(User.roles, String).like(f'%"{role}"%')


class UserRepository:
    """Repository for user database operations"""

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        return db.query(User).filter(User.email == email.strip().lower()).first()

    @staticmethod
    def get_user_by_reset_token(db: Session, token: str) -> Optional[User]:
        """Only unexpired tokens match"""
        return (
            db.query(User)
            .filter(User.reset_password_token == token, User.reset_password_expires > datetime.utcnow())
            .first()
        )

    @staticmethod
    def email_taken(db: Session, email: str, exclude_user_id: Optional[int] = None) -> bool:
        query = db.query(User).filter(User.email == email)
        if exclude_user_id is not None:
            query = query.filter(User.id != exclude_user_id)
        return db.query(query.exists()).scalar()

    @staticmethod
    def search_users(
        db: Session,
        filters: list,
        limit: int,
        skip: int,
    ) -> tuple[list[User], int]:
        query = db.query(User).filter(User.account_setup_complete.is_(True), *filters)
        count = query.count()
        users = query.order_by(User.name.asc()).offset(skip).limit(limit).all()
        return users, count

    @staticmethod
    def get_manager_ids_for_user_horses(db: Session, user: User) -> list[int]:
        """Owners and trainers of every horse the user owns, trains or leases"""
        horses = (
            db.query(Horse)
            .filter(
                or_(
                    Horse.owners.any(HorseOwner.user_id == user.id),
                    Horse.trainer_id == user.id,
                    Horse.leased_to_id == user.id,
                )
            )
            .all()
        )
        manager_ids: list[int] = []
        for horse in horses:
            manager_ids.extend(owner.user_id for owner in horse.owners)
            if horse.trainer_id:
                manager_ids.append(horse.trainer_id)
        return list(dict.fromkeys(manager_ids))

    @staticmethod
    def get_pending_requests_for_payer(db: Session, user: User) -> list[Request]:
        """Unpaid, undeleted requests for horses the user owns or leases"""
        horse_ids = [
            horse_id
            for (horse_id,) in db.query(Horse.id)
            .filter(or_(Horse.owners.any(HorseOwner.user_id == user.id), Horse.leased_to_id == user.id))
            .all()
        ]
        if not horse_ids:
            return []
        return (
            db.query(Request)
            .filter(Request.paid_at.is_(None), Request.deleted_at.is_(None), Request.horse_id.in_(horse_ids))
            .all()
        )

    @staticmethod
    def get_outstanding_invoice_approvals(db: Session, payer_id: int, approver_id: int) -> list[InvoiceApproval]:
        return (
            db.query(InvoiceApproval)
            .join(Invoice, InvoiceApproval.invoice_id == Invoice.id)
            .filter(
                Invoice.paid_in_full_at.is_(None),
                Invoice.paid_outside_app_at.is_(None),
                InvoiceApproval.payer_id == payer_id,
                InvoiceApproval.approver_id == approver_id,
            )
            .all()
        )

    @staticmethod
    def get_managers_approving(db: Session, approver: User) -> list[User]:
        """Horse managers who list the user among their payment approvers"""
        return (
            db.query(User)
            .filter(has_role(HORSE_MANAGER), User.payment_approvals.any(PaymentApproval.approver_id == approver.id))
            .order_by(User.name.asc())
            .all()
        )

    @staticmethod
    def get_trusted_provider(db: Session, user: User, trusted_id: int) -> Optional[TrustedProvider]:
        return (
            db.query(TrustedProvider)
            .filter(TrustedProvider.id == trusted_id, TrustedProvider.user_id == user.id)
            .first()
        )
