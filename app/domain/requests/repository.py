"""Request repository - Database operations for service requests"""

from typing import Optional

from sqlalchemy import String, cast, or_
from sqlalchemy.orm import Session

from ...models import Request

SORT_COLUMNS = {
    "date": Request.date,
    "createdAt": Request.created_at,
    "total": Request.total,
}


def request_order(sort: Optional[str]):
    sort = sort or "date"
    descending = sort.startswith("-")
    column = SORT_COLUMNS.get(sort.lstrip("-"), Request.date)
    return column.desc() if descending else column.asc()


def may_be_owned_by(user_id: int):
    """
    Coarse filter on the owners snapshot; also matches ids sharing a prefix,
    so results are confirmed with is_owner.
    """
    return cast(Request.owners, String).like(f'%"user": {user_id}%')


def is_owner(request: Request, user_id: int) -> bool:
    return any(owner.get("user") == user_id for owner in request.owners or [])


def provided_by(user_id: int):
    """Main provider or reassignee"""
    return or_(Request.service_provider_id == user_id, Request.reassigned_to_id == user_id)


class RequestRepository:
    """Repository for request database operations"""

    @staticmethod
    def get_request_by_id(db: Session, request_id: int) -> Optional[Request]:
        return db.query(Request).filter(Request.id == request_id).first()

    @staticmethod
    def get_requests_by_ids(db: Session, request_ids: list[int]) -> list[Request]:
        if not request_ids:
            return []
        return db.query(Request).filter(Request.id.in_(request_ids)).order_by(Request.date.asc()).all()

    @staticmethod
    def find_managed(db: Session, user_id: int, filters: list, sort: Optional[str]) -> list[Request]:
        """Requests for horses the user leases, trains or owns"""
        requests = (
            db.query(Request)
            .filter(
                or_(
                    Request.leased_to_id == user_id,
                    Request.trainer_id == user_id,
                    may_be_owned_by(user_id),
                ),
                *filters,
            )
            .order_by(request_order(sort), Request.id.asc())
            .all()
        )
        return [
            request
            for request in requests
            if request.leased_to_id == user_id or request.trainer_id == user_id or is_owner(request, user_id)
        ]

    @staticmethod
    def find(db: Session, filters: list, sort: Optional[str] = None) -> list[Request]:
        return db.query(Request).filter(*filters).order_by(request_order(sort), Request.id.asc()).all()

    @staticmethod
    def get_last_request(db: Session, horse_manager_id: int, horse_id: Optional[int]) -> Optional[Request]:
        query = db.query(Request).filter(Request.horse_manager_id == horse_manager_id)
        if horse_id:
            query = query.filter(Request.horse_id == horse_id)
        return query.order_by(Request.created_at.desc(), Request.id.desc()).first()
