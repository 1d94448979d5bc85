"""Horse repository - Database operations for horses"""

from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models import HORSE_MANAGER, Horse, HorseOwner, Request, TrustedProvider, User
from ..users.repository import has_role

SORT_COLUMNS = {
    "barnName": Horse.barn_name,
    "showName": Horse.show_name,
    "createdAt": Horse.created_at,
}


def horse_order(sort: Optional[str]):
    """Translate a `field` / `-field` sort param into an ORDER BY clause"""
    sort = sort or "barnName"
    descending = sort.startswith("-")
    column = SORT_COLUMNS.get(sort.lstrip("-"), Horse.barn_name)
    return column.desc() if descending else column.asc()


def managed_by(user_id: int):
    """Horses the user trains, leases or owns"""
    return or_(
        Horse.trainer_id == user_id,
        Horse.leased_to_id == user_id,
        Horse.owners.any(HorseOwner.user_id == user_id),
    )


def name_matches(search_term: str):
    return or_(Horse.barn_name.ilike(f"%{search_term}%"), Horse.show_name.ilike(f"%{search_term}%"))


class HorseRepository:
    """Repository for horse database operations"""

    @staticmethod
    def get_horse_by_id(db: Session, horse_id: int) -> Optional[Horse]:
        return db.query(Horse).filter(Horse.id == horse_id).first()

    @staticmethod
    def find_page(db: Session, filters: list, sort: Optional[str], limit: int, skip: int) -> tuple[list[Horse], int]:
        query = db.query(Horse).filter(*filters)
        count = query.count()
        horses = query.order_by(horse_order(sort), Horse.id.asc()).offset(skip).limit(limit).all()
        return horses, count

    @staticmethod
    def get_trusting_managers(db: Session, provider: User) -> list[User]:
        """Horse managers who have added the provider to their trusted providers"""
        return (
            db.query(User)
            .filter(has_role(HORSE_MANAGER), User.trusted_providers.any(TrustedProvider.provider_id == provider.id))
            .order_by(User.id.asc())
            .all()
        )

    @staticmethod
    def get_upcoming_requests(db: Session, filters: list) -> list[Request]:
        start_of_today = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
        return (
            db.query(Request)
            .filter(
                Request.date >= start_of_today,
                Request.paid_at.is_(None),
                Request.deleted_at.is_(None),
                Request.completed_at.is_(None),
                Request.horse_id.isnot(None),
                *filters,
            )
            .order_by(Request.date.asc())
            .all()
        )

    @staticmethod
    def has_unpaid_requests(db: Session, horse: Horse) -> bool:
        query = db.query(Request).filter(Request.horse_id == horse.id, Request.paid_at.is_(None))
        return db.query(query.exists()).scalar()
