"""Show repository - Database operations for shows"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import Show


class ShowRepository:
    """Repository for show database operations"""

    @staticmethod
    def search(db: Session, search_term: Optional[str], limit: int, skip: int) -> tuple[list[Show], int]:
        """Shows sorted by name, optionally filtered by a case-insensitive substring"""
        query = db.query(Show)
        if search_term:
            query = query.filter(Show.name.ilike(f"%{search_term}%"))
        count = query.count()
        shows = query.order_by(Show.name.asc()).offset(skip).limit(limit).all()
        return shows, count

    @staticmethod
    def find_or_create(db: Session, name: str) -> Show:
        """Shows are unique on their trimmed, lowercased name"""
        formatted_name = name.strip().lower()
        show = db.query(Show).filter(Show.name == formatted_name).first()
        if show:
            return show

        show = Show(name=formatted_name)
        db.add(show)
        db.flush()
        return show
