"""Show router - FastAPI endpoints for show lookup"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...shared.serializers import serialize_show
from .repository import ShowRepository

router = APIRouter(prefix="/api/shows", tags=["Shows"])


@router.get("")
async def get_shows(
    limit: int = Query(20),
    skip: int = Query(0),
    searchTerm: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Search shows by name"""
    shows, show_count = ShowRepository.search(db, searchTerm, limit or 20, skip)
    return {"shows": [serialize_show(show) for show in shows], "showCount": show_count}
