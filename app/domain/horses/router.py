"""Horse router - FastAPI endpoints for horses"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...shared.errors import empty_response
from .schemas import HorseBody, OwnerBody
from .service import HorseService

router = APIRouter(prefix="/api/horses", tags=["Horses"])


def get_horse_service(db: Session = Depends(get_db)) -> HorseService:
    """Dependency injection for HorseService"""
    return HorseService(db)


@router.get("")
async def get_horses(
    trainer: Optional[str] = Query(None, alias="_trainer"),
    owner: Optional[str] = Query(None, alias="_owner"),
    searchTerm: Optional[str] = Query(None),
    serviceable: Optional[str] = Query(None),
    sort: Optional[str] = Query(None),
    limit: int = Query(20),
    skip: int = Query(0),
    current_user: User = Depends(get_current_user),
    service: HorseService = Depends(get_horse_service),
):
    """Managers see their horses; providers search or browse horses by trusting manager"""
    return service.get_horses(
        current_user, trainer, owner, searchTerm, bool(serviceable), sort, limit or 20, skip
    )


@router.get("/upcomingRequests")
async def upcoming_requests(
    trainer: Optional[str] = Query(None, alias="_trainer"),
    owner: Optional[str] = Query(None, alias="_owner"),
    current_user: User = Depends(get_current_user),
    service: HorseService = Depends(get_horse_service),
):
    return service.get_upcoming_request_horses(current_user, trainer, owner)


@router.get("/{horse_id}")
async def get_horse(
    horse_id: int,
    current_user: User = Depends(get_current_user),
    service: HorseService = Depends(get_horse_service),
):
    return service.get_horse(horse_id)


@router.post("")
async def create_horse(
    data: HorseBody,
    current_user: User = Depends(get_current_user),
    service: HorseService = Depends(get_horse_service),
):
    return service.create_horse(current_user, data)


@router.put("/{horse_id}")
async def update_horse(
    horse_id: int,
    data: HorseBody,
    current_user: User = Depends(get_current_user),
    service: HorseService = Depends(get_horse_service),
):
    return await service.update_horse(current_user, horse_id, data)


@router.patch("/{horse_id}/updateMultipleOwners")
async def update_multiple_owners(
    horse_id: int,
    owners: list[OwnerBody],
    current_user: User = Depends(get_current_user),
    service: HorseService = Depends(get_horse_service),
):
    return service.update_multiple_owners(horse_id, owners)


@router.delete("/{horse_id}")
async def delete_horse(
    horse_id: int,
    current_user: User = Depends(get_current_user),
    service: HorseService = Depends(get_horse_service),
):
    service.delete_horse(current_user, horse_id)
    return empty_response()
