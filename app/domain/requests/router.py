"""Request router - FastAPI endpoints for service requests"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...shared.errors import respond_with_success
from .schemas import DeleteMultipleRequest, RequestBody
from .service import RequestService

router = APIRouter(prefix="/api/requests", tags=["Requests"])


def get_request_service(db: Session = Depends(get_db)) -> RequestService:
    """Dependency injection for RequestService"""
    return RequestService(db)


# =============================================================================
# Listing
# =============================================================================


@router.get("")
async def get_requests(
    upcoming: Optional[str] = Query(None),
    outstanding: Optional[str] = Query(None),
    horse: Optional[str] = Query(None),
    sort: Optional[str] = Query(None),
    limit: int = Query(20),
    skip: int = Query(0),
    current_user: User = Depends(get_current_user),
    service: RequestService = Depends(get_request_service),
):
    return service.get_requests(
        current_user, bool(upcoming), bool(outstanding), horse, sort, limit or 20, skip
    )


@router.get("/schedule")
async def get_schedule(
    today: Optional[str] = Query(None),
    upcoming: Optional[str] = Query(None),
    past: Optional[str] = Query(None),
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    sort: Optional[str] = Query(None),
    limit: int = Query(20),
    skip: int = Query(0),
    current_user: User = Depends(get_current_user),
    service: RequestService = Depends(get_request_service),
):
    return service.get_schedule(
        current_user, bool(today), bool(upcoming), bool(past), startDate, endDate, sort, limit or 20, skip
    )


@router.get("/grouped")
async def get_grouped(
    horseManager: Optional[str] = Query(None),
    serviceProvider: Optional[str] = Query(None),
    outstanding: Optional[str] = Query(None),
    completed: Optional[str] = Query(None),
    limit: int = Query(20),
    skip: int = Query(0),
    current_user: User = Depends(get_current_user),
    service: RequestService = Depends(get_request_service),
):
    return service.get_grouped(
        current_user,
        bool(horseManager),
        bool(serviceProvider),
        bool(outstanding),
        bool(completed),
        limit or 20,
        skip,
    )


@router.get("/groupedByHorse")
async def get_grouped_by_horse(
    limit: int = Query(20),
    skip: int = Query(0),
    current_user: User = Depends(get_current_user),
    service: RequestService = Depends(get_request_service),
):
    return service.get_grouped_by_horse(current_user, limit or 20, skip)


@router.get("/last")
@router.get("/last/{horse_id}")
async def get_last_request(
    horse_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    service: RequestService = Depends(get_request_service),
):
    """Most recent request the user made, optionally for one horse"""
    request = service.get_last_request(current_user, horse_id)
    if request is None:
        return respond_with_success("No requests for user")
    return request


@router.get("/{request_id}")
async def get_request(
    request_id: int,
    current_user: User = Depends(get_current_user),
    service: RequestService = Depends(get_request_service),
):
    return service.get_request(request_id)


# =============================================================================
# Writes
# =============================================================================


@router.post("")
async def create_request(
    data: RequestBody,
    current_user: User = Depends(get_current_user),
    service: RequestService = Depends(get_request_service),
):
    return await service.create_request(current_user, data)


@router.post("/deleteMultiple")
async def delete_multiple(
    data: DeleteMultipleRequest,
    current_user: User = Depends(get_current_user),
    service: RequestService = Depends(get_request_service),
):
    service.delete_requests(data.ids)
    return respond_with_success("Invoice successfully deleted")


@router.put("/{request_id}")
@router.patch("/{request_id}")
async def update_request(
    request_id: int,
    data: RequestBody,
    current_user: User = Depends(get_current_user),
    service: RequestService = Depends(get_request_service),
):
    return await service.update_request(current_user, request_id, data)


@router.put("/{request_id}/status/{status}")
async def update_status(
    request_id: int,
    status: str,
    current_user: User = Depends(get_current_user),
    service: RequestService = Depends(get_request_service),
):
    return await service.update_status(current_user, request_id, status)


@router.put("/{request_id}/dismiss")
async def dismiss_request(
    request_id: int,
    current_user: User = Depends(get_current_user),
    service: RequestService = Depends(get_request_service),
):
    return service.dismiss_request(current_user, request_id)


@router.delete("/{request_id}")
async def delete_request(
    request_id: int,
    current_user: User = Depends(get_current_user),
    service: RequestService = Depends(get_request_service),
):
    return await service.delete_request(request_id)
