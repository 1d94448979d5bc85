"""Fee router - the percentage HorseLinc adds to every payment"""

from fastapi import APIRouter

from ...config import STRIPE_SERVICE_FEE_PERCENTAGE

router = APIRouter(prefix="/api/fee", tags=["Fee"])


@router.get("")
async def get_fee():
    return {"fee": STRIPE_SERVICE_FEE_PERCENTAGE}
