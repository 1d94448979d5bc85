"""Legal router - static HTML documents shown in the app"""

import logging
from pathlib import Path

from fastapi import APIRouter, HTTPException

from ...config import LEGAL_DOCS_DIR

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/legal", tags=["Legal"])


def read_document(filename: str) -> str:
    path = Path(LEGAL_DOCS_DIR) / filename
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        logger.error(f"❌ Could not read legal document {path}: {e}")
        raise HTTPException(status_code=500, detail="Document unavailable") from e


@router.get("/terms")
async def terms_of_service():
    return {"termsOfService": read_document("termsOfService.html")}


@router.get("/privacy")
async def privacy_policy():
    return {"privacyPolicy": read_document("privacyPolicy.html")}
