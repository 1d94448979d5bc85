import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .database import get_db
from .models import User
from .security_utils import create_access_token, verify_jwt_token, verify_password_bcrypt

logger = logging.getLogger(__name__)

security = HTTPBearer()

router = APIRouter(prefix="/api/auth", tags=["Auth"])


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the bearer token to a user, or fail with 401"""
    payload = verify_jwt_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        logger.warning("❌ Rejected request with invalid or expired token")
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=401, detail="Invalid token subject") from e

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        logger.warning(f"❌ Token for unknown user {user_id}")
        raise HTTPException(status_code=401, detail="User not found")

    return user


class LoginRequest(BaseModel):
    email: str
    password: str


@router.post("/local")
async def login(data: LoginRequest, db: Session = Depends(get_db)):
    """Exchange email and password for a bearer token"""
    email = data.email.strip().lower()
    user = db.query(User).filter(User.email == email).first()
    if not user or not verify_password_bcrypt(data.password, user.password):
        logger.info(f"🔒 Failed login for {email}")
        raise HTTPException(status_code=401, detail="This password is not correct.")

    logger.info(f"✅ User {user.id} signed in")
    return {"token": create_access_token(user.id)}
