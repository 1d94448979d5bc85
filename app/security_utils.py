"""
Security Utilities
Password hashing, access tokens, signed state values and text sanitization
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Optional

# Input sanitization
import bleach

# Token generation and validation
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from jose import JWTError
from jose import jwt as jose_jwt

# Password hashing
from passlib.context import CryptContext

from .config import ACCESS_TOKEN_EXPIRE_MINUTES, SECRET_KEY

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# ============================================================================
# PASSWORD SECURITY
# ============================================================================


def hash_password_bcrypt(password: str) -> str:
    """Hash password using bcrypt"""
    return pwd_context.hash(password)


def verify_password_bcrypt(plain_password: str, hashed_password: str) -> bool:
    """Verify password against bcrypt hash"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except Exception as e:
        logger.error(f"Password verification error: {e}")
        return False


# ============================================================================
# TOKEN GENERATION & VALIDATION
# ============================================================================


def generate_reset_token() -> str:
    """Random hex token mailed to users who forgot their password"""
    return secrets.token_hex(16)


def generate_timed_token(data: dict[str, Any], salt: str = "security-token") -> str:
    """
    Generate a signed, time-limited token using itsdangerous.
    Used as the OAuth state when sending providers to Stripe Connect.
    """
    serializer = URLSafeTimedSerializer(SECRET_KEY)
    return serializer.dumps(data, salt=salt)


def verify_timed_token(
    token: str, max_age: int = 3600, salt: str = "security-token"
) -> Optional[dict[str, Any]]:
    """
    Verify and decode a timed token

    Returns:
        Decoded data if valid, None if invalid or expired
    """
    serializer = URLSafeTimedSerializer(SECRET_KEY)
    try:
        return serializer.loads(token, salt=salt, max_age=max_age)
    except SignatureExpired:
        logger.warning("Token expired")
        return None
    except BadSignature:
        logger.warning("Invalid token signature")
        return None


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a bearer token for a user id"""
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": str(user_id), "exp": expire}
    return jose_jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_jwt_token(token: str) -> Optional[dict[str, Any]]:
    """
    Verify and decode a JWT token

    Returns:
        Decoded payload if valid, None if invalid or expired
    """
    try:
        return jose_jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        return None


# ============================================================================
# INPUT SANITIZATION
# ============================================================================


def strip_html(value: Optional[str]) -> Optional[str]:
    """Remove any markup from free text (instructions, notes, descriptions)"""
    if value is None:
        return None
    return bleach.clean(value, tags=[], attributes={}, strip=True)
