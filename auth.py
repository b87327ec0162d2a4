import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

import config

logger = logging.getLogger(__name__)

# No 0/O or 1/I/L so the passcode can be copied by hand
PASSCODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)


def generate_passcode(length: int = None) -> str:
    length = length or config.PASSCODE_LENGTH
    return "".join(secrets.choice(PASSCODE_ALPHABET) for _ in range(length))


def get_passcode_hash(passcode: str) -> str:
    return pwd_context.hash(passcode)


def verify_passcode(plain_passcode: str, passcode_hash: str) -> bool:
    return pwd_context.verify(plain_passcode, passcode_hash)


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """The token only names the identity; roles are looked up on every request."""
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    return jwt.encode({"sub": user_id, "exp": expire}, config.SECRET_KEY, algorithm=config.ALGORITHM)


def decode_access_token(token: str) -> Optional[str]:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError as e:
        logger.warning(f"Rejected session token: {e}")
        return None
    return payload.get("sub")


async def get_session_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    """Identity id named by the bearer token, or None without a valid session."""
    if credentials is None:
        return None
    return decode_access_token(credentials.credentials)
