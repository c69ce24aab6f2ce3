import os
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Header, HTTPException
from passlib.context import CryptContext

logger = logging.getLogger(__name__)

# Auth settings
SECRET_KEY = os.getenv("JWT_SECRET", "dev_secret_change_me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60  # 1 hour

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(plain, hashed)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def auth_current_user(authorization: Optional[str] = Header(None)) -> str:
    """Resolve the bearer token in the Authorization header to a user id.

    A missing header is a 401; anything wrong with the token itself
    (signature, expiry, shape, missing claim) is a 400.
    """
    if not authorization or not authorization.strip():
        raise HTTPException(status_code=401, detail="Access Denied: No Token")
    token = authorization.strip()
    if token.startswith("Bearer "):
        token = token[len("Bearer "):].strip()
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM], options={"require": ["exp"]})
    except jwt.PyJWTError as exc:
        logger.debug("Rejected bearer token: %s", exc)
        raise HTTPException(status_code=400, detail="Invalid Token")
    user_id = payload.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise HTTPException(status_code=400, detail="Invalid Token")
    return user_id
