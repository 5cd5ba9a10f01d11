from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .config import get_settings
from .db import get_db
from .models import Staff


# Tokens are minted by the identity side (see `taskhub token`).
bearer_scheme = HTTPBearer(auto_error=False)

logger = logging.getLogger("taskhub.auth")


def create_access_token(*, subject: str, is_admin: bool = False, expires_minutes: Optional[int] = None) -> str:
    settings = get_settings()
    minutes = int(expires_minutes if expires_minutes is not None else settings.security.token_minutes)
    expire = datetime.utcnow() + timedelta(minutes=minutes)
    to_encode = {
        "sub": subject,
        "exp": expire,
        "admin": bool(is_admin),
    }
    return jwt.encode(to_encode, settings.security.jwt_secret, algorithm="HS256")


def _decode_token(token: str) -> dict:
    settings = get_settings()
    return jwt.decode(token, settings.security.jwt_secret, algorithms=["HS256"])


def get_current_staff_api(
    db: Session = Depends(get_db),
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Staff:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None or not credentials.credentials:
        raise credentials_exception
    try:
        payload = _decode_token(credentials.credentials)
        subject: str | None = payload.get("sub")
        if subject is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    staff = db.query(Staff).filter(Staff.auth_user_id == str(subject)).first()
    if staff is None:
        logger.info("Token subject %s has no staff record", subject)
        raise credentials_exception
    return staff


def require_admin_api(current_staff: Staff = Depends(get_current_staff_api)) -> Staff:
    if not current_staff.is_admin:
        raise HTTPException(status_code=403, detail="Admin privileges required")
    return current_staff
