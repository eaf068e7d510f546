from __future__ import annotations

import base64
import binascii
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.models.user import User, UserRole
from app.schemas.auth import SessionUser

logger = logging.getLogger(__name__)


def encode_session_id(user_id: int) -> str:
    return base64.urlsafe_b64encode(str(user_id).encode("ascii")).decode("ascii")


def _decode_session_id(value: str) -> Optional[int]:
    try:
        raw = base64.urlsafe_b64decode(value.encode("ascii")).decode("ascii")
        return int(raw)
    except (binascii.Error, UnicodeError, ValueError):
        return None


def get_session_user(request: Request, db: Session = Depends(get_db)) -> Optional[SessionUser]:
    """Resolve the session cookie to an active user, or ``None``."""
    cookie = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not cookie:
        return None
    user_id = _decode_session_id(cookie)
    if user_id is None:
        logger.debug("Ignoring malformed session cookie")
        return None
    user = db.get(User, user_id)
    if user is None or not user.active:
        return None
    return SessionUser.model_validate(user)


def require_auth(user: Optional[SessionUser] = Depends(get_session_user)) -> SessionUser:
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user


def require_admin(user: SessionUser = Depends(require_auth)) -> SessionUser:
    if user.role != UserRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden - Admin access required")
    return user
