import logging
from typing import Optional

from fastapi import Header, HTTPException, status, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.user import User
from app.utils.auth import get_user_id_from_token

logger = logging.getLogger(__name__)


def _extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header"
        )

    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid header format. Expected 'Bearer <token>'"
        )

    token = authorization.replace("Bearer ", "", 1).strip()

    # Reject common invalid token values sent by the frontend before login
    if not token or token.lower() in ["null", "undefined", "none"]:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing token"
        )
    return token


def get_current_user_id(authorization: Optional[str] = Header(None)) -> int:
    """Extract and verify user ID from JWT token in Authorization header."""
    token = _extract_bearer_token(authorization)
    user_id = get_user_id_from_token(token)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token"
        )
    return user_id


def get_current_user(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> User:
    """
    Resolve the authenticated user's row.
    A valid token whose user no longer exists is a 404 (profile missing), not a 401.
    """
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        logger.warning("[AUTH] Token for user %s has no matching profile", user_id)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is disabled"
        )
    return user


def get_optional_user_id(authorization: Optional[str] = Header(None)) -> Optional[int]:
    """Like get_current_user_id, but anonymous callers get None instead of a 401."""
    if not authorization:
        return None
    return get_current_user_id(authorization)
