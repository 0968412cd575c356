from typing import Optional
import logging

from fastapi import Depends, Header

from urbansetu.core.dependencies import get_session_manager
from urbansetu.core.exceptions import AuthenticationError, AuthorizationError
from urbansetu.models.user_model import UserType
from urbansetu.services.session_service import SessionManager, UserSession, home_for

logger = logging.getLogger(__name__)


def bearer_token(authorization: Optional[str] = Header(None)) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError()
    return authorization.split(" ", 1)[1].strip()


async def get_current_session(
    token: str = Depends(bearer_token),
    sessions: SessionManager = Depends(get_session_manager),
) -> UserSession:
    """
    Validates the JWT from the Authorization header and loads its user.
    Revoked (logged out) tokens are rejected.
    """
    return await sessions.resolve(token)


def _require_role(session: UserSession, role: UserType) -> UserSession:
    if session.user_type != role:
        logger.warning(f"🚫 {session.user_type.value} {session.user_id} denied {role.value}-only route")
        raise AuthorizationError(
            f"{role.value.title()} access required",
            redirect=home_for(session.user_type),
        )
    return session


async def require_citizen(session: UserSession = Depends(get_current_session)) -> UserSession:
    return _require_role(session, UserType.citizen)


async def require_admin(session: UserSession = Depends(get_current_session)) -> UserSession:
    """Admin-only authentication dependency"""
    return _require_role(session, UserType.admin)
