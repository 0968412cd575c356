from fastapi import APIRouter, Depends
import logging

from urbansetu.core.auth import bearer_token, get_current_session
from urbansetu.core.dependencies import get_session_manager
from urbansetu.models.user_model import LoginRequest, ProfileUpdate, RegisterRequest, SessionResponse, User
from urbansetu.services.session_service import SessionManager, UserSession, home_for

# Setup logger
logger = logging.getLogger(__name__)

router = APIRouter()


def _session_response(session: UserSession) -> SessionResponse:
    return SessionResponse(
        access_token=session.token,
        user=session.user,
        redirect=home_for(session.user_type),
    )


@router.post("/register", response_model=SessionResponse, status_code=201)
async def register(request: RegisterRequest, sessions: SessionManager = Depends(get_session_manager)):
    """Create an account and sign it in straight away."""
    logger.info(f"👉 Registration attempt for: {request.email}")
    session = await sessions.register(request)
    return _session_response(session)


@router.post("/login", response_model=SessionResponse)
async def login(request: LoginRequest, sessions: SessionManager = Depends(get_session_manager)):
    """
    Authenticate and return a JWT. The account type must match the portal
    (citizen or admin) the user is logging into.
    """
    logger.info(f"👉 Login attempt for: {request.email} as {request.user_type.value}")
    session = await sessions.login(request.email, request.password, request.user_type)
    return _session_response(session)


@router.post("/logout")
async def logout(token: str = Depends(bearer_token), sessions: SessionManager = Depends(get_session_manager)):
    await sessions.logout(token)
    return {"message": "Logged out successfully", "redirect": "/login"}


@router.get("/me", response_model=User)
async def me(session: UserSession = Depends(get_current_session)):
    return session.user


@router.put("/me", response_model=User)
async def update_me(
    updates: ProfileUpdate,
    session: UserSession = Depends(get_current_session),
    sessions: SessionManager = Depends(get_session_manager),
):
    return await sessions.update_profile(session.user_id, updates)
