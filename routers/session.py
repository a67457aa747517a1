"""
Session state and navigation decisions for the web client.
"""
from typing import Optional

from fastapi import APIRouter, Depends

from auth.dependencies import AuthContext, get_optional_auth_context
from services.route_guard import Screen, SessionState, SessionStatus, decide, home_screen_for


router = APIRouter(prefix="/api/session", tags=["session"])


def _session_state(context: Optional[AuthContext]) -> SessionState:
    if context is None:
        return SessionState(status=SessionStatus.UNAUTHENTICATED)
    return SessionState(
        status=SessionStatus.AUTHENTICATED,
        user_id=context.user.id,
        email=context.user.email,
        role=context.role,
    )


@router.get("")
async def get_session(context: Optional[AuthContext] = Depends(get_optional_auth_context)):
    """Current session: status, identity, role and home screen."""
    state = _session_state(context)
    return {
        "status": state.status.value,
        "userId": state.user_id,
        "email": state.email,
        "role": state.role.value if state.role else None,
        "homeScreen": home_screen_for(state.role).value,
    }


@router.get("/navigate")
async def navigate(
    screen: Screen,
    context: Optional[AuthContext] = Depends(get_optional_auth_context)
):
    """Render, redirect or placeholder for an attempt to open ``screen``."""
    return decide(_session_state(context), screen).as_dict()
