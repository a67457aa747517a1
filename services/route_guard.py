"""
Navigation policy: which screen a caller may see, and where to send them otherwise.

A redirect is only decided once the role is known. While the session or
role lookup is still in flight the client shows a neutral placeholder.
"""
import enum
from dataclasses import dataclass
from typing import Optional

from services.role_service import AppRole


class SessionStatus(str, enum.Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


class Screen(str, enum.Enum):
    SIGN_IN = "sign_in"
    COMMAND_CONSOLE = "command_console"
    SUBMISSION_CONSOLE = "submission_console"
    WORK_QUEUE = "work_queue"
    ADMIN = "admin"


class NavigationAction(str, enum.Enum):
    RENDER = "render"
    REDIRECT = "redirect"
    PLACEHOLDER = "placeholder"


# None means any signed-in role may open the screen
SCREEN_REQUIRED_ROLE = {
    Screen.SIGN_IN: None,
    Screen.COMMAND_CONSOLE: AppRole.OFFICIAL,
    Screen.SUBMISSION_CONSOLE: AppRole.STUDENT,
    Screen.WORK_QUEUE: AppRole.STAFF,
    Screen.ADMIN: AppRole.OFFICIAL,
}

HOME_SCREENS = {
    AppRole.OFFICIAL: Screen.COMMAND_CONSOLE,
    AppRole.STUDENT: Screen.SUBMISSION_CONSOLE,
    AppRole.STAFF: Screen.WORK_QUEUE,
}


@dataclass
class SessionState:
    """Explicit session value handed to the guard."""
    status: SessionStatus
    user_id: Optional[int] = None
    email: Optional[str] = None
    role: Optional[AppRole] = None  # None while the lookup is in flight

    @property
    def role_known(self) -> bool:
        return self.status == SessionStatus.AUTHENTICATED and self.role is not None


@dataclass
class NavigationDecision:
    action: NavigationAction
    target: Optional[Screen] = None

    def as_dict(self) -> dict:
        return {"action": self.action.value, "target": self.target.value if self.target else None}


def home_screen_for(role: Optional[AppRole]) -> Screen:
    """Landing screen for a role; sign-in when there is none."""
    return HOME_SCREENS.get(role, Screen.SIGN_IN)


def decide(state: SessionState, screen: Screen) -> NavigationDecision:
    """Decide what to do with a navigation attempt to ``screen``."""
    if state.status == SessionStatus.LOADING:
        return NavigationDecision(NavigationAction.PLACEHOLDER)
    if state.status == SessionStatus.UNAUTHENTICATED:
        if screen == Screen.SIGN_IN:
            return NavigationDecision(NavigationAction.RENDER, Screen.SIGN_IN)
        return NavigationDecision(NavigationAction.REDIRECT, Screen.SIGN_IN)
    if state.role is None:
        # Identity known, role not yet: never redirect on identity alone
        return NavigationDecision(NavigationAction.PLACEHOLDER)

    if state.role == AppRole.NONE:
        if screen == Screen.SIGN_IN:
            return NavigationDecision(NavigationAction.RENDER, Screen.SIGN_IN)
        return NavigationDecision(NavigationAction.REDIRECT, Screen.SIGN_IN)

    if screen == Screen.SIGN_IN:
        # Already signed in: go home
        return NavigationDecision(NavigationAction.REDIRECT, home_screen_for(state.role))

    required = SCREEN_REQUIRED_ROLE[screen]
    if required is not None and required != state.role:
        return NavigationDecision(NavigationAction.REDIRECT, home_screen_for(state.role))
    return NavigationDecision(NavigationAction.RENDER, screen)
