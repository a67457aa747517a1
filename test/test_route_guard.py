import pytest

from database.models import RoleName
from services.role_service import AppRole
from services.route_guard import (
    NavigationAction, Screen, SessionState, SessionStatus, decide, home_screen_for
)


def _signed_in(role):
    return SessionState(status=SessionStatus.AUTHENTICATED, user_id=1, email='a@campus.test', role=role)


@pytest.mark.parametrize('screen', list(Screen))
def test_loading_session_shows_placeholder(screen) -> None:
    decision = decide(SessionState(status=SessionStatus.LOADING), screen)

    assert decision.action == NavigationAction.PLACEHOLDER
    assert decision.target is None


@pytest.mark.parametrize('screen', list(Screen))
def test_role_lookup_in_flight_never_redirects(screen) -> None:
    decision = decide(_signed_in(None), screen)

    assert decision.action == NavigationAction.PLACEHOLDER


@pytest.mark.parametrize('screen', [s for s in Screen if s != Screen.SIGN_IN])
def test_signed_out_goes_to_sign_in(screen) -> None:
    decision = decide(SessionState(status=SessionStatus.UNAUTHENTICATED), screen)

    assert decision.as_dict() == {'action': 'redirect', 'target': 'sign_in'}


def test_signed_out_can_open_sign_in() -> None:
    decision = decide(SessionState(status=SessionStatus.UNAUTHENTICATED), Screen.SIGN_IN)

    assert decision.action == NavigationAction.RENDER


@pytest.mark.parametrize(
    ('role', 'screen', 'action', 'target'),
    [
        (AppRole.OFFICIAL, Screen.COMMAND_CONSOLE, 'render', 'command_console'),
        (AppRole.OFFICIAL, Screen.ADMIN, 'render', 'admin'),
        (AppRole.OFFICIAL, Screen.SUBMISSION_CONSOLE, 'redirect', 'command_console'),
        (AppRole.OFFICIAL, Screen.WORK_QUEUE, 'redirect', 'command_console'),
        (AppRole.STUDENT, Screen.SUBMISSION_CONSOLE, 'render', 'submission_console'),
        (AppRole.STUDENT, Screen.COMMAND_CONSOLE, 'redirect', 'submission_console'),
        (AppRole.STUDENT, Screen.ADMIN, 'redirect', 'submission_console'),
        (AppRole.STAFF, Screen.WORK_QUEUE, 'render', 'work_queue'),
        (AppRole.STAFF, Screen.COMMAND_CONSOLE, 'redirect', 'work_queue'),
        (AppRole.STAFF, Screen.SIGN_IN, 'redirect', 'work_queue'),
        (AppRole.STUDENT, Screen.SIGN_IN, 'redirect', 'submission_console'),
        (AppRole.NONE, Screen.COMMAND_CONSOLE, 'redirect', 'sign_in'),
        (AppRole.NONE, Screen.SIGN_IN, 'render', 'sign_in'),
    ],
)
def test_decision_matrix(role, screen, action, target) -> None:
    assert decide(_signed_in(role), screen).as_dict() == {'action': action, 'target': target}


@pytest.mark.parametrize(
    ('role', 'screen'),
    [(AppRole.OFFICIAL, Screen.COMMAND_CONSOLE), (AppRole.STUDENT, Screen.SUBMISSION_CONSOLE),
     (AppRole.STAFF, Screen.WORK_QUEUE), (AppRole.NONE, Screen.SIGN_IN), (None, Screen.SIGN_IN)],
)
def test_home_screen_for(role, screen) -> None:
    assert home_screen_for(role) == screen


def test_session_endpoint_without_token(client) -> None:
    body = client.get('/api/session').json()

    assert body['status'] == 'unauthenticated'
    assert body['homeScreen'] == 'sign_in'


def test_session_endpoint_resolves_role(client, make_user, login) -> None:
    make_user('warden@campus.test', role=RoleName.STAFF)
    headers = login('warden@campus.test')

    body = client.get('/api/session', headers=headers).json()
    navigate = client.get('/api/session/navigate?screen=command_console', headers=headers).json()

    assert body['status'] == 'authenticated'
    assert body['role'] == 'staff'
    assert body['homeScreen'] == 'work_queue'
    assert navigate == {'action': 'redirect', 'target': 'work_queue'}
