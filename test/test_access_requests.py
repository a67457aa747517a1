import pytest
from sqlalchemy.exc import OperationalError

from database.models import AccessRequest, AccessRequestStatus, RoleName, Session as DBSession
from core.exceptions import AuthorizationError, IntegrityError, StateError
from services.access_request_service import AccessRequestService, LOGIN_DENIALS
from services.role_service import AppRole, RoleService


def _submit(database, user_id, full_name='Dr. Rao'):
    with database.get_session() as db:
        return AccessRequestService.submit(db, user_id, full_name, 'rao@campus.test', 'Hostel warden').id


def _status(database, request_id):
    with database.get_session() as db:
        return db.query(AccessRequest).filter(AccessRequest.id == request_id).one().status


def test_submit_creates_pending_request(database, make_user) -> None:
    user_id = make_user('rao@campus.test')

    request_id = _submit(database, user_id)

    assert _status(database, request_id) == AccessRequestStatus.PENDING


def test_submit_rejects_second_pending_request(database, make_user) -> None:
    user_id = make_user('rao@campus.test')
    _submit(database, user_id)

    with pytest.raises(StateError):
        _submit(database, user_id)


def test_approval_grants_official_role(database, make_user) -> None:
    requester = make_user('rao@campus.test')
    reviewer = make_user('dean@campus.test', role=RoleName.OFFICIAL)
    request_id = _submit(database, requester)

    with database.get_session() as db:
        reviewed = AccessRequestService.review(db, request_id, reviewer, AccessRequestStatus.APPROVED)
        assert reviewed.reviewed_by == reviewer
        assert reviewed.reviewed_at is not None

    with database.get_session() as db:
        assert RoleService.resolve_role(db, requester) == AppRole.OFFICIAL
    assert _status(database, request_id) == AccessRequestStatus.APPROVED


@pytest.mark.parametrize('first', [AccessRequestStatus.APPROVED, AccessRequestStatus.REJECTED])
def test_reviewed_request_is_terminal(database, make_user, first) -> None:
    requester = make_user('rao@campus.test')
    reviewer = make_user('dean@campus.test', role=RoleName.STAFF)
    request_id = _submit(database, requester)
    with database.get_session() as db:
        AccessRequestService.review(db, request_id, reviewer, first)

    with database.get_session() as db:
        with pytest.raises(StateError):
            AccessRequestService.review(db, request_id, reviewer, AccessRequestStatus.APPROVED)

    assert _status(database, request_id) == first


def test_rejection_grants_nothing(database, make_user) -> None:
    requester = make_user('rao@campus.test')
    reviewer = make_user('dean@campus.test', role=RoleName.OFFICIAL)
    request_id = _submit(database, requester)

    with database.get_session() as db:
        AccessRequestService.review(db, request_id, reviewer, AccessRequestStatus.REJECTED)

    with database.get_session() as db:
        assert RoleService.resolve_role(db, requester) == AppRole.STUDENT


def test_student_cannot_review(database, make_user) -> None:
    requester = make_user('rao@campus.test')
    other_student = make_user('peer@campus.test')
    request_id = _submit(database, requester)

    with database.get_session() as db:
        with pytest.raises(AuthorizationError):
            AccessRequestService.review(db, request_id, other_student, AccessRequestStatus.APPROVED)

    assert _status(database, request_id) == AccessRequestStatus.PENDING


def test_failed_role_write_rolls_back_approval(database, make_user, monkeypatch) -> None:
    requester = make_user('rao@campus.test')
    reviewer = make_user('dean@campus.test', role=RoleName.OFFICIAL)
    request_id = _submit(database, requester)

    def failing_upsert(*args, **kwargs):
        raise OperationalError('INSERT INTO user_roles', {}, Exception('disk full'))

    monkeypatch.setattr(RoleService, 'upsert_role', staticmethod(failing_upsert))

    with database.get_session() as db:
        with pytest.raises(IntegrityError):
            AccessRequestService.review(db, request_id, reviewer, AccessRequestStatus.APPROVED)

    assert _status(database, request_id) == AccessRequestStatus.PENDING
    with database.get_session() as db:
        assert RoleService.resolve_role(db, requester) == AppRole.STUDENT


@pytest.mark.parametrize(
    ('status', 'code'),
    [
        (None, 'no_access'),
        (AccessRequestStatus.PENDING, 'pending_approval'),
        (AccessRequestStatus.REJECTED, 'request_rejected'),
        (AccessRequestStatus.APPROVED, 'approval_not_active'),
    ],
)
def test_login_denial_follows_latest_request(database, make_user, status, code) -> None:
    user_id = make_user('rao@campus.test')
    if status is not None:
        with database.get_session() as db:
            db.add(AccessRequest(user_id=user_id, full_name='Dr. Rao', email='rao@campus.test', status=status))

    with database.get_session() as db:
        assert AccessRequestService.login_denial(db, user_id) == LOGIN_DENIALS[status]
    assert LOGIN_DENIALS[status][0] == code


def test_registration_with_official_request_then_approval(client, database, make_user, login) -> None:
    signup = client.post('/api/auth/signup', json={
        'email': 'Rao@Campus.test',
        'password': 'Secret@123',
        'fullName': 'Dr. Rao',
        'requestOfficialAccess': True,
        'reason': 'Estate office',
    })
    assert signup.status_code == 201
    body = signup.json()
    assert body['status'] == 'request_submitted'
    assert 'access_token' not in body

    denied = client.post('/api/auth/login', json={
        'identifier': 'rao@campus.test', 'password': 'Secret@123', 'persona': 'official',
    })
    assert denied.status_code == 403
    assert denied.json()['detail'] == {
        'code': 'pending_approval',
        'message': 'Your official access request is pending approval.',
    }
    with database.get_session() as db:
        assert db.query(DBSession).filter(DBSession.is_active == True).count() == 0

    make_user('dean@campus.test', role=RoleName.OFFICIAL)
    reviewer_headers = login('dean@campus.test', persona='official')
    pending = client.get('/api/access-requests?status=pending', headers=reviewer_headers).json()
    assert pending['total'] == 1

    review = client.post(
        f"/api/access-requests/{body['requestId']}/review",
        json={'decision': 'approved'},
        headers=reviewer_headers,
    )
    assert review.status_code == 200
    assert review.json()['status'] == 'approved'

    again = client.post(
        f"/api/access-requests/{body['requestId']}/review",
        json={'decision': 'rejected'},
        headers=reviewer_headers,
    )
    assert again.status_code == 409

    signed_in = client.post('/api/auth/login', json={
        'identifier': 'rao@campus.test', 'password': 'Secret@123', 'persona': 'official',
    })
    assert signed_in.status_code == 200
    assert signed_in.json()['redirectTo'] == 'command_console'


def test_student_review_endpoint_is_forbidden(client, database, make_user, login) -> None:
    request_id = _submit(database, make_user('rao@campus.test'))
    make_user('peer@campus.test')
    headers = login('peer@campus.test')

    response = client.post(
        f'/api/access-requests/{request_id}/review', json={'decision': 'approved'}, headers=headers
    )

    assert response.status_code == 403
    assert _status(database, request_id) == AccessRequestStatus.PENDING
