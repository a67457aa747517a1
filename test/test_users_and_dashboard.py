import pytest

from database.models import AuditLog, RoleName


def test_official_lists_users_with_resolved_roles(client, make_user, login) -> None:
    make_user('asha@campus.test', full_name='Asha Kumar', register_no='41110123')
    make_user('dean@campus.test', role=RoleName.OFFICIAL)

    body = client.get('/api/users?search=4111', headers=login('dean@campus.test', 'official')).json()

    assert body['total'] == 1
    assert body['data'][0]['email'] == 'asha@campus.test'
    assert body['data'][0]['role'] == 'student'


@pytest.mark.parametrize('role', [RoleName.STUDENT, RoleName.STAFF])
def test_user_list_is_for_officials(client, make_user, login, role) -> None:
    make_user('someone@campus.test', role=role)

    assert client.get('/api/users', headers=login('someone@campus.test')).status_code == 403


def test_official_changes_role(client, database, make_user, login) -> None:
    student_id = make_user('asha@campus.test')
    make_user('dean@campus.test', role=RoleName.OFFICIAL)
    headers = login('dean@campus.test', 'official')

    response = client.put(f'/api/users/{student_id}/role', json={'role': 'Staff'}, headers=headers)

    assert response.status_code == 200
    assert response.json()['role'] == 'staff'
    with database.get_session() as db:
        assert db.query(AuditLog).filter(AuditLog.action == 'role_update').count() == 1


@pytest.mark.parametrize(
    ('target', 'role', 'status_code'),
    [('self', 'student', 409), ('missing', 'staff', 404), ('student', 'admin', 400)],
)
def test_role_change_refusals(client, make_user, login, target, role, status_code) -> None:
    student_id = make_user('asha@campus.test')
    official_id = make_user('dean@campus.test', role=RoleName.OFFICIAL)
    user_id = {'self': official_id, 'missing': 9999, 'student': student_id}[target]

    response = client.put(
        f'/api/users/{user_id}/role', json={'role': role}, headers=login('dean@campus.test', 'official')
    )

    assert response.status_code == status_code


def test_command_center_summarises_reports(client, make_user, login) -> None:
    make_user('asha@campus.test')
    make_user('warden@campus.test', role=RoleName.STAFF)
    client.post(
        '/api/reports',
        data={'category': 'infrastructure', 'subCategory': 'water', 'description': 'No water on floor 2'},
        files={'photo': ('tap.jpg', b'jpeg-bytes', 'image/jpeg')},
        headers=login('asha@campus.test'),
    )
    client.post('/api/access-requests', json={'reason': 'Maintenance team'}, headers=login('asha@campus.test'))

    body = client.get('/api/dashboards/command-center', headers=login('warden@campus.test')).json()

    assert body['reports'] == {'pending': 1, 'investigating': 0, 'resolved': 0, 'total': 1}
    assert body['storage']['fileCount'] == 1
    assert body['pendingAccessRequests'] == 1
    assert [r['subCategory'] for r in body['recentReports']] == ['water']


def test_command_center_is_for_reviewers(client, make_user, login) -> None:
    make_user('asha@campus.test')

    assert client.get('/api/dashboards/command-center', headers=login('asha@campus.test')).status_code == 403


@pytest.mark.parametrize('search', ['%', '_', '\\'])
def test_user_search_wildcards_match_nothing(client, make_user, login, search) -> None:
    make_user('asha@campus.test', full_name='Asha Kumar')
    make_user('dean@campus.test', role=RoleName.OFFICIAL)

    body = client.get('/api/users', params={'search': search}, headers=login('dean@campus.test', 'official')).json()

    assert body['total'] == 0
