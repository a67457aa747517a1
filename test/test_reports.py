import csv
import io

import pytest
from starlette.websockets import WebSocketDisconnect

from database.models import Report, ReportStatus, RoleName, User
from services.maintenance_service import MaintenanceService, PurgeScope
from services.role_service import RoleService

PHOTO = ('issue.jpg', b'\xff\xd8\xff\xe0fake-jpeg-bytes', 'image/jpeg')
COMPLETION = ('fixed.png', b'\x89PNGfake-png-bytes', 'image/png')


@pytest.fixture
def people(make_user, login):
    """A student, a staff member and an official, each signed in."""
    make_user('asha@campus.test', full_name='Asha Kumar', register_no='41110123')
    make_user('ravi@campus.test', full_name='Ravi Menon', register_no='41110999')
    make_user('warden@campus.test', role=RoleName.STAFF, full_name='Hostel Warden')
    make_user('dean@campus.test', role=RoleName.OFFICIAL, full_name='Dean Office')
    return {
        'student': login('asha@campus.test'),
        'other_student': login('ravi@campus.test'),
        'staff': login('warden@campus.test'),
        'official': login('dean@campus.test', 'official'),
    }


def _submit(client, headers, photo=PHOTO, **fields):
    data = {
        'category': 'infrastructure',
        'subCategory': 'drainage',
        'description': 'Drain overflowing near block C',
        'landmark': 'Block C',
    }
    data.update(fields)
    files = {'photo': photo} if photo else None
    return client.post('/api/reports', data=data, files=files, headers=headers)


def _report_count(database):
    with database.get_session() as db:
        return db.query(Report).count()


def test_infrastructure_report_is_stored_with_photo(client, database, store, people) -> None:
    response = _submit(client, people['student'])

    assert response.status_code == 201
    body = response.json()
    assert body['status'] == 'pending'
    assert body['category'] == 'infrastructure'
    assert body['subCategory'] == 'drainage'
    assert body['imageUrl'].startswith('/uploads/reports/')
    assert body['submitterName'] == 'Asha Kumar'
    assert len(store.list_objects()) == 1
    assert _report_count(database) == 1


def test_report_without_photo_uploads_nothing(client, database, store, people) -> None:
    response = _submit(client, people['student'], photo=None)

    assert response.status_code == 400
    assert response.json()['detail']['field'] == 'photo'
    assert store.list_objects() == []
    assert _report_count(database) == 0


@pytest.mark.parametrize(
    ('fields', 'photo', 'field'),
    [
        ({}, ('clip.gif', b'GIF89a', 'image/gif'), 'photo'),
        ({'category': 'weather'}, PHOTO, 'category'),
        ({'subCategory': 'theft'}, PHOTO, 'subCategory'),
        ({'description': '   '}, PHOTO, 'description'),
        ({'latitude': '12.9'}, PHOTO, 'location'),
    ],
)
def test_invalid_submission_reports_the_field(client, database, store, people, fields, photo, field) -> None:
    response = _submit(client, people['student'], photo=photo, **fields)

    assert response.status_code == 400
    assert response.json()['detail']['field'] == field
    assert store.list_objects() == []
    assert _report_count(database) == 0


@pytest.mark.parametrize('role', ['staff', 'official'])
def test_only_students_submit_reports(client, people, role) -> None:
    assert _submit(client, people[role]).status_code == 403


def test_anonymous_flag_only_applies_to_personal_reports(client, people) -> None:
    body = _submit(client, people['student'], isAnonymous='true').json()

    assert body['isAnonymous'] is False


def test_security_report_keeps_time_of_incident(client, people) -> None:
    body = _submit(
        client, people['student'],
        category='security', subCategory='theft', timeOfIncident='2026-03-01T21:30:00',
    ).json()

    assert body['timeOfIncident'].startswith('2026-03-01T21:30')


def test_anonymous_personal_report_is_masked_for_reviewers(client, people) -> None:
    created = _submit(
        client, people['student'],
        category='personal', subCategory='harassment',
        description='Repeated comments in the library', isAnonymous='true',
    ).json()
    assert created['isAnonymous'] is True
    assert created['submitterName'] == 'Asha Kumar'

    detail = client.get(f"/api/reports/{created['id']}", headers=people['official']).json()
    listing = client.get('/api/reports', headers=people['staff']).json()['data']

    for view in (detail, listing[0]):
        assert view['submitterName'] == 'Anonymous'
        assert view['submitterRegisterNo'] is None
        assert view['userId'] is None


def test_search_never_matches_anonymous_submitter(client, people) -> None:
    _submit(
        client, people['student'],
        category='personal', subCategory='harassment', description='Comments in the library', isAnonymous='true',
    )
    _submit(client, people['student'])

    by_name = client.get('/api/reports?search=asha', headers=people['official']).json()
    by_register_no = client.get('/api/reports?search=41110123', headers=people['official']).json()
    by_sub_category = client.get('/api/reports?search=harass', headers=people['official']).json()

    assert by_name['total'] == 1
    assert by_name['data'][0]['category'] == 'infrastructure'
    assert by_register_no['total'] == 1
    assert by_sub_category['total'] == 1
    assert by_sub_category['data'][0]['submitterName'] == 'Anonymous'


def test_export_masks_anonymous_submitters(client, people) -> None:
    _submit(
        client, people['student'],
        category='personal', subCategory='bullying', description='Group chat bullying', isAnonymous='true',
    )

    response = client.get('/api/reports/export?format=csv', headers=people['official'])

    assert response.status_code == 200
    rows = list(csv.DictReader(io.StringIO(response.text)))
    assert len(rows) == 1
    assert rows[0]['submitterName'] == 'Anonymous'
    assert 'Asha' not in response.text
    assert '41110123' not in response.text


def test_export_is_for_reviewers_only(client, people) -> None:
    assert client.get('/api/reports/export', headers=people['student']).status_code == 403
    json_export = client.get('/api/reports/export?format=json', headers=people['staff'])
    assert json_export.status_code == 200
    assert json_export.json() == []


def test_students_only_see_their_own_reports(client, people) -> None:
    report_id = _submit(client, people['student']).json()['id']

    own = client.get('/api/reports', headers=people['student']).json()
    others = client.get('/api/reports', headers=people['other_student']).json()

    assert own['total'] == 1
    assert others['total'] == 0
    assert client.get(f'/api/reports/{report_id}', headers=people['other_student']).status_code == 404
    assert client.patch(
        f'/api/reports/{report_id}', json={'status': 'investigating'}, headers=people['student']
    ).status_code == 403


def test_list_filters(client, people) -> None:
    _submit(client, people['student'])
    _submit(client, people['student'], category='security', subCategory='lost_item', description='Lost ID card')

    security = client.get('/api/reports?category=security', headers=people['staff']).json()
    pending = client.get('/api/reports?status=pending&limit=1', headers=people['staff']).json()
    bad = client.get('/api/reports?status=closed', headers=people['staff'])

    assert security['total'] == 1
    assert pending['total'] == 2
    assert len(pending['data']) == 1
    assert bad.status_code == 400


def test_status_only_moves_forward(client, people) -> None:
    report_id = _submit(client, people['student']).json()['id']

    forward = client.patch(
        f'/api/reports/{report_id}',
        json={'status': 'investigating', 'officialResponse': 'Plumber assigned'},
        headers=people['staff'],
    )
    backward = client.patch(f'/api/reports/{report_id}', json={'status': 'pending'}, headers=people['staff'])

    assert forward.status_code == 200
    assert forward.json()['officialResponse'] == 'Plumber assigned'
    assert backward.status_code == 409


def test_staff_needs_completion_photo_to_resolve(client, people) -> None:
    report_id = _submit(client, people['student']).json()['id']

    response = client.patch(f'/api/reports/{report_id}', json={'status': 'resolved'}, headers=people['staff'])

    assert response.status_code == 400
    assert response.json()['detail']['field'] == 'completionImage'


def test_official_can_resolve_directly(client, people) -> None:
    report_id = _submit(client, people['student']).json()['id']

    response = client.patch(f'/api/reports/{report_id}', json={'status': 'resolved'}, headers=people['official'])

    assert response.status_code == 200
    assert response.json()['status'] == 'resolved'


def test_completion_photo_resolves_and_replaces(client, store, people) -> None:
    report_id = _submit(client, people['student']).json()['id']

    first = client.post(
        f'/api/reports/{report_id}/complete',
        files={'completionImage': COMPLETION},
        data={'officialResponse': 'Drain cleared'},
        headers=people['staff'],
    )
    second = client.post(
        f'/api/reports/{report_id}/complete', files={'completionImage': COMPLETION}, headers=people['staff']
    )

    assert first.status_code == 200
    assert first.json()['status'] == 'resolved'
    assert first.json()['officialResponse'] == 'Drain cleared'
    assert second.json()['officialResponse'] == 'Drain cleared'
    completions = [key for key in store.list_objects() if key.startswith('completions/')]
    assert len(completions) == 1
    assert second.json()['completionImageUrl'] == f'/uploads/{completions[0]}'


def test_completion_requires_photo(client, people) -> None:
    report_id = _submit(client, people['student']).json()['id']

    response = client.post(f'/api/reports/{report_id}/complete', headers=people['staff'])

    assert response.status_code == 400
    assert response.json()['detail']['field'] == 'completionImage'


def test_delete_needs_official_and_confirmation(client, store, people) -> None:
    report_id = _submit(client, people['student']).json()['id']

    as_staff = client.delete(f'/api/reports/{report_id}?confirm=true', headers=people['staff'])
    unconfirmed = client.delete(f'/api/reports/{report_id}', headers=people['official'])
    confirmed = client.delete(f'/api/reports/{report_id}?confirm=true', headers=people['official'])

    assert as_staff.status_code == 403
    assert unconfirmed.status_code == 400
    assert unconfirmed.json()['detail']['field'] == 'confirm'
    assert confirmed.json() == {'success': True, 'deletedFiles': 1}
    assert store.list_objects() == []
    assert client.get(f'/api/reports/{report_id}', headers=people['official']).status_code == 404


def test_submission_refused_while_purge_runs(client, database, store, people, monkeypatch) -> None:
    monkeypatch.setattr('routers.reports.purge_in_progress', lambda: True)

    response = _submit(client, people['student'])

    assert response.status_code == 503
    assert store.list_objects() == []
    assert _report_count(database) == 0


def test_published_event_is_masked(client, people, monkeypatch) -> None:
    class RecordingBroker:
        def __init__(self):
            self.events = []

        def publish(self, event):
            self.events.append(event)
            return 1

    broker = RecordingBroker()
    monkeypatch.setattr('routers.reports.report_events', broker)

    _submit(
        client, people['student'],
        category='personal', subCategory='harassment', description='Comments in the library', isAnonymous='true',
    )

    assert len(broker.events) == 1
    event = broker.events[0]
    assert event['type'] == 'report_created'
    assert event['report']['submitterName'] == 'Anonymous'
    assert event['report']['userId'] is None
    assert event['alert']['message'] == 'harassment: Comments in the library'


def test_feed_streams_new_reports_to_reviewers(client, people) -> None:
    token = people['staff']['Authorization'].split()[1]

    with client.websocket_connect(f'/api/reports/feed?token={token}') as websocket:
        created = _submit(client, people['student']).json()
        event = websocket.receive_json()

    assert event['type'] == 'report_created'
    assert event['report']['id'] == created['id']
    assert event['alert']['title'] == 'New Report Submitted'


@pytest.mark.parametrize(('who', 'code'), [('student', 4003), (None, 4001)])
def test_feed_refuses_students_and_bad_tokens(client, people, who, code) -> None:
    token = people[who]['Authorization'].split()[1] if who else 'not-a-token'

    with pytest.raises(WebSocketDisconnect) as exception_info:
        with client.websocket_connect(f'/api/reports/feed?token={token}') as websocket:
            websocket.receive_json()

    assert exception_info.value.code == code


def test_report_status_enum_matches_lifecycle() -> None:
    assert [s.value for s in ReportStatus] == ['pending', 'investigating', 'resolved']


def test_purge_during_upload_refuses_the_submission(client, database, store, people, monkeypatch) -> None:
    with database.get_session() as db:
        official_id = db.query(User.id).filter(User.email == 'dean@campus.test').scalar()
    upload = store.upload_fileobj

    def upload_then_purge(file_obj, key, content_type=None):
        stored = upload(file_obj, key, content_type)
        with database.get_session() as db:
            MaintenanceService.purge(db, store, official_id, PurgeScope.ALL, 'PURGE_ALL')
        return stored

    monkeypatch.setattr(store, 'upload_fileobj', upload_then_purge)

    response = _submit(client, people['student'])

    assert response.status_code == 503
    assert store.list_objects() == []
    assert _report_count(database) == 0


def test_search_treats_wildcards_literally(client, people) -> None:
    _submit(client, people['student'], description='Only 50% of the lights work')
    _submit(client, people['student'], description='Broken bench')

    percent = client.get('/api/reports', params={'search': '%'}, headers=people['staff']).json()
    underscore = client.get('/api/reports', params={'search': '_'}, headers=people['staff']).json()
    literal = client.get('/api/reports', params={'search': '50%'}, headers=people['staff']).json()

    assert percent['total'] == 1
    assert underscore['total'] == 0
    assert literal['data'][0]['description'] == 'Only 50% of the lights work'


@pytest.mark.parametrize(('change', 'code'), [('logout', 4001), ('demote', 4003)])
def test_feed_closes_once_access_is_gone(client, database, people, change, code) -> None:
    token = people['staff']['Authorization'].split()[1]

    with pytest.raises(WebSocketDisconnect) as exception_info:
        with client.websocket_connect(f'/api/reports/feed?token={token}') as websocket:
            if change == 'logout':
                client.post('/api/auth/logout', headers=people['staff'])
            else:
                with database.get_session() as db:
                    staff_id = db.query(User.id).filter(User.email == 'warden@campus.test').scalar()
                    RoleService.assign_role(db, staff_id, RoleName.STUDENT)
            _submit(client, people['student'])
            websocket.receive_json()

    assert exception_info.value.code == code
