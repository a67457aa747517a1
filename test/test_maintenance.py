import io

import pytest

from database.models import Report, ReportCategory, ReportStatus, RoleName
from core.exceptions import AuthorizationError, StateError, ValidationError
from services import maintenance_service
from services.maintenance_service import MaintenanceService, PurgeScope
from storage.s3_client import S3Client, chunked


def _add_report(database, store, owner_id, status, completion=False):
    image_key = store.upload_fileobj(io.BytesIO(b'photo'), f'reports/{status.value}.jpg')
    completion_key = None
    if completion:
        completion_key = store.upload_fileobj(io.BytesIO(b'done'), f'completions/{status.value}.jpg')
    with database.get_session() as db:
        report = Report(
            user_id=owner_id,
            category=ReportCategory.INFRASTRUCTURE,
            sub_category='trash',
            description='Overflowing bin',
            image_key=image_key,
            completion_image_key=completion_key,
            status=status,
        )
        db.add(report)
        db.flush()
        return report.id


@pytest.fixture
def populated(database, store, make_user):
    """One pending and one resolved report, plus an orphaned object."""
    student = make_user('asha@campus.test')
    _add_report(database, store, student, ReportStatus.PENDING)
    _add_report(database, store, student, ReportStatus.RESOLVED, completion=True)
    store.upload_fileobj(io.BytesIO(b'stray'), 'reports/orphan.jpg')
    return student


def _report_statuses(database):
    with database.get_session() as db:
        return sorted(s.value for (s,) in db.query(Report.status).all())


def test_preview_deletes_nothing(database, store, populated, make_user) -> None:
    official = make_user('dean@campus.test', role=RoleName.OFFICIAL)

    with database.get_session() as db:
        plan = MaintenanceService.preview(db, store, official, PurgeScope.RESOLVED)

    assert plan.report_count == 1
    assert sorted(plan.object_keys) == ['completions/resolved.jpg', 'reports/orphan.jpg', 'reports/resolved.jpg']
    assert plan.as_dict()['confirmWith'] == 'PURGE_RESOLVED'
    assert len(store.list_objects()) == 4
    assert _report_statuses(database) == ['pending', 'resolved']


@pytest.mark.parametrize('role', [RoleName.STUDENT, RoleName.STAFF])
def test_non_official_cannot_purge(database, store, populated, make_user, role) -> None:
    actor = make_user('someone@campus.test', role=role)

    with database.get_session() as db:
        with pytest.raises(AuthorizationError):
            MaintenanceService.purge(db, store, actor, PurgeScope.ALL, 'PURGE_ALL')

    assert len(store.list_objects()) == 4
    assert _report_statuses(database) == ['pending', 'resolved']


@pytest.mark.parametrize(
    ('scope', 'confirm'),
    [(PurgeScope.ALL, 'PURGE_RESOLVED'), (PurgeScope.RESOLVED, 'purge_resolved'), (PurgeScope.ALL, '')],
)
def test_wrong_confirmation_is_refused(database, store, populated, make_user, scope, confirm) -> None:
    official = make_user('dean@campus.test', role=RoleName.OFFICIAL)

    with database.get_session() as db:
        with pytest.raises(ValidationError) as exception_info:
            MaintenanceService.purge(db, store, official, scope, confirm)

    assert exception_info.value.field == 'confirm'
    assert len(store.list_objects()) == 4


def test_resolved_purge_keeps_open_reports(database, store, populated, make_user) -> None:
    official = make_user('dean@campus.test', role=RoleName.OFFICIAL)

    with database.get_session() as db:
        result = MaintenanceService.purge(db, store, official, PurgeScope.RESOLVED, 'PURGE_RESOLVED')

    assert result.as_dict() == {'scope': 'resolved', 'deletedReports': 1, 'deletedFiles': 3}
    assert store.list_objects() == ['reports/pending.jpg']
    assert _report_statuses(database) == ['pending']


def test_full_purge_empties_everything(database, store, populated, make_user) -> None:
    official = make_user('dean@campus.test', role=RoleName.OFFICIAL)

    with database.get_session() as db:
        result = MaintenanceService.purge(db, store, official, PurgeScope.ALL, 'PURGE_ALL')

    assert result.deleted_reports == 2
    assert result.deleted_files == 4
    assert store.list_objects() == []
    assert _report_statuses(database) == []
    assert not maintenance_service.purge_in_progress()


def test_concurrent_purge_is_refused(database, store, populated, make_user) -> None:
    official = make_user('dean@campus.test', role=RoleName.OFFICIAL)
    maintenance_service._purge_lock.acquire()
    try:
        assert maintenance_service.purge_in_progress()
        with database.get_session() as db:
            with pytest.raises(StateError):
                MaintenanceService.purge(db, store, official, PurgeScope.ALL, 'PURGE_ALL')
    finally:
        maintenance_service._purge_lock.release()

    assert len(store.list_objects()) == 4


def test_purge_api_requires_official(client, populated, make_user, login, store) -> None:
    make_user('warden@campus.test', role=RoleName.STAFF)
    make_user('dean@campus.test', role=RoleName.OFFICIAL)

    refused = client.post(
        '/api/maintenance/purge', json={'scope': 'all', 'confirm': 'PURGE_ALL'}, headers=login('warden@campus.test')
    )
    official = login('dean@campus.test', 'official')
    preview = client.get('/api/maintenance/purge/preview?scope=all', headers=official)
    purged = client.post('/api/maintenance/purge', json={'scope': 'all', 'confirm': 'PURGE_ALL'}, headers=official)

    assert refused.status_code == 403
    assert preview.json()['filesToDelete'] == 4
    assert purged.json() == {'scope': 'all', 'deletedReports': 2, 'deletedFiles': 4}
    assert store.list_objects() == []


def test_storage_usage_warns_past_threshold(store, monkeypatch) -> None:
    monkeypatch.setattr('config.STORAGE_WARNING_THRESHOLD', 1)
    store.upload_fileobj(io.BytesIO(b'a'), 'reports/a.jpg')
    assert MaintenanceService.storage_usage(store)['warning'] is False

    store.upload_fileobj(io.BytesIO(b'b'), 'reports/b.jpg')

    assert MaintenanceService.storage_usage(store) == {'fileCount': 2, 'warningThreshold': 1, 'warning': True}


def test_chunked_batches_of_one_thousand() -> None:
    keys = [f'reports/{i}.jpg' for i in range(2500)]

    assert [len(batch) for batch in chunked(keys)] == [1000, 1000, 500]


def test_s3_delete_objects_batches_requests() -> None:
    class FakeS3:
        def __init__(self):
            self.calls = []

        def delete_objects(self, Bucket, Delete):
            self.calls.append((Bucket, len(Delete['Objects'])))
            return {'Deleted': Delete['Objects']}

    client = S3Client.__new__(S3Client)
    client.bucket_name = 'campus-reports'
    client.s3_client = FakeS3()

    deleted = client.delete_objects(f'reports/{i}.jpg' for i in range(2001))

    assert deleted == 2001
    assert client.s3_client.calls == [('campus-reports', 1000), ('campus-reports', 1000), ('campus-reports', 1)]


def test_purge_counter_only_moves_when_a_purge_starts(database, store, populated, make_user) -> None:
    official = make_user('dean@campus.test', role=RoleName.OFFICIAL)
    before = maintenance_service.purges_started()

    with database.get_session() as db:
        with pytest.raises(ValidationError):
            MaintenanceService.purge(db, store, official, PurgeScope.ALL, 'nope')
    assert maintenance_service.purges_started() == before

    with database.get_session() as db:
        MaintenanceService.purge(db, store, official, PurgeScope.RESOLVED, 'PURGE_RESOLVED')
    assert maintenance_service.purges_started() == before + 1
