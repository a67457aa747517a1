from botocore.exceptions import EndpointConnectionError

import app
from storage.local_store import LocalObjectStore


def test_unreachable_s3_falls_back_to_local_storage(monkeypatch, tmp_path) -> None:
    def unreachable(**kwargs):
        raise EndpointConnectionError(endpoint_url='http://127.0.0.1:9')

    monkeypatch.setattr('config.USE_S3', True)
    monkeypatch.setattr('config.UPLOADS_DIR', str(tmp_path / 'uploads'))
    monkeypatch.setattr(app, 'S3Client', unreachable)

    assert isinstance(app._init_object_store(), LocalObjectStore)


def test_local_storage_when_s3_disabled(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr('config.USE_S3', False)
    monkeypatch.setattr('config.UPLOADS_DIR', str(tmp_path / 'uploads'))

    assert isinstance(app._init_object_store(), LocalObjectStore)
