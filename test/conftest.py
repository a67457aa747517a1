import os
import tempfile
from pathlib import Path

import pytest

_TMP_DIR = Path(tempfile.mkdtemp(prefix='campus-reports-test-'))

# Must be set before config is imported
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['USE_S3'] = 'false'
os.environ['BCRYPT_ROUNDS'] = '4'
os.environ['SECRET_KEY'] = 'test-secret-key'
os.environ['ENCRYPTION_KEY'] = 'test-encryption-key'
os.environ['RATE_LIMIT_PER_MINUTE'] = '100000'
os.environ['RATE_LIMIT_PER_HOUR'] = '1000000'
os.environ['UPLOADS_DIR'] = str(_TMP_DIR / 'uploads')
os.environ['LOG_FILE'] = str(_TMP_DIR / 'app.log')

import config  # noqa: E402
from database.connection import Database  # noqa: E402
from database.models import RoleName  # noqa: E402
from services.auth_service import AuthService  # noqa: E402
from services.role_service import RoleService  # noqa: E402
from storage.local_store import LocalObjectStore  # noqa: E402

DEFAULT_PASSWORD = 'Secret@123'


class FakeMail:
    """Stands in for FastMail; records messages instead of sending them."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages = []

    async def send_message(self, message, template_name=None):
        if self.fail:
            raise ConnectionError('SMTP server unavailable')
        self.messages.append(message)


@pytest.fixture
def database(monkeypatch):
    db = Database('sqlite://')
    db.create_tables()
    monkeypatch.setattr(config, 'db', db)
    yield db
    db.drop_tables()
    db.engine.dispose()


@pytest.fixture
def store(tmp_path, monkeypatch):
    object_store = LocalObjectStore(tmp_path / 'objects', public_url='/uploads')
    monkeypatch.setattr(config, 'object_store', object_store)
    return object_store


@pytest.fixture
def mail():
    return FakeMail()


@pytest.fixture
def client(database, store, mail):
    from fastapi.testclient import TestClient
    from app import app

    app.state.mail = mail
    yield TestClient(app)
    app.state.mail = None


@pytest.fixture
def make_user(database):
    """Create an account with the given role; returns the user id."""

    def _make_user(email, role=RoleName.STUDENT, full_name='Test User', register_no=None, password=DEFAULT_PASSWORD):
        with database.get_session() as db:
            user = AuthService.register_user(
                db, email=email, password=password, full_name=full_name, register_no=register_no
            )
            if role != RoleName.STUDENT:
                RoleService.assign_role(db, user.id, role)
                db.commit()
            return user.id

    return _make_user


@pytest.fixture
def login(client):
    """Sign in through the API; returns request headers with the bearer token."""

    def _login(identifier, persona='student', password=DEFAULT_PASSWORD):
        response = client.post(
            '/api/auth/login',
            json={'identifier': identifier, 'password': password, 'persona': persona},
        )
        assert response.status_code == 200, response.text
        return {'Authorization': f"Bearer {response.json()['access_token']}"}

    return _login
