import pytest
from fastapi.testclient import TestClient

from auth import AuthService
from config import Settings
from database import Repositories
from main import create_app
from tests.helpers import DEFAULT_ADMIN
from uploads import UploadStore


@pytest.fixture
def settings(tmp_path):
    return Settings(
        storage_dir=str(tmp_path / "storage"),
        uploads_dir=str(tmp_path / "public" / "uploads"),
        bcrypt_rounds=4,
    )


@pytest.fixture
def uploads(settings):
    return UploadStore(settings.uploads_dir, settings.uploads_url_prefix)


@pytest.fixture
def repos(settings, uploads):
    return Repositories(settings.storage_dir, uploads)


@pytest.fixture
def auth(repos, settings):
    return AuthService(repos, settings)


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as c:
        yield c


@pytest.fixture
def admin_client(client):
    r = client.post("/auth/login", json=DEFAULT_ADMIN)
    assert r.status_code == 200
    return client

