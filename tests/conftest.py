"""Shared fixtures: isolated settings, a live app, and a recording notifier."""

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from api.database import Database
from api.main import create_app, get_notifier
from devevent.config import Settings


class RecordingNotifier:
    """Stands in for the revalidation notifier and remembers what was emitted."""

    def __init__(self):
        self.paths = []

    def emit(self, path="/"):
        self.paths.append(path)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'events.db'}",
        cloudinary_url=None,
        cloudinary_cloud_name=None,
        uploads_dir=tmp_path / "uploads",
        home=str(tmp_path),
        public_base_url="http://site.test",
        seed_dir=None,
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(settings, notifier):
    app = create_app(settings)
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as client:
        yield client


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "store.db"))
    await database.init_db()
    yield database
    await database.close()
