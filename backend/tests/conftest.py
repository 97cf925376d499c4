import os
import tempfile
from datetime import date
from pathlib import Path

import pytest

# Point the app at a throwaway SQLite file before `library_app` is imported.
_DB_DIR = Path(tempfile.mkdtemp(prefix="library-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from library_app.main import app  # noqa: E402
from library_app.database import engine, init_db  # noqa: E402
from library_app import services  # noqa: E402

LIBRARIAN_DOB = date(1985, 5, 15)
READER_DOB = date(2000, 1, 1)


@pytest.fixture(autouse=True)
def reset_db():
    """Ensure a fresh database for every test."""
    SQLModel.metadata.drop_all(engine)
    init_db(engine)
    yield


@pytest.fixture
def session():
    """An isolated in-memory database session for service-level tests."""
    mem = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(mem)
    with Session(mem) as s:
        yield s


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def app_session():
    """A session on the same database the API uses, for arranging data."""
    with Session(engine) as s:
        yield s


@pytest.fixture
def librarian_id(app_session):
    lib = services.LibrarianService(app_session).create_librarian({'name': 'Test Librarian', 'date_of_birth': LIBRARIAN_DOB})
    return lib.id


@pytest.fixture
def reader_id(app_session):
    reader = services.ReaderService(app_session).create_reader({'name': 'Test Reader', 'date_of_birth': READER_DOB})
    return reader.id


def _login(client, username, password):
    r = client.post('/auth/login', json={'username': username, 'password': password})
    assert r.status_code == 200, r.text
    return {'Authorization': f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def librarian_headers(client, librarian_id):
    return _login(client, librarian_id, '15051985')


@pytest.fixture
def reader_headers(client, reader_id):
    return _login(client, reader_id, '01012000')


@pytest.fixture
def book_payload():
    return {
        'type': 'Fiction',
        'name': 'The Alchemist',
        'quantity': 2,
        'author': 'Paulo Coelho',
        'publisher': 'HarperCollins',
        'publish_year': 1988,
    }
