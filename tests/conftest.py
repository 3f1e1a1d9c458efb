"""
Pytest configuration and fixtures.
Each test gets its own SQLite file and an HTTP client bound to the app.
"""

import pytest
from httpx import ASGITransport, AsyncClient

import contact_store
from app_config import settings
from db_models import LinkPrecedence
from db_setup import get_db_connection, init_db
from main import app


@pytest.fixture(autouse=True)
def test_db(tmp_path, monkeypatch):
    """Point the store at a fresh database file."""
    monkeypatch.setattr(settings, "DB_NAME", str(tmp_path / "contacts.db"))
    monkeypatch.setattr(settings, "STORE_RETRY_BACKOFF", 0.0)
    init_db()
    yield settings.DB_NAME


@pytest.fixture
def conn(test_db):
    connection = get_db_connection()
    yield connection
    connection.close()


@pytest.fixture
def make_contact(conn):
    """Create a contact, optionally forcing its createdAt."""
    def _make(email=None, phone=None, precedence=LinkPrecedence.PRIMARY, linked_id=None, created_at=None):
        contact = contact_store.create(conn, email, phone, precedence, linked_id)
        if created_at is not None:
            conn.execute(
                "UPDATE Contact SET createdAt = ?, updatedAt = ? WHERE id = ?",
                (created_at, created_at, contact.id),
            )
            contact = contact_store.get(conn, contact.id)
        return contact
    return _make


@pytest.fixture
def count_contacts(conn):
    def _count():
        return conn.execute("SELECT COUNT(*) FROM Contact").fetchone()[0]
    return _count


@pytest.fixture
async def client(test_db):
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
