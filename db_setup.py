import sqlite3
import time
from contextlib import contextmanager

from app_config import settings
from app_errors import ConflictError, StoreError
from app_logging import get_logger

logger = get_logger(__name__)


SCHEMA = [
    '''
        CREATE TABLE IF NOT EXISTS Contact (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            phoneNumber TEXT,
            email TEXT,
            linkedId INTEGER,
            linkPrecedence TEXT NOT NULL CHECK(linkPrecedence IN ('secondary', 'primary')),
            createdAt INTEGER NOT NULL,
            updatedAt INTEGER NOT NULL,
            deletedAt INTEGER,
            CHECK (phoneNumber IS NOT NULL OR email IS NOT NULL),
            CHECK ((linkPrecedence = 'primary' AND linkedId IS NULL)
                OR (linkPrecedence = 'secondary' AND linkedId IS NOT NULL)),
            CHECK (linkedId IS NULL OR linkedId != id),
            CHECK (deletedAt IS NULL OR deletedAt >= createdAt),
            FOREIGN KEY (linkedId) REFERENCES Contact (id)
        )
    ''',
    "CREATE INDEX IF NOT EXISTS ix_contact_email ON Contact (email)",
    "CREATE INDEX IF NOT EXISTS ix_contact_phone ON Contact (phoneNumber)",
    "CREATE INDEX IF NOT EXISTS ix_contact_linked ON Contact (linkedId)",
    "CREATE INDEX IF NOT EXISTS ix_contact_precedence_linked ON Contact (linkPrecedence, linkedId)",
    "CREATE INDEX IF NOT EXISTS ix_contact_created ON Contact (createdAt)",
    "CREATE INDEX IF NOT EXISTS ix_contact_deleted ON Contact (deletedAt)",
]


def init_db():
    conn = get_db_connection()
    try:
        for statement in SCHEMA:
            conn.execute(statement)
    finally:
        conn.close()


def get_db_connection():
    # autocommit mode; transactions are opened explicitly in transaction()
    conn = sqlite3.connect(
        settings.DB_NAME,
        timeout=settings.STORE_BUSY_TIMEOUT,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def _is_conflict(exc):
    if isinstance(exc, sqlite3.IntegrityError):
        return "UNIQUE" in str(exc)
    if isinstance(exc, sqlite3.OperationalError):
        return "locked" in str(exc) or "busy" in str(exc)
    return False


@contextmanager
def transaction():
    """Open a write-locked transaction; commit on success, roll back on any error."""
    conn = get_db_connection()
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def run_in_transaction(func, *args, **kwargs):
    """
    Run func(conn, *args, **kwargs) in one transaction.

    Lock contention and id conflicts are retried up to STORE_MAX_RETRIES
    attempts before surfacing as ConflictError; any other database failure
    becomes StoreError.
    """
    attempts = max(1, settings.STORE_MAX_RETRIES)
    for attempt in range(1, attempts + 1):
        try:
            with transaction() as conn:
                return func(conn, *args, **kwargs)
        except sqlite3.Error as exc:
            if not _is_conflict(exc):
                raise StoreError(f"Database failure: {exc}") from exc
            if attempt == attempts:
                raise ConflictError(f"Conflict persisted after {attempts} attempts: {exc}") from exc
            logger.warning("Store conflict on attempt %d/%d: %s", attempt, attempts, exc)
            time.sleep(settings.STORE_RETRY_BACKOFF * attempt)


def read_only(func, *args, **kwargs):
    """Run func(conn, *args, **kwargs) on a fresh connection without locking."""
    conn = get_db_connection()
    try:
        return func(conn, *args, **kwargs)
    except sqlite3.Error as exc:
        raise StoreError(f"Database failure: {exc}") from exc
    finally:
        conn.close()
