"""Database configuration and initialization."""
import sqlite3
import threading

from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Create SQLAlchemy base
Base = declarative_base()

# Global session and engine
engine = None
db_session = None

DEFAULT_SQLITE_BUSY_TIMEOUT = 5.0  # seconds


def is_memory_sqlite(database_uri) -> bool:
    url = make_url(database_uri)
    return url.get_backend_name() == 'sqlite' and url.database in (None, '', ':memory:')


class _SharedConnectionGuard:
    """
    One transaction at a time on the single in-memory SQLite connection.

    Every thread shares that connection, so two open transactions would
    interleave their statements. The lock is taken when a transaction
    begins and released by the COMMIT/ROLLBACK of the owning thread.
    The same thread may nest. Waiting longer than the busy timeout raises
    "database is locked", as a file database does.
    """

    def __init__(self, timeout):
        self.timeout = timeout
        self._lock = threading.RLock()
        self._held = threading.local()

    def depth(self):
        return getattr(self._held, 'depth', 0)

    def begin(self, conn):
        if not self._lock.acquire(timeout=self.timeout):
            raise OperationalError('BEGIN', {}, sqlite3.OperationalError('database is locked'))
        self._held.depth = self.depth() + 1

    def release(self):
        self._held.depth = self.depth() - 1
        self._lock.release()


class _GuardedSQLiteConnection(sqlite3.Connection):
    """COMMIT/ROLLBACK only act for the thread that owns the open transaction."""

    guard = None

    def commit(self):
        if self.guard.depth():
            super().commit()
            self.guard.release()

    def rollback(self):
        # Pool resets from other threads must not undo the owner's work
        if self.guard.depth():
            super().rollback()
            self.guard.release()


def _shared_memory_engine(echo, timeout):
    guard = _SharedConnectionGuard(timeout)

    def connect():
        connection = sqlite3.connect(':memory:', check_same_thread=False,
                                     factory=_GuardedSQLiteConnection)
        connection.guard = guard
        return connection

    memory_engine = create_engine('sqlite://', echo=echo, creator=connect, poolclass=StaticPool)
    event.listen(memory_engine, 'begin', guard.begin)
    return memory_engine


def _install_sqlite_transactions(sqlite_engine):
    """
    Start every SQLite transaction with BEGIN IMMEDIATE.

    SQLite ignores SELECT ... FOR UPDATE, so the write lock is taken
    before the snapshot is read. Writers queue for up to the busy timeout.
    """

    @event.listens_for(sqlite_engine, 'connect')
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        # SQLAlchemy emits BEGIN itself (see below)
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, 'begin')
    def _begin_immediate(conn):
        conn.exec_driver_sql('BEGIN IMMEDIATE')


def build_engine(database_uri, echo=False, busy_timeout=DEFAULT_SQLITE_BUSY_TIMEOUT):
    """Create the engine with pool options suited to the backend."""
    if is_memory_sqlite(database_uri):
        # In-memory SQLite (tests): one connection shared by every thread
        return _shared_memory_engine(echo, busy_timeout)

    if database_uri.startswith('sqlite'):
        # File SQLite (local dev): one connection per thread, writers serialized
        sqlite_engine = create_engine(
            database_uri,
            echo=echo,
            connect_args={'check_same_thread': False, 'timeout': busy_timeout}
        )
        _install_sqlite_transactions(sqlite_engine)
        return sqlite_engine

    return create_engine(
        database_uri,
        echo=echo,
        pool_pre_ping=True,  # Enable connection health checks
        pool_size=10,
        max_overflow=20
    )


def init_db(app):
    """Initialize database connection."""
    global engine, db_session

    lock_timeout_ms = app.config.get('STOCK_LOCK_TIMEOUT_MS')
    engine = build_engine(
        app.config['SQLALCHEMY_DATABASE_URI'],
        echo=app.config.get('SQLALCHEMY_ECHO', False),
        busy_timeout=lock_timeout_ms / 1000 if lock_timeout_ms else DEFAULT_SQLITE_BUSY_TIMEOUT
    )

    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    )

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_tables():
    """Create all tables known to the metadata (dev / tests)."""
    # Import models so they register on Base.metadata
    from stockledger import models  # noqa: F401
    Base.metadata.create_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session
