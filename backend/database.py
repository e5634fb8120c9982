# backend/database.py
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()

T = TypeVar("T")

# Driver error codes for constraint violations
SQLITE_CONSTRAINT_UNIQUE = 2067
SQLITE_CONSTRAINT_PRIMARYKEY = 1555
SQLITE_CONSTRAINT_FOREIGNKEY = 787
PG_UNIQUE_VIOLATION = "23505"
PG_FOREIGN_KEY_VIOLATION = "23503"


class StoreError(Exception):
    """Underlying store failure; the unit of work it happened in was rolled back."""


class IntegrityViolation(StoreError):
    pass


class DuplicateKeyError(IntegrityViolation):
    pass


class ForeignKeyViolation(IntegrityViolation):
    pass


def translate_integrity_error(exc: IntegrityError) -> IntegrityViolation:
    # Classify by driver error code, never by message text
    orig = exc.orig
    sqlite_code = getattr(orig, "sqlite_errorcode", None)
    pg_code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)

    if sqlite_code in (SQLITE_CONSTRAINT_UNIQUE, SQLITE_CONSTRAINT_PRIMARYKEY) or pg_code == PG_UNIQUE_VIOLATION:
        return DuplicateKeyError(str(orig))
    if sqlite_code == SQLITE_CONSTRAINT_FOREIGNKEY or pg_code == PG_FOREIGN_KEY_VIOLATION:
        return ForeignKeyViolation(str(orig))
    return IntegrityViolation(str(orig))


def normalize_database_url(url: str) -> str:
    # Hosted Postgres URLs still use the old scheme name
    if url and url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def _configure_sqlite_connection(dbapi_connection, connection_record):
    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs behave under pysqlite
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _begin_sqlite_transaction(conn):
    conn.exec_driver_sql("BEGIN")


class Store:
    """Transactional wrapper around one SQLAlchemy engine.

    All mutating work goes through ``unit_of_work`` and is serialized by a
    single re-entrant lock per store handle, so there is only ever one
    in-flight write transaction. Reads use their own session; when the engine
    shares a single connection (in-memory SQLite) they take the lock as well,
    otherwise they could see a cascade before it commits.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self.session_factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
        self._write_lock = threading.RLock()
        self._shared_connection = isinstance(engine.pool, StaticPool)

    @classmethod
    def from_url(cls, url: str, echo: bool = False) -> "Store":
        url = normalize_database_url(url)
        if url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}  # Only for SQLite
            if url in ("sqlite://", "sqlite:///:memory:"):
                engine = create_engine(url, connect_args=connect_args, poolclass=StaticPool, echo=echo)
            else:
                engine = create_engine(url, connect_args=connect_args, echo=echo)
            event.listen(engine, "connect", _configure_sqlite_connection)
            event.listen(engine, "begin", _begin_sqlite_transaction)
        else:
            engine = create_engine(url, echo=echo)
        return cls(engine)

    def create_schema(self) -> None:
        # Import models so every table is registered on Base.metadata
        import models.accounts  # noqa: F401
        import models.member  # noqa: F401
        import models.lookups  # noqa: F401
        import models.blog  # noqa: F401
        import models.log  # noqa: F401
        import models.reset_token  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def unit_of_work(self) -> Iterator[Session]:
        """Run a block atomically: commit on success, roll back everything on any error."""
        with self._write_lock:
            db = self.session_factory()
            try:
                yield db
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise translate_integrity_error(exc) from exc
            except SQLAlchemyError as exc:
                db.rollback()
                logger.error(f"Unit of work rolled back: {exc}")
                raise StoreError("Database operation failed") from exc
            except BaseException:
                db.rollback()
                raise
            finally:
                db.close()

    @contextmanager
    def reader(self) -> Iterator[Session]:
        """Read-only session; never commits.

        Closing (not rolling back) keeps loaded attributes usable on the
        detached objects handed back to callers.
        """
        if self._shared_connection:
            with self._write_lock:
                db = self.session_factory()
                try:
                    yield db
                finally:
                    db.close()
        else:
            db = self.session_factory()
            try:
                yield db
            finally:
                db.close()

    def run(self, work: Callable[[Session], T]) -> T:
        with self.unit_of_work() as db:
            return work(db)

    def read(self, query: Callable[[Session], T]) -> T:
        with self.reader() as db:
            return query(db)

    def dispose(self) -> None:
        self.engine.dispose()
