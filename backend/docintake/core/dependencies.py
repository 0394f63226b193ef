from collections.abc import Generator

from fastapi import Depends
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from docintake.core.config import get_settings
from docintake.services.conversation.store import SqlConversationStore
from docintake.services.documents.pipeline import DocumentPipeline
from docintake.services.reference_store import SqlReferenceStore


def install_sqlite_hooks(engine: Engine) -> None:
    """Foreign keys on, and SQLAlchemy (not pysqlite) owns BEGIN so SAVEPOINTs work."""

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, _connection_record) -> None:  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=30000")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin(conn) -> None:  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str) -> Engine:
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)
    # Request handlers run in FastAPI's threadpool; one SQLite connection is shared across threads.
    sqlite_engine = create_engine(database_url, connect_args={"check_same_thread": False, "timeout": 30})
    install_sqlite_hooks(sqlite_engine)
    return sqlite_engine


_database_url = get_settings().database_url
engine = build_engine(_database_url) if _database_url else None
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine) if engine is not None else None


def get_db() -> Generator[Session, None, None]:
    if SessionLocal is None:
        raise RuntimeError("DATABASE_URL is not configured")
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_reference_store(db: Session = Depends(get_db)) -> SqlReferenceStore:
    return SqlReferenceStore(db)


def get_conversation_store(db: Session = Depends(get_db)) -> SqlConversationStore:
    return SqlConversationStore(db, idle_timeout_minutes=get_settings().conversation_idle_timeout_minutes)


def get_pipeline(
    db: Session = Depends(get_db),
    store: SqlReferenceStore = Depends(get_reference_store),
    conversations: SqlConversationStore = Depends(get_conversation_store),
) -> DocumentPipeline:
    return DocumentPipeline(db, get_settings(), store=store, conversations=conversations)
