from pathlib import Path

from alembic import command
from alembic.config import Config
from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from rgs.config import Settings
from rgs.logging_config import get_logger

logger = get_logger(__name__)

Base = declarative_base()

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


class Database:
    """
    Owns the engine and the session factory.

    Every logical operation opens its own short transaction with
    ``with db.session_factory.begin() as session``; on SQLite that
    transaction starts with BEGIN IMMEDIATE so the write lock is held from
    the first read to the commit. Read-only paths use
    ``read_session_factory`` instead.
    """

    def __init__(self, settings: Settings):
        self.url = settings.db_url
        self.is_sqlite = self.url.startswith("sqlite")
        connect_args = {}
        if self.is_sqlite:
            connect_args = {
                "check_same_thread": False,
                "timeout": settings.busy_timeout_ms / 1000,
            }
        self.engine = create_engine(self.url, connect_args=connect_args, pool_pre_ping=True)
        if self.is_sqlite:
            _install_sqlite_hooks(self.engine, settings.busy_timeout_ms)
        self.session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )
        # Read-only sessions start with a deferred BEGIN and never take the
        # write lock; under WAL they read a consistent snapshot.
        self.read_session_factory = sessionmaker(
            bind=self.engine.execution_options(rgs_read_only=True),
            autoflush=False,
            expire_on_commit=False,
        )

    def run_migrations(self) -> None:
        cfg = Config()
        cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
        cfg.set_main_option("sqlalchemy.url", self.url)
        with self.engine.begin() as connection:
            cfg.attributes["connection"] = connection
            command.upgrade(cfg, "head")
        logger.info("Migrations applied url=%s", self.url)

    def dispose(self) -> None:
        self.engine.dispose()


def _install_sqlite_hooks(engine, busy_timeout_ms: int) -> None:
    # pysqlite's own transaction handling would defer BEGIN until the first
    # write; take it over so every transaction is serializable.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get("rgs_read_only"):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")


def get_db(request: Request):
    """
    FastAPI dependency for read-only operational endpoints.
    """
    db = request.app.state.database.read_session_factory()
    try:
        yield db
    finally:
        db.close()
