from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from app.core.config import settings

Base = declarative_base()


def configure_sqlite(engine):
    """
    Let pysqlite honour SAVEPOINT and foreign keys.

    The driver opens transactions on its own and never enforces foreign keys,
    so transaction control is handed back to SQLAlchemy here.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def build_engine(url: str, **kwargs):
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True, **kwargs)

    # SQLite: make the file path absolute and make sure the folder exists
    if url.startswith("sqlite:///") and url != "sqlite:///:memory:":
        db_file = Path(url[len("sqlite:///"):])
        if not db_file.is_absolute():
            db_file = Path.cwd() / db_file
        db_file.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite:///{db_file.as_posix()}"

    engine = create_engine(url, connect_args={"check_same_thread": False}, **kwargs)
    return configure_sqlite(engine)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
