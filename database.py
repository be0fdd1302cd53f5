from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import get_settings


def make_engine(database_url: str, **kwargs) -> Engine:
    is_sqlite = database_url.startswith("sqlite")
    connect_args: dict[str, object] = {}
    if is_sqlite:
        connect_args["check_same_thread"] = False

    eng = create_engine(database_url, connect_args=connect_args, **kwargs)
    if is_sqlite:
        in_memory = database_url in ("sqlite://", "sqlite:///:memory:")
        event.listen(eng, "connect", _sqlite_pragmas(wal=not in_memory))
    return eng


def _sqlite_pragmas(wal: bool):
    def on_connect(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL;")
        # allocations cascade with their budget
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()

    return on_connect


engine = make_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass
