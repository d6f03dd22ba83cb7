from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url

from daily_rollup.config import Settings

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def _enable_sqlite_transactions(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first DML statement; emit it ourselves so
    # reads inside engine.begin() are part of the same transaction.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _record) -> None:
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")


def get_engine(settings: Settings, database_url: str | None = None) -> Engine:
    url = make_url(database_url or settings.database_url)
    if url.get_backend_name() == "sqlite":
        engine = create_engine(
            url, connect_args={"timeout": SQLITE_BUSY_TIMEOUT_SECONDS}
        )
        _enable_sqlite_transactions(engine)
        return engine
    return create_engine(url, pool_pre_ping=True)
