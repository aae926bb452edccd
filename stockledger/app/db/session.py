from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from stockledger.app.settings import settings

DATABASE_URL = settings.DATABASE_URL


def enable_sqlite_savepoints(engine: Engine) -> None:
    """
    pysqlite gère BEGIN lui-même et casse SAVEPOINT.
    On laisse SQLAlchemy émettre BEGIN pour que begin_nested() fonctionne.
    """

    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


engine = create_engine(DATABASE_URL, pool_pre_ping=True)
if engine.dialect.name == "sqlite":
    enable_sqlite_savepoints(engine)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
