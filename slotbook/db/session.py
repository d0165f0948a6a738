from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from slotbook.core.config import settings


def configure_sqlite_locking(engine: Engine) -> Engine:
    """
    Make SQLite transactions take the write lock up front.

    pysqlite defers BEGIN until the first write, which lets two transactions
    read the same counters before either writes. Emitting BEGIN IMMEDIATE
    serializes writers the way SELECT ... FOR UPDATE does on PostgreSQL.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        return configure_sqlite_locking(
            create_engine(
                database_url, connect_args={"check_same_thread": False, "timeout": 30}
            )
        )
    # The engine is the entry point to the database. It's configured with the
    # database URL and handles the connection pooling.
    return create_engine(database_url, pool_pre_ping=True)


engine = build_engine(settings.DATABASE_URL)

# SessionLocal is a factory for new Session objects. Every engine operation
# and every sweep runs inside one of these.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        # Always closed, even if the caller raised.
        db.close()
