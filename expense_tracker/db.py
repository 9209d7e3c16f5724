from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

Base = declarative_base()


class Database:
    """Owns the engine and session factory for one configured database.

    Created once at application startup and disposed at shutdown; every
    component that needs a session gets it from here.
    """

    def __init__(self, url: str, pool_size: int = 5, pool_timeout: int = 30):
        self.url = url
        is_sqlite = url.startswith("sqlite")
        kwargs = {}
        if is_sqlite:
            # For SQLite, enable check_same_thread=False for multithreading in FastAPI
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise every checkout sees an empty DB
                kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_size"] = pool_size
            kwargs["pool_timeout"] = pool_timeout
            kwargs["pool_pre_ping"] = True
        self.engine = create_engine(url, future=True, **kwargs)

        # Ensure SQLite enforces foreign keys
        if is_sqlite:
            @event.listens_for(self.engine, "connect")
            def set_sqlite_pragma(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine, future=True)

    def create_all(self) -> None:
        # Imported for its side effect of registering the mapped tables
        from . import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def session(self) -> Session:
        return self.SessionLocal()

    def dispose(self) -> None:
        self.engine.dispose()
