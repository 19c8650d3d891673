from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def _build_database_url(raw_url: str) -> str:
    if raw_url.startswith("postgresql://"):
        return raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return raw_url


def _engine_options(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    options: dict = {"connect_args": {"check_same_thread": False}}
    if url in {"sqlite://", "sqlite:///:memory:"}:
        # One shared connection, otherwise every checkout sees an empty database.
        options["poolclass"] = StaticPool
    return options


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class Database:
    def __init__(self, url: str) -> None:
        if not url:
            raise RuntimeError("DATABASE_URL is not configured")
        self.url = _build_database_url(url)
        self.engine = create_engine(self.url, **_engine_options(self.url))
        self._session_factory = sessionmaker(
            bind=self.engine, autoflush=False, autocommit=False, expire_on_commit=False
        )

    def create_all(self) -> None:
        from portal_auth.models import audit as _audit  # noqa: F401
        from portal_auth.models import session as _session  # noqa: F401
        from portal_auth.models import user as _user  # noqa: F401
        from portal_auth.models import verification as _verification  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session_scope(self):
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
