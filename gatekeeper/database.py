import logging
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from gatekeeper.config import settings
from gatekeeper.errors import StoreUnavailable

LOGGER = logging.getLogger(__name__)


def _build_database_url(raw_url: str) -> str:
    if raw_url.startswith("postgresql://"):
        return raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return raw_url


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {
            "check_same_thread": False,
            "timeout": settings.db_connect_timeout_seconds,
        }
    if url.startswith("postgresql"):
        return {
            "connect_timeout": settings.db_connect_timeout_seconds,
            "options": f"-c statement_timeout={settings.db_statement_timeout_ms}",
        }
    return {}


def _create_engine(raw_url: str) -> Engine:
    url = _build_database_url(raw_url)
    options = {"pool_pre_ping": True, "connect_args": _connect_args(url)}
    if not url.startswith("sqlite"):
        options["pool_timeout"] = settings.db_pool_timeout_seconds
    return create_engine(url, **options)


engine = _create_engine(settings.database_url)
SessionLocal = sessionmaker(
    bind=engine, autoflush=False, autocommit=False, expire_on_commit=False
)
Base = declarative_base()


def configure(database_url: str) -> Engine:
    """Rebind the session factory to another database."""
    global engine
    engine.dispose()
    engine = _create_engine(database_url)
    SessionLocal.configure(bind=engine)
    return engine


def init_db() -> None:
    from gatekeeper.models import blacklist as _blacklist  # noqa: F401
    from gatekeeper.models import otp as _otp  # noqa: F401
    from gatekeeper.models import refresh_token as _refresh_token  # noqa: F401
    from gatekeeper.models import user as _user  # noqa: F401

    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope():
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        LOGGER.error("Contact store error: %s", exc)
        raise StoreUnavailable() from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
