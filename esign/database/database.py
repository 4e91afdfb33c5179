"""Database connection and session management."""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import ContextManager, Generator, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from esign.config.settings import Settings, get_settings
from esign.models.base import Base

logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Connection settings for the signature database."""

    url: str
    pool_size: int = 5
    max_overflow: int = 10
    echo: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "DatabaseConfig":
        return cls(
            url=settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            echo=settings.debug,
        )

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Read ``DATABASE_URL`` (or the ``DB_*`` parts) from the environment."""
        return cls.from_settings(Settings.from_env())

    @property
    def is_sqlite(self) -> bool:
        return make_url(self.url).get_backend_name() == "sqlite"

    @property
    def display_url(self) -> str:
        """URL with the password masked, for logs."""
        return make_url(self.url).render_as_string(hide_password=True)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # Audit rows rely on ON DELETE CASCADE from their recipient
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(config: DatabaseConfig) -> Engine:
    """Create an engine for ``config`` without touching the module singleton."""
    if config.is_sqlite:
        engine = create_engine(
            config.url,
            echo=config.echo,
            connect_args={"check_same_thread": False},
        )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    return create_engine(
        config.url,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        echo=config.echo,
        pool_pre_ping=True,
    )


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory whose rows stay loaded across commits."""
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


# Lazily created on first use
_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker[Session]] = None


def get_engine(config: Optional[DatabaseConfig] = None) -> Engine:
    global _engine

    if _engine is None:
        config = config or DatabaseConfig.from_settings(get_settings())
        _engine = build_engine(config)
        logger.info(f"Database engine created for {config.display_url}")

    return _engine


def get_session_factory(config: Optional[DatabaseConfig] = None) -> sessionmaker[Session]:
    global _session_factory

    if _session_factory is None:
        _session_factory = build_session_factory(get_engine(config))

    return _session_factory


@contextmanager
def session_scope(factory: Optional[sessionmaker[Session]] = None) -> Iterator[Session]:
    """Commit when the block succeeds, roll back when it raises."""
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency providing a request-scoped session."""
    with session_scope() as session:
        yield session


def get_db_context() -> ContextManager[Session]:
    """
    Session for code running outside a request.

    Used by the reminder task and maintenance scripts.
    """
    return session_scope()


def init_db(config: Optional[DatabaseConfig] = None) -> None:
    """
    Create all tables directly from the models.

    Development and tests only; deployed databases are migrated with Alembic.
    """
    import esign.models  # noqa: F401  registers all tables on Base.metadata

    Base.metadata.create_all(bind=get_engine(config))


def dispose_engine() -> None:
    """Dispose of the engine and forget the session factory."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _session_factory = None
