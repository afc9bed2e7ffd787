"""Database engine and request-scoped transaction management"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from trustlend.config import Settings
from trustlend.domain.exceptions import Conflict, StorageUnavailable
from trustlend.infrastructure.database.models import Base
from trustlend.infrastructure.observability.metrics import storage_failure_counter

logger = logging.getLogger(__name__)


def build_engine(config: Settings) -> Engine:
    """Create an engine; connection pooling only applies to server databases"""
    if config.database_url.startswith("sqlite"):
        return create_engine(
            config.database_url,
            echo=config.database_echo,
            connect_args={"check_same_thread": False},
        )

    # Connection pool: max 20 connections, recycle after 1 hour to avoid stale connections
    return create_engine(
        config.database_url,
        echo=config.database_echo,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=10,
        pool_recycle=3600,
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def create_schema(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """
    One transaction per operation.

    Commits on success, rolls back on any error, always closes. Storage
    exceptions are translated here and nowhere else:
    - IntegrityError (unique/foreign key) -> Conflict
    - pool timeouts and driver/connection errors -> StorageUnavailable
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except IntegrityError as e:
        session.rollback()
        logger.warning("Integrity constraint rejected write", extra={"error": str(e.orig)})
        raise Conflict("write conflicts with existing data") from e
    except (PoolTimeoutError, DBAPIError) as e:
        session.rollback()
        storage_failure_counter.inc()
        logger.error("Storage unavailable", extra={"error": str(e)})
        raise StorageUnavailable("storage is unavailable") from e
    except SQLAlchemyError as e:
        session.rollback()
        storage_failure_counter.inc()
        logger.error("Storage error", extra={"error": str(e)})
        raise StorageUnavailable("storage error") from e
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()
