"""
Database engine, session factory and transaction helper
"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from crm_core.core.config import settings
from crm_core.core.exceptions import CRMError, StoreError

engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Iterator[Session]:
    """FastAPI dependency yielding a request-scoped session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Run a block of writes as one unit.

    Commits on success. On any error the session is rolled back; driver
    failures are re-raised as StoreError, domain errors pass through as-is.
    """
    try:
        yield db
        db.commit()
    except CRMError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(str(e)) from e
    except Exception:
        db.rollback()
        raise
