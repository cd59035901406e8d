from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .config import settings
from .errors import PersistenceError


def _connect_args(url: str) -> dict:
    # Sync endpoints and their dependencies may run on different worker threads
    if url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": 15}
    return {}


engine = create_engine(settings.DB_URL, pool_pre_ping=True, future=True, connect_args=_connect_args(settings.DB_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True, expire_on_commit=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError("Changes could not be stored") from e
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def session_scope():
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError("Changes could not be stored") from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
