"""Database configuration and utilities."""
import logging
from contextlib import contextmanager
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, create_engine, select

from errors import DuplicateContent
from models import Icon

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str) -> Engine:
    """Create the engine for the configured database."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args)


@contextmanager
def get_session(engine: Engine):
    """Get a database session context manager."""
    with Session(engine) as session:
        yield session


def init_db(engine: Engine) -> None:
    """Initialize database tables."""
    SQLModel.metadata.create_all(engine)


def find_by_content_hash(session: Session, digest: str) -> Optional[Icon]:
    """Look up an icon by content hash."""
    return session.exec(select(Icon).where(Icon.content_hash == digest)).first()


def insert_icon(session: Session, icon: Icon) -> Icon:
    """Persist a new icon, relying on the unique content_hash constraint for dedup.

    Raises:
        DuplicateContent: If another icon already holds the same content hash.
    """
    session.add(icon)
    try:
        session.commit()
    except IntegrityError as e:
        session.rollback()
        existing = find_by_content_hash(session, icon.content_hash)
        if existing is None:
            raise
        logger.info(f"Lost insert race for {icon.content_hash}, icon {existing.id} already exists")
        raise DuplicateContent(icon.content_hash, existing.id) from e
    session.refresh(icon)
    return icon
