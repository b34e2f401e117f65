"""
Storage module for the cbcheck poller.

Keeps the list of fund ids that have already been announced in a single
SQLite table. The table layout (send_lists with id, created_at, updated_at,
deleted_at and a unique fund_id) matches databases written by earlier
versions of the poller, so an existing file can be reused as-is.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, create_engine, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from cbcheck.utils import get_logger


# Module logger
logger = get_logger("storage")

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StorageError(Exception):
    """Raised when the dedup database cannot be opened or written."""


class SendList(Base):
    __tablename__ = "send_lists"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)  # never written

    fund_id = Column(String, unique=True)

    def __repr__(self) -> str:
        return f"SendList(id={self.id}, fund_id={self.fund_id})"


def get_engine(database: str):
    # Empty path means an in-memory database
    db_url = f"sqlite:///{database}" if database else "sqlite://"
    return create_engine(db_url, future=True)


class SendListStore:
    """
    Dedup table of fund ids that have already been notified.

    Opening the store creates the database file and the send_lists table
    when they are missing; running it against an existing file is a no-op.
    """

    def __init__(self, database: str):
        self.database = database
        try:
            self._engine = get_engine(database)
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to open database {database!r}: {e}") from e

        self._session_factory = sessionmaker(bind=self._engine, autoflush=False, autocommit=False)
        logger.info(f"Opened dedup database {database or ':memory:'}")

    def exists(self, fund_id: str) -> bool:
        """
        Check whether a fund id has already been recorded.

        Soft-deleted rows still count as recorded.

        Raises:
            StorageError: If the lookup fails.
        """
        db = self._session_factory()
        try:
            row = db.execute(
                select(SendList.id).where(SendList.fund_id == fund_id).limit(1)
            ).first()
            return row is not None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to look up fund {fund_id}: {e}") from e
        finally:
            db.close()

    def insert(self, fund_id: str) -> SendList:
        """
        Record a fund id as notified.

        Args:
            fund_id: Identifier of the fund that was just announced.

        Returns:
            The stored SendList row.

        Raises:
            StorageError: On a duplicate fund id or any database failure.
        """
        db = self._session_factory()
        try:
            row = SendList(fund_id=fund_id)
            db.add(row)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise StorageError(f"Fund {fund_id} is already recorded: {e.orig}") from e
            except SQLAlchemyError as e:
                db.rollback()
                raise StorageError(f"Failed to record fund {fund_id}: {e}") from e

            db.refresh(row)
            db.expunge(row)
            logger.debug(f"Recorded fund {fund_id} as notified")
            return row
        finally:
            db.close()

    def count(self) -> int:
        """Number of recorded fund ids."""
        db = self._session_factory()
        try:
            return db.execute(select(func.count(SendList.id))).scalar_one()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to count recorded funds: {e}") from e
        finally:
            db.close()

    def close(self) -> None:
        self._engine.dispose()

    def __enter__(self) -> "SendListStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
