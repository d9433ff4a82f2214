# app/paygate/store.py
"""
Durable grant storage backed by SQLAlchemy.

A Grant records that a subject paid for a (resource_type, resource_id)
pair and is valid until ``expires_at``. Grants are inserted once and never
updated; renewal inserts a new row.

Replay protection is enforced by the database: ``tx_reference`` carries a
unique constraint, so of two concurrent inserts for the same transaction
exactly one commits and the other raises GrantConflict.
"""
import logging
import threading
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    create_engine,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from app.paygate.errors import GrantConflict, StoreUnavailable

logger = logging.getLogger(__name__)

Base = declarative_base()

GRANT_STATUS_VERIFIED = "verified"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on the way back; stored values are always UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class Grant(Base):
    __tablename__ = "grants"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    subject = Column(String, nullable=False)                   # lowercase wallet address
    resource_type = Column(String, nullable=False)
    resource_id = Column(String, nullable=False)
    amount_paid = Column(String, nullable=False)               # decimal ETH string
    currency = Column(String, nullable=False, default="ETH")
    tx_reference = Column(String, nullable=False, unique=True)  # anti-replay key
    status = Column(String, nullable=False, default=GRANT_STATUS_VERIFIED)
    block_number = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_grants_authorization", "subject", "resource_type", "resource_id", "expires_at"),
        CheckConstraint("expires_at > created_at", name="ck_grants_validity_window"),
    )

    def to_dict(self) -> dict:
        created_at = as_utc(self.created_at)
        expires_at = as_utc(self.expires_at)
        return {
            "grantId": self.id,
            "txReference": self.tx_reference,
            "subject": self.subject,
            "resourceType": self.resource_type,
            "resourceId": self.resource_id,
            "amount": self.amount_paid,
            "currency": self.currency,
            "status": self.status,
            "blockNumber": self.block_number,
            "createdAt": created_at.isoformat() if created_at else None,
            "expiresAt": expires_at.isoformat() if expires_at else None,
        }


def create_store_engine(database_url: str) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True, pool_recycle=1800)


class GrantStore:
    """Grant persistence with a storage-level uniqueness constraint on tx_reference."""

    def __init__(self, engine: Engine):
        self._engine = engine
        self._session_factory = sessionmaker(
            bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
        )
        # A StaticPool hands every thread the same connection, so sessions
        # on it must not interleave or one rollback undoes another's insert
        if isinstance(engine.pool, StaticPool):
            self._lock = threading.Lock()
        else:
            self._lock = nullcontext()

    @classmethod
    def from_url(cls, database_url: str) -> "GrantStore":
        return cls(create_store_engine(database_url))

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        try:
            Base.metadata.create_all(bind=self._engine)
        except SQLAlchemyError as e:
            logger.error(f"Failed to create grant schema: {e}")
            raise StoreUnavailable(f"Failed to create grant schema: {e}") from e

    def put(self, grant: Grant) -> Grant:
        """
        Insert a new grant.

        Raises:
            ValueError: If the validity window is empty
            GrantConflict: If a grant with the same tx_reference exists
            StoreUnavailable: On any other database failure
        """
        if grant.created_at is None:
            grant.created_at = utcnow()
        if as_utc(grant.expires_at) <= as_utc(grant.created_at):
            raise ValueError("Grant expires_at must be after created_at")
        if grant.id is None:
            grant.id = str(uuid4())
        grant.subject = grant.subject.lower()
        grant.tx_reference = grant.tx_reference.lower()

        with self._lock:
            return self._insert(grant)

    def _insert(self, grant: Grant) -> Grant:
        session = self._session_factory()
        try:
            session.add(grant)
            session.commit()
            logger.info(
                f"Grant stored: {grant.id} for {grant.subject} "
                f"{grant.resource_type}/{grant.resource_id} (tx {grant.tx_reference})"
            )
            return grant
        except IntegrityError as e:
            session.rollback()
            logger.warning(f"Duplicate grant insert for tx {grant.tx_reference}")
            raise GrantConflict(
                f"Grant for transaction {grant.tx_reference} already exists"
            ) from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to store grant for tx {grant.tx_reference}: {e}")
            raise StoreUnavailable() from e
        finally:
            session.close()

    def find_by_tx_reference(self, tx_reference: str) -> Optional[Grant]:
        query = select(Grant).where(Grant.tx_reference == tx_reference.lower())
        return self._scalar(query)

    def find_active(
        self,
        subject: str,
        resource_type: str,
        resource_id: str,
        now: Optional[datetime] = None,
    ) -> Optional[Grant]:
        """Most recent unexpired grant for the exact (subject, resource) tuple."""
        now = now or utcnow()
        query = (
            select(Grant)
            .where(
                Grant.subject == subject.lower(),
                Grant.resource_type == resource_type,
                Grant.resource_id == str(resource_id),
                Grant.status == GRANT_STATUS_VERIFIED,
                Grant.expires_at > now,
            )
            .order_by(Grant.created_at.desc())
            .limit(1)
        )
        return self._scalar(query)

    def find_recent(self, subject: str, limit: int = 50) -> List[Grant]:
        """The subject's grants, newest first, bounded by ``limit``."""
        query = (
            select(Grant)
            .where(Grant.subject == subject.lower())
            .order_by(Grant.created_at.desc())
            .limit(max(limit, 0))
        )
        with self._lock:
            session = self._session_factory()
            try:
                return list(session.execute(query).scalars().all())
            except SQLAlchemyError as e:
                logger.error(f"Grant history query failed: {e}")
                raise StoreUnavailable() from e
            finally:
                session.close()

    def ping(self) -> bool:
        """Check the database connection (used by the health endpoint)."""
        try:
            with self._engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Grant store ping failed: {e}")
            return False

    def _scalar(self, query) -> Optional[Grant]:
        with self._lock:
            session = self._session_factory()
            try:
                return session.execute(query).scalars().first()
            except SQLAlchemyError as e:
                logger.error(f"Grant lookup failed: {e}")
                raise StoreUnavailable() from e
            finally:
                session.close()
