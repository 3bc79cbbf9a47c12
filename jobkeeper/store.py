"""
Durable storage for job records using SQLAlchemy.

Job records are stored as documents in a single table. The ``due``,
``data`` and ``extra`` columns hold JSON so one-shot times, recurrence
rules and arbitrary caller payloads share one schema. Every query is
scoped to the keeper's ``type`` discriminator.
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import timezone
from typing import Any, Dict, Iterator, List, Optional, Union

from sqlalchemy import JSON, Boolean, Column, DateTime, String, create_engine, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from jobkeeper.errors import DuplicateJobError, StorageError
from jobkeeper.models import JOB_TYPE, Job, decode_due, encode_due, utcnow
from jobkeeper.timers import DueSpec

logger = logging.getLogger(__name__)

Base = declarative_base()


class JobDocument(Base):
    __tablename__ = "jobkeeper_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    type = Column(String(64), default=JOB_TYPE, nullable=False, index=True)
    name = Column(String(256), nullable=False, unique=True)

    due = Column(JSON, nullable=False)
    recurring = Column(Boolean, default=False, nullable=False)
    remove_on_complete = Column(Boolean, default=True, nullable=False)

    created = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    data = Column(JSON, nullable=True)
    extra = Column(JSON, nullable=True)

    def to_job(self) -> Job:
        created = self.created
        # SQLite drops the offset on the way back
        if created is not None and created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return Job(
            id=self.id,
            name=self.name,
            due=decode_due(self.due, bool(self.recurring)),
            recurring=bool(self.recurring),
            remove_on_complete=bool(self.remove_on_complete),
            created=created,
            data=self.data,
            type=self.type,
            extra=dict(self.extra or {}),
        )


def _is_memory_url(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:")


def make_engine(database_url: str) -> Engine:
    """Create an engine suitable for use from timer threads."""
    connect_args = {}
    options = {}
    if database_url.startswith("sqlite:"):
        # firings run on worker threads
        connect_args = {"check_same_thread": False}
        if _is_memory_url(database_url):
            # one shared connection, otherwise every thread sees its own database
            options["poolclass"] = StaticPool

    return create_engine(
        database_url,
        future=True,
        echo=False,
        pool_pre_ping=True,
        connect_args=connect_args,
        **options,
    )


class JobStore:
    """
    Table of job records keyed by unique job name.

    Every operation raises :class:`StorageError` on a backend failure;
    ``create`` raises :class:`DuplicateJobError` when the name is taken.
    """

    def __init__(self, connection: Union[str, Engine]):
        """
        Initialize the store.

        Args:
            connection: Database URL or an existing SQLAlchemy Engine
        """
        if isinstance(connection, Engine):
            self.engine = connection
            self._owns_engine = False
        else:
            self.engine = make_engine(str(connection))
            self._owns_engine = True

        self._sessionmaker = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False, future=True
        )

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        try:
            with self._sessionmaker() as session:
                yield session
        except StorageError:
            raise
        except SQLAlchemyError as e:
            raise StorageError(operation, str(e), e) from e

    def create_tables(self):
        """Create the job table if it does not exist."""
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StorageError("create_tables", str(e), e) from e
        logger.debug(f"Job table ready on {self.engine.url}")

    def _select(self):
        return select(JobDocument).where(JobDocument.type == JOB_TYPE)

    def find_by_name(self, name: str) -> Optional[Job]:
        with self._session("find_by_name") as s:
            doc = s.execute(self._select().where(JobDocument.name == name)).scalars().first()
            return doc.to_job() if doc else None

    def find_by_id(self, job_id: str) -> Optional[Job]:
        with self._session("find_by_id") as s:
            doc = s.execute(self._select().where(JobDocument.id == job_id)).scalars().first()
            return doc.to_job() if doc else None

    def find_all(self) -> List[Job]:
        with self._session("find_all") as s:
            docs = s.execute(self._select().order_by(JobDocument.created.asc())).scalars().all()
            return [d.to_job() for d in docs]

    def create(
        self,
        name: str,
        due: DueSpec,
        *,
        recurring: bool = False,
        remove_on_complete: bool = True,
        data: Any = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Job:
        """
        Insert a new job record.

        Raises:
            DuplicateJobError: A record with this name already exists
            StorageError: The insert failed for any other reason
        """
        with self._session("create") as s:
            doc = JobDocument(
                id=str(uuid.uuid4()),
                type=JOB_TYPE,
                name=name,
                due=encode_due(due),
                recurring=bool(recurring),
                remove_on_complete=bool(remove_on_complete),
                created=utcnow(),
                data=data,
                extra=dict(extra or {}),
            )
            s.add(doc)
            try:
                s.commit()
            except IntegrityError as e:
                s.rollback()
                raise DuplicateJobError(name, e) from e
            return doc.to_job()

    def remove(self, job: Job):
        """Delete a job record. Deleting an already deleted record is not an error."""
        with self._session("remove") as s:
            s.execute(
                delete(JobDocument)
                .where(JobDocument.type == JOB_TYPE)
                .where(JobDocument.id == job.id)
            )
            s.commit()

    def close(self):
        """Dispose of the engine if this store created it."""
        if self._owns_engine:
            self.engine.dispose()
