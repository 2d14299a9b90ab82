"""Job repository: jobs on boards, stakeholders, comments, and period copying."""

import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterator

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.orm import Session

from closeboard.models.entities import Contact, Job, JobComment, JobStakeholder, JobStatus, Quest

_JOB_FIELDS = ("board_id", "name", "description", "status", "owner", "due_date", "labels")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _completed_at(status: JobStatus, current: datetime | None, now: datetime) -> datetime | None:
    if status == JobStatus.complete:
        return current or now
    if status == JobStatus.archived:
        return current
    return None


def new_lineage_id() -> str:
    return uuid.uuid4().hex


class JobRepository:
    """
    Database access for jobs and their stakeholders and comments.

    Jobs spawned for a later period keep their source's lineage_id, so one recurring task can be
    followed across boards.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session_scope(self, write: bool = False) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            if write:
                session.commit()
        finally:
            session.close()

    def create(
        self,
        name: str,
        board_id: int | None = None,
        description: str | None = None,
        status: JobStatus = JobStatus.not_started,
        owner: str | None = None,
        due_date: date | None = None,
        labels: list[str] | None = None,
        lineage_id: str | None = None,
    ) -> Job:
        now = _utcnow()
        entity = Job(
            name=name,
            board_id=board_id,
            description=description,
            status=status,
            owner=owner,
            due_date=due_date,
            labels=labels or [],
            lineage_id=lineage_id or new_lineage_id(),
            created_at=now,
            updated_at=now,
            completed_at=now if status == JobStatus.complete else None,
        )
        with self._session_scope(write=True) as session:
            session.add(entity)
            session.flush()
            session.refresh(entity)
        return entity

    def get(self, job_id: int) -> Job | None:
        with self._session_scope() as session:
            return session.get(Job, job_id)

    def list_jobs(
        self,
        board_id: int | None = None,
        status: JobStatus | None = None,
        owner: str | None = None,
        include_archived: bool = True,
    ) -> list[Job]:
        stmt = select(Job)
        if board_id is not None:
            stmt = stmt.where(Job.board_id == board_id)
        if status is not None:
            stmt = stmt.where(Job.status == status)
        if owner is not None:
            stmt = stmt.where(Job.owner == owner)
        if not include_archived:
            stmt = stmt.where(Job.status != JobStatus.archived)
        with self._session_scope() as session:
            return list(session.execute(stmt.order_by(Job.created_at, Job.id)).scalars().all())

    def update(self, job_id: int, **fields: Any) -> Job | None:
        unknown = set(fields) - set(_JOB_FIELDS)
        if unknown:
            raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")
        with self._session_scope(write=True) as session:
            entity = session.get(Job, job_id)
            if entity is None:
                return None
            for name, value in fields.items():
                setattr(entity, name, value)
            now = _utcnow()
            if "status" in fields:
                entity.completed_at = _completed_at(JobStatus(entity.status), entity.completed_at, now)
            entity.updated_at = now
        return entity

    def delete(self, job_id: int) -> bool:
        with self._session_scope(write=True) as session:
            result = session.execute(delete(Job).where(Job.id == job_id))
            return (result.rowcount or 0) > 0

    def counts_for_job(self, job_id: int) -> tuple[int, int]:
        """(stakeholder count, request count) for a job."""
        with self._session_scope() as session:
            stakeholders = session.execute(
                select(func.count()).select_from(JobStakeholder).where(JobStakeholder.job_id == job_id)
            ).scalar_one()
            requests = session.execute(
                select(func.count()).select_from(Quest).where(Quest.job_id == job_id)
            ).scalar_one()
        return stakeholders, requests

    def snapshot_board_jobs(self, board_id: int) -> int:
        """Freeze every job on a completed board: is_snapshot and status complete. Returns rows changed."""
        now = _utcnow()
        with self._session_scope(write=True) as session:
            result = session.execute(
                update(Job)
                .where(Job.board_id == board_id)
                .values(
                    is_snapshot=True,
                    status=JobStatus.complete,
                    completed_at=func.coalesce(Job.completed_at, now),
                    updated_at=now,
                )
            )
            return result.rowcount or 0

    def copy_jobs(
        self,
        source_board_id: int,
        target_board_id: int,
        keep_lineage: bool = True,
        skip_existing_lineage: bool = False,
        only_incomplete: bool = False,
    ) -> int:
        """
        Copy jobs from one board to another as not_started, with their stakeholders.

        keep_lineage reuses the source lineage_id (period rollover, carry-over); otherwise each
        copy starts a new lineage (board duplication). skip_existing_lineage leaves out jobs whose
        lineage is already on the target board. Returns the number of jobs created.
        """
        created = 0
        now = _utcnow()
        with self._session_scope(write=True) as session:
            sources = session.execute(
                select(Job).where(Job.board_id == source_board_id).order_by(Job.created_at, Job.id)
            ).scalars().all()
            existing_lineages: set[str] = set()
            if skip_existing_lineage:
                existing_lineages = set(
                    session.execute(select(Job.lineage_id).where(Job.board_id == target_board_id)).scalars().all()
                )
            for source in sources:
                if only_incomplete and source.status in (JobStatus.complete, JobStatus.archived):
                    continue
                if skip_existing_lineage and source.lineage_id in existing_lineages:
                    continue
                copy = Job(
                    board_id=target_board_id,
                    lineage_id=source.lineage_id if keep_lineage else new_lineage_id(),
                    name=source.name,
                    description=source.description,
                    status=JobStatus.not_started,
                    owner=source.owner,
                    labels=list(source.labels or []),
                    created_at=now,
                    updated_at=now,
                )
                session.add(copy)
                session.flush()
                session.execute(
                    text(
                        "INSERT INTO job_stakeholder (job_id, contact_id) "
                        "SELECT :new_id, contact_id FROM job_stakeholder WHERE job_id = :old_id"
                    ),
                    {"new_id": copy.id, "old_id": source.id},
                )
                created += 1
        return created

    # --- stakeholders ---

    def list_stakeholders(self, job_id: int) -> list[Contact]:
        with self._session_scope() as session:
            return list(
                session.execute(
                    select(Contact)
                    .join(JobStakeholder, JobStakeholder.contact_id == Contact.id)
                    .where(JobStakeholder.job_id == job_id)
                    .order_by(Contact.first_name, Contact.id)
                ).scalars().all()
            )

    def set_stakeholders(self, job_id: int, contact_ids: list[int]) -> None:
        """Replace the job's stakeholder list."""
        with self._session_scope(write=True) as session:
            session.execute(delete(JobStakeholder).where(JobStakeholder.job_id == job_id))
            for contact_id in dict.fromkeys(contact_ids):
                session.add(JobStakeholder(job_id=job_id, contact_id=contact_id))

    def add_stakeholder(self, job_id: int, contact_id: int) -> None:
        with self._session_scope(write=True) as session:
            session.execute(
                text(
                    "INSERT INTO job_stakeholder (job_id, contact_id) VALUES (:job_id, :contact_id) "
                    "ON CONFLICT DO NOTHING"
                ),
                {"job_id": job_id, "contact_id": contact_id},
            )

    def remove_stakeholder(self, job_id: int, contact_id: int) -> bool:
        with self._session_scope(write=True) as session:
            result = session.execute(
                delete(JobStakeholder).where(JobStakeholder.job_id == job_id, JobStakeholder.contact_id == contact_id)
            )
            return (result.rowcount or 0) > 0

    # --- comments ---

    def add_comment(self, job_id: int, content: str, author: str | None = None) -> JobComment:
        entity = JobComment(job_id=job_id, content=content, author=author, created_at=_utcnow())
        with self._session_scope(write=True) as session:
            session.add(entity)
            session.flush()
            session.refresh(entity)
        return entity

    def list_comments(self, job_id: int) -> list[JobComment]:
        with self._session_scope() as session:
            return list(
                session.execute(
                    select(JobComment).where(JobComment.job_id == job_id).order_by(JobComment.created_at, JobComment.id)
                ).scalars().all()
            )

    def delete_comment(self, job_id: int, comment_id: int) -> bool:
        with self._session_scope(write=True) as session:
            result = session.execute(
                delete(JobComment).where(JobComment.id == comment_id, JobComment.job_id == job_id)
            )
            return (result.rowcount or 0) > 0
