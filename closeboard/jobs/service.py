"""Job operations: CRUD with board status sync, stakeholders, comments."""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any

from closeboard.boards.service import BoardService
from closeboard.core.errors import NotFoundError, ValidationError
from closeboard.models.entities import Contact, Job, JobComment, JobStatus
from closeboard.repository.contact_repo import ContactRepository
from closeboard.repository.job_repo import JobRepository

_log = logging.getLogger(__name__)


@dataclass
class JobDetail:
    job: Job
    stakeholder_count: int
    request_count: int


class JobService:
    def __init__(self, jobs: JobRepository, boards: BoardService, contacts: ContactRepository) -> None:
        self._jobs = jobs
        self._boards = boards
        self._contacts = contacts

    def get(self, job_id: int) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError("Job not found")
        return job

    def detail(self, job_id: int) -> JobDetail:
        job = self.get(job_id)
        stakeholders, requests = self._jobs.counts_for_job(job_id)
        return JobDetail(job, stakeholders, requests)

    def list_jobs(
        self, board_id: int | None = None, status: JobStatus | None = None, owner: str | None = None
    ) -> list[Job]:
        return self._jobs.list_jobs(board_id=board_id, status=status, owner=owner)

    def create(
        self,
        name: str,
        board_id: int | None = None,
        description: str | None = None,
        owner: str | None = None,
        due_date: date | None = None,
        labels: list[str] | None = None,
        stakeholder_ids: list[int] | None = None,
    ) -> Job:
        if not name or not name.strip():
            raise ValidationError("Name is required")
        if board_id is not None:
            self._boards.get(board_id)
        job = self._jobs.create(
            name=name.strip(),
            board_id=board_id,
            description=description,
            owner=owner,
            due_date=due_date,
            labels=labels,
        )
        if stakeholder_ids:
            self.set_stakeholders(job.id, stakeholder_ids)
        if board_id is not None:
            self._boards.sync_status(board_id)
        return job

    def update(self, job_id: int, **fields: Any) -> Job:
        """Update a job and re-sync the status of the board it sits on."""
        if "name" in fields and not (fields["name"] or "").strip():
            raise ValidationError("Name cannot be empty")
        if fields.get("board_id") is not None:
            self._boards.get(fields["board_id"])
        before = self.get(job_id)
        job = self._jobs.update(job_id, **fields)
        if job is None:
            raise NotFoundError("Job not found")
        for board_id in {before.board_id, job.board_id}:
            if board_id is not None:
                self._boards.sync_status(board_id)
        return job

    def mark_started(self, job_id: int) -> None:
        """Move a not-started job to in_progress (e.g. when a request goes out for it)."""
        job = self._jobs.get(job_id)
        if job is not None and job.status == JobStatus.not_started:
            self.update(job_id, status=JobStatus.in_progress)
            _log.info("job_started id=%s", job_id)

    def delete(self, job_id: int) -> None:
        job = self.get(job_id)
        self._jobs.delete(job_id)
        if job.board_id is not None:
            self._boards.sync_status(job.board_id)

    def stakeholders(self, job_id: int) -> list[Contact]:
        self.get(job_id)
        return self._jobs.list_stakeholders(job_id)

    def set_stakeholders(self, job_id: int, contact_ids: list[int]) -> list[Contact]:
        self.get(job_id)
        found = {c.id for c in self._contacts.get_many(contact_ids)}
        missing = [cid for cid in contact_ids if cid not in found]
        if missing:
            raise ValidationError(f"Unknown contacts: {', '.join(str(m) for m in missing)}")
        self._jobs.set_stakeholders(job_id, contact_ids)
        return self._jobs.list_stakeholders(job_id)

    def add_stakeholder(self, job_id: int, contact_id: int) -> None:
        self.get(job_id)
        if self._contacts.get(contact_id) is None:
            raise NotFoundError("Contact not found")
        self._jobs.add_stakeholder(job_id, contact_id)

    def remove_stakeholder(self, job_id: int, contact_id: int) -> None:
        if not self._jobs.remove_stakeholder(job_id, contact_id):
            raise NotFoundError("Stakeholder not found")

    def add_comment(self, job_id: int, content: str, author: str | None = None) -> JobComment:
        self.get(job_id)
        if not content or not content.strip():
            raise ValidationError("Comment cannot be empty")
        return self._jobs.add_comment(job_id, content.strip(), author)

    def comments(self, job_id: int) -> list[JobComment]:
        self.get(job_id)
        return self._jobs.list_comments(job_id)

    def delete_comment(self, job_id: int, comment_id: int) -> None:
        if not self._jobs.delete_comment(job_id, comment_id):
            raise NotFoundError("Comment not found")
