"""Repository layer: database access only. No ORM calls in business logic."""

from closeboard.repository.accounting_repo import AccountingSyncRepository
from closeboard.repository.board_repo import BoardRepository
from closeboard.repository.contact_repo import ContactRepository
from closeboard.repository.database_repo import DatabaseRepository
from closeboard.repository.job_repo import JobRepository
from closeboard.repository.quest_repo import QuestRepository
from closeboard.repository.report_repo import ReportRepository
from closeboard.repository.worker_repo import WorkerRepository

__all__ = [
    "AccountingSyncRepository",
    "BoardRepository",
    "ContactRepository",
    "DatabaseRepository",
    "JobRepository",
    "QuestRepository",
    "ReportRepository",
    "WorkerRepository",
]
