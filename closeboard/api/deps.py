"""Cached repositories and services for the API (overridable through app.dependency_overrides)."""

from functools import lru_cache
from typing import Callable

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from closeboard.accounting.client import AccountingClient
from closeboard.accounting.sync import AccountingSyncService
from closeboard.boards.service import BoardService
from closeboard.contacts.service import ContactService
from closeboard.core.config import get_config
from closeboard.core.errors import ServiceError
from closeboard.databases.service import DatabaseService
from closeboard.drafting.base import BaseDrafter
from closeboard.drafting.factory import get_drafter
from closeboard.jobs.service import JobService
from closeboard.mail.base import BaseMailer
from closeboard.mail.factory import get_mailer
from closeboard.quests.engine import QuestService
from closeboard.reports.engine import ReportService
from closeboard.repository.accounting_repo import AccountingSyncRepository
from closeboard.repository.board_repo import BoardRepository
from closeboard.repository.contact_repo import ContactRepository
from closeboard.repository.database_repo import DatabaseRepository
from closeboard.repository.job_repo import JobRepository
from closeboard.repository.quest_repo import QuestRepository
from closeboard.repository.report_repo import ReportRepository
from closeboard.repository.system_metadata_repo import SystemMetadataRepository


class AccountingNotConnectedError(ServiceError):
    status_code = 400
    code = "ACCOUNTING_NOT_CONNECTED"


@lru_cache(maxsize=1)
def get_session_factory() -> Callable[[], Session]:
    engine = create_engine(get_config().database_url, pool_pre_ping=True)
    return sessionmaker(engine, autocommit=False, autoflush=False, expire_on_commit=False)


@lru_cache(maxsize=1)
def get_database_repo() -> DatabaseRepository:
    return DatabaseRepository(get_session_factory())


@lru_cache(maxsize=1)
def get_contact_repo() -> ContactRepository:
    return ContactRepository(get_session_factory())


@lru_cache(maxsize=1)
def get_board_repo() -> BoardRepository:
    return BoardRepository(get_session_factory())


@lru_cache(maxsize=1)
def get_job_repo() -> JobRepository:
    return JobRepository(get_session_factory())


@lru_cache(maxsize=1)
def get_quest_repo() -> QuestRepository:
    return QuestRepository(get_session_factory())


@lru_cache(maxsize=1)
def get_report_repo() -> ReportRepository:
    return ReportRepository(get_session_factory())


@lru_cache(maxsize=1)
def get_accounting_repo() -> AccountingSyncRepository:
    return AccountingSyncRepository(get_session_factory())


@lru_cache(maxsize=1)
def get_system_metadata_repo() -> SystemMetadataRepository:
    return SystemMetadataRepository(get_session_factory())


@lru_cache(maxsize=1)
def get_mailer_cached() -> BaseMailer:
    # Raises SenderNotConnectedError (not cached) until SMTP is configured
    return get_mailer(get_config())


def get_database_service() -> DatabaseService:
    return DatabaseService(get_database_repo())


def get_contact_service() -> ContactService:
    return ContactService(get_contact_repo())


def get_board_service() -> BoardService:
    return BoardService(get_board_repo(), get_job_repo(), get_config().fiscal_year_start_month)


def get_job_service() -> JobService:
    return JobService(get_job_repo(), get_board_service(), get_contact_repo())


def get_configured_drafter() -> BaseDrafter:
    cfg = get_config()
    return get_drafter(cfg.drafter, cfg)


def get_quest_service() -> QuestService:
    cfg = get_config()
    return QuestService(
        quests=get_quest_repo(),
        jobs=get_job_service(),
        boards=get_board_service(),
        contacts=get_contact_repo(),
        databases=get_database_repo(),
        drafter=get_configured_drafter(),
        mailer_provider=get_mailer_cached,
        settings=cfg,
    )


def get_report_service() -> ReportService:
    return ReportService(get_report_repo(), get_database_repo())


def _accounting_client() -> AccountingClient:
    cfg = get_config()
    if not cfg.accounting_endpoint:
        raise AccountingNotConnectedError("No accounting integration is connected")
    return AccountingClient(cfg.accounting_endpoint, cfg.accounting_api_key)


def get_accounting_service() -> AccountingSyncService:
    return AccountingSyncService(_accounting_client, get_accounting_repo(), get_contact_repo(), get_database_repo())


_CACHED = (
    get_session_factory,
    get_database_repo,
    get_contact_repo,
    get_board_repo,
    get_job_repo,
    get_quest_repo,
    get_report_repo,
    get_accounting_repo,
    get_system_metadata_repo,
    get_mailer_cached,
)


def clear_caches() -> None:
    """Forget cached engines, repositories and the mailer (after DATABASE_URL or config changes)."""
    for getter in _CACHED:
        getter.cache_clear()
