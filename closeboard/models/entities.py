"""SQLModel table/entity definitions for closeboard. Postgres 16+ only (JSONB)."""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _tz_field(**kwargs: Any) -> Any:
    """Timestamp column stored as TIMESTAMP WITH TIME ZONE."""
    return Field(sa_type=DateTime(timezone=True), **kwargs)  # type: ignore[call-overload]


# --- Enums (stored as strings in DB) ---


class ColumnDataType(str, Enum):
    text = "text"
    number = "number"
    date = "date"
    boolean = "boolean"
    currency = "currency"
    dropdown = "dropdown"
    file = "file"


class ContactType(str, Enum):
    employee = "employee"
    vendor = "vendor"
    client = "client"
    contractor = "contractor"
    management = "management"
    custom = "custom"
    unknown = "unknown"


class BoardCadence(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    quarterly = "quarterly"
    year_end = "year_end"
    ad_hoc = "ad_hoc"


class BoardStatus(str, Enum):
    not_started = "not_started"
    in_progress = "in_progress"
    blocked = "blocked"
    complete = "complete"
    closed = "closed"
    archived = "archived"


class JobStatus(str, Enum):
    not_started = "not_started"
    in_progress = "in_progress"
    blocked = "blocked"
    complete = "complete"
    archived = "archived"


class QuestMode(str, Enum):
    standard = "standard"
    data_personalization = "data_personalization"
    form_request = "form_request"


class QuestStatus(str, Enum):
    ready = "ready"
    scheduled = "scheduled"
    sending = "sending"
    sent = "sent"
    failed = "failed"
    cancelled = "cancelled"


class SendTiming(str, Enum):
    immediate = "immediate"
    scheduled = "scheduled"
    period_aware = "period_aware"


class RecipientStatus(str, Enum):
    pending = "pending"
    sent = "sent"
    failed = "failed"
    replied = "replied"


class SyncStatus(str, Enum):
    idle = "idle"
    syncing = "syncing"
    completed = "completed"
    failed = "failed"


class WorkerState(str, Enum):
    idle = "idle"
    processing = "processing"
    paused = "paused"
    offline = "offline"


class WorkerCommand(str, Enum):
    none = "none"
    pause = "pause"
    resume = "resume"
    shutdown = "shutdown"
    forensic_dump = "forensic_dump"


# --- Databases ---


class DataDatabase(SQLModel, table=True):
    """A user-defined table: schema columns, identifier keys, and rows kept as JSONB."""

    __tablename__ = "data_database"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(nullable=False)
    description: str | None = Field(default=None)
    columns: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSONB, nullable=False))
    schema_version: int = 1
    identifier_keys: list[str] = Field(default_factory=list, sa_column=Column(JSONB, nullable=False))
    rows: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSONB, nullable=False))
    row_count: int = 0
    source: str | None = Field(default=None)
    created_at: datetime = _tz_field(default_factory=_utcnow)
    updated_at: datetime = _tz_field(default_factory=_utcnow)
    last_imported_at: datetime | None = _tz_field(default=None, nullable=True)


# --- Contacts ---


class Contact(SQLModel, table=True):
    __tablename__ = "contact"
    __table_args__ = (UniqueConstraint("email", name="uq_contact_email"),)

    id: int | None = Field(default=None, primary_key=True)
    first_name: str = Field(nullable=False)
    last_name: str | None = Field(default=None)
    email: str | None = Field(default=None)
    phone: str | None = Field(default=None)
    company: str | None = Field(default=None)
    contact_type: ContactType = Field(default=ContactType.unknown)
    remote_id: str | None = Field(default=None, index=True)
    created_at: datetime = _tz_field(default_factory=_utcnow)
    updated_at: datetime = _tz_field(default_factory=_utcnow)


class ContactGroup(SQLModel, table=True):
    __tablename__ = "contact_group"
    __table_args__ = (UniqueConstraint("name", name="uq_contact_group_name"),)

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(nullable=False)
    color: str | None = Field(default=None)
    created_at: datetime = _tz_field(default_factory=_utcnow)


class ContactGroupMember(SQLModel, table=True):
    __tablename__ = "contact_group_member"

    group_id: int = Field(
        sa_column=Column(Integer, ForeignKey("contact_group.id", ondelete="CASCADE"), primary_key=True)
    )
    contact_id: int = Field(
        sa_column=Column(Integer, ForeignKey("contact.id", ondelete="CASCADE"), primary_key=True)
    )


class ContactTag(SQLModel, table=True):
    """A named state on a contact (e.g. "w9_received"), optionally with metadata."""

    __tablename__ = "contact_tag"

    contact_id: int = Field(
        sa_column=Column(Integer, ForeignKey("contact.id", ondelete="CASCADE"), primary_key=True)
    )
    tag_key: str = Field(primary_key=True)
    # DB column "metadata"; Python attr "tag_metadata" to avoid SQLAlchemy reserved name
    tag_metadata: dict[str, Any] | None = Field(default=None, sa_column=Column("metadata", JSONB()))
    updated_at: datetime = _tz_field(default_factory=_utcnow)


# --- Boards and jobs ---


class Board(SQLModel, table=True):
    __tablename__ = "board"
    __table_args__ = (Index("ix_board_cadence_period_start", "cadence", "period_start"),)

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(nullable=False)
    description: str | None = Field(default=None)
    status: BoardStatus = Field(default=BoardStatus.not_started)
    cadence: BoardCadence = Field(default=BoardCadence.ad_hoc)
    period_start: date | None = Field(default=None)
    period_end: date | None = Field(default=None)
    owner: str | None = Field(default=None)
    automation_enabled: bool = False
    skip_weekends: bool = True
    created_at: datetime = _tz_field(default_factory=_utcnow)
    updated_at: datetime = _tz_field(default_factory=_utcnow)
    closed_at: datetime | None = _tz_field(default=None, nullable=True)


class Job(SQLModel, table=True):
    """A task on a board. Jobs spawned by period rollover share lineage_id with their source."""

    __tablename__ = "job"

    id: int | None = Field(default=None, primary_key=True)
    board_id: int | None = Field(
        default=None,
        sa_column=Column(Integer, ForeignKey("board.id", ondelete="CASCADE"), nullable=True, index=True),
    )
    lineage_id: str = Field(nullable=False, index=True)
    name: str = Field(nullable=False)
    description: str | None = Field(default=None)
    status: JobStatus = Field(default=JobStatus.not_started)
    owner: str | None = Field(default=None)
    due_date: date | None = Field(default=None)
    labels: list[str] = Field(default_factory=list, sa_column=Column(JSONB, nullable=False))
    is_snapshot: bool = False
    created_at: datetime = _tz_field(default_factory=_utcnow)
    updated_at: datetime = _tz_field(default_factory=_utcnow)
    completed_at: datetime | None = _tz_field(default=None, nullable=True)


class JobStakeholder(SQLModel, table=True):
    __tablename__ = "job_stakeholder"

    job_id: int = Field(sa_column=Column(Integer, ForeignKey("job.id", ondelete="CASCADE"), primary_key=True))
    contact_id: int = Field(
        sa_column=Column(Integer, ForeignKey("contact.id", ondelete="CASCADE"), primary_key=True)
    )


class JobComment(SQLModel, table=True):
    __tablename__ = "job_comment"

    id: int | None = Field(default=None, primary_key=True)
    job_id: int = Field(sa_column=Column(Integer, ForeignKey("job.id", ondelete="CASCADE"), nullable=False, index=True))
    author: str | None = Field(default=None)
    content: str = Field(nullable=False)
    created_at: datetime = _tz_field(default_factory=_utcnow)


# --- Requests (quests), recipients, reminders ---


class Quest(SQLModel, table=True):
    """One outbound request: content, recipients, send timing, and reminder policy."""

    __tablename__ = "quest"

    id: int | None = Field(default=None, primary_key=True)
    job_id: int | None = Field(
        default=None,
        sa_column=Column(Integer, ForeignKey("job.id", ondelete="CASCADE"), nullable=True, index=True),
    )
    mode: QuestMode = Field(default=QuestMode.standard)
    status: QuestStatus = Field(default=QuestStatus.ready)
    subject: str = ""
    body: str = ""
    database_id: int | None = Field(
        default=None,
        sa_column=Column(Integer, ForeignKey("data_database.id", ondelete="SET NULL"), nullable=True),
    )
    email_column_key: str | None = Field(default=None)
    send_timing: SendTiming = Field(default=SendTiming.immediate)
    send_at: datetime | None = _tz_field(default=None, nullable=True)
    schedule_config: dict[str, Any] | None = Field(default=None, sa_column=Column(JSONB))
    scheduled_for: datetime | None = _tz_field(default=None, nullable=True)
    reminders_enabled: bool = False
    reminder_frequency_days: int = 3
    reminder_stop_condition: str = "reply_or_deadline"
    reminder_max_count: int = 3
    deadline: datetime | None = _tz_field(default=None, nullable=True)
    sent_count: int = 0
    failed_count: int = 0
    error_message: str | None = Field(default=None)
    executed_at: datetime | None = _tz_field(default=None, nullable=True)
    created_at: datetime = _tz_field(default_factory=_utcnow)
    updated_at: datetime = _tz_field(default_factory=_utcnow)


class QuestRecipient(SQLModel, table=True):
    __tablename__ = "quest_recipient"

    id: int | None = Field(default=None, primary_key=True)
    quest_id: int = Field(
        sa_column=Column(Integer, ForeignKey("quest.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    contact_id: int | None = Field(
        default=None,
        sa_column=Column(Integer, ForeignKey("contact.id", ondelete="SET NULL"), nullable=True),
    )
    email: str = Field(nullable=False)
    name: str | None = Field(default=None)
    token: str = Field(nullable=False, index=True)
    personalization: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONB, nullable=False))
    rendered_subject: str | None = Field(default=None)
    rendered_body: str | None = Field(default=None)
    status: RecipientStatus = Field(default=RecipientStatus.pending)
    message_id: str | None = Field(default=None)
    error_message: str | None = Field(default=None)
    sent_at: datetime | None = _tz_field(default=None, nullable=True)
    replied_at: datetime | None = _tz_field(default=None, nullable=True)


class ReminderState(SQLModel, table=True):
    """Reminder progress for one recipient. sent_count doubles as the compare-and-set claim version."""

    __tablename__ = "reminder_state"

    id: int | None = Field(default=None, primary_key=True)
    recipient_id: int = Field(
        sa_column=Column(
            Integer, ForeignKey("quest_recipient.id", ondelete="CASCADE"), nullable=False, unique=True
        )
    )
    sent_count: int = 0
    max_count: int = 3
    frequency_hours: int = 72
    next_send_at: datetime | None = _tz_field(default=None, nullable=True, index=True)
    last_sent_at: datetime | None = _tz_field(default=None, nullable=True)
    stopped_reason: str | None = Field(default=None)
    created_at: datetime = _tz_field(default_factory=_utcnow)


# --- Reports ---


class ReportDefinition(SQLModel, table=True):
    __tablename__ = "report_definition"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(nullable=False)
    description: str | None = Field(default=None)
    database_id: int = Field(
        sa_column=Column(Integer, ForeignKey("data_database.id", ondelete="CASCADE"), nullable=False)
    )
    cadence: str = "monthly"
    date_column_key: str = Field(nullable=False)
    compare_mode: str = "none"
    columns: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSONB, nullable=False))
    formula_rows: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSONB, nullable=False))
    created_at: datetime = _tz_field(default_factory=_utcnow)
    updated_at: datetime = _tz_field(default_factory=_utcnow)


# --- Accounting sync, workers, system metadata ---


class AccountingSyncState(SQLModel, table=True):
    __tablename__ = "accounting_sync"

    key: str = Field(primary_key=True)
    status: SyncStatus = Field(default=SyncStatus.idle)
    last_started_at: datetime | None = _tz_field(default=None, nullable=True)
    last_finished_at: datetime | None = _tz_field(default=None, nullable=True)
    last_error: str | None = Field(default=None)
    counts: dict[str, Any] | None = Field(default=None, sa_column=Column(JSONB))


class WorkerStatus(SQLModel, table=True):
    __tablename__ = "worker_status"

    worker_id: str = Field(primary_key=True)
    hostname: str = ""
    last_seen_at: datetime = _tz_field(default_factory=_utcnow)
    state: WorkerState = Field(default=WorkerState.offline)
    command: WorkerCommand = Field(default=WorkerCommand.none)
    stats: dict[str, Any] | None = Field(default=None, sa_column=Column(JSONB))


class SystemMetadata(SQLModel, table=True):
    """Key/value store for system-wide settings (e.g. schema_version). Standalone, no FK."""

    __tablename__ = "system_metadata"

    key: str = Field(primary_key=True)
    value: str = ""
