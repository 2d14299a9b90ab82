"""Request and response models for the REST API."""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from closeboard.databases.schema import SchemaColumn
from closeboard.models.entities import (
    BoardCadence,
    BoardStatus,
    ContactType,
    JobStatus,
    QuestMode,
    QuestStatus,
    RecipientStatus,
    SendTiming,
    SyncStatus,
)
from closeboard.reports.engine import ReportColumn, ReportFormulaRow


class _Out(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# --- databases ---


class DatabaseSummaryOut(_Out):
    id: int
    name: str
    description: str | None = None
    column_count: int
    row_count: int
    source: str | None = None
    created_at: datetime
    updated_at: datetime
    last_imported_at: datetime | None = None


class DatabaseOut(_Out):
    id: int
    name: str
    description: str | None = None
    columns: list[SchemaColumn]
    schema_version: int
    identifier_keys: list[str]
    rows: list[dict[str, Any]]
    row_count: int
    source: str | None = None
    created_at: datetime
    updated_at: datetime
    last_imported_at: datetime | None = None


class DatabaseCreateIn(BaseModel):
    name: str
    description: str | None = None
    columns: list[SchemaColumn]
    identifier_keys: list[str] = Field(default_factory=list)
    rows: list[dict[str, Any]] | None = None


class DatabaseUpdateIn(BaseModel):
    name: str | None = None
    description: str | None = None


class SchemaUpdateIn(BaseModel):
    columns: list[SchemaColumn] | None = None
    identifier_keys: list[str] | None = None


class SchemaUpdateOut(BaseModel):
    database: DatabaseOut
    warnings: list[str]


class RowsIn(BaseModel):
    rows: list[dict[str, Any]]


class ImportIn(BaseModel):
    rows: list[dict[str, Any]]
    update_existing: bool = False


class ImportOut(BaseModel):
    added: int
    updated: int
    duplicates: int
    errors: list[str]


class RowKeysIn(BaseModel):
    keys: list[list[Any]]


class DeletedOut(BaseModel):
    deleted: int


# --- contacts and groups ---


class GroupOut(_Out):
    id: int
    name: str
    color: str | None = None


class GroupWithCountOut(GroupOut):
    member_count: int = 0


class TagOut(BaseModel):
    tag_key: str
    metadata: dict[str, Any] | None = None


class ContactOut(_Out):
    id: int
    first_name: str
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    contact_type: ContactType
    created_at: datetime
    updated_at: datetime
    groups: list[GroupOut] = Field(default_factory=list)
    tags: list[TagOut] = Field(default_factory=list)


class ContactListOut(BaseModel):
    items: list[ContactOut]
    total: int


class FindOrCreateOut(BaseModel):
    contact: ContactOut
    created: bool


class ContactCreateIn(BaseModel):
    first_name: str
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    contact_type: ContactType = ContactType.unknown
    group_ids: list[int] | None = None


class FindOrCreateIn(BaseModel):
    email: str
    first_name: str | None = None


class ContactUpdateIn(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    contact_type: ContactType | None = None


class IdsIn(BaseModel):
    ids: list[int]


class TagIn(BaseModel):
    contact_id: int
    tag_key: str
    metadata: dict[str, Any] | None = None


class ContactImportOut(BaseModel):
    created: int
    updated: int
    skipped: int
    groups_created: int
    tags_set: int
    total_rows: int
    errors: list[str]


class GroupIn(BaseModel):
    name: str
    color: str | None = None


class GroupUpdateIn(BaseModel):
    name: str | None = None
    color: str | None = None


class MembersIn(BaseModel):
    contact_ids: list[int]


# --- boards and jobs ---


class BoardOut(_Out):
    id: int
    name: str
    description: str | None = None
    status: BoardStatus
    cadence: BoardCadence
    period_start: date | None = None
    period_end: date | None = None
    owner: str | None = None
    automation_enabled: bool
    skip_weekends: bool
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None = None
    job_count: int | None = None


class JobOut(_Out):
    id: int
    board_id: int | None = None
    lineage_id: str
    name: str
    description: str | None = None
    status: JobStatus
    owner: str | None = None
    due_date: date | None = None
    labels: list[str]
    is_snapshot: bool
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    stakeholder_count: int | None = None
    request_count: int | None = None


class BoardDetailOut(BaseModel):
    board: BoardOut
    jobs: list[JobOut]


class BoardCreateIn(BaseModel):
    name: str | None = None
    description: str | None = None
    cadence: BoardCadence = BoardCadence.ad_hoc
    period_start: date | None = None
    period_end: date | None = None
    owner: str | None = None
    automation_enabled: bool = False
    skip_weekends: bool = True


class BoardUpdateIn(BaseModel):
    name: str | None = None
    description: str | None = None
    status: BoardStatus | None = None
    cadence: BoardCadence | None = None
    period_start: date | None = None
    period_end: date | None = None
    owner: str | None = None
    automation_enabled: bool | None = None
    skip_weekends: bool | None = None


class BoardCompleteOut(BaseModel):
    board: BoardOut
    next_board: BoardOut | None = None


class NextPeriodOut(BaseModel):
    board: BoardOut | None = None
    created: bool


class SyncStatusOut(BaseModel):
    board: BoardOut
    changed: bool
    previous_status: BoardStatus


class DuplicateIn(BaseModel):
    name: str | None = None


class CarryOverIn(BaseModel):
    source_board_id: int


class CarryOverOut(BaseModel):
    carried: int


class JobCreateIn(BaseModel):
    name: str
    board_id: int | None = None
    description: str | None = None
    owner: str | None = None
    due_date: date | None = None
    labels: list[str] | None = None
    stakeholder_ids: list[int] | None = None


class JobUpdateIn(BaseModel):
    name: str | None = None
    board_id: int | None = None
    description: str | None = None
    status: JobStatus | None = None
    owner: str | None = None
    due_date: date | None = None
    labels: list[str] | None = None


class StakeholdersIn(BaseModel):
    contact_ids: list[int]


class CommentIn(BaseModel):
    content: str
    author: str | None = None


class CommentOut(_Out):
    id: int
    job_id: int
    author: str | None = None
    content: str
    created_at: datetime


class DraftIn(BaseModel):
    mode: QuestMode = QuestMode.standard
    contact_ids: list[int] | None = None
    database_id: int | None = None


class RefineIn(DraftIn):
    subject: str
    body: str
    instruction: str


# --- quests ---


class RecipientOut(_Out):
    id: int
    quest_id: int
    contact_id: int | None = None
    email: str
    name: str | None = None
    personalization: dict[str, Any]
    rendered_subject: str | None = None
    rendered_body: str | None = None
    status: RecipientStatus
    error_message: str | None = None
    sent_at: datetime | None = None
    replied_at: datetime | None = None


class QuestOut(_Out):
    id: int
    job_id: int | None = None
    mode: QuestMode
    status: QuestStatus
    subject: str
    body: str
    database_id: int | None = None
    email_column_key: str | None = None
    send_timing: SendTiming
    send_at: datetime | None = None
    schedule_config: dict[str, Any] | None = None
    scheduled_for: datetime | None = None
    reminders_enabled: bool
    reminder_frequency_days: int
    reminder_stop_condition: str
    reminder_max_count: int
    deadline: datetime | None = None
    sent_count: int
    failed_count: int
    error_message: str | None = None
    executed_at: datetime | None = None
    created_at: datetime


class QuestDetailOut(BaseModel):
    quest: QuestOut
    recipients: list[RecipientOut]


class QuestExecuteOut(BaseModel):
    quest: QuestOut
    sent: int
    failed: int
    scheduled_for: datetime | None = None


# --- reports ---


class ReportOut(_Out):
    id: int
    name: str
    description: str | None = None
    database_id: int
    cadence: str
    date_column_key: str
    compare_mode: str
    columns: list[ReportColumn]
    formula_rows: list[ReportFormulaRow]
    created_at: datetime
    updated_at: datetime


class ReportCreateIn(BaseModel):
    name: str
    database_id: int
    date_column_key: str
    cadence: str = "monthly"
    compare_mode: str = "none"
    description: str | None = None
    columns: list[ReportColumn] = Field(default_factory=list)
    formula_rows: list[ReportFormulaRow] = Field(default_factory=list)


class ReportUpdateIn(BaseModel):
    name: str | None = None
    description: str | None = None
    cadence: str | None = None
    date_column_key: str | None = None
    compare_mode: str | None = None
    columns: list[ReportColumn] | None = None
    formula_rows: list[ReportFormulaRow] | None = None


# --- accounting ---


class SyncStateOut(_Out):
    status: SyncStatus
    last_started_at: datetime | None = None
    last_finished_at: datetime | None = None
    last_error: str | None = None
    counts: dict[str, Any] | None = None


class SyncIn(BaseModel):
    sources: list[str] | None = None


class SyncResultOut(BaseModel):
    counts: dict[str, int]
    errors: list[str]


class SourceOut(BaseModel):
    key: str
    name: str
    description: str
    column_count: int
