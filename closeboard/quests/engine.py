"""Request engine: draft, create, render, schedule and send requests (quests) for jobs."""

import logging
import math
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from closeboard.boards.service import BoardService
from closeboard.contacts.service import is_valid_email
from closeboard.core.business_days import ScheduleConfig, compute_from_config, validate_schedule_config
from closeboard.core.config import Settings
from closeboard.core.errors import ConflictError, NotFoundError, UpstreamError, ValidationError
from closeboard.core.templates import render_template
from closeboard.databases.reconcile import normalize_value
from closeboard.databases.service import columns_of
from closeboard.drafting.base import BaseDrafter
from closeboard.drafting.factory import draft_with_fallback, refine_with_fallback
from closeboard.drafting.schema import Draft, DraftContext, DraftRecipient, DraftResult
from closeboard.jobs.service import JobService
from closeboard.mail.base import BaseMailer, MailDeliveryError, MailMessage
from closeboard.models.entities import (
    Contact,
    ContactTag,
    Quest,
    QuestMode,
    QuestRecipient,
    QuestStatus,
    RecipientStatus,
    SendTiming,
)
from closeboard.quests.schema import QuestCreate
from closeboard.repository.contact_repo import ContactRepository
from closeboard.repository.database_repo import DatabaseRepository
from closeboard.repository.quest_repo import QuestRepository

_log = logging.getLogger(__name__)

DEFAULT_MAX_REMINDERS = 3
MAX_REMINDERS_CAP = 5
CONTACT_TAGS = ["First Name", "Last Name", "Email", "Company"]
FORM_LINK_TAG = "Form Link"


@dataclass
class ReminderConfig:
    frequency_hours: int
    start_delay_hours: int
    max_count: int


@dataclass
class QuestExecution:
    quest: Quest
    sent: int
    failed: int
    scheduled_for: datetime | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def compute_reminder_config(frequency_days: int, deadline: datetime | None, now: datetime) -> ReminderConfig:
    """
    Reminders go out every frequency_days, first one frequency_days after sending.

    Without a deadline the quota is 3. With one it is the number of whole intervals left before
    the deadline (daily reminders: days left minus one), clamped to 1..5.
    """
    frequency_days = max(1, frequency_days)
    hours = frequency_days * 24
    deadline = _aware(deadline)
    if deadline is None:
        max_count = DEFAULT_MAX_REMINDERS
    else:
        days_left = math.ceil((deadline - now).total_seconds() / 86400)
        if frequency_days == 1:
            max_count = days_left - 1
        else:
            max_count = days_left // frequency_days
        max_count = min(MAX_REMINDERS_CAP, max(1, max_count))
    return ReminderConfig(frequency_hours=hours, start_delay_hours=hours, max_count=max_count)


def contact_personalization(contact: Contact, tags: list[ContactTag] | None = None) -> dict[str, Any]:
    """Merge-tag values for a contact: name, email, company, plus any tag carrying a value."""
    data: dict[str, Any] = {
        "First Name": contact.first_name,
        "Last Name": contact.last_name or "",
        "Email": contact.email or "",
        "Company": contact.company or "",
    }
    for tag in tags or []:
        value = (tag.tag_metadata or {}).get("value")
        if value not in (None, ""):
            data.setdefault(tag.tag_key, value)
    return data


class QuestService:
    """
    Requests ("quests") for jobs.

    A quest is created in `ready` with its recipients and their merge-tag data. Executing it
    renders every recipient, then either sends now or moves it to `scheduled` for the reminder
    worker to pick up. Mail goes through a provider obtained lazily from mailer_provider so a
    missing sender only fails the operations that send.
    """

    def __init__(
        self,
        quests: QuestRepository,
        jobs: JobService,
        boards: BoardService,
        contacts: ContactRepository,
        databases: DatabaseRepository,
        drafter: BaseDrafter,
        mailer_provider: Callable[[], BaseMailer],
        settings: Settings,
    ) -> None:
        self._quests = quests
        self._jobs = jobs
        self._boards = boards
        self._contacts = contacts
        self._databases = databases
        self._drafter = drafter
        self._mailer_provider = mailer_provider
        self._settings = settings

    # --- drafting ---

    def draft_context(
        self,
        job_id: int,
        mode: QuestMode = QuestMode.standard,
        contact_ids: list[int] | None = None,
        database_id: int | None = None,
    ) -> DraftContext:
        job = self._jobs.get(job_id)
        if contact_ids:
            contacts = self._contacts.get_many(contact_ids)
        else:
            contacts = self._jobs.stakeholders(job_id)
        available = list(CONTACT_TAGS)
        if mode == QuestMode.data_personalization and database_id is not None:
            db = self._databases.get(database_id)
            if db is None:
                raise NotFoundError("Database not found")
            available = [c.label or c.key for c in columns_of(db)]
        if mode == QuestMode.form_request:
            available.append(FORM_LINK_TAG)
        return DraftContext(
            job_name=job.name,
            description=job.description,
            due_date=job.due_date,
            labels=list(job.labels or []),
            recipients=[
                DraftRecipient(first_name=c.first_name, last_name=c.last_name, email=c.email)
                for c in contacts
                if c.email
            ],
            available_tags=available,
            form_link=mode == QuestMode.form_request,
        )

    def draft(self, job_id: int, **context_args: Any) -> DraftResult:
        """Draft a request for a job; falls back to the template draft when the drafter fails."""
        result = draft_with_fallback(self._drafter, self.draft_context(job_id, **context_args))
        _log.info("request_drafted job_id=%s fallback=%s", job_id, result.used_fallback)
        return result

    def refine(self, job_id: int, current: Draft, instruction: str, **context_args: Any) -> DraftResult:
        """Revise a draft; a failed refinement returns the current draft with refinement_failed set."""
        if not instruction or not instruction.strip():
            raise ValidationError("Instruction is required")
        context = self.draft_context(job_id, **context_args)
        return refine_with_fallback(self._drafter, context, current, instruction.strip())

    # --- creation ---

    def _contact_recipients(self, job_id: int, contact_ids: list[int] | None, form: bool) -> list[QuestRecipient]:
        contacts = self._contacts.get_many(contact_ids) if contact_ids else self._jobs.stakeholders(job_id)
        tags = self._contacts.tags_for_contacts([c.id for c in contacts])
        base_url = self._settings.public_base_url.rstrip("/")
        recipients: list[QuestRecipient] = []
        seen: set[str] = set()
        for contact in contacts:
            if not is_valid_email(contact.email):
                continue
            email = contact.email.strip().lower()
            if email in seen:
                continue
            seen.add(email)
            token = secrets.token_urlsafe(16)
            data = contact_personalization(contact, tags.get(contact.id))
            if form:
                data[FORM_LINK_TAG] = f"{base_url}/forms/{token}"
            name = " ".join(p for p in (contact.first_name, contact.last_name) if p)
            recipients.append(
                QuestRecipient(contact_id=contact.id, email=email, name=name or None, token=token, personalization=data)
            )
        return recipients

    def _row_recipients(self, database_id: int | None, email_column_key: str | None) -> list[QuestRecipient]:
        if database_id is None or not email_column_key:
            raise ValidationError(
                "database_id and email_column_key are required for data personalization",
                code="INVALID_REQUEST_PAYLOAD",
            )
        db = self._databases.get(database_id)
        if db is None:
            raise NotFoundError("Database not found")
        columns = columns_of(db)
        if email_column_key not in {c.key for c in columns}:
            raise ValidationError(f"Column {email_column_key} does not exist", code="INVALID_REQUEST_PAYLOAD")
        first_name_key = next(
            (c.key for c in columns if (c.label or c.key).strip().lower() in ("first name", "first_name")), None
        )
        recipients: list[QuestRecipient] = []
        seen: set[str] = set()
        for row in db.rows or []:
            email = normalize_value(row.get(email_column_key)).lower()
            if not is_valid_email(email) or email in seen:
                continue
            seen.add(email)
            data = {(c.label or c.key): normalize_value(row.get(c.key)) for c in columns}
            data.setdefault("Email", email)
            name = normalize_value(row.get(first_name_key)) if first_name_key else ""
            recipients.append(
                QuestRecipient(email=email, name=name or None, token=secrets.token_urlsafe(16), personalization=data)
            )
        return recipients

    def create_quest(self, payload: QuestCreate, now: datetime | None = None) -> Quest:
        """Validate the payload, resolve recipients and store the quest as ready."""
        now = now or _utcnow()
        job = self._jobs.get(payload.job_id)
        if not payload.subject.strip() or not payload.body.strip():
            raise ValidationError("Subject and body are required", code="INVALID_REQUEST_PAYLOAD")
        if payload.send_timing == SendTiming.scheduled and payload.send_at is None:
            raise ValidationError("send_at is required for scheduled requests", code="INVALID_REQUEST_PAYLOAD")
        schedule_config = None
        if payload.send_timing == SendTiming.period_aware:
            raw = dict(payload.schedule_config or {})
            raw.setdefault("mode", "period_aware")
            problems = validate_schedule_config(raw)
            if problems:
                raise ValidationError("; ".join(problems), code="INVALID_REQUEST_PAYLOAD")
            if job.board_id is None:
                raise ValidationError(
                    "Period-aware requests need a job on a board", code="INVALID_REQUEST_PAYLOAD"
                )
            schedule_config = ScheduleConfig.model_validate(raw).model_dump()

        if payload.mode == QuestMode.data_personalization:
            recipients = self._row_recipients(payload.database_id, payload.email_column_key)
        else:
            recipients = self._contact_recipients(
                job.id, payload.contact_ids, form=payload.mode == QuestMode.form_request
            )
        if not recipients:
            raise ValidationError("No recipients with a valid email address", code="NO_VALID_RECIPIENTS")

        reminders = compute_reminder_config(payload.reminder_frequency_days, payload.deadline, now)
        quest = Quest(
            job_id=job.id,
            mode=payload.mode,
            status=QuestStatus.ready,
            subject=payload.subject,
            body=payload.body,
            database_id=payload.database_id if payload.mode == QuestMode.data_personalization else None,
            email_column_key=payload.email_column_key if payload.mode == QuestMode.data_personalization else None,
            send_timing=payload.send_timing,
            send_at=_aware(payload.send_at),
            schedule_config=schedule_config,
            reminders_enabled=payload.reminders_enabled,
            reminder_frequency_days=payload.reminder_frequency_days,
            reminder_stop_condition=payload.reminder_stop_condition,
            reminder_max_count=reminders.max_count,
            deadline=_aware(payload.deadline),
        )
        quest = self._quests.create(quest, recipients)
        _log.info(
            "quest_created id=%s job_id=%s mode=%s recipients=%d", quest.id, job.id, payload.mode.value, len(recipients)
        )
        return quest

    # --- reads ---

    def get(self, quest_id: int) -> Quest:
        quest = self._quests.get(quest_id)
        if quest is None:
            raise NotFoundError("Quest not found")
        return quest

    def get_with_recipients(self, quest_id: int) -> tuple[Quest, list[QuestRecipient]]:
        quest = self.get(quest_id)
        return quest, self._quests.recipients(quest_id)

    def list_quests(self, job_id: int | None = None, status: QuestStatus | None = None) -> list[Quest]:
        return self._quests.list_quests(job_id=job_id, status=status)

    # --- execution ---

    def render(
        self, subject_template: str, body_template: str, recipients: list[QuestRecipient]
    ) -> tuple[dict[int, tuple[str, str]], list[str]]:
        """Render subject and body per recipient. Returns the renders and every tag left unresolved."""
        rendered: dict[int, tuple[str, str]] = {}
        missing: list[str] = []
        for recipient in recipients:
            data = recipient.personalization or {}
            subject = render_template(subject_template, data)
            body = render_template(body_template, data)
            rendered[recipient.id] = (subject.rendered, body.rendered)
            for tag in subject.missing_tags + body.missing_tags:
                if tag not in missing:
                    missing.append(tag)
        return rendered, missing

    def _resolve_send_time(self, quest: Quest) -> datetime | None:
        if quest.send_timing == SendTiming.scheduled:
            return _aware(quest.send_at)
        if quest.send_timing == SendTiming.period_aware:
            job = self._jobs.get(quest.job_id)
            board = self._boards.get(job.board_id) if job.board_id is not None else None
            when = compute_from_config(
                quest.schedule_config,
                board.period_start if board else None,
                board.period_end if board else None,
                self._settings.timezone,
            )
            if when is None:
                raise ValidationError(
                    "Cannot resolve the send time: the job's board has no period", code="INVALID_REQUEST_PAYLOAD"
                )
            return when
        return None

    def execute(
        self,
        quest_id: int,
        subject: str | None = None,
        body: str | None = None,
        allow_missing: bool = False,
        now: datetime | None = None,
    ) -> QuestExecution:
        """
        Render and send (or schedule) a ready quest.

        Unresolved merge tags fail with UNRESOLVED_VARIABLES unless allow_missing is set, in which
        case recipients get the "[MISSING: Tag]" text. When every recipient fails to send the quest
        is left `failed` and PROVIDER_SEND_FAILED is raised.
        """
        now = now or _utcnow()
        quest = self.get(quest_id)
        if quest.status != QuestStatus.ready:
            raise ConflictError(f"Quest is {quest.status.value}, not ready", code="QUEST_NOT_READY")
        mailer = self._mailer_provider()
        subject = subject if subject is not None else quest.subject
        body = body if body is not None else quest.body
        recipients = self._quests.recipients(quest_id)
        if not recipients:
            raise ValidationError("Quest has no recipients", code="NO_VALID_RECIPIENTS")
        rendered, missing = self.render(subject, body, recipients)
        if missing and not allow_missing:
            raise ValidationError(f"Unresolved variables: {', '.join(missing)}", code="UNRESOLVED_VARIABLES")
        if subject != quest.subject or body != quest.body:
            quest = self._quests.update(quest_id, subject=subject, body=body)
        self._quests.store_rendered(rendered)

        send_time = self._resolve_send_time(quest)
        if send_time is not None and send_time > now:
            if not self._quests.transition(quest_id, [QuestStatus.ready], QuestStatus.scheduled):
                raise ConflictError("Quest is no longer ready", code="QUEST_NOT_READY")
            quest = self._quests.update(quest_id, scheduled_for=send_time)
            _log.info("quest_scheduled id=%s scheduled_for=%s", quest_id, send_time.isoformat())
            return QuestExecution(quest, 0, 0, send_time)

        execution = self._deliver(quest_id, [QuestStatus.ready], mailer, now)
        if execution.sent == 0:
            raise UpstreamError(
                f"Failed to send to all {execution.failed} recipient(s)", code="PROVIDER_SEND_FAILED"
            )
        return execution

    def deliver_scheduled(self, quest_id: int, now: datetime | None = None) -> QuestExecution:
        """Send a scheduled quest whose time has come. Used by the reminder worker."""
        return self._deliver(quest_id, [QuestStatus.scheduled], self._mailer_provider(), now or _utcnow())

    def _deliver(
        self, quest_id: int, from_statuses: list[QuestStatus], mailer: BaseMailer, now: datetime
    ) -> QuestExecution:
        if not self._quests.transition(quest_id, from_statuses, QuestStatus.sending):
            raise ConflictError("Quest is already being sent or was cancelled", code="QUEST_NOT_READY")
        quest = self.get(quest_id)
        sent_ids: list[int] = []
        failed = 0
        try:
            for recipient in self._quests.recipients(quest_id):
                if recipient.status != RecipientStatus.pending:
                    continue
                message = MailMessage(
                    to=recipient.email,
                    to_name=recipient.name,
                    subject=recipient.rendered_subject or quest.subject,
                    body=recipient.rendered_body or quest.body,
                    sender=self._settings.sender_address,
                    headers={"X-Closeboard-Request": recipient.token},
                )
                try:
                    message_id = mailer.send(message)
                except MailDeliveryError as e:
                    failed += 1
                    self._quests.update_recipient(recipient.id, status=RecipientStatus.failed, error_message=str(e))
                    _log.warning(
                        "quest_recipient_failed quest_id=%s recipient_id=%s error=%s", quest_id, recipient.id, e
                    )
                    continue
                self._quests.update_recipient(
                    recipient.id, status=RecipientStatus.sent, message_id=message_id, sent_at=now, error_message=None
                )
                sent_ids.append(recipient.id)

            quest = self._quests.update(
                quest_id,
                status=QuestStatus.sent if sent_ids else QuestStatus.failed,
                sent_count=len(sent_ids),
                failed_count=failed,
                executed_at=now,
                error_message=None if sent_ids else "No recipient could be sent the request",
            )
        except Exception as e:
            # Never leave the quest stuck in sending.
            _log.exception("quest_delivery_aborted id=%s", quest_id)
            self._quests.update(
                quest_id,
                status=QuestStatus.failed,
                sent_count=len(sent_ids),
                failed_count=failed,
                executed_at=now,
                error_message=f"Delivery aborted: {e}",
            )
            raise
        if sent_ids:
            if quest.job_id is not None:
                self._jobs.mark_started(quest.job_id)
            if quest.reminders_enabled:
                config = compute_reminder_config(quest.reminder_frequency_days, quest.deadline, now)
                self._quests.create_reminder_states(
                    sent_ids,
                    next_send_at=now + timedelta(hours=config.start_delay_hours),
                    max_count=quest.reminder_max_count,
                    frequency_hours=config.frequency_hours,
                )
        _log.info("quest_executed id=%s sent=%d failed=%d", quest_id, len(sent_ids), failed)
        return QuestExecution(quest, len(sent_ids), failed)

    def cancel(self, quest_id: int) -> Quest:
        quest = self.get(quest_id)
        if not self._quests.transition(quest_id, [QuestStatus.ready, QuestStatus.scheduled], QuestStatus.cancelled):
            raise ConflictError(f"A {quest.status.value} quest cannot be cancelled", code="QUEST_NOT_CANCELLABLE")
        _log.info("quest_cancelled id=%s", quest_id)
        return self.get(quest_id)

    def record_reply(self, recipient_id: int, now: datetime | None = None) -> QuestRecipient:
        """Mark a recipient as replied; their reminders stop."""
        recipient = self._quests.get_recipient(recipient_id)
        if recipient is None:
            raise NotFoundError("Recipient not found")
        if recipient.status not in (RecipientStatus.sent, RecipientStatus.replied):
            raise ValidationError("The request was never delivered to this recipient")
        updated = self._quests.mark_replied(recipient_id, now or _utcnow())
        _log.info("quest_reply_recorded recipient_id=%s quest_id=%s", recipient_id, recipient.quest_id)
        return updated
