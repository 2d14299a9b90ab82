"""One-shot passes over due reminders and due scheduled quests. The reminder worker loops these."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from closeboard.core.config import Settings
from closeboard.core.errors import ConflictError, ServiceError
from closeboard.mail.base import BaseMailer, MailDeliveryError, MailMessage
from closeboard.models.entities import QuestStatus, RecipientStatus
from closeboard.quests.engine import QuestService
from closeboard.repository.quest_repo import QuestRepository

_log = logging.getLogger(__name__)

STOP_REPLIED = "replied"
STOP_DEADLINE = "deadline_passed"
STOP_MAX_REACHED = "max_reached"
_DEADLINE_CONDITIONS = ("deadline", "reply_or_deadline")


@dataclass
class ReminderRunResult:
    checked: int = 0
    sent: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class ScheduledRunResult:
    checked: int = 0
    sent: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    failed_quest_ids: list[int] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def run_due_reminders_once(
    quests: QuestRepository,
    mailer_provider: Callable[[], BaseMailer],
    settings: Settings,
    now: datetime | None = None,
    limit: int = 100,
) -> ReminderRunResult:
    """
    Send every reminder that is due at `now`.

    Each state is claimed with a compare-and-set on sent_count first, so two runners never send
    the same reminder. A failed send leaves sent_count alone; the claim hold expires and the
    reminder is retried on a later pass.
    """
    now = now or _utcnow()
    result = ReminderRunResult()
    mailer: BaseMailer | None = None

    for state, recipient, quest in quests.due_reminders(now, limit=limit):
        result.checked += 1
        if state.max_count <= 0:
            quests.stop_reminder(state.id, STOP_MAX_REACHED)
            result.skipped += 1
            continue
        if not quests.claim_reminder(state.id, state.sent_count, now):
            _log.info("reminder_skipped_claimed state_id=%s", state.id)
            result.skipped += 1
            continue
        if recipient.status == RecipientStatus.replied:
            quests.stop_reminder(state.id, STOP_REPLIED)
            _log.info("reminder_skipped_replied state_id=%s recipient_id=%s", state.id, recipient.id)
            result.skipped += 1
            continue
        deadline = quest.deadline
        if deadline is not None and deadline.tzinfo is None:
            deadline = deadline.replace(tzinfo=timezone.utc)
        if quest.reminder_stop_condition in _DEADLINE_CONDITIONS and deadline is not None and now >= deadline:
            quests.stop_reminder(state.id, STOP_DEADLINE)
            _log.info("reminder_skipped_deadline state_id=%s quest_id=%s", state.id, quest.id)
            result.skipped += 1
            continue
        if state.sent_count >= state.max_count:
            quests.stop_reminder(state.id, STOP_MAX_REACHED)
            result.skipped += 1
            continue

        try:
            if mailer is None:
                mailer = mailer_provider()
            mailer.send(
                MailMessage(
                    to=recipient.email,
                    to_name=recipient.name,
                    subject=f"Reminder: {recipient.rendered_subject or quest.subject}",
                    body=recipient.rendered_body or quest.body,
                    sender=settings.sender_address,
                    headers={"X-Closeboard-Request": recipient.token},
                )
            )
        except (MailDeliveryError, ServiceError) as e:
            result.errors.append(f"Reminder {state.id}: {e}")
            _log.warning("reminder_failed state_id=%s error=%s", state.id, e)
            continue

        sent_count = state.sent_count + 1
        if sent_count < state.max_count:
            next_send_at, stopped = now + timedelta(hours=state.frequency_hours), None
        else:
            next_send_at, stopped = None, STOP_MAX_REACHED
        quests.record_reminder_sent(state.id, sent_count, now, next_send_at, stopped)
        result.sent += 1
        _log.info(
            "reminder_sent state_id=%s recipient_id=%s count=%d/%d", state.id, recipient.id, sent_count, state.max_count
        )
    return result


def run_due_scheduled_quests_once(
    service: QuestService,
    quests: QuestRepository,
    now: datetime | None = None,
    limit: int = 50,
) -> ScheduledRunResult:
    """Send every scheduled quest whose time has come."""
    now = now or _utcnow()
    result = ScheduledRunResult()
    for quest in quests.due_scheduled(now, limit=limit):
        result.checked += 1
        try:
            execution = service.deliver_scheduled(quest.id, now)
        except ConflictError:
            # Picked up or cancelled by someone else since it was listed
            continue
        except ServiceError as e:
            quests.update(quest.id, status=QuestStatus.failed, error_message=e.message)
            result.failed += 1
            result.errors.append(f"Quest {quest.id}: {e.message}")
            result.failed_quest_ids.append(quest.id)
            _log.warning("scheduled_quest_failed quest_id=%s error=%s", quest.id, e.message)
            continue
        if execution.sent:
            result.sent += 1
        else:
            result.failed += 1
            result.failed_quest_ids.append(quest.id)
    return result
