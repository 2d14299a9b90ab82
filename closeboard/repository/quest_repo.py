"""Quest repository: requests, their recipients, and per-recipient reminder state."""

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator

from sqlalchemy import select, text, update
from sqlalchemy.orm import Session

from closeboard.models.entities import Quest, QuestRecipient, QuestStatus, RecipientStatus, ReminderState

_QUEST_FIELDS = (
    "status",
    "subject",
    "body",
    "send_timing",
    "send_at",
    "schedule_config",
    "scheduled_for",
    "reminders_enabled",
    "reminder_frequency_days",
    "reminder_stop_condition",
    "reminder_max_count",
    "deadline",
    "sent_count",
    "failed_count",
    "error_message",
    "executed_at",
)
_RECIPIENT_FIELDS = (
    "rendered_subject",
    "rendered_body",
    "status",
    "message_id",
    "error_message",
    "sent_at",
    "replied_at",
)

# How long a claimed reminder is held before another runner may pick it up again
REMINDER_CLAIM_HOLD = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuestRepository:
    """
    Database access for quests (outbound requests), recipients and reminder states.

    Status changes that race with other processes (sending a quest, sending a reminder) go
    through conditional UPDATEs; callers check the returned flag instead of re-reading.
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

    # --- quests ---

    def create(self, quest: Quest, recipients: list[QuestRecipient]) -> Quest:
        """Insert a quest and its recipients in one transaction."""
        now = _utcnow()
        quest.created_at = now
        quest.updated_at = now
        with self._session_scope(write=True) as session:
            session.add(quest)
            session.flush()
            for recipient in recipients:
                recipient.quest_id = quest.id
                session.add(recipient)
            session.flush()
            session.refresh(quest)
        return quest

    def get(self, quest_id: int) -> Quest | None:
        with self._session_scope() as session:
            return session.get(Quest, quest_id)

    def list_quests(
        self,
        job_id: int | None = None,
        status: QuestStatus | None = None,
        limit: int = 100,
    ) -> list[Quest]:
        stmt = select(Quest)
        if job_id is not None:
            stmt = stmt.where(Quest.job_id == job_id)
        if status is not None:
            stmt = stmt.where(Quest.status == status)
        stmt = stmt.order_by(Quest.created_at.desc(), Quest.id.desc()).limit(limit)
        with self._session_scope() as session:
            return list(session.execute(stmt).scalars().all())

    def update(self, quest_id: int, **fields: Any) -> Quest | None:
        unknown = set(fields) - set(_QUEST_FIELDS)
        if unknown:
            raise ValueError(f"Unknown quest fields: {', '.join(sorted(unknown))}")
        with self._session_scope(write=True) as session:
            entity = session.get(Quest, quest_id)
            if entity is None:
                return None
            for name, value in fields.items():
                setattr(entity, name, value)
            entity.updated_at = _utcnow()
        return entity

    def transition(self, quest_id: int, from_statuses: list[QuestStatus], to_status: QuestStatus) -> bool:
        """Move a quest to to_status only if it is currently in one of from_statuses."""
        with self._session_scope(write=True) as session:
            result = session.execute(
                update(Quest)
                .where(Quest.id == quest_id, Quest.status.in_(from_statuses))
                .values(status=to_status, updated_at=_utcnow())
            )
            return (result.rowcount or 0) == 1

    def due_scheduled(self, now: datetime, limit: int = 50) -> list[Quest]:
        """Scheduled quests whose send time has come, oldest first."""
        with self._session_scope() as session:
            return list(
                session.execute(
                    select(Quest)
                    .where(Quest.status == QuestStatus.scheduled, Quest.scheduled_for <= now)
                    .order_by(Quest.scheduled_for, Quest.id)
                    .limit(limit)
                ).scalars().all()
            )

    # --- recipients ---

    def recipients(self, quest_id: int) -> list[QuestRecipient]:
        with self._session_scope() as session:
            return list(
                session.execute(
                    select(QuestRecipient).where(QuestRecipient.quest_id == quest_id).order_by(QuestRecipient.id)
                ).scalars().all()
            )

    def get_recipient(self, recipient_id: int) -> QuestRecipient | None:
        with self._session_scope() as session:
            return session.get(QuestRecipient, recipient_id)

    def update_recipient(self, recipient_id: int, **fields: Any) -> QuestRecipient | None:
        unknown = set(fields) - set(_RECIPIENT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown recipient fields: {', '.join(sorted(unknown))}")
        with self._session_scope(write=True) as session:
            entity = session.get(QuestRecipient, recipient_id)
            if entity is None:
                return None
            for name, value in fields.items():
                setattr(entity, name, value)
        return entity

    def store_rendered(self, rendered: dict[int, tuple[str, str]]) -> None:
        """Save rendered (subject, body) per recipient id."""
        with self._session_scope(write=True) as session:
            for recipient_id, (subject, body) in rendered.items():
                session.execute(
                    update(QuestRecipient)
                    .where(QuestRecipient.id == recipient_id)
                    .values(rendered_subject=subject, rendered_body=body)
                )

    # --- reminders ---

    def create_reminder_states(
        self,
        recipient_ids: list[int],
        next_send_at: datetime,
        max_count: int,
        frequency_hours: int,
    ) -> int:
        """One reminder state per recipient; recipients that already have one are left alone."""
        created = 0
        with self._session_scope(write=True) as session:
            for recipient_id in recipient_ids:
                result = session.execute(
                    text(
                        "INSERT INTO reminder_state "
                        "(recipient_id, sent_count, max_count, frequency_hours, next_send_at, created_at) "
                        "VALUES (:recipient_id, 0, :max_count, :frequency_hours, :next_send_at, :now) "
                        "ON CONFLICT (recipient_id) DO NOTHING"
                    ),
                    {
                        "recipient_id": recipient_id,
                        "max_count": max_count,
                        "frequency_hours": frequency_hours,
                        "next_send_at": next_send_at,
                        "now": _utcnow(),
                    },
                )
                created += result.rowcount or 0
        return created

    def get_reminder_state(self, recipient_id: int) -> ReminderState | None:
        with self._session_scope() as session:
            return session.execute(
                select(ReminderState).where(ReminderState.recipient_id == recipient_id)
            ).scalars().first()

    def due_reminders(self, now: datetime, limit: int = 100) -> list[tuple[ReminderState, QuestRecipient, Quest]]:
        """Active reminder states whose next send time has passed, with their recipient and quest."""
        stmt = (
            select(ReminderState, QuestRecipient, Quest)
            .join(QuestRecipient, QuestRecipient.id == ReminderState.recipient_id)
            .join(Quest, Quest.id == QuestRecipient.quest_id)
            .where(
                ReminderState.stopped_reason.is_(None),
                ReminderState.next_send_at.is_not(None),
                ReminderState.next_send_at <= now,
            )
            .order_by(ReminderState.next_send_at, ReminderState.id)
            .limit(limit)
        )
        with self._session_scope() as session:
            return [(state, recipient, quest) for state, recipient, quest in session.execute(stmt).all()]

    def claim_reminder(self, state_id: int, expected_sent_count: int, now: datetime) -> bool:
        """
        Compare-and-set claim: succeeds only if the state is still active, still due, and nobody
        advanced sent_count since it was read. The claim pushes next_send_at out so a crashed
        runner's reminder becomes due again after REMINDER_CLAIM_HOLD.
        """
        with self._session_scope(write=True) as session:
            result = session.execute(
                text(
                    "UPDATE reminder_state SET next_send_at = :hold "
                    "WHERE id = :id AND stopped_reason IS NULL AND next_send_at <= :now "
                    "AND sent_count = :expected"
                ),
                {"id": state_id, "hold": now + REMINDER_CLAIM_HOLD, "now": now, "expected": expected_sent_count},
            )
            return (result.rowcount or 0) == 1

    def stop_reminder(self, state_id: int, reason: str) -> None:
        with self._session_scope(write=True) as session:
            session.execute(
                update(ReminderState)
                .where(ReminderState.id == state_id, ReminderState.stopped_reason.is_(None))
                .values(stopped_reason=reason, next_send_at=None)
            )

    def record_reminder_sent(
        self,
        state_id: int,
        sent_count: int,
        sent_at: datetime,
        next_send_at: datetime | None,
        stopped_reason: str | None = None,
    ) -> None:
        with self._session_scope(write=True) as session:
            session.execute(
                update(ReminderState)
                .where(ReminderState.id == state_id)
                .values(
                    sent_count=sent_count,
                    last_sent_at=sent_at,
                    next_send_at=next_send_at,
                    stopped_reason=stopped_reason,
                )
            )

    def mark_replied(self, recipient_id: int, replied_at: datetime) -> QuestRecipient | None:
        """Set the recipient to replied and stop its reminders, in one transaction."""
        with self._session_scope(write=True) as session:
            recipient = session.get(QuestRecipient, recipient_id)
            if recipient is None:
                return None
            recipient.status = RecipientStatus.replied
            recipient.replied_at = recipient.replied_at or replied_at
            session.execute(
                update(ReminderState)
                .where(ReminderState.recipient_id == recipient_id, ReminderState.stopped_reason.is_(None))
                .values(stopped_reason="replied", next_send_at=None)
            )
        return recipient
