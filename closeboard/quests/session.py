"""
Send Request flow as an explicit state machine.

mode_selection -> selecting_recipients -> drafting -> ready <-> refining
ready -> sending -> success | error, and error -> ready to try again.
Timing (immediate or scheduled) is chosen while ready; it decides whether `send` executes the
quest now or parks it as scheduled.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any

from closeboard.core.errors import ServiceError
from closeboard.drafting.base import TemplateDrafter
from closeboard.drafting.schema import Draft
from closeboard.models.entities import Quest, QuestMode, QuestStatus, SendTiming
from closeboard.quests.engine import QuestExecution, QuestService
from closeboard.quests.schema import QuestCreate

_log = logging.getLogger(__name__)


class SessionState(str, Enum):
    mode_selection = "mode_selection"
    selecting_recipients = "selecting_recipients"
    drafting = "drafting"
    ready = "ready"
    refining = "refining"
    sending = "sending"
    success = "success"
    error = "error"


TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.mode_selection: frozenset({SessionState.selecting_recipients}),
    SessionState.selecting_recipients: frozenset({SessionState.drafting, SessionState.mode_selection}),
    SessionState.drafting: frozenset({SessionState.ready}),
    SessionState.ready: frozenset({SessionState.refining, SessionState.sending, SessionState.selecting_recipients}),
    SessionState.refining: frozenset({SessionState.ready}),
    SessionState.sending: frozenset({SessionState.success, SessionState.error}),
    SessionState.success: frozenset(),
    SessionState.error: frozenset({SessionState.ready}),
}


class InvalidTransitionError(RuntimeError):
    def __init__(self, current: SessionState, target: SessionState) -> None:
        super().__init__(f"Cannot go from {current.value} to {target.value}")
        self.current = current
        self.target = target


class RequestSession:
    """Drives one Send Request for a job through QuestService."""

    def __init__(self, service: QuestService, job_id: int) -> None:
        self._service = service
        self.job_id = job_id
        self.state = SessionState.mode_selection
        self.mode = QuestMode.standard
        self.contact_ids: list[int] | None = None
        self.database_id: int | None = None
        self.email_column_key: str | None = None
        self.draft: Draft | None = None
        self.used_fallback = False
        self.refinement_failed = False
        self.send_timing = SendTiming.immediate
        self.send_at: datetime | None = None
        self.schedule_config: dict[str, Any] | None = None
        self.reminders_enabled = False
        self.reminder_frequency_days = 3
        self.deadline: datetime | None = None
        self.quest: Quest | None = None
        self._quest_settings: dict[str, Any] | None = None
        self.execution: QuestExecution | None = None
        self.error_code: str | None = None
        self.error_message: str | None = None

    def _move(self, target: SessionState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state, target)
        _log.debug("request_session job_id=%s %s -> %s", self.job_id, self.state.value, target.value)
        self.state = target

    def _context_args(self) -> dict[str, Any]:
        return {"mode": self.mode, "contact_ids": self.contact_ids, "database_id": self.database_id}

    def select_mode(self, mode: QuestMode) -> None:
        self._move(SessionState.selecting_recipients)
        self.mode = mode

    def back_to_mode_selection(self) -> None:
        self._move(SessionState.mode_selection)

    def change_recipients(self) -> None:
        """Return from ready to recipient selection; the current draft is kept."""
        self._move(SessionState.selecting_recipients)

    def select_recipients(
        self,
        contact_ids: list[int] | None = None,
        database_id: int | None = None,
        email_column_key: str | None = None,
    ) -> None:
        """Pick recipients; contacts default to the job's stakeholders."""
        self._move(SessionState.drafting)
        self.contact_ids = contact_ids
        self.database_id = database_id
        self.email_column_key = email_column_key

    def generate_draft(self) -> Draft:
        """Produce the first draft. Any drafting failure still lands in ready with template content."""
        if self.state != SessionState.drafting:
            raise InvalidTransitionError(self.state, SessionState.ready)
        try:
            result = self._service.draft(self.job_id, **self._context_args())
            self.draft = result.draft
            self.used_fallback = result.used_fallback
        except ServiceError as e:
            _log.warning("request_session_draft_failed job_id=%s error=%s", self.job_id, e.message)
            self.draft = TemplateDrafter().draft(self._service.draft_context(self.job_id))
            self.used_fallback = True
        self._move(SessionState.ready)
        return self.draft

    def edit(self, subject: str | None = None, body: str | None = None) -> Draft:
        if self.state != SessionState.ready or self.draft is None:
            raise InvalidTransitionError(self.state, SessionState.ready)
        self.draft = Draft(
            subject=subject if subject is not None else self.draft.subject,
            body=body if body is not None else self.draft.body,
        )
        return self.draft

    def refine(self, instruction: str) -> Draft:
        """Apply an instruction to the draft. On failure the current draft is kept."""
        self._move(SessionState.refining)
        try:
            result = self._service.refine(self.job_id, self.draft, instruction, **self._context_args())
            self.draft = result.draft
            self.refinement_failed = result.refinement_failed
        except ServiceError as e:
            _log.warning("request_session_refine_failed job_id=%s error=%s", self.job_id, e.message)
            self.refinement_failed = True
        self._move(SessionState.ready)
        return self.draft

    def schedule(
        self,
        send_at: datetime | None = None,
        schedule_config: dict[str, Any] | None = None,
    ) -> None:
        """Choose scheduled timing: a fixed send_at, or a period-aware schedule_config."""
        if self.state != SessionState.ready:
            raise InvalidTransitionError(self.state, SessionState.sending)
        if schedule_config is not None:
            self.send_timing = SendTiming.period_aware
            self.schedule_config = schedule_config
            self.send_at = None
        elif send_at is not None:
            self.send_timing = SendTiming.scheduled
            self.send_at = send_at
            self.schedule_config = None
        else:
            self.send_immediately()

    def send_immediately(self) -> None:
        if self.state != SessionState.ready:
            raise InvalidTransitionError(self.state, SessionState.sending)
        self.send_timing = SendTiming.immediate
        self.send_at = None
        self.schedule_config = None

    def configure_reminders(self, enabled: bool, frequency_days: int = 3, deadline: datetime | None = None) -> None:
        self.reminders_enabled = enabled
        self.reminder_frequency_days = frequency_days
        self.deadline = deadline

    def _quest_payload(self) -> QuestCreate:
        return QuestCreate(
            job_id=self.job_id,
            mode=self.mode,
            subject=self.draft.subject,
            body=self.draft.body,
            contact_ids=self.contact_ids,
            database_id=self.database_id,
            email_column_key=self.email_column_key,
            send_timing=self.send_timing,
            send_at=self.send_at,
            schedule_config=self.schedule_config,
            reminders_enabled=self.reminders_enabled,
            reminder_frequency_days=self.reminder_frequency_days,
            deadline=self.deadline,
        )

    def _prepare_quest(self) -> None:
        """
        Reuse the quest from a failed attempt only while it is still ready and was created
        with the current recipients, mode, timing and reminder settings. Otherwise the stale
        quest is cancelled and a new one created. Subject and body are applied on execute.
        """
        payload = self._quest_payload()
        settings = payload.model_dump(exclude={"subject", "body"})
        if self.quest is not None and self.quest.status == QuestStatus.ready:
            if settings == self._quest_settings:
                return
            _log.info("request_session_replacing_quest job_id=%s quest_id=%s", self.job_id, self.quest.id)
            self._service.cancel(self.quest.id)
        self.quest = self._service.create_quest(payload)
        self._quest_settings = settings

    def send(self, allow_missing: bool = False) -> SessionState:
        """
        Create the quest (or reuse one still ready from a failed attempt) and execute it.
        Ends in success, or in error with error_code and error_message set.
        """
        self._move(SessionState.sending)
        self.error_code = self.error_message = None
        try:
            self._prepare_quest()
            self.execution = self._service.execute(
                self.quest.id, subject=self.draft.subject, body=self.draft.body, allow_missing=allow_missing
            )
            self.quest = self.execution.quest
        except ServiceError as e:
            self.error_code = e.code
            self.error_message = e.message
            if self.quest is not None:
                self.quest = self._service.get(self.quest.id)
            self._move(SessionState.error)
            return self.state
        self._move(SessionState.success)
        return self.state

    def retry(self) -> None:
        """Go back to ready after an error to edit and send again."""
        self._move(SessionState.ready)
