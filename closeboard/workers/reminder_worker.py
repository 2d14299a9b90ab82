"""Reminder worker: sends scheduled quests when due, then due reminders."""

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from closeboard.core.config import Settings
from closeboard.core.logging import get_flight_logger
from closeboard.mail.base import BaseMailer
from closeboard.quests.engine import QuestService
from closeboard.quests.reminders import run_due_reminders_once, run_due_scheduled_quests_once
from closeboard.repository.quest_repo import QuestRepository
from closeboard.repository.system_metadata_repo import SystemMetadataRepository
from closeboard.repository.worker_repo import WorkerRepository
from closeboard.workers.base import BaseWorker

_log = logging.getLogger(__name__)


class ReminderWorker(BaseWorker):
    def __init__(
        self,
        worker_id: str,
        repository: WorkerRepository,
        heartbeat_interval_seconds: float = 15.0,
        *,
        system_metadata_repo: SystemMetadataRepository,
        quest_repo: QuestRepository,
        quest_service: QuestService,
        mailer_provider: Callable[[], BaseMailer],
        settings: Settings,
        idle_poll_interval_seconds: float = 60.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(
            worker_id,
            repository,
            heartbeat_interval_seconds,
            system_metadata_repo=system_metadata_repo,
            idle_poll_interval_seconds=idle_poll_interval_seconds,
        )
        self._quest_repo = quest_repo
        self._quest_service = quest_service
        self._mailer_provider = mailer_provider
        self._settings = settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._quests_sent = 0
        self._reminders_sent = 0
        self._errors = 0

    def process_task(self) -> bool:
        now = self._clock()
        scheduled = run_due_scheduled_quests_once(self._quest_service, self._quest_repo, now)
        reminders = run_due_reminders_once(self._quest_repo, self._mailer_provider, self._settings, now)
        self._quests_sent += scheduled.sent
        self._reminders_sent += reminders.sent
        self._errors += len(scheduled.errors) + len(reminders.errors)
        for error in scheduled.errors + reminders.errors:
            _log.warning("reminder_worker_error %s", error)
        flight_logger = get_flight_logger()
        if flight_logger is not None:
            for quest_id in scheduled.failed_quest_ids:
                path = flight_logger.dump(self.worker_id, quest_id=quest_id)
                _log.info("forensic_dump quest_id=%s path=%s", quest_id, path)
        if scheduled.checked or reminders.checked:
            _log.info(
                "reminder_worker_pass quests_checked=%d quests_sent=%d reminders_checked=%d "
                "reminders_sent=%d reminders_skipped=%d",
                scheduled.checked,
                scheduled.sent,
                reminders.checked,
                reminders.sent,
                reminders.skipped,
            )
            return True
        return False

    def get_heartbeat_stats(self) -> dict[str, Any] | None:
        return {
            "quests_sent": self._quests_sent,
            "reminders_sent": self._reminders_sent,
            "errors": self._errors,
        }
