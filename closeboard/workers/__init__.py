"""Workers: inherit from BaseWorker and implement process_task()."""

from closeboard.workers.base import BaseWorker
from closeboard.workers.reminder_worker import ReminderWorker

__all__ = ["BaseWorker", "ReminderWorker"]
