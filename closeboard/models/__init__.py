"""SQLModel table/entity definitions. Used by Repository layer only."""

from closeboard.models.entities import (
    AccountingSyncState,
    Board,
    Contact,
    ContactGroup,
    ContactTag,
    DataDatabase,
    Job,
    Quest,
    QuestRecipient,
    ReminderState,
    ReportDefinition,
    SystemMetadata,
    WorkerCommand,
    WorkerState,
    WorkerStatus,
)

__all__ = [
    "AccountingSyncState",
    "Board",
    "Contact",
    "ContactGroup",
    "ContactTag",
    "DataDatabase",
    "Job",
    "Quest",
    "QuestRecipient",
    "ReminderState",
    "ReportDefinition",
    "SystemMetadata",
    "WorkerCommand",
    "WorkerState",
    "WorkerStatus",
]
