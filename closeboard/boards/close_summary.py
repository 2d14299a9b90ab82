"""Close retrospective for a finished board: how fast it closed and which jobs held it up."""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from closeboard.models.entities import Board, BoardStatus, Job, JobStatus

CLOSED_STATUSES = (BoardStatus.complete, BoardStatus.closed)
MAX_BLOCKERS = 5
MAX_MISSED_TARGETS = 10

CloseSpeed = Literal["early", "on_time", "late"]


class BlockerJob(BaseModel):
    name: str
    status: JobStatus
    days_in_progress: int


class LateJob(BaseModel):
    name: str
    completed_days_after_period_end: int


class MissedTargetJob(BaseModel):
    name: str
    target_date: date
    completed_on: date
    days_late: int


class CloseSummary(BaseModel):
    board_id: int
    board_name: str
    period_start: date | None = None
    period_end: date | None = None
    closed_on: date
    close_speed: CloseSpeed = "on_time"
    days_to_close: int = 0
    period_days: int = 0
    total_jobs: int = 0
    completed_jobs: int = 0
    blocker_jobs: list[BlockerJob] = Field(default_factory=list)
    late_jobs: list[LateJob] = Field(default_factory=list)
    missed_target_jobs: list[MissedTargetJob] = Field(default_factory=list)
    # Filled in by a drafter when insights are requested
    insights: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


def _day(value: datetime) -> date:
    return value.date()


def _finished_on(job: Job, closed_on: date) -> date:
    """When the job stopped: its completion, or the board close for jobs still open at close."""
    if job.completed_at is not None:
        return _day(job.completed_at)
    if job.status == JobStatus.complete:
        return _day(job.updated_at)
    return closed_on


def summarize_close(board: Board, jobs: list[Job]) -> CloseSummary:
    """
    Deterministic part of the retrospective.

    close_speed is early when the board closed on or before period_end and late after it;
    boards without a full period are on_time. Archived jobs are ignored.
    """
    closed_on = _day(board.closed_at or board.updated_at)
    summary = CloseSummary(
        board_id=board.id,
        board_name=board.name,
        period_start=board.period_start,
        period_end=board.period_end,
        closed_on=closed_on,
    )
    if board.period_start and board.period_end:
        summary.period_days = (board.period_end - board.period_start).days
        summary.days_to_close = (closed_on - board.period_start).days
        summary.close_speed = "early" if closed_on <= board.period_end else "late"

    active = [j for j in jobs if j.status != JobStatus.archived]
    summary.total_jobs = len(active)
    summary.completed_jobs = sum(1 for j in active if j.status == JobStatus.complete)

    blockers = [
        BlockerJob(
            name=j.name,
            status=j.status,
            days_in_progress=max(0, (_finished_on(j, closed_on) - _day(j.created_at)).days),
        )
        for j in active
        if j.status in (JobStatus.in_progress, JobStatus.blocked, JobStatus.complete)
    ]
    # Open jobs rank ahead of completed ones with the same duration
    blockers.sort(key=lambda b: (-b.days_in_progress, b.status == JobStatus.complete))
    summary.blocker_jobs = blockers[:MAX_BLOCKERS]

    missed = []
    for job in active:
        if job.due_date is None:
            continue
        finished = _finished_on(job, closed_on)
        if finished > job.due_date:
            missed.append(
                MissedTargetJob(
                    name=job.name,
                    target_date=job.due_date,
                    completed_on=finished,
                    days_late=(finished - job.due_date).days,
                )
            )
    missed.sort(key=lambda m: -m.days_late)
    summary.missed_target_jobs = missed[:MAX_MISSED_TARGETS]

    if board.period_end is not None:
        late = [
            LateJob(name=j.name, completed_days_after_period_end=(finished - board.period_end).days)
            for j in active
            if j.status == JobStatus.complete and (finished := _finished_on(j, closed_on)) > board.period_end
        ]
        late.sort(key=lambda item: -item.completed_days_after_period_end)
        summary.late_jobs = late
    return summary


def deterministic_insights(summary: CloseSummary) -> list[str]:
    """Plain statements about the close; used when no model is available."""
    if summary.total_jobs == 0:
        return []
    insights = []
    if summary.close_speed == "late":
        insights.append(f"Books closed {summary.days_to_close} days after period start")
    else:
        insights.append(f"Books closed within the period ({summary.days_to_close} days)")
    missed = len(summary.missed_target_jobs)
    if missed:
        insights.append(f"{missed} job{'s' if missed > 1 else ''} missed their target date")
    late = len(summary.late_jobs)
    if late:
        insights.append(f"{late} job{'s' if late > 1 else ''} completed after the period ended")
    return insights
