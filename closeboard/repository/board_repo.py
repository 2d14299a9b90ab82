"""Board repository: period boards and their job counts."""

from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterator

from sqlalchemy import case, delete, extract, func, select
from sqlalchemy.orm import Session

from closeboard.models.entities import Board, BoardCadence, BoardStatus, Job

_BOARD_FIELDS = (
    "name",
    "description",
    "status",
    "cadence",
    "period_start",
    "period_end",
    "owner",
    "automation_enabled",
    "skip_weekends",
)

# Active boards first, finished ones last
_STATUS_ORDER = {
    BoardStatus.in_progress: 0,
    BoardStatus.blocked: 1,
    BoardStatus.not_started: 2,
    BoardStatus.complete: 3,
    BoardStatus.closed: 4,
    BoardStatus.archived: 5,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _closed_at(status: BoardStatus, current: datetime | None, now: datetime) -> datetime | None:
    """Stamped the first time a board is complete or closed; cleared when it is reopened."""
    if status in (BoardStatus.complete, BoardStatus.closed):
        return current or now
    if status == BoardStatus.archived:
        return current
    return None


class BoardRepository:
    """Database access for board rows. Job rows are handled by JobRepository."""

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

    def create(self, name: str, **fields: Any) -> Board:
        unknown = set(fields) - set(_BOARD_FIELDS)
        if unknown:
            raise ValueError(f"Unknown board fields: {', '.join(sorted(unknown))}")
        now = _utcnow()
        entity = Board(name=name, created_at=now, updated_at=now, **fields)
        with self._session_scope(write=True) as session:
            session.add(entity)
            session.flush()
            session.refresh(entity)
        return entity

    def get(self, board_id: int) -> Board | None:
        with self._session_scope() as session:
            return session.get(Board, board_id)

    def find_by_period(self, cadence: BoardCadence, period_start: date) -> Board | None:
        """Board already covering this cadence and period start, if any."""
        with self._session_scope() as session:
            return session.execute(
                select(Board)
                .where(Board.cadence == cadence, Board.period_start == period_start)
                .order_by(Board.id)
            ).scalars().first()

    def list_boards(
        self,
        statuses: list[BoardStatus] | None = None,
        cadences: list[BoardCadence] | None = None,
        year: int | None = None,
    ) -> list[tuple[Board, int]]:
        """
        Boards with their job counts, ordered by status (active first), then
        period start (newest first, undated last) and creation time.
        """
        job_count = (
            select(func.count(Job.id))
            .where(Job.board_id == Board.id)
            .correlate(Board)
            .scalar_subquery()
        )
        status_rank = case(
            *[(Board.status == status, rank) for status, rank in _STATUS_ORDER.items()],
            else_=len(_STATUS_ORDER),
        )
        stmt = select(Board, job_count)
        if statuses:
            stmt = stmt.where(Board.status.in_(statuses))
        if cadences:
            stmt = stmt.where(Board.cadence.in_(cadences))
        if year is not None:
            stmt = stmt.where(extract("year", Board.period_start) == year)
        stmt = stmt.order_by(
            status_rank,
            Board.period_start.desc().nulls_last(),
            Board.created_at.desc(),
            Board.id.desc(),
        )
        with self._session_scope() as session:
            rows = session.execute(stmt).all()
        return [(board, count or 0) for board, count in rows]

    def update(self, board_id: int, **fields: Any) -> Board | None:
        unknown = set(fields) - set(_BOARD_FIELDS)
        if unknown:
            raise ValueError(f"Unknown board fields: {', '.join(sorted(unknown))}")
        with self._session_scope(write=True) as session:
            entity = session.get(Board, board_id)
            if entity is None:
                return None
            for name, value in fields.items():
                setattr(entity, name, value)
            now = _utcnow()
            if "status" in fields:
                entity.closed_at = _closed_at(BoardStatus(entity.status), entity.closed_at, now)
            entity.updated_at = now
        return entity

    def delete(self, board_id: int) -> bool:
        """Delete a board; its jobs go with it (ON DELETE CASCADE)."""
        with self._session_scope(write=True) as session:
            result = session.execute(delete(Board).where(Board.id == board_id))
            return (result.rowcount or 0) > 0
