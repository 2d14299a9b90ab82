"""Board lifecycle: create, status sync, completion snapshot and next-period rollover."""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any

from closeboard.boards.cadence import derive_period_end, next_period_start, normalize_period_start, period_board_name
from closeboard.boards.close_summary import CLOSED_STATUSES, CloseSummary, summarize_close
from closeboard.core.errors import NotFoundError, ValidationError
from closeboard.models.entities import Board, BoardCadence, BoardStatus, Job, JobStatus
from closeboard.repository.board_repo import BoardRepository
from closeboard.repository.job_repo import JobRepository

_log = logging.getLogger(__name__)


@dataclass
class StatusSync:
    board: Board
    changed: bool
    previous_status: BoardStatus


class BoardService:
    """
    Boards are work periods. Completing an automated board snapshots its jobs and opens the next
    period's board with the same recurring jobs.
    """

    def __init__(self, boards: BoardRepository, jobs: JobRepository, fiscal_year_start_month: int = 1) -> None:
        self._boards = boards
        self._jobs = jobs
        self._fiscal = fiscal_year_start_month

    def get(self, board_id: int) -> Board:
        board = self._boards.get(board_id)
        if board is None:
            raise NotFoundError("Board not found")
        return board

    def get_with_jobs(self, board_id: int) -> tuple[Board, list[Job]]:
        board = self.get(board_id)
        return board, self._jobs.list_jobs(board_id=board_id)

    def list_boards(
        self,
        statuses: list[BoardStatus] | None = None,
        cadences: list[BoardCadence] | None = None,
        year: int | None = None,
    ) -> list[tuple[Board, int]]:
        return self._boards.list_boards(statuses=statuses, cadences=cadences, year=year)

    def _period_fields(
        self, cadence: BoardCadence, period_start: date | None, period_end: date | None
    ) -> tuple[date | None, date | None]:
        if cadence == BoardCadence.ad_hoc:
            if period_start and period_end and period_end < period_start:
                raise ValidationError("Period end cannot be before period start")
            return period_start, period_end
        start = normalize_period_start(cadence, period_start, self._fiscal)
        end = period_end or derive_period_end(cadence, start, self._fiscal)
        if start and end and end < start:
            raise ValidationError("Period end cannot be before period start")
        return start, end

    def create(
        self,
        name: str | None,
        cadence: BoardCadence = BoardCadence.ad_hoc,
        period_start: date | None = None,
        period_end: date | None = None,
        description: str | None = None,
        owner: str | None = None,
        automation_enabled: bool = False,
        skip_weekends: bool = True,
    ) -> Board:
        """Create a board. Recurring cadences get a normalized period and, if unnamed, a period name."""
        if cadence != BoardCadence.ad_hoc and period_start is None:
            raise ValidationError("Period start is required for recurring boards")
        start, end = self._period_fields(cadence, period_start, period_end)
        if not name or not name.strip():
            if start is None:
                raise ValidationError("Name is required")
            name = period_board_name(cadence, start, self._fiscal)
        board = self._boards.create(
            name=name.strip(),
            description=description,
            cadence=cadence,
            period_start=start,
            period_end=end,
            owner=owner,
            automation_enabled=automation_enabled and cadence != BoardCadence.ad_hoc,
            skip_weekends=skip_weekends,
        )
        _log.info("board_created id=%s cadence=%s period_start=%s", board.id, cadence.value, start)
        return board

    def update(self, board_id: int, **fields: Any) -> Board:
        """Update a board. Moving it to complete triggers the completion flow."""
        existing = self.get(board_id)
        if "name" in fields and not (fields["name"] or "").strip():
            raise ValidationError("Name cannot be empty")
        if "cadence" in fields or "period_start" in fields:
            cadence = fields.get("cadence", existing.cadence)
            start = fields.get("period_start", existing.period_start)
            if "period_end" in fields:
                end = fields["period_end"]
            else:
                end = existing.period_end if cadence == BoardCadence.ad_hoc else None
            fields["period_start"], fields["period_end"] = self._period_fields(cadence, start, end)
        board = self._boards.update(board_id, **fields)
        if board is None:
            raise NotFoundError("Board not found")
        if fields.get("status") == BoardStatus.complete and existing.status != BoardStatus.complete:
            self._handle_completion(board)
        return board

    def complete(self, board_id: int) -> tuple[Board, Board | None]:
        """Mark a board complete. Returns the board and the next-period board if one was opened."""
        existing = self.get(board_id)
        if existing.status == BoardStatus.complete:
            return existing, None
        board = self._boards.update(board_id, status=BoardStatus.complete)
        assert board is not None
        return board, self._handle_completion(board)

    def _handle_completion(self, board: Board) -> Board | None:
        snapshotted = self._jobs.snapshot_board_jobs(board.id)
        _log.info("board_completed id=%s jobs_snapshotted=%d", board.id, snapshotted)
        if board.automation_enabled and board.cadence != BoardCadence.ad_hoc:
            next_board, _ = self.create_next_period_board(board.id)
            return next_board
        return None

    def create_next_period_board(self, board_id: int) -> tuple[Board | None, bool]:
        """
        Open the board for the period after board_id, spawning its jobs as not_started.

        Idempotent: when a board already exists for the same cadence and period start, that board
        is returned with created=False. Ad hoc boards have no next period (None, False).
        """
        board = self.get(board_id)
        if board.cadence == BoardCadence.ad_hoc:
            return None, False
        reference = board.period_start or date.today()
        start = next_period_start(board.cadence, reference, board.skip_weekends, self._fiscal)
        if start is None:
            return None, False
        existing = self._boards.find_by_period(board.cadence, start)
        if existing is not None:
            _log.info("next_period_board_exists source=%s existing=%s period_start=%s", board.id, existing.id, start)
            return existing, False

        new_board = self._boards.create(
            name=period_board_name(board.cadence, start, self._fiscal),
            description=board.description,
            cadence=board.cadence,
            period_start=start,
            period_end=derive_period_end(board.cadence, start, self._fiscal),
            owner=board.owner,
            automation_enabled=board.automation_enabled,
            skip_weekends=board.skip_weekends,
        )
        spawned = self._jobs.copy_jobs(board.id, new_board.id, keep_lineage=True)
        _log.info("next_period_board_created source=%s new=%s jobs=%d", board.id, new_board.id, spawned)
        return new_board, True

    def sync_status(self, board_id: int) -> StatusSync:
        """
        Derive board status from its jobs: all complete -> complete, any started -> in_progress,
        else not_started. Blocked and archived boards, and boards without jobs, are left alone.
        """
        board = self.get(board_id)
        previous = board.status
        if board.status in (BoardStatus.blocked, BoardStatus.archived):
            return StatusSync(board, False, previous)
        statuses = [j.status for j in self._jobs.list_jobs(board_id=board_id, include_archived=False)]
        if not statuses:
            return StatusSync(board, False, previous)
        if all(s == JobStatus.complete for s in statuses):
            target = BoardStatus.complete
        elif any(s != JobStatus.not_started for s in statuses):
            target = BoardStatus.in_progress
        else:
            target = BoardStatus.not_started
        if target == previous:
            return StatusSync(board, False, previous)
        updated = self.update(board_id, status=target)
        return StatusSync(updated, True, previous)

    def close_summary(self, board_id: int) -> CloseSummary:
        """Retrospective for a complete or closed board, without insights."""
        board = self.get(board_id)
        if board.status not in CLOSED_STATUSES:
            raise ValidationError("Board is not closed", code="BOARD_NOT_CLOSED")
        return summarize_close(board, self._jobs.list_jobs(board_id=board_id))

    def delete(self, board_id: int) -> None:
        if not self._boards.delete(board_id):
            raise NotFoundError("Board not found")

    def archive(self, board_id: int) -> Board:
        board = self._boards.update(board_id, status=BoardStatus.closed)
        if board is None:
            raise NotFoundError("Board not found")
        return board

    def duplicate(self, board_id: int, name: str | None = None) -> Board:
        """Copy a board and its jobs (as not_started, with fresh lineages)."""
        board = self.get(board_id)
        copy = self._boards.create(
            name=(name or "").strip() or f"{board.name} (Copy)",
            description=board.description,
            cadence=board.cadence,
            period_start=board.period_start,
            period_end=board.period_end,
            owner=board.owner,
            skip_weekends=board.skip_weekends,
        )
        self._jobs.copy_jobs(board.id, copy.id, keep_lineage=False)
        return copy

    def carry_over(self, target_board_id: int, source_board_id: int) -> int:
        """Copy incomplete jobs from source to target, skipping lineages the target already has."""
        if target_board_id == source_board_id:
            raise ValidationError("Source and target boards must differ")
        target = self._boards.get(target_board_id)
        if target is None:
            raise NotFoundError("Target board not found")
        source = self._boards.get(source_board_id)
        if source is None:
            raise NotFoundError("Source board not found")
        carried = self._jobs.copy_jobs(
            source.id, target.id, keep_lineage=True, skip_existing_lineage=True, only_incomplete=True
        )
        _log.info("board_carry_over source=%s target=%s jobs=%d", source.id, target.id, carried)
        return carried
