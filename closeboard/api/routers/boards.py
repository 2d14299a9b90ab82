"""/api/boards: work periods and their lifecycle."""

from fastapi import APIRouter, Depends, Query, Response

from closeboard.api.deps import get_board_service, get_configured_drafter
from closeboard.api.schemas import (
    BoardCompleteOut,
    BoardCreateIn,
    BoardDetailOut,
    BoardOut,
    BoardUpdateIn,
    CarryOverIn,
    CarryOverOut,
    DuplicateIn,
    JobOut,
    NextPeriodOut,
    SyncStatusOut,
)
from closeboard.boards.close_summary import CloseSummary
from closeboard.boards.service import BoardService
from closeboard.drafting.base import BaseDrafter
from closeboard.drafting.factory import close_insights_with_fallback
from closeboard.models.entities import BoardCadence, BoardStatus

router = APIRouter(prefix="/api/boards", tags=["boards"])


@router.get("", response_model=list[BoardOut])
def list_boards(
    status: list[BoardStatus] | None = Query(default=None),
    cadence: list[BoardCadence] | None = Query(default=None),
    year: int | None = Query(default=None, ge=1900, le=9999),
    service: BoardService = Depends(get_board_service),
) -> list[BoardOut]:
    out: list[BoardOut] = []
    for board, job_count in service.list_boards(statuses=status, cadences=cadence, year=year):
        item = BoardOut.model_validate(board)
        item.job_count = job_count
        out.append(item)
    return out


@router.post("", response_model=BoardOut, status_code=201)
def create_board(body: BoardCreateIn, service: BoardService = Depends(get_board_service)) -> BoardOut:
    return BoardOut.model_validate(service.create(**body.model_dump()))


@router.get("/{board_id}", response_model=BoardDetailOut)
def get_board(board_id: int, service: BoardService = Depends(get_board_service)) -> BoardDetailOut:
    board, jobs = service.get_with_jobs(board_id)
    out = BoardOut.model_validate(board)
    out.job_count = len(jobs)
    return BoardDetailOut(board=out, jobs=[JobOut.model_validate(j) for j in jobs])


@router.patch("/{board_id}", response_model=BoardOut)
def update_board(board_id: int, body: BoardUpdateIn, service: BoardService = Depends(get_board_service)) -> BoardOut:
    return BoardOut.model_validate(service.update(board_id, **body.model_dump(exclude_unset=True)))


@router.delete("/{board_id}", status_code=204)
def delete_board(board_id: int, service: BoardService = Depends(get_board_service)) -> Response:
    service.delete(board_id)
    return Response(status_code=204)


@router.post("/{board_id}/complete", response_model=BoardCompleteOut)
def complete_board(board_id: int, service: BoardService = Depends(get_board_service)) -> BoardCompleteOut:
    board, next_board = service.complete(board_id)
    return BoardCompleteOut(
        board=BoardOut.model_validate(board),
        next_board=BoardOut.model_validate(next_board) if next_board is not None else None,
    )


@router.post("/{board_id}/duplicate", response_model=BoardOut, status_code=201)
def duplicate_board(
    board_id: int, body: DuplicateIn | None = None, service: BoardService = Depends(get_board_service)
) -> BoardOut:
    return BoardOut.model_validate(service.duplicate(board_id, name=body.name if body else None))


@router.post("/{board_id}/archive", response_model=BoardOut)
def archive_board(board_id: int, service: BoardService = Depends(get_board_service)) -> BoardOut:
    return BoardOut.model_validate(service.archive(board_id))


@router.post("/{board_id}/sync-status", response_model=SyncStatusOut)
def sync_board_status(board_id: int, service: BoardService = Depends(get_board_service)) -> SyncStatusOut:
    result = service.sync_status(board_id)
    return SyncStatusOut(
        board=BoardOut.model_validate(result.board), changed=result.changed, previous_status=result.previous_status
    )


@router.post("/{board_id}/carry-over-tasks", response_model=CarryOverOut)
def carry_over_tasks(
    board_id: int, body: CarryOverIn, service: BoardService = Depends(get_board_service)
) -> CarryOverOut:
    """Copy incomplete jobs from body.source_board_id onto this board."""
    return CarryOverOut(carried=service.carry_over(board_id, body.source_board_id))


@router.post("/{board_id}/next-period", response_model=NextPeriodOut)
def next_period_board(board_id: int, service: BoardService = Depends(get_board_service)) -> NextPeriodOut:
    board, created = service.create_next_period_board(board_id)
    return NextPeriodOut(board=BoardOut.model_validate(board) if board is not None else None, created=created)


@router.get("/{board_id}/close-summary", response_model=CloseSummary)
def close_summary(
    board_id: int,
    insights: bool = Query(default=True),
    service: BoardService = Depends(get_board_service),
    drafter: BaseDrafter = Depends(get_configured_drafter),
) -> CloseSummary:
    """Close retrospective for a complete or closed board; insights=false skips the drafter."""
    summary = service.close_summary(board_id)
    if insights:
        summary = close_insights_with_fallback(drafter, summary)
    return summary
