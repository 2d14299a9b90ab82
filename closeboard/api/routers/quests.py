"""/api/quests: create, execute and cancel requests; /api/requests: record replies."""

from fastapi import APIRouter, Depends, Query

from closeboard.api.deps import get_quest_service
from closeboard.api.schemas import QuestDetailOut, QuestExecuteOut, QuestOut, RecipientOut
from closeboard.models.entities import QuestStatus
from closeboard.quests.engine import QuestService
from closeboard.quests.schema import QuestCreate, QuestExecute

router = APIRouter(prefix="/api/quests", tags=["quests"])
requests_router = APIRouter(prefix="/api/requests", tags=["quests"])


def _detail(service: QuestService, quest_id: int) -> QuestDetailOut:
    quest, recipients = service.get_with_recipients(quest_id)
    return QuestDetailOut(
        quest=QuestOut.model_validate(quest), recipients=[RecipientOut.model_validate(r) for r in recipients]
    )


@router.post("", response_model=QuestDetailOut, status_code=201)
def create_quest(body: QuestCreate, service: QuestService = Depends(get_quest_service)) -> QuestDetailOut:
    quest = service.create_quest(body)
    return _detail(service, quest.id)


@router.get("", response_model=list[QuestOut])
def list_quests(
    job_id: int | None = Query(default=None),
    status: QuestStatus | None = Query(default=None),
    service: QuestService = Depends(get_quest_service),
) -> list[QuestOut]:
    return [QuestOut.model_validate(q) for q in service.list_quests(job_id=job_id, status=status)]


@router.get("/{quest_id}", response_model=QuestDetailOut)
def get_quest(quest_id: int, service: QuestService = Depends(get_quest_service)) -> QuestDetailOut:
    return _detail(service, quest_id)


@router.post("/{quest_id}/execute", response_model=QuestExecuteOut)
def execute_quest(
    quest_id: int, body: QuestExecute | None = None, service: QuestService = Depends(get_quest_service)
) -> QuestExecuteOut:
    """Send now, or schedule when the quest's timing resolves to a future time."""
    body = body or QuestExecute()
    execution = service.execute(quest_id, subject=body.subject, body=body.body, allow_missing=body.allow_missing)
    return QuestExecuteOut(
        quest=QuestOut.model_validate(execution.quest),
        sent=execution.sent,
        failed=execution.failed,
        scheduled_for=execution.scheduled_for,
    )


@router.post("/{quest_id}/cancel", response_model=QuestOut)
def cancel_quest(quest_id: int, service: QuestService = Depends(get_quest_service)) -> QuestOut:
    return QuestOut.model_validate(service.cancel(quest_id))


@requests_router.post("/{recipient_id}/reply", response_model=RecipientOut)
def record_reply(recipient_id: int, service: QuestService = Depends(get_quest_service)) -> RecipientOut:
    return RecipientOut.model_validate(service.record_reply(recipient_id))
