"""/api/jobs: tasks, stakeholders, comments and request drafting."""

from fastapi import APIRouter, Depends, Query, Response

from closeboard.api.deps import get_job_service, get_quest_service
from closeboard.api.schemas import (
    CommentIn,
    CommentOut,
    ContactOut,
    DraftIn,
    JobCreateIn,
    JobOut,
    JobUpdateIn,
    RefineIn,
    StakeholdersIn,
)
from closeboard.drafting.schema import Draft, DraftResult
from closeboard.jobs.service import JobService
from closeboard.models.entities import JobStatus
from closeboard.quests.engine import QuestService

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.get("", response_model=list[JobOut])
def list_jobs(
    board_id: int | None = Query(default=None),
    status: JobStatus | None = Query(default=None),
    owner: str | None = Query(default=None),
    service: JobService = Depends(get_job_service),
) -> list[JobOut]:
    return [JobOut.model_validate(j) for j in service.list_jobs(board_id=board_id, status=status, owner=owner)]


@router.post("", response_model=JobOut, status_code=201)
def create_job(body: JobCreateIn, service: JobService = Depends(get_job_service)) -> JobOut:
    return JobOut.model_validate(service.create(**body.model_dump()))


@router.get("/{job_id}", response_model=JobOut)
def get_job(job_id: int, service: JobService = Depends(get_job_service)) -> JobOut:
    detail = service.detail(job_id)
    out = JobOut.model_validate(detail.job)
    out.stakeholder_count = detail.stakeholder_count
    out.request_count = detail.request_count
    return out


@router.patch("/{job_id}", response_model=JobOut)
def update_job(job_id: int, body: JobUpdateIn, service: JobService = Depends(get_job_service)) -> JobOut:
    return JobOut.model_validate(service.update(job_id, **body.model_dump(exclude_unset=True)))


@router.delete("/{job_id}", status_code=204)
def delete_job(job_id: int, service: JobService = Depends(get_job_service)) -> Response:
    service.delete(job_id)
    return Response(status_code=204)


@router.get("/{job_id}/stakeholders", response_model=list[ContactOut])
def list_stakeholders(job_id: int, service: JobService = Depends(get_job_service)) -> list[ContactOut]:
    return [ContactOut.model_validate(c) for c in service.stakeholders(job_id)]


@router.put("/{job_id}/stakeholders", response_model=list[ContactOut])
def set_stakeholders(
    job_id: int, body: StakeholdersIn, service: JobService = Depends(get_job_service)
) -> list[ContactOut]:
    return [ContactOut.model_validate(c) for c in service.set_stakeholders(job_id, body.contact_ids)]


@router.post("/{job_id}/stakeholders/{contact_id}", status_code=204)
def add_stakeholder(job_id: int, contact_id: int, service: JobService = Depends(get_job_service)) -> Response:
    service.add_stakeholder(job_id, contact_id)
    return Response(status_code=204)


@router.delete("/{job_id}/stakeholders/{contact_id}", status_code=204)
def remove_stakeholder(job_id: int, contact_id: int, service: JobService = Depends(get_job_service)) -> Response:
    service.remove_stakeholder(job_id, contact_id)
    return Response(status_code=204)


@router.get("/{job_id}/comments", response_model=list[CommentOut])
def list_comments(job_id: int, service: JobService = Depends(get_job_service)) -> list[CommentOut]:
    return [CommentOut.model_validate(c) for c in service.comments(job_id)]


@router.post("/{job_id}/comments", response_model=CommentOut, status_code=201)
def add_comment(job_id: int, body: CommentIn, service: JobService = Depends(get_job_service)) -> CommentOut:
    return CommentOut.model_validate(service.add_comment(job_id, body.content, body.author))


@router.delete("/{job_id}/comments/{comment_id}", status_code=204)
def delete_comment(job_id: int, comment_id: int, service: JobService = Depends(get_job_service)) -> Response:
    service.delete_comment(job_id, comment_id)
    return Response(status_code=204)


@router.post("/{job_id}/request/draft", response_model=DraftResult)
def draft_request(
    job_id: int, body: DraftIn | None = None, service: QuestService = Depends(get_quest_service)
) -> DraftResult:
    """Draft a request for the job. used_fallback is set when the template draft was used."""
    body = body or DraftIn()
    return service.draft(job_id, mode=body.mode, contact_ids=body.contact_ids, database_id=body.database_id)


@router.post("/{job_id}/request/refine", response_model=DraftResult)
def refine_request(job_id: int, body: RefineIn, service: QuestService = Depends(get_quest_service)) -> DraftResult:
    return service.refine(
        job_id,
        Draft(subject=body.subject, body=body.body),
        body.instruction,
        mode=body.mode,
        contact_ids=body.contact_ids,
        database_id=body.database_id,
    )
