"""/api/reports: report definitions, period list and preview."""

from fastapi import APIRouter, Depends, Query, Response

from closeboard.api.deps import get_report_service
from closeboard.api.schemas import ReportCreateIn, ReportOut, ReportUpdateIn
from closeboard.reports.engine import ReportPreview, ReportService

router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.get("", response_model=list[ReportOut])
def list_reports(
    database_id: int | None = Query(default=None), service: ReportService = Depends(get_report_service)
) -> list[ReportOut]:
    return [ReportOut.model_validate(r) for r in service.list_reports(database_id=database_id)]


@router.post("", response_model=ReportOut, status_code=201)
def create_report(body: ReportCreateIn, service: ReportService = Depends(get_report_service)) -> ReportOut:
    return ReportOut.model_validate(service.create(**dict(body)))


@router.get("/{report_id}", response_model=ReportOut)
def get_report(report_id: int, service: ReportService = Depends(get_report_service)) -> ReportOut:
    return ReportOut.model_validate(service.get(report_id))


@router.patch("/{report_id}", response_model=ReportOut)
def update_report(
    report_id: int, body: ReportUpdateIn, service: ReportService = Depends(get_report_service)
) -> ReportOut:
    fields = {k: getattr(body, k) for k in body.model_fields_set}
    return ReportOut.model_validate(service.update(report_id, **fields))


@router.delete("/{report_id}", status_code=204)
def delete_report(report_id: int, service: ReportService = Depends(get_report_service)) -> Response:
    service.delete(report_id)
    return Response(status_code=204)


@router.get("/{report_id}/periods", response_model=list[dict[str, str]])
def report_periods(report_id: int, service: ReportService = Depends(get_report_service)) -> list[dict[str, str]]:
    return service.periods(report_id)


@router.get("/{report_id}/preview", response_model=ReportPreview)
def preview_report(
    report_id: int,
    period: str | None = Query(default=None, description="Period key, e.g. 2026-01 for monthly"),
    compare: str | None = Query(default=None, description="none, mom or yoy; defaults to the report's mode"),
    service: ReportService = Depends(get_report_service),
) -> ReportPreview:
    return service.preview(report_id, period_key=period, compare_mode=compare)
