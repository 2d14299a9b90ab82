"""/api/integrations/accounting: sync status (polled by the UI), manual sync, sources."""

from fastapi import APIRouter, Depends

from closeboard.accounting.sync import AccountingSyncService
from closeboard.api.deps import get_accounting_service
from closeboard.api.schemas import SourceOut, SyncIn, SyncResultOut, SyncStateOut
from closeboard.core.errors import ValidationError

router = APIRouter(prefix="/api/integrations/accounting", tags=["accounting"])


@router.get("/status", response_model=SyncStateOut)
def sync_status(service: AccountingSyncService = Depends(get_accounting_service)) -> SyncStateOut:
    return SyncStateOut.model_validate(service.status())


@router.get("/sources", response_model=list[SourceOut])
def list_sources(service: AccountingSyncService = Depends(get_accounting_service)) -> list[SourceOut]:
    return [
        SourceOut(key=s.key, name=s.name, description=s.description, column_count=len(s.columns))
        for s in service.sources()
    ]


@router.post("/sync", response_model=SyncResultOut)
def run_sync(
    body: SyncIn | None = None, service: AccountingSyncService = Depends(get_accounting_service)
) -> SyncResultOut:
    """Run a sync to completion. 409 SYNC_IN_PROGRESS while another sync is running."""
    try:
        result = service.sync(body.sources if body else None)
    except ValueError as e:
        raise ValidationError(str(e)) from e
    return SyncResultOut(counts=result.counts, errors=result.errors)
