"""closeboard REST API: app, auth, error rendering and routers."""

import logging
import secrets

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from closeboard.api import deps
from closeboard.api.routers import accounting, boards, contacts, databases, jobs, quests, reports
from closeboard.core.config import get_config
from closeboard.core.errors import ServiceError
from closeboard.repository.system_metadata_repo import SystemMetadataRepository
from closeboard.workers.base import BaseWorker

_log = logging.getLogger(__name__)

_HTTP_CODES = {
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
}

_bearer = HTTPBearer(auto_error=False)


def require_token(credentials: HTTPAuthorizationCredentials | None = Depends(_bearer)) -> None:
    """Bearer-token check. Disabled when api_token is empty."""
    token = get_config().api_token
    if not token:
        return
    if credentials is None or not secrets.compare_digest(credentials.credentials, token):
        raise HTTPException(status_code=401, detail="Unauthorized")


def _error(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "code": code})


app = FastAPI(title="closeboard")


@app.exception_handler(ServiceError)
def _service_error(_request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        _log.warning("service_error code=%s message=%s", exc.code, exc.message)
    return _error(exc.status_code, exc.message, exc.code)


@app.exception_handler(StarletteHTTPException)
def _http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail), _HTTP_CODES.get(exc.status_code, f"HTTP_{exc.status_code}"))


@app.exception_handler(RequestValidationError)
def _payload_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return _error(400, "; ".join(problems) or "Invalid request payload", "INVALID_REQUEST_PAYLOAD")


@app.get("/api/health")
def api_health(meta: SystemMetadataRepository = Depends(deps.get_system_metadata_repo)) -> JSONResponse:
    """Unauthenticated. 503 while the database is unreachable or not migrated."""
    try:
        version = meta.get_schema_version()
    except SQLAlchemyError:
        _log.warning("health_check_failed", exc_info=True)
        return JSONResponse(status_code=503, content={"status": "unavailable", "schema_version": None})
    status = "ok" if version is not None and version >= BaseWorker.MIN_SCHEMA_VERSION else "migrations_pending"
    return JSONResponse(status_code=200 if status == "ok" else 503, content={"status": status, "schema_version": version})


_protected = [Depends(require_token)]
app.include_router(databases.router, dependencies=_protected)
app.include_router(contacts.router, dependencies=_protected)
app.include_router(contacts.entities_router, dependencies=_protected)
app.include_router(contacts.groups_router, dependencies=_protected)
app.include_router(boards.router, dependencies=_protected)
app.include_router(jobs.router, dependencies=_protected)
app.include_router(quests.router, dependencies=_protected)
app.include_router(quests.requests_router, dependencies=_protected)
app.include_router(reports.router, dependencies=_protected)
app.include_router(accounting.router, dependencies=_protected)
