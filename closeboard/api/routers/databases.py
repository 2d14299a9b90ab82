"""/api/databases: schema-defined tables, imports and exports."""

from typing import Literal

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile

from closeboard.api.deps import get_database_service
from closeboard.api.schemas import (
    DatabaseCreateIn,
    DatabaseOut,
    DatabaseSummaryOut,
    DatabaseUpdateIn,
    DeletedOut,
    ImportIn,
    ImportOut,
    RowKeysIn,
    RowsIn,
    SchemaUpdateIn,
    SchemaUpdateOut,
)
from closeboard.databases.reconcile import ImportPreview
from closeboard.databases.service import DatabaseService, ExportFile, columns_of
from closeboard.models.entities import DataDatabase

router = APIRouter(prefix="/api/databases", tags=["databases"])


def _out(db: DataDatabase) -> DatabaseOut:
    return DatabaseOut(
        id=db.id,
        name=db.name,
        description=db.description,
        columns=columns_of(db),
        schema_version=db.schema_version,
        identifier_keys=list(db.identifier_keys or []),
        rows=list(db.rows or []),
        row_count=db.row_count,
        source=db.source,
        created_at=db.created_at,
        updated_at=db.updated_at,
        last_imported_at=db.last_imported_at,
    )


def _download(export: ExportFile) -> Response:
    return Response(
        content=export.content,
        media_type=export.content_type,
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )


@router.get("", response_model=list[DatabaseSummaryOut])
def list_databases(service: DatabaseService = Depends(get_database_service)) -> list[DatabaseSummaryOut]:
    return [
        DatabaseSummaryOut(
            id=db.id,
            name=db.name,
            description=db.description,
            column_count=len(db.columns or []),
            row_count=db.row_count,
            source=db.source,
            created_at=db.created_at,
            updated_at=db.updated_at,
            last_imported_at=db.last_imported_at,
        )
        for db in service.list_databases()
    ]


@router.post("", response_model=DatabaseOut, status_code=201)
def create_database(body: DatabaseCreateIn, service: DatabaseService = Depends(get_database_service)) -> DatabaseOut:
    db = service.create(
        name=body.name,
        columns=body.columns,
        identifier_keys=body.identifier_keys,
        description=body.description,
        rows=body.rows,
    )
    return _out(db)


@router.get("/{database_id}", response_model=DatabaseOut)
def get_database(database_id: int, service: DatabaseService = Depends(get_database_service)) -> DatabaseOut:
    return _out(service.get(database_id))


@router.patch("/{database_id}", response_model=DatabaseOut)
def update_database(
    database_id: int, body: DatabaseUpdateIn, service: DatabaseService = Depends(get_database_service)
) -> DatabaseOut:
    return _out(service.update(database_id, name=body.name, description=body.description))


@router.delete("/{database_id}", status_code=204)
def delete_database(database_id: int, service: DatabaseService = Depends(get_database_service)) -> Response:
    service.delete(database_id)
    return Response(status_code=204)


@router.patch("/{database_id}/schema", response_model=SchemaUpdateOut)
def update_schema(
    database_id: int, body: SchemaUpdateIn, service: DatabaseService = Depends(get_database_service)
) -> SchemaUpdateOut:
    db, warnings = service.update_schema(database_id, columns=body.columns, identifier_keys=body.identifier_keys)
    return SchemaUpdateOut(database=_out(db), warnings=warnings)


@router.delete("/{database_id}/rows", response_model=DeletedOut)
def delete_rows(
    database_id: int, body: RowKeysIn, service: DatabaseService = Depends(get_database_service)
) -> DeletedOut:
    return DeletedOut(deleted=service.delete_rows(database_id, body.keys))


@router.post("/{database_id}/import/parse", response_model=RowsIn)
async def parse_import_file(
    database_id: int,
    file: UploadFile = File(...),
    service: DatabaseService = Depends(get_database_service),
) -> RowsIn:
    """Read an uploaded CSV/XLSX into rows keyed by column key, ready for preview."""
    data = await file.read()
    return RowsIn(rows=service.parse_upload(database_id, data, file.filename, file.content_type))


@router.post("/{database_id}/import/preview", response_model=ImportPreview)
def preview_import(
    database_id: int, body: RowsIn, service: DatabaseService = Depends(get_database_service)
) -> ImportPreview:
    return service.preview_import(database_id, body.rows)


@router.post("/{database_id}/import", response_model=ImportOut)
def import_rows(database_id: int, body: ImportIn, service: DatabaseService = Depends(get_database_service)) -> ImportOut:
    outcome = service.import_rows(database_id, body.rows, update_existing=body.update_existing)
    return ImportOut(added=outcome.added, updated=outcome.updated, duplicates=outcome.duplicates, errors=outcome.errors)


@router.get("/{database_id}/export")
def export_database(
    database_id: int,
    format: Literal["csv", "xlsx"] = Query(default="csv"),
    service: DatabaseService = Depends(get_database_service),
) -> Response:
    return _download(service.export(database_id, format))


@router.get("/{database_id}/template")
def download_template(
    database_id: int,
    format: Literal["csv", "xlsx"] = Query(default="csv"),
    service: DatabaseService = Depends(get_database_service),
) -> Response:
    return _download(service.template(database_id, format))
