"""Database operations: schema-checked CRUD, import preview/apply, row deletion, export."""

import logging
import re
from dataclasses import dataclass
from typing import Any

from closeboard.core.errors import NotFoundError, ValidationError
from closeboard.core.tabular import (
    CSV_CONTENT_TYPE,
    XLSX_CONTENT_TYPE,
    TabularFormatError,
    read_table,
    write_csv,
    write_xlsx,
)
from closeboard.databases.reconcile import (
    ImportOutcome,
    ImportPreview,
    apply_import,
    build_import_preview,
    delete_rows_by_keys,
    map_headers_to_keys,
    validate_rows,
)
from closeboard.databases.schema import (
    SchemaColumn,
    SchemaUpdatePlan,
    coerce_columns,
    ordered_columns,
    plan_schema_update,
    validate_schema,
)
from closeboard.models.entities import DataDatabase
from closeboard.repository.database_repo import DatabaseRepository

_log = logging.getLogger(__name__)


@dataclass
class ExportFile:
    filename: str
    content_type: str
    content: bytes


def _safe_filename(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("_") or "database"


def columns_of(db: DataDatabase) -> list[SchemaColumn]:
    return coerce_columns(db.columns or [])


class DatabaseService:
    """Business rules for databases on top of DatabaseRepository. Raises ServiceError subclasses."""

    def __init__(self, repo: DatabaseRepository) -> None:
        self._repo = repo

    def get(self, database_id: int) -> DataDatabase:
        db = self._repo.get(database_id)
        if db is None:
            raise NotFoundError("Database not found")
        return db

    def list_databases(self) -> list[DataDatabase]:
        return self._repo.list_databases()

    def create(
        self,
        name: str,
        columns: list[SchemaColumn],
        identifier_keys: list[str],
        description: str | None = None,
        rows: list[dict[str, Any]] | None = None,
        source: str | None = None,
    ) -> DataDatabase:
        if not name or not name.strip():
            raise ValidationError("Name is required")
        problem = validate_schema(columns, identifier_keys)
        if problem:
            raise ValidationError(problem)

        clean_rows: list[dict[str, Any]] = []
        if rows:
            validation = validate_rows(rows, columns, identifier_keys)
            if validation.errors:
                raise ValidationError("; ".join(validation.errors[:5]))
            clean_rows = validation.valid_rows
        db = self._repo.create(
            name=name.strip(),
            description=description,
            columns=[c.model_dump() for c in ordered_columns(columns)],
            identifier_keys=identifier_keys,
            rows=clean_rows,
            source=source,
        )
        _log.info("database_created id=%s name=%s rows=%d", db.id, db.name, len(clean_rows))
        return db

    def update(self, database_id: int, name: str | None = None, description: str | None = None) -> DataDatabase:
        if name is not None and not name.strip():
            raise ValidationError("Name cannot be empty")
        db = self._repo.update_meta(database_id, name=name.strip() if name else None, description=description)
        if db is None:
            raise NotFoundError("Database not found")
        return db

    def update_schema(
        self,
        database_id: int,
        columns: list[SchemaColumn] | None = None,
        identifier_keys: list[str] | None = None,
    ) -> tuple[DataDatabase, list[str]]:
        """Apply a schema edit. Returns the updated database and any non-blocking warnings."""
        db = self.get(database_id)
        plan: SchemaUpdatePlan = plan_schema_update(
            current_columns=columns_of(db),
            current_identifier_keys=list(db.identifier_keys or []),
            current_version=db.schema_version,
            has_rows=db.row_count > 0,
            new_columns=columns,
            new_identifier_keys=identifier_keys,
        )
        updated = self._repo.update_schema(
            database_id,
            columns=[c.model_dump() for c in ordered_columns(plan.columns)],
            identifier_keys=plan.identifier_keys,
            version=plan.version,
        )
        if updated is None:
            raise NotFoundError("Database not found")
        return updated, plan.warnings

    def delete(self, database_id: int) -> None:
        if not self._repo.delete(database_id):
            raise NotFoundError("Database not found")

    def preview_import(self, database_id: int, rows: list[dict[str, Any]]) -> ImportPreview:
        db = self.get(database_id)
        return build_import_preview(
            rows,
            columns_of(db),
            list(db.identifier_keys or []),
            list(db.rows or []),
            schema_version=db.schema_version,
        )

    def import_rows(
        self, database_id: int, rows: list[dict[str, Any]], update_existing: bool = False
    ) -> ImportOutcome:
        """Validate, reconcile and store an import batch under a row lock."""
        if not rows:
            raise ValidationError("No rows provided")
        outcome = ImportOutcome()

        def mutate(db: DataDatabase) -> list[dict[str, Any]] | None:
            nonlocal outcome
            outcome = apply_import(
                rows,
                columns_of(db),
                list(db.identifier_keys or []),
                list(db.rows or []),
                update_existing=update_existing,
            )
            return outcome.rows

        if self._repo.update_rows(database_id, mutate, imported=True) is None:
            raise NotFoundError("Database not found")
        if outcome.rows is None and outcome.errors:
            raise ValidationError(outcome.errors[0] if len(outcome.errors) == 1 else "; ".join(outcome.errors[:5]))
        _log.info(
            "database_import id=%s added=%d updated=%d duplicates=%d",
            database_id,
            outcome.added,
            outcome.updated,
            outcome.duplicates,
        )
        return outcome

    def delete_rows(self, database_id: int, keys: list[list[Any]]) -> int:
        """Delete rows by identifier values (one list of values per row). Returns the deleted count."""
        if not keys:
            raise ValidationError("No row keys provided")
        deleted = 0

        def mutate(db: DataDatabase) -> list[dict[str, Any]] | None:
            nonlocal deleted
            try:
                remaining, deleted = delete_rows_by_keys(list(db.rows or []), list(db.identifier_keys or []), keys)
            except ValueError as e:
                raise ValidationError(str(e)) from e
            return remaining if deleted else None

        if self._repo.update_rows(database_id, mutate) is None:
            raise NotFoundError("Database not found")
        return deleted

    def parse_upload(self, database_id: int, data: bytes, filename: str | None, content_type: str | None = None) -> list[dict[str, Any]]:
        """Read an uploaded CSV/XLSX file into rows keyed by column key."""
        db = self.get(database_id)
        try:
            headers, raw_rows = read_table(data, filename, content_type)
        except TabularFormatError as e:
            raise ValidationError(str(e)) from e
        rows, unmatched = map_headers_to_keys(headers, raw_rows, columns_of(db))
        if unmatched:
            _log.info("database_upload_unmatched_headers id=%s headers=%s", database_id, unmatched)
        if headers and len(unmatched) == len([h for h in headers if h]):
            raise ValidationError("None of the file's columns match the database schema")
        return rows

    def export(self, database_id: int, fmt: str = "csv") -> ExportFile:
        db = self.get(database_id)
        columns = ordered_columns(columns_of(db))
        headers = [c.label for c in columns]
        matrix = [[row.get(c.key) for c in columns] for row in (db.rows or [])]
        return self._file(db.name, headers, matrix, fmt)

    def template(self, database_id: int, fmt: str = "csv") -> ExportFile:
        """Headers-only file for filling in an import."""
        db = self.get(database_id)
        headers = [c.label for c in ordered_columns(columns_of(db))]
        return self._file(f"{db.name} template", headers, [], fmt)

    def _file(self, name: str, headers: list[str], matrix: list[list[Any]], fmt: str) -> ExportFile:
        base = _safe_filename(name)
        if fmt == "csv":
            return ExportFile(f"{base}.csv", CSV_CONTENT_TYPE, write_csv(headers, matrix))
        if fmt == "xlsx":
            return ExportFile(f"{base}.xlsx", XLSX_CONTENT_TYPE, write_xlsx(headers, matrix, sheet_title=name))
        raise ValidationError(f"Unsupported export format: {fmt}")
