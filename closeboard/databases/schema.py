"""Database schema rules: column validation, identifier columns, and guarded schema edits."""

from dataclasses import dataclass, field
from typing import Any, Iterable

from pydantic import BaseModel

from closeboard.core.errors import ValidationError
from closeboard.models.entities import ColumnDataType

MAX_ROWS = 10_000
MAX_COLUMNS = 100
VALID_DATA_TYPES = frozenset(t.value for t in ColumnDataType)


class SchemaColumn(BaseModel):
    """One column of a database schema. `key` addresses row values; `label` is what users see."""

    model_config = {"extra": "ignore"}

    key: str
    label: str = ""
    data_type: str = ColumnDataType.text.value
    required: bool = False
    order: int = 0
    dropdown_options: list[str] | None = None


def coerce_columns(columns: Iterable[SchemaColumn | dict[str, Any]]) -> list[SchemaColumn]:
    return [c if isinstance(c, SchemaColumn) else SchemaColumn.model_validate(c) for c in columns]


def ordered_columns(columns: Iterable[SchemaColumn]) -> list[SchemaColumn]:
    return sorted(columns, key=lambda c: c.order)


def validate_schema(columns: list[SchemaColumn], identifier_keys: list[str]) -> str | None:
    """Return the first problem with a schema and its identifier keys, or None when valid."""
    if not columns:
        return "Schema must have at least one column"
    if len(columns) > MAX_COLUMNS:
        return f"Schema cannot have more than {MAX_COLUMNS} columns"

    keys: set[str] = set()
    labels: set[str] = set()
    for col in columns:
        if not col.key or not col.key.strip():
            return "Every column must have a key"
        if col.key in keys:
            return f"Duplicate column key: {col.key}"
        keys.add(col.key)

        if not col.label or not col.label.strip():
            return f'Column with key "{col.key}" must have a label'
        label = col.label.strip().lower()
        if label in labels:
            return f'Duplicate column label: "{col.label.strip()}"'
        labels.add(label)

        if col.key.startswith("_"):
            return f'Column key "{col.key}" cannot start with underscore (reserved for system use)'
        if col.data_type not in VALID_DATA_TYPES:
            return f'Invalid data type "{col.data_type}" for column "{col.label}"'
        if col.data_type == ColumnDataType.dropdown.value:
            options = [o for o in (col.dropdown_options or []) if o and o.strip()]
            if not options:
                return f'Dropdown column "{col.label}" must have at least one option'

    if not identifier_keys:
        return "At least one identifier column must be specified"
    by_key = {c.key: c for c in columns}
    for key in identifier_keys:
        col = by_key.get(key)
        if col is None:
            return f'Identifier column "{key}" not found in schema'
        if not col.required:
            return f'Identifier column "{col.label}" must be marked as required'
    return None


@dataclass
class SchemaUpdatePlan:
    columns: list[SchemaColumn]
    identifier_keys: list[str]
    version: int
    warnings: list[str] = field(default_factory=list)


def plan_schema_update(
    current_columns: list[SchemaColumn],
    current_identifier_keys: list[str],
    current_version: int,
    has_rows: bool,
    new_columns: list[SchemaColumn] | None = None,
    new_identifier_keys: list[str] | None = None,
) -> SchemaUpdatePlan:
    """
    Check a schema edit against existing data and return the schema to store.

    Once rows exist, identifier keys are frozen and columns may not be removed; identifier
    columns may never be removed. Type changes and optional-to-required changes on a populated
    database are allowed but reported as warnings. Raises ValidationError with the blocking code.
    """
    if new_identifier_keys is not None and has_rows and set(new_identifier_keys) != set(current_identifier_keys):
        raise ValidationError(
            "Cannot change identifier columns after data has been imported. Delete all data first.",
            code="IDENTIFIER_LOCKED",
        )

    if new_columns is not None and has_rows:
        new_keys = {c.key for c in new_columns}
        removed = [c.label for c in current_columns if c.key not in new_keys]
        if removed:
            raise ValidationError(
                f"Cannot remove columns when data exists. Columns that would be removed: {', '.join(removed)}",
                code="COLUMNS_LOCKED",
            )

    identifier_keys = new_identifier_keys if new_identifier_keys is not None else list(current_identifier_keys)
    if new_columns is not None:
        present = {c.key for c in new_columns}
        missing = [k for k in identifier_keys if k not in present]
        if missing:
            raise ValidationError(
                f"Cannot remove identifier columns from schema: {', '.join(missing)}",
                code="IDENTIFIER_REQUIRED",
            )

    columns = new_columns if new_columns is not None else list(current_columns)
    problem = validate_schema(columns, identifier_keys)
    if problem:
        raise ValidationError(problem, code="VALIDATION_ERROR")

    warnings: list[str] = []
    if new_columns is not None and has_rows:
        old_by_key = {c.key: c for c in current_columns}
        for col in new_columns:
            old = old_by_key.get(col.key)
            if old is None:
                continue
            if old.data_type != col.data_type:
                warnings.append(
                    f'Changing data type of "{col.label}" from {old.data_type} to {col.data_type}. '
                    "Existing data will not be converted."
                )
            if not old.required and col.required:
                warnings.append(
                    f'Marking "{col.label}" as required. '
                    "Existing rows with empty values may fail validation on re-import."
                )

    return SchemaUpdatePlan(
        columns=columns,
        identifier_keys=identifier_keys,
        version=current_version + 1,
        warnings=warnings,
    )
