"""Import reconciliation: validate an incoming batch and classify it against existing rows.

Rows are matched on their identifier columns. A matching row whose other columns are all equal
(after normalization) is an exact duplicate and skipped; a matching row with any difference is an
update candidate carrying a per-column diff; everything else is a new row.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from dateutil import parser as date_parser
from pydantic import BaseModel

from closeboard.core.expressions import parse_numeric_value
from closeboard.databases.schema import MAX_ROWS, SchemaColumn, ordered_columns
from closeboard.models.entities import ColumnDataType

_log = logging.getLogger(__name__)

KEY_SEPARATOR = "|||"
MAX_ERRORS_IN_WARNINGS = 5
_TRUE_VALUES = frozenset({"true", "yes", "y", "1"})
_FALSE_VALUES = frozenset({"false", "no", "n", "0"})

Row = dict[str, Any]


class ColumnChange(BaseModel):
    column_key: str
    column_label: str
    old_value: Any = None
    new_value: Any = None


class UpdateCandidate(BaseModel):
    identifier_values: dict[str, Any]
    changes: list[ColumnChange]
    new_row_data: Row
    existing_row_index: int


class ImportPreview(BaseModel):
    valid: bool
    errors: list[str]
    warnings: list[str]
    row_count: int
    valid_row_count: int
    invalid_row_count: int
    new_row_count: int
    exact_duplicate_count: int
    update_candidates: list[UpdateCandidate]
    existing_row_count: int
    total_after_import: int
    identifier_keys: list[str]
    columns: list[SchemaColumn]
    schema_version: int


@dataclass
class RowValidation:
    errors: list[str] = field(default_factory=list)
    valid_rows: list[Row] = field(default_factory=list)
    invalid_row_indices: list[int] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


@dataclass
class Reconciliation:
    new_rows: list[Row] = field(default_factory=list)
    exact_duplicates: list[Row] = field(default_factory=list)
    update_candidates: list[UpdateCandidate] = field(default_factory=list)


@dataclass
class ImportOutcome:
    added: int = 0
    updated: int = 0
    duplicates: int = 0
    errors: list[str] = field(default_factory=list)
    rows: list[Row] | None = None  # None when nothing should be written


def normalize_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def composite_key(row: Row, identifier_keys: list[str]) -> str:
    return KEY_SEPARATOR.join(normalize_value(row.get(k)) for k in identifier_keys)


def full_row_key(row: Row, columns: list[SchemaColumn]) -> str:
    return KEY_SEPARATOR.join(normalize_value(row.get(c.key)) for c in ordered_columns(columns))


def row_diff(existing: Row, incoming: Row, columns: list[SchemaColumn], identifier_keys: list[str]) -> list[ColumnChange]:
    """Changed non-identifier columns between an existing row and its incoming replacement."""
    changes = []
    for col in ordered_columns(columns):
        if col.key in identifier_keys:
            continue
        old, new = existing.get(col.key), incoming.get(col.key)
        if normalize_value(old) != normalize_value(new):
            changes.append(ColumnChange(column_key=col.key, column_label=col.label, old_value=old, new_value=new))
    return changes


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def coerce_value(column: SchemaColumn, value: Any) -> tuple[Any, str | None]:
    """
    Convert a raw cell into the stored representation for the column's data type.
    Returns (value, None) on success or (original value, problem) when it cannot be read.
    Blank cells become None.
    """
    if _is_blank(value):
        return None, None
    data_type = column.data_type
    if data_type in (ColumnDataType.number.value, ColumnDataType.currency.value):
        number = parse_numeric_value(value)
        if number is None:
            return value, f'"{column.label}" must be a number'
        return (int(number) if number.is_integer() else number), None
    if data_type == ColumnDataType.boolean.value:
        if isinstance(value, bool):
            return value, None
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True, None
        if text in _FALSE_VALUES:
            return False, None
        return value, f'"{column.label}" must be true or false'
    if data_type == ColumnDataType.date.value:
        if isinstance(value, datetime):
            return value.date().isoformat(), None
        if isinstance(value, date):
            return value.isoformat(), None
        try:
            return date_parser.parse(str(value).strip()).date().isoformat(), None
        except (ValueError, OverflowError):
            return value, f'"{column.label}" must be a date'
    if data_type == ColumnDataType.dropdown.value:
        text = str(value).strip()
        for option in column.dropdown_options or []:
            if option.strip().lower() == text.lower():
                return option, None
        return value, f'"{column.label}" must be one of: {", ".join(column.dropdown_options or [])}'
    if isinstance(value, str):
        return value.strip(), None
    return value, None


def validate_rows(rows: list[Row], columns: list[SchemaColumn], identifier_keys: list[str]) -> RowValidation:
    """
    Check an import batch row by row. Rows with any problem are skipped (partial import);
    valid rows come back coerced to the column data types and limited to schema keys.
    """
    result = RowValidation()
    if len(rows) > MAX_ROWS:
        result.errors.append(f"Cannot import more than {MAX_ROWS:,} rows")
        return result

    ordered = ordered_columns(columns)
    seen_full: set[str] = set()
    seen_ids: dict[str, int] = {}
    for index, raw in enumerate(rows):
        row_num = index + 1
        row_errors: list[str] = []
        clean: Row = {}
        for col in ordered:
            value, problem = coerce_value(col, raw.get(col.key))
            if problem:
                row_errors.append(f"Row {row_num}: {problem}")
            clean[col.key] = value
            if col.required and _is_blank(value):
                row_errors.append(f'Row {row_num}: Required field "{col.label}" is empty')

        full_key = full_row_key(clean, ordered)
        if full_key in seen_full:
            row_errors.append(f"Row {row_num}: Exact duplicate of another row in this file")
        else:
            id_key = composite_key(clean, identifier_keys)
            first = seen_ids.get(id_key)
            if first is not None:
                row_errors.append(
                    f"Row {row_num}: Same identifier values as row {first} in this file"
                )
        seen_full.add(full_key)

        if row_errors:
            result.errors.extend(row_errors)
            result.invalid_row_indices.append(index)
        else:
            seen_ids.setdefault(composite_key(clean, identifier_keys), row_num)
            result.valid_rows.append(clean)
    return result


def reconcile_rows(
    incoming: list[Row],
    existing: list[Row],
    columns: list[SchemaColumn],
    identifier_keys: list[str],
) -> Reconciliation:
    """Single pass over incoming rows, classified by identifier match against existing rows."""
    index_by_key: dict[str, int] = {}
    for i, row in enumerate(existing):
        index_by_key.setdefault(composite_key(row, identifier_keys), i)

    result = Reconciliation()
    for row in incoming:
        key = composite_key(row, identifier_keys)
        existing_index = index_by_key.get(key)
        if existing_index is None:
            result.new_rows.append(row)
            continue
        changes = row_diff(existing[existing_index], row, columns, identifier_keys)
        if not changes:
            result.exact_duplicates.append(row)
            continue
        result.update_candidates.append(
            UpdateCandidate(
                identifier_values={k: row.get(k) for k in identifier_keys},
                changes=changes,
                new_row_data=row,
                existing_row_index=existing_index,
            )
        )
    return result


def build_import_preview(
    rows: list[Row],
    columns: list[SchemaColumn],
    identifier_keys: list[str],
    existing: list[Row],
    schema_version: int = 1,
) -> ImportPreview:
    """
    Dry run of an import. Validation problems are warnings (those rows are skipped); only
    exceeding the row limit blocks the import.
    """
    validation = validate_rows(rows, columns, identifier_keys)
    rec = reconcile_rows(validation.valid_rows, existing, columns, identifier_keys)

    warnings: list[str] = []
    if validation.errors and validation.invalid_row_indices:
        warnings.append(f"{len(validation.invalid_row_indices)} row(s) have errors and will be skipped:")
        for err in validation.errors[:MAX_ERRORS_IN_WARNINGS]:
            warnings.append(f"  • {err}")
        if len(validation.errors) > MAX_ERRORS_IN_WARNINGS:
            warnings.append(f"  • ...and {len(validation.errors) - MAX_ERRORS_IN_WARNINGS} more")
    if rec.exact_duplicates:
        warnings.append(f"{len(rec.exact_duplicates)} identical row(s) will be skipped (already exist)")

    errors: list[str] = []
    if len(rows) > MAX_ROWS:
        errors.extend(validation.errors)
    total_after = len(existing) + len(rec.new_rows)
    if total_after > MAX_ROWS:
        errors.append(
            f"Adding {len(rec.new_rows)} rows would exceed the {MAX_ROWS:,} row limit (current: {len(existing)})"
        )

    has_content = bool(rec.new_rows or rec.update_candidates)
    return ImportPreview(
        valid=not errors and has_content,
        errors=errors,
        warnings=warnings,
        row_count=len(rows),
        valid_row_count=len(validation.valid_rows),
        invalid_row_count=len(validation.invalid_row_indices),
        new_row_count=len(rec.new_rows),
        exact_duplicate_count=len(rec.exact_duplicates),
        update_candidates=rec.update_candidates,
        existing_row_count=len(existing),
        total_after_import=total_after,
        identifier_keys=identifier_keys,
        columns=ordered_columns(columns),
        schema_version=schema_version,
    )


def apply_import(
    rows: list[Row],
    columns: list[SchemaColumn],
    identifier_keys: list[str],
    existing: list[Row],
    update_existing: bool = False,
) -> ImportOutcome:
    """Compute the rows to store after importing `rows`; outcome.rows is None when nothing changes."""
    validation = validate_rows(rows, columns, identifier_keys)
    if not validation.valid_rows:
        return ImportOutcome(errors=validation.errors or ["No rows to import"])

    rec = reconcile_rows(validation.valid_rows, existing, columns, identifier_keys)
    if len(existing) + len(rec.new_rows) > MAX_ROWS:
        return ImportOutcome(
            duplicates=len(rec.exact_duplicates),
            errors=[
                f"Cannot add {len(rec.new_rows)} rows. "
                f"Database has {len(existing)} rows and limit is {MAX_ROWS:,}."
            ],
        )

    final_rows = list(existing)
    updated = 0
    if update_existing:
        for candidate in rec.update_candidates:
            final_rows[candidate.existing_row_index] = candidate.new_row_data
            updated += 1
    final_rows.extend(rec.new_rows)

    if not rec.new_rows and not updated:
        return ImportOutcome(
            duplicates=len(rec.exact_duplicates),
            errors=[] if rec.exact_duplicates else ["No new rows to import"],
        )
    _log.info(
        "import_applied added=%d updated=%d duplicates=%d skipped=%d",
        len(rec.new_rows),
        updated,
        len(rec.exact_duplicates),
        len(validation.invalid_row_indices),
    )
    return ImportOutcome(
        added=len(rec.new_rows),
        updated=updated,
        duplicates=len(rec.exact_duplicates),
        errors=validation.errors,
        rows=final_rows,
    )


def delete_rows_by_keys(existing: list[Row], identifier_keys: list[str], keys: list[list[Any]]) -> tuple[list[Row], int]:
    """Drop rows whose identifier values match any of `keys`; returns (remaining rows, deleted count)."""
    targets = set()
    for values in keys:
        if len(values) != len(identifier_keys):
            raise ValueError(f"Invalid key: expected {len(identifier_keys)} values, got {len(values)}")
        targets.add(KEY_SEPARATOR.join(normalize_value(v) for v in values))
    remaining = [row for row in existing if composite_key(row, identifier_keys) not in targets]
    return remaining, len(existing) - len(remaining)


def map_headers_to_keys(headers: list[str], rows: list[Row], columns: list[SchemaColumn]) -> tuple[list[Row], list[str]]:
    """
    Re-key spreadsheet rows from header text to column keys. Headers match a column label or key
    case-insensitively; unmatched headers are returned so the caller can report them.
    """
    lookup: dict[str, str] = {}
    for col in columns:
        lookup[col.label.strip().lower()] = col.key
        lookup[col.key.strip().lower()] = col.key
    mapping = {h: lookup.get(h.strip().lower()) for h in headers}
    unmatched = [h for h, key in mapping.items() if key is None and h]
    keyed = [
        {mapping[h]: value for h, value in row.items() if mapping.get(h) is not None}
        for row in rows
    ]
    return keyed, unmatched
