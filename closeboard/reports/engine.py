"""Report definitions and preview evaluation over a database's rows."""

import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field

from closeboard.core.errors import NotFoundError, ValidationError
from closeboard.core.expressions import (
    compute_aggregate,
    evaluate_expression,
    extract_column_values,
    parse_aggregate_expression,
    parse_numeric_value,
    parse_simple_aggregate_expression,
)
from closeboard.core.periods import (
    REPORT_CADENCES,
    get_periods_from_rows,
    is_valid_period_key,
    label_for_period_key,
    period_key_from_value,
    resolve_compare_period,
)
from closeboard.databases.service import columns_of
from closeboard.models.entities import ReportDefinition
from closeboard.repository.database_repo import DatabaseRepository
from closeboard.repository.report_repo import ReportRepository

_log = logging.getLogger(__name__)

PREVIEW_ROW_LIMIT = 100
COMPARE_MODES = ("none", "mom", "yoy")
_BARE_AGGREGATES = {"SUM": "SUM", "AVG": "AVG", "AVERAGE": "AVG", "COUNT": "COUNT", "MIN": "MIN", "MAX": "MAX"}

Row = dict[str, Any]


class ReportColumn(BaseModel):
    model_config = {"extra": "ignore"}

    key: str
    label: str
    type: Literal["source", "formula"] = "source"
    source_column_key: str | None = None
    expression: str | None = None
    data_type: str = "text"
    order: int = 0


class ReportFormulaRow(BaseModel):
    model_config = {"extra": "ignore"}

    key: str
    label: str
    column_formulas: dict[str, str] = Field(default_factory=dict)
    order: int = 0


class PeriodInfo(BaseModel):
    period_key: str
    label: str
    row_count: int


class TableColumn(BaseModel):
    key: str
    label: str
    data_type: str
    type: str


class FormulaRowOutput(BaseModel):
    key: str
    label: str
    values: dict[str, Any]


class PreviewDiagnostics(BaseModel):
    total_database_rows: int
    parse_failures: int = 0
    warnings: list[str] = Field(default_factory=list)


class ReportPreview(BaseModel):
    current: PeriodInfo | None = None
    compare: PeriodInfo | None = None
    available_periods: list[dict[str, str]] = Field(default_factory=list)
    columns: list[TableColumn] = Field(default_factory=list)
    rows: list[Row] = Field(default_factory=list)
    formula_rows: list[FormulaRowOutput] = Field(default_factory=list)
    diagnostics: PreviewDiagnostics


@dataclass
class _PeriodFilter:
    rows: list[Row] = field(default_factory=list)
    parse_failures: int = 0


def filter_rows_by_period(rows: list[Row], date_column_key: str, period_key: str, cadence: str) -> _PeriodFilter:
    """Rows whose date falls in period_key; rows with an unreadable date are counted, not kept."""
    result = _PeriodFilter()
    for row in rows:
        key = period_key_from_value(row.get(date_column_key), cadence)
        if key is None:
            result.parse_failures += 1
        elif key == period_key:
            result.rows.append(row)
    return result


def evaluate_data_rows(columns: list[ReportColumn], rows: list[Row]) -> list[Row]:
    """One output row per source row: source columns copied, formula columns evaluated."""
    sources = [c for c in columns if c.type == "source" and c.source_column_key]
    out: list[Row] = []
    for source_row in rows:
        context: dict[str, float] = {}
        for column in sources:
            number = parse_numeric_value(source_row.get(column.source_column_key))
            if number is not None:
                context[column.source_column_key] = number
        row: Row = {}
        for column in columns:
            if column.type == "source" and column.source_column_key:
                row[column.key] = source_row.get(column.source_column_key)
            elif column.type == "formula" and column.expression:
                row[column.key] = evaluate_expression(column.expression, context)
        out.append(row)
    return out


def evaluate_formula_rows(
    formula_rows: list[ReportFormulaRow],
    columns: list[ReportColumn],
    current_rows: list[Row],
    compare_rows: list[Row] | None,
) -> list[FormulaRowOutput]:
    """
    Aggregate rows under the table. Each cell formula is one of:
    a bare function ("SUM", "AVERAGE", ...) applied to that column's source values,
    "SUM(col)" over the current period, or "SUM(current.col)" / "SUM(compare.col)".
    Unknown formulas, and compare formulas without a compare period, yield None.
    """
    by_key = {c.key: c for c in columns}
    outputs: list[FormulaRowOutput] = []
    for formula_row in sorted(formula_rows, key=lambda r: r.order):
        values: dict[str, Any] = {}
        for column_key, formula in formula_row.column_formulas.items():
            column = by_key.get(column_key)
            source_key = column.source_column_key if column is not None and column.type == "source" else column_key
            if not source_key:
                values[column_key] = None
                continue
            call = parse_aggregate_expression(formula)
            if call is not None:
                rows = compare_rows if call.context == "compare" else current_rows
                values[column_key] = (
                    compute_aggregate(call.fn, extract_column_values(rows, call.column)) if rows is not None else None
                )
                continue
            bare = _BARE_AGGREGATES.get(formula.strip().upper())
            if bare is not None:
                values[column_key] = compute_aggregate(bare, extract_column_values(current_rows, source_key))
                continue
            simple = parse_simple_aggregate_expression(formula)
            if simple is not None:
                fn, column_name = simple
                values[column_key] = compute_aggregate(fn, extract_column_values(current_rows, column_name))
                continue
            values[column_key] = None
        outputs.append(FormulaRowOutput(key=formula_row.key, label=formula_row.label, values=values))
    return outputs


class ReportService:
    """CRUD for report definitions plus period-filtered preview."""

    def __init__(self, reports: ReportRepository, databases: DatabaseRepository) -> None:
        self._reports = reports
        self._databases = databases

    def get(self, report_id: int) -> ReportDefinition:
        report = self._reports.get(report_id)
        if report is None:
            raise NotFoundError("Report definition not found")
        return report

    def list_reports(self, database_id: int | None = None) -> list[ReportDefinition]:
        return self._reports.list_reports(database_id=database_id)

    def _validate(
        self,
        database_id: int,
        cadence: str,
        date_column_key: str,
        compare_mode: str,
        columns: list[ReportColumn],
        formula_rows: list[ReportFormulaRow],
    ) -> None:
        db = self._databases.get(database_id)
        if db is None:
            raise NotFoundError("Database not found")
        schema_keys = {c.key for c in columns_of(db)}
        if date_column_key not in schema_keys:
            raise ValidationError(f'Date column "{date_column_key}" not found in database schema')
        if cadence not in REPORT_CADENCES:
            raise ValidationError(f'Invalid cadence "{cadence}". Must be one of: {", ".join(REPORT_CADENCES)}')
        if compare_mode not in COMPARE_MODES:
            raise ValidationError(f'Invalid compare mode "{compare_mode}". Must be one of: {", ".join(COMPARE_MODES)}')
        keys = [c.key for c in columns]
        if len(keys) != len(set(keys)):
            raise ValidationError("Report column keys must be unique")
        for column in columns:
            if column.type == "source":
                if not column.source_column_key or column.source_column_key not in schema_keys:
                    raise ValidationError(f'Source column "{column.source_column_key}" not found in database schema')
            elif not (column.expression or "").strip():
                raise ValidationError(f'Formula column "{column.label}" needs an expression')
        for formula_row in formula_rows:
            unknown = set(formula_row.column_formulas) - set(keys)
            if unknown:
                raise ValidationError(f'Formula row "{formula_row.label}" refers to unknown columns: {", ".join(sorted(unknown))}')

    def create(
        self,
        name: str,
        database_id: int,
        date_column_key: str,
        cadence: str = "monthly",
        compare_mode: str = "none",
        description: str | None = None,
        columns: list[ReportColumn] | None = None,
        formula_rows: list[ReportFormulaRow] | None = None,
    ) -> ReportDefinition:
        if not name or not name.strip():
            raise ValidationError("Name is required")
        columns = columns or []
        formula_rows = formula_rows or []
        self._validate(database_id, cadence, date_column_key, compare_mode, columns, formula_rows)
        report = self._reports.create(
            name=name.strip(),
            database_id=database_id,
            date_column_key=date_column_key,
            cadence=cadence,
            compare_mode=compare_mode,
            description=description,
            columns=[c.model_dump() for c in columns],
            formula_rows=[r.model_dump() for r in formula_rows],
        )
        _log.info("report_created id=%s database_id=%s", report.id, database_id)
        return report

    def update(self, report_id: int, **fields: Any) -> ReportDefinition:
        existing = self.get(report_id)
        if "name" in fields and not (fields["name"] or "").strip():
            raise ValidationError("Name cannot be empty")
        columns = fields.get("columns")
        formula_rows = fields.get("formula_rows")
        columns = [ReportColumn.model_validate(c) for c in (columns if columns is not None else existing.columns)]
        formula_rows = [
            ReportFormulaRow.model_validate(r) for r in (formula_rows if formula_rows is not None else existing.formula_rows)
        ]
        self._validate(
            existing.database_id,
            fields.get("cadence", existing.cadence),
            fields.get("date_column_key", existing.date_column_key),
            fields.get("compare_mode", existing.compare_mode),
            columns,
            formula_rows,
        )
        if "columns" in fields:
            fields["columns"] = [c.model_dump() for c in columns]
        if "formula_rows" in fields:
            fields["formula_rows"] = [r.model_dump() for r in formula_rows]
        report = self._reports.update(report_id, **fields)
        if report is None:
            raise NotFoundError("Report definition not found")
        return report

    def delete(self, report_id: int) -> None:
        if not self._reports.delete(report_id):
            raise NotFoundError("Report definition not found")

    def periods(self, report_id: int) -> list[dict[str, str]]:
        """Periods present in the report's data, newest first."""
        report = self.get(report_id)
        db = self._databases.get(report.database_id)
        if db is None:
            raise NotFoundError("Database not found")
        return get_periods_from_rows(db.rows or [], report.date_column_key, report.cadence)

    def preview(
        self, report_id: int, period_key: str | None = None, compare_mode: str | None = None
    ) -> ReportPreview:
        """
        Evaluate a report. With period_key the rows are filtered to that period and, when a
        compare mode is set, the previous (mom) or same-last-year (yoy) period is resolved for
        compare formulas. Data rows are capped at PREVIEW_ROW_LIMIT; formula rows use every row.
        """
        report = self.get(report_id)
        db = self._databases.get(report.database_id)
        if db is None:
            raise NotFoundError("Database not found")
        cadence = report.cadence
        compare_mode = compare_mode or report.compare_mode or "none"
        if compare_mode not in COMPARE_MODES:
            raise ValidationError(f'Invalid compare mode "{compare_mode}"')
        all_rows: list[Row] = list(db.rows or [])
        diagnostics = PreviewDiagnostics(total_database_rows=len(all_rows))
        preview = ReportPreview(
            available_periods=get_periods_from_rows(all_rows, report.date_column_key, cadence),
            diagnostics=diagnostics,
        )

        current_rows = all_rows
        compare_rows: list[Row] | None = None
        if period_key:
            if not is_valid_period_key(period_key, cadence):
                raise ValidationError(f'Invalid period "{period_key}" for {cadence} cadence')
            current = filter_rows_by_period(all_rows, report.date_column_key, period_key, cadence)
            current_rows = current.rows
            diagnostics.parse_failures += current.parse_failures
            preview.current = PeriodInfo(
                period_key=period_key, label=label_for_period_key(period_key, cadence), row_count=len(current_rows)
            )
            compare_key = resolve_compare_period(period_key, cadence, compare_mode)
            if compare_key:
                compare = filter_rows_by_period(all_rows, report.date_column_key, compare_key, cadence)
                compare_rows = compare.rows
                preview.compare = PeriodInfo(
                    period_key=compare_key, label=label_for_period_key(compare_key, cadence), row_count=len(compare_rows)
                )
                if not compare_rows:
                    diagnostics.warnings.append(f"No rows found for comparison period {preview.compare.label}")
        if diagnostics.parse_failures:
            diagnostics.warnings.append(
                f"{diagnostics.parse_failures} row(s) have a date that could not be read"
            )

        columns = sorted((ReportColumn.model_validate(c) for c in report.columns or []), key=lambda c: c.order)
        if not columns:
            return preview
        preview.columns = [TableColumn(key=c.key, label=c.label, data_type=c.data_type, type=c.type) for c in columns]
        preview.rows = evaluate_data_rows(columns, current_rows[:PREVIEW_ROW_LIMIT])
        preview.formula_rows = evaluate_formula_rows(
            [ReportFormulaRow.model_validate(r) for r in report.formula_rows or []],
            columns,
            current_rows,
            compare_rows,
        )
        return preview
