"""Report evaluation: period filtering, formula columns, aggregate rows (no DB)."""

import pytest

from closeboard.reports.engine import (
    ReportColumn,
    ReportFormulaRow,
    evaluate_data_rows,
    evaluate_formula_rows,
    filter_rows_by_period,
)

pytestmark = [pytest.mark.fast]

ROWS = [
    {"date": "2026-01-05", "revenue": "$100", "cost": "40"},
    {"date": "2026-01-20", "revenue": "200", "cost": "(10)"},
    {"date": "2025-12-31", "revenue": "50", "cost": "5"},
    {"date": "sometime", "revenue": "1", "cost": "1"},
]

COLUMNS = [
    ReportColumn(key="rev", label="Revenue", source_column_key="revenue", data_type="currency"),
    ReportColumn(key="cost", label="Cost", source_column_key="cost", data_type="currency", order=1),
    ReportColumn(key="margin", label="Margin", type="formula", expression="revenue - cost", order=2),
]


def test_filter_rows_by_period_counts_unreadable_dates():
    result = filter_rows_by_period(ROWS, "date", "2026-01", "monthly")
    assert [r["date"] for r in result.rows] == ["2026-01-05", "2026-01-20"]
    assert result.parse_failures == 1


def test_evaluate_data_rows_copies_sources_and_evaluates_formulas():
    out = evaluate_data_rows(COLUMNS, ROWS[:2])
    assert out[0] == {"rev": "$100", "cost": "40", "margin": 60.0}
    assert out[1]["margin"] == 210.0


def test_evaluate_data_rows_formula_with_missing_value_is_none():
    out = evaluate_data_rows(COLUMNS, [{"revenue": "n/a", "cost": "3"}])
    assert out[0]["margin"] is None


def test_evaluate_formula_rows_bare_simple_and_contextual():
    formula_rows = [
        ReportFormulaRow(
            key="totals",
            label="Totals",
            column_formulas={"rev": "SUM", "cost": "AVERAGE", "margin": "SUM(revenue)"},
        ),
        ReportFormulaRow(
            key="compare",
            label="Prior",
            column_formulas={"rev": "SUM(compare.revenue)", "cost": "MEDIAN"},
            order=1,
        ),
    ]
    current = ROWS[:2]
    compare = ROWS[2:3]
    totals, prior = evaluate_formula_rows(formula_rows, COLUMNS, current, compare)
    assert totals.values == {"rev": 300.0, "cost": 15.0, "margin": 300.0}
    assert prior.values == {"rev": 50.0, "cost": None}

    _, without_compare = evaluate_formula_rows(formula_rows, COLUMNS, current, None)
    assert without_compare.values["rev"] is None
