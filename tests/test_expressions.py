"""Safe formula evaluation, numeric cell parsing and aggregates."""

import pytest

from closeboard.core.expressions import (
    AggregateCall,
    compute_aggregate,
    evaluate_expression,
    extract_column_values,
    parse_aggregate_expression,
    parse_numeric_value,
    parse_simple_aggregate_expression,
)

pytestmark = [pytest.mark.fast]


def test_evaluate_arithmetic_with_variables():
    assert evaluate_expression("(revenue - cost) / revenue * 100", {"revenue": 200, "cost": 50}) == 75.0
    assert evaluate_expression("-a + 2", {"a": 1}) == 1.0
    assert evaluate_expression("1 / 3", {}) == 0.333333


@pytest.mark.parametrize(
    "expression",
    [
        "",
        "   ",
        "a / 0",
        "unknown + 1",
        "__import__('os').system('true')",
        "a.real",
        "a ** 2",
        "a > 1",
        "1 +",
    ],
)
def test_evaluate_rejects_unsafe_or_invalid(expression):
    assert evaluate_expression(expression, {"a": 1}) is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        (12, 12.0),
        ("$1,234.50", 1234.5),
        ("€ 12", 12.0),
        ("(500.00)", -500.0),
        ("abc", None),
        ("", None),
        (True, None),
        (None, None),
        (float("inf"), None),
    ],
)
def test_parse_numeric_value(raw, expected):
    assert parse_numeric_value(raw) == expected


def test_compute_aggregate():
    values = [1.005, 2.0, 3.0]
    assert compute_aggregate("SUM", values) == round(6.005, 2)
    assert compute_aggregate("AVG", [1.0, 2.0]) == 1.5
    assert compute_aggregate("COUNT", values) == 3
    assert compute_aggregate("MIN", values) == 1.005
    assert compute_aggregate("MAX", values) == 3.0
    assert compute_aggregate("SUM", []) is None


def test_extract_column_values_skips_non_numeric():
    rows = [{"amt": "$10"}, {"amt": "n/a"}, {"other": 1}, {"amt": 5}]
    assert extract_column_values(rows, "amt") == [10.0, 5.0]


def test_parse_aggregate_expressions():
    assert parse_aggregate_expression("sum( Current.Revenue )") == AggregateCall("SUM", "current", "revenue")
    assert parse_aggregate_expression("SUM(revenue)") is None
    assert parse_simple_aggregate_expression("avg(Cost)") == ("AVG", "cost")
    assert parse_simple_aggregate_expression("revenue + 1") is None
