"""Safe arithmetic for report formulas, numeric cell parsing, and column aggregates.

Formulas are parsed with the `ast` module and only a whitelist of node types is evaluated:
numbers, column identifiers, + - * /, unary +/- and parentheses. Anything else (calls,
attributes, subscripts, comparisons) makes the whole formula evaluate to None.
"""

import ast
import math
import operator
import re
from typing import Any, Iterable, Literal, Mapping, NamedTuple

AggregateFunction = Literal["SUM", "AVG", "COUNT", "MIN", "MAX"]
AGGREGATE_FUNCTIONS: tuple[str, ...] = ("SUM", "AVG", "COUNT", "MIN", "MAX")

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}
_UNARY_OPS = {ast.UAdd: operator.pos, ast.USub: operator.neg}

_CONTEXT_AGGREGATE = re.compile(
    r"^(SUM|AVG|COUNT|MIN|MAX)\s*\(\s*(CURRENT|COMPARE)\s*\.\s*([A-Za-z0-9_]+)\s*\)$",
    re.IGNORECASE,
)
_SIMPLE_AGGREGATE = re.compile(r"^(SUM|AVG|COUNT|MIN|MAX)\s*\(\s*([A-Za-z0-9_]+)\s*\)$", re.IGNORECASE)
_CURRENCY_CHARS = re.compile(r"[$£€¥,\s]")


class AggregateCall(NamedTuple):
    fn: str
    context: Literal["current", "compare"]
    column: str


class _UnsafeExpression(Exception):
    pass


def _eval_node(node: ast.AST, context: Mapping[str, float]) -> float:
    if isinstance(node, ast.Expression):
        return _eval_node(node.body, context)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return float(node.value)
    if isinstance(node, ast.Name):
        if node.id not in context:
            raise _UnsafeExpression(f"Unknown variable: {node.id}")
        return float(context[node.id])
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left = _eval_node(node.left, context)
        right = _eval_node(node.right, context)
        return _BINARY_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand, context))
    raise _UnsafeExpression(f"Unsupported syntax: {type(node).__name__}")


def evaluate_expression(expression: str | None, context: Mapping[str, float]) -> float | None:
    """
    Evaluate `expression` with identifiers bound from `context`.

    Returns None for empty or malformed input, unknown identifiers, disallowed syntax,
    division by zero, or a non-finite result. Results are rounded to 6 decimal places.
    """
    if not expression or not expression.strip():
        return None
    try:
        tree = ast.parse(expression.strip(), mode="eval")
        result = _eval_node(tree, context)
    except (SyntaxError, _UnsafeExpression, ZeroDivisionError, OverflowError, ValueError, RecursionError):
        return None
    if not math.isfinite(result):
        return None
    return round(result, 6)


def parse_numeric_value(value: Any) -> float | None:
    """
    Read a cell as a number. Accepts ints/floats and strings such as "$1,234.50",
    "€ 12" or accounting negatives "(500.00)". Booleans and blanks are not numbers.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if not isinstance(value, str):
        return None
    text = value.strip()
    negative = len(text) >= 2 and text.startswith("(") and text.endswith(")")
    if negative:
        text = text[1:-1]
    cleaned = _CURRENCY_CHARS.sub("", text)
    if not cleaned:
        return None
    try:
        number = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return -number if negative else number


def compute_aggregate(fn: str, values: list[float]) -> float | None:
    """SUM and AVG are rounded to cents; None for an empty column."""
    if not values:
        return None
    if fn == "SUM":
        return round(sum(values), 2)
    if fn == "AVG":
        return round(sum(values) / len(values), 2)
    if fn == "COUNT":
        return len(values)
    if fn == "MIN":
        return min(values)
    if fn == "MAX":
        return max(values)
    return None


def extract_column_values(rows: Iterable[Mapping[str, Any]], column_key: str) -> list[float]:
    values = []
    for row in rows:
        number = parse_numeric_value(row.get(column_key))
        if number is not None:
            values.append(number)
    return values


def parse_aggregate_expression(expression: str) -> AggregateCall | None:
    """'SUM(current.revenue)' -> AggregateCall('SUM', 'current', 'revenue')."""
    m = _CONTEXT_AGGREGATE.match(expression.strip())
    if not m:
        return None
    return AggregateCall(m.group(1).upper(), m.group(2).lower(), m.group(3).lower())  # type: ignore[arg-type]


def parse_simple_aggregate_expression(expression: str) -> tuple[str, str] | None:
    """'SUM(revenue)' -> ('SUM', 'revenue'); the current period is implied."""
    m = _SIMPLE_AGGREGATE.match(expression.strip())
    if not m:
        return None
    return m.group(1).upper(), m.group(2).lower()
