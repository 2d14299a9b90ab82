"""Database schema validation, guarded schema edits and import reconciliation (no DB)."""

import pytest

from closeboard.core.errors import ValidationError
from closeboard.databases.reconcile import (
    apply_import,
    build_import_preview,
    coerce_value,
    delete_rows_by_keys,
    map_headers_to_keys,
    reconcile_rows,
    validate_rows,
)
from closeboard.databases.schema import MAX_ROWS, SchemaColumn, coerce_columns, plan_schema_update, validate_schema

pytestmark = [pytest.mark.fast]

COLUMNS = coerce_columns(
    [
        {"key": "vendor", "label": "Vendor", "data_type": "text", "required": True, "order": 0},
        {"key": "invoice", "label": "Invoice #", "data_type": "text", "required": True, "order": 1},
        {"key": "amount", "label": "Amount", "data_type": "currency", "order": 2},
        {"key": "paid", "label": "Paid", "data_type": "boolean", "order": 3},
    ]
)
IDS = ["vendor", "invoice"]


def _row(vendor="Acme", invoice="100", amount="$10.00", paid="no"):
    return {"vendor": vendor, "invoice": invoice, "amount": amount, "paid": paid}


def test_validate_schema_accepts_valid_schema():
    assert validate_schema(COLUMNS, IDS) is None


@pytest.mark.parametrize(
    "columns, ids, message",
    [
        ([], ["a"], "Schema must have at least one column"),
        ([SchemaColumn(key="a", label="A"), SchemaColumn(key="a", label="B")], ["a"], "Duplicate column key: a"),
        ([SchemaColumn(key="a", label="A"), SchemaColumn(key="b", label=" a ")], ["a"], 'Duplicate column label: "a"'),
        ([SchemaColumn(key="_a", label="A", required=True)], ["_a"], "cannot start with underscore"),
        ([SchemaColumn(key="a", label="A", data_type="color")], ["a"], 'Invalid data type "color"'),
        ([SchemaColumn(key="a", label="A", data_type="dropdown", dropdown_options=[" "])], ["a"], "at least one option"),
        ([SchemaColumn(key="a", label="A", required=True)], [], "At least one identifier"),
        ([SchemaColumn(key="a", label="A", required=True)], ["b"], 'Identifier column "b" not found'),
        ([SchemaColumn(key="a", label="A")], ["a"], "must be marked as required"),
    ],
)
def test_validate_schema_problems(columns, ids, message):
    problem = validate_schema(columns, ids)
    assert problem is not None
    assert message in problem


def test_plan_schema_update_locks_identifiers_once_rows_exist():
    with pytest.raises(ValidationError) as exc:
        plan_schema_update(COLUMNS, IDS, 1, has_rows=True, new_identifier_keys=["vendor"])
    assert exc.value.code == "IDENTIFIER_LOCKED"


def test_plan_schema_update_blocks_column_removal_with_rows():
    with pytest.raises(ValidationError) as exc:
        plan_schema_update(COLUMNS, IDS, 1, has_rows=True, new_columns=COLUMNS[:3])
    assert exc.value.code == "COLUMNS_LOCKED"
    assert "Paid" in exc.value.message


def test_plan_schema_update_never_drops_identifier_columns():
    with pytest.raises(ValidationError) as exc:
        plan_schema_update(COLUMNS, IDS, 1, has_rows=False, new_columns=[COLUMNS[0], COLUMNS[2]])
    assert exc.value.code == "IDENTIFIER_REQUIRED"


def test_plan_schema_update_warns_on_type_and_required_changes():
    changed = [c.model_copy() for c in COLUMNS]
    changed[2] = changed[2].model_copy(update={"data_type": "text", "required": True})
    extra = SchemaColumn(key="memo", label="Memo", order=4)
    plan = plan_schema_update(COLUMNS, IDS, 3, has_rows=True, new_columns=changed + [extra])
    assert plan.version == 4
    assert len(plan.warnings) == 2
    assert plan.identifier_keys == IDS
    assert [c.key for c in plan.columns][-1] == "memo"


def test_coerce_value_by_type():
    amount, paid = COLUMNS[2], COLUMNS[3]
    assert coerce_value(amount, "$1,200.00") == (1200, None)
    assert coerce_value(amount, "(12.5)") == (-12.5, None)
    assert coerce_value(amount, "lots")[1] == '"Amount" must be a number'
    assert coerce_value(paid, "Yes") == (True, None)
    assert coerce_value(paid, "maybe")[1] == '"Paid" must be true or false'
    assert coerce_value(amount, "  ") == (None, None)
    due = SchemaColumn(key="due", label="Due", data_type="date")
    assert coerce_value(due, "Jan 5, 2026") == ("2026-01-05", None)
    status = SchemaColumn(key="s", label="Status", data_type="dropdown", dropdown_options=["Open", "Closed"])
    assert coerce_value(status, "closed") == ("Closed", None)
    assert coerce_value(status, "pending")[1] == '"Status" must be one of: Open, Closed'


def test_validate_rows_reports_required_and_batch_duplicates():
    rows = [
        _row(),
        _row(vendor=""),
        _row(),
        _row(amount="$11.00"),
        _row(invoice="101", amount="x"),
    ]
    result = validate_rows(rows, COLUMNS, IDS)
    assert len(result.valid_rows) == 1
    assert result.invalid_row_indices == [1, 2, 3, 4]
    assert 'Row 2: Required field "Vendor" is empty' in result.errors
    assert "Row 3: Exact duplicate of another row in this file" in result.errors
    assert "Row 4: Same identifier values as row 1 in this file" in result.errors
    assert result.valid_rows[0] == {"vendor": "Acme", "invoice": "100", "amount": 10, "paid": False}


def test_reconcile_rows_classifies_new_duplicate_and_update():
    existing = [
        {"vendor": "Acme", "invoice": "100", "amount": 10, "paid": False},
        {"vendor": "Beta", "invoice": "7", "amount": 5, "paid": False},
    ]
    incoming = [
        {"vendor": "Acme", "invoice": "100", "amount": 10.0, "paid": False},
        {"vendor": "Beta", "invoice": "7", "amount": 5, "paid": True},
        {"vendor": "Gamma", "invoice": "1", "amount": 1, "paid": None},
    ]
    rec = reconcile_rows(incoming, existing, COLUMNS, IDS)
    assert rec.exact_duplicates == [incoming[0]]
    assert rec.new_rows == [incoming[2]]
    assert len(rec.update_candidates) == 1
    candidate = rec.update_candidates[0]
    assert candidate.existing_row_index == 1
    assert candidate.identifier_values == {"vendor": "Beta", "invoice": "7"}
    assert [c.column_key for c in candidate.changes] == ["paid"]


def test_build_import_preview_counts():
    existing = [{"vendor": "Acme", "invoice": "100", "amount": 10, "paid": False}]
    rows = [_row(), _row(invoice="200"), _row(invoice="300", paid="sometimes")]
    preview = build_import_preview(rows, COLUMNS, IDS, existing, schema_version=2)
    assert preview.valid
    assert preview.row_count == 3
    assert preview.valid_row_count == 2
    assert preview.invalid_row_count == 1
    assert preview.new_row_count == 1
    assert preview.exact_duplicate_count == 1
    assert preview.total_after_import == 2
    assert preview.schema_version == 2
    assert preview.warnings[0] == "1 row(s) have errors and will be skipped:"
    assert preview.warnings[-1] == "1 identical row(s) will be skipped (already exist)"


def test_build_import_preview_nothing_new_is_not_valid():
    existing = [{"vendor": "Acme", "invoice": "100", "amount": 10, "paid": False}]
    preview = build_import_preview([_row()], COLUMNS, IDS, existing)
    assert not preview.valid
    assert preview.errors == []


def test_apply_import_updates_only_when_requested():
    existing = [{"vendor": "Acme", "invoice": "100", "amount": 10, "paid": False}]
    rows = [_row(paid="yes"), _row(invoice="101")]

    outcome = apply_import(rows, COLUMNS, IDS, existing)
    assert (outcome.added, outcome.updated) == (1, 0)
    assert outcome.rows is not None
    assert outcome.rows[0]["paid"] is False

    outcome = apply_import(rows, COLUMNS, IDS, existing, update_existing=True)
    assert (outcome.added, outcome.updated) == (1, 1)
    assert outcome.rows[0]["paid"] is True
    assert len(outcome.rows) == 2


def test_apply_import_all_duplicates_writes_nothing():
    existing = [{"vendor": "Acme", "invoice": "100", "amount": 10, "paid": False}]
    outcome = apply_import([_row()], COLUMNS, IDS, existing)
    assert outcome.rows is None
    assert outcome.duplicates == 1
    assert outcome.errors == []


def test_apply_import_with_no_valid_rows():
    outcome = apply_import([_row(vendor="")], COLUMNS, IDS, [])
    assert outcome.rows is None
    assert outcome.errors == ['Row 1: Required field "Vendor" is empty']


def _existing_rows(count: int) -> list[dict]:
    return [{"vendor": "Acme", "invoice": str(n), "amount": 1, "paid": False} for n in range(count)]


def test_import_over_row_limit_is_blocked():
    rows = [_row(invoice=str(n)) for n in range(MAX_ROWS + 1)]
    preview = build_import_preview(rows, COLUMNS, IDS, [])
    assert not preview.valid
    assert preview.errors == ["Cannot import more than 10,000 rows"]

    outcome = apply_import(rows, COLUMNS, IDS, [])
    assert outcome.rows is None
    assert outcome.errors == ["Cannot import more than 10,000 rows"]


def test_import_that_would_overflow_existing_rows_is_refused():
    existing = _existing_rows(MAX_ROWS - 1)
    rows = [_row(invoice="new-1"), _row(invoice="new-2")]

    preview = build_import_preview(rows, COLUMNS, IDS, existing)
    assert not preview.valid
    assert preview.total_after_import == MAX_ROWS + 1
    assert preview.errors == ["Adding 2 rows would exceed the 10,000 row limit (current: 9999)"]

    outcome = apply_import(rows, COLUMNS, IDS, existing)
    assert outcome.rows is None
    assert outcome.errors == ["Cannot add 2 rows. Database has 9999 rows and limit is 10,000."]

    outcome = apply_import(rows[:1], COLUMNS, IDS, existing)
    assert outcome.added == 1
    assert len(outcome.rows) == MAX_ROWS


def test_delete_rows_by_keys():
    existing = [
        {"vendor": "Acme", "invoice": "100"},
        {"vendor": "Acme", "invoice": "101"},
    ]
    remaining, deleted = delete_rows_by_keys(existing, IDS, [["Acme", 100]])
    assert deleted == 1
    assert remaining == [{"vendor": "Acme", "invoice": "101"}]
    with pytest.raises(ValueError):
        delete_rows_by_keys(existing, IDS, [["Acme"]])


def test_map_headers_to_keys_matches_labels_and_keys():
    rows = [{"Vendor": "Acme", "INVOICE #": "1", "amount": "5", "Notes": "x"}]
    keyed, unmatched = map_headers_to_keys(["Vendor", "INVOICE #", "amount", "Notes"], rows, COLUMNS)
    assert keyed == [{"vendor": "Acme", "invoice": "1", "amount": "5"}]
    assert unmatched == ["Notes"]
