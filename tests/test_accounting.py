"""Accounting sync: client pagination, record transforms, merge by remote id, sync orchestration."""

from datetime import date
from unittest.mock import MagicMock, patch

import pytest
import requests

from closeboard.accounting.client import AccountingClient
from closeboard.accounting.sync import (
    AccountingSyncService,
    replace_by_remote_id,
    transform_accounts,
    transform_invoices,
    transform_payments,
)
from closeboard.core.errors import ConflictError
from closeboard.models.entities import ContactType, DataDatabase, SyncStatus

pytestmark = [pytest.mark.fast]


def _page(results, next_url=None) -> MagicMock:
    resp = MagicMock()
    resp.json.return_value = {"results": results, "next": next_url}
    resp.raise_for_status.return_value = None
    return resp


def test_client_follows_cursor_pages():
    client = AccountingClient("https://acct.example.com/api/", "key-1")
    pages = [
        _page([{"id": 1}, {"id": 2}], "https://acct.example.com/api/contacts?cursor=abc&page_size=200"),
        _page([{"id": 3}]),
    ]
    with patch.object(client._session, "get", side_effect=pages) as get:
        records = client.contacts(modified_after="2026-01-01T00:00:00Z")
    assert [r["id"] for r in records] == [1, 2, 3]
    assert get.call_count == 2
    first_url = get.call_args_list[0].args[0]
    assert first_url == "https://acct.example.com/api/contacts"
    params = get.call_args_list[1].kwargs["params"]
    assert params["cursor"] == "abc"
    assert params["modified_after"] == "2026-01-01T00:00:00Z"
    assert client._session.headers["Authorization"] == "Bearer key-1"


def test_transform_accounts_skips_deleted_and_capitalizes():
    rows = transform_accounts(
        [
            {"remote_id": "a1", "number": "1000", "name": "Cash", "classification": "ASSET", "status": None},
            {"remote_id": "a2", "name": "Old", "remote_was_deleted": True},
        ]
    )
    assert rows == [
        {
            "remote_id": "a1",
            "account_number": "1000",
            "name": "Cash",
            "classification": "Asset",
            "type": "",
            "status": "Active",
            "current_balance": 0,
            "currency": "",
        }
    ]


def test_transform_invoices_derives_paid_and_overdue():
    today = date(2026, 2, 10)
    rows = transform_invoices(
        [
            {
                "remote_id": "i1",
                "number": "INV-1",
                "contact": {"name": "Acme", "email_addresses": [{"email_address": ""}, {"email_address": "ap@acme.test"}]},
                "due_date": "2026-02-01T00:00:00Z",
                "total_amount": 100,
                "balance": 40,
            },
            {"id": "i2", "due_date": "2026-01-01", "total_amount": 50, "balance": 0},
            {"id": "i3", "due_date": "garbage", "total_amount": 5, "balance": 5},
        ],
        today=today,
    )
    first, paid, unparsed = rows
    assert first["contact_name"] == "Acme"
    assert first["contact_email"] == "ap@acme.test"
    assert first["paid_amount"] == 60
    assert first["is_overdue"] is True
    assert first["days_overdue"] == 9
    assert paid["remote_id"] == "i2"
    assert paid["is_overdue"] is False
    assert paid["days_overdue"] == 0
    assert unparsed["is_overdue"] is False


def test_transform_payments_ignores_non_string_account():
    rows = transform_payments([{"id": "p1", "contact": {"name": "Beta"}, "account": {"id": 9}, "total_amount": 12}])
    assert rows[0]["contact_name"] == "Beta"
    assert rows[0]["account"] == ""
    assert rows[0]["total_amount"] == 12


def test_replace_by_remote_id_replaces_and_caps():
    existing = [{"remote_id": "1", "v": "old"}, {"remote_id": "2", "v": "keep"}]
    incoming = [{"remote_id": 1, "v": "new"}, {"remote_id": "3", "v": "add"}]
    merged = replace_by_remote_id(existing, incoming)
    assert merged == [{"remote_id": "2", "v": "keep"}, {"remote_id": 1, "v": "new"}, {"remote_id": "3", "v": "add"}]
    assert replace_by_remote_id(existing, incoming, limit=2) == merged[-2:]


def _service(client: MagicMock, started: bool = True):
    state, contacts, databases = MagicMock(), MagicMock(), MagicMock()
    state.try_start.return_value = started
    service = AccountingSyncService(lambda: client, state, contacts, databases)
    return service, state, contacts, databases


def test_sync_rejects_unknown_source():
    service, state, _, _ = _service(MagicMock())
    with pytest.raises(ValueError, match="Unknown accounting sources"):
        service.sync(["ledger"])
    state.try_start.assert_not_called()


def test_sync_conflicts_when_already_running():
    service, state, _, _ = _service(MagicMock(), started=False)
    with pytest.raises(ConflictError) as exc:
        service.sync(["contacts"])
    assert exc.value.code == "SYNC_IN_PROGRESS"
    state.finish.assert_not_called()


def test_sync_contacts_matches_remote_id_then_email_then_creates():
    client = MagicMock()
    client.contacts.return_value = [
        {"remote_id": "r1", "name": "Ada Lovelace", "is_customer": True},
        {"remote_id": "r2", "name": "Bob", "email_addresses": [{"email_address": "bob@x.test"}], "is_supplier": True},
        {"remote_id": "r3", "name": "", "email_addresses": [{"email_address": "new@x.test"}]},
        {"remote_id": "r4", "name": "Gone", "remote_was_deleted": True},
    ]
    service, state, contacts, _ = _service(client)
    known = MagicMock(id=10, email="ada@x.test", phone=None, company=None)
    by_email = MagicMock(id=20, company="Bob Co", contact_type=ContactType.unknown)
    contacts.find_by_remote_id.side_effect = lambda rid: known if rid == "r1" else None
    contacts.find_by_email.side_effect = lambda email: by_email if email == "bob@x.test" else None

    result = service.sync(["contacts"])

    assert result.counts == {"contacts": 3}
    assert result.errors == []
    first_update, second_update = contacts.update.call_args_list
    assert first_update.args[0] == 10
    assert first_update.kwargs["last_name"] == "Lovelace"
    assert first_update.kwargs["contact_type"] == ContactType.client
    assert second_update.args[0] == 20
    assert second_update.kwargs["remote_id"] == "r2"
    assert second_update.kwargs["contact_type"] == ContactType.vendor
    created = contacts.create.call_args.kwargs
    assert created["first_name"] == "Unknown"
    assert created["remote_id"] == "r3"
    state.finish.assert_called_once_with(SyncStatus.completed, {"contacts": 3}, error=None)


def test_sync_database_creates_source_database_and_records_source_errors():
    client = MagicMock()
    client.accounts.return_value = [{"remote_id": "a1", "name": "Cash"}]
    client.payments.side_effect = requests.ConnectionError("down")
    service, state, _, databases = _service(client)
    databases.get_by_source.return_value = None
    databases.create.return_value = DataDatabase(id=5, name="Chart of Accounts", row_count=0)
    databases.update_rows.return_value = DataDatabase(id=5, name="Chart of Accounts", row_count=1)

    result = service.sync(["accounts", "payments"])

    assert result.counts == {"accounts": 1}
    assert result.errors == ["payments: down"]
    databases.create.assert_called_once()
    create_kwargs = databases.create.call_args.kwargs
    assert create_kwargs["source"] == "accounting_accounts"
    assert create_kwargs["identifier_keys"] == ["remote_id"]
    state.finish.assert_called_once_with(SyncStatus.failed, {"accounts": 1}, error="payments: down")
