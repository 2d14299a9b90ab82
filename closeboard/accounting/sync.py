"""Pull contacts and ledger data from the accounting service into contacts and databases."""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable

import requests
from dateutil import parser as date_parser

from closeboard.accounting.client import AccountingClient
from closeboard.core.errors import ConflictError
from closeboard.databases.schema import MAX_ROWS
from closeboard.models.entities import AccountingSyncState, ContactType, SyncStatus
from closeboard.repository.accounting_repo import AccountingSyncRepository
from closeboard.repository.contact_repo import ContactRepository
from closeboard.repository.database_repo import DatabaseRepository

_log = logging.getLogger(__name__)

Row = dict[str, Any]


def _col(key: str, label: str, data_type: str = "text", order: int = 0, required: bool = False) -> dict[str, Any]:
    return {"key": key, "label": label, "data_type": data_type, "required": required, "order": order}


@dataclass
class SourceDefinition:
    key: str
    name: str
    description: str
    columns: list[dict[str, Any]] = field(default_factory=list)

    @property
    def database_source(self) -> str:
        return f"accounting_{self.key}"


SOURCES: dict[str, SourceDefinition] = {
    "contacts": SourceDefinition(
        key="contacts",
        name="Contacts",
        description="Customers and suppliers, synced into contacts",
    ),
    "accounts": SourceDefinition(
        key="accounts",
        name="Chart of Accounts",
        description="Chart of accounts synced from accounting software",
        columns=[
            _col("remote_id", "ID", order=0, required=True),
            _col("account_number", "Account Number", order=1),
            _col("name", "Account Name", order=2, required=True),
            _col("classification", "Classification", order=3),
            _col("type", "Type", order=4),
            _col("status", "Status", order=5),
            _col("current_balance", "Current Balance", "currency", order=6),
            _col("currency", "Currency", order=7),
        ],
    ),
    "invoices": SourceDefinition(
        key="invoices",
        name="Invoices",
        description="AR and AP invoices synced from accounting software",
        columns=[
            _col("remote_id", "ID", order=0, required=True),
            _col("invoice_number", "Invoice #", order=1),
            _col("type", "Type", order=2),
            _col("contact_name", "Contact", order=3),
            _col("contact_email", "Contact Email", order=4),
            _col("issue_date", "Issue Date", "date", order=5),
            _col("due_date", "Due Date", "date", order=6),
            _col("total_amount", "Total Amount", "currency", order=7),
            _col("balance", "Balance Due", "currency", order=8),
            _col("paid_amount", "Paid Amount", "currency", order=9),
            _col("status", "Status", order=10),
            _col("is_overdue", "Overdue", "boolean", order=11),
            _col("days_overdue", "Days Overdue", "number", order=12),
            _col("currency", "Currency", order=13),
        ],
    ),
    "payments": SourceDefinition(
        key="payments",
        name="Payments",
        description="Payments synced from accounting software",
        columns=[
            _col("remote_id", "ID", order=0, required=True),
            _col("transaction_date", "Date", "date", order=1),
            _col("contact_name", "Contact", order=2),
            _col("total_amount", "Amount", "currency", order=3),
            _col("currency", "Currency", order=4),
            _col("reference", "Reference", order=5),
            _col("account", "Account", order=6),
        ],
    ),
}


@dataclass
class SyncResult:
    counts: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


def _capitalize(value: str | None) -> str:
    return value[:1] + value[1:].lower() if value else ""


def _primary(items: list[dict[str, Any]] | None, field_name: str) -> str | None:
    return next((i[field_name] for i in items or [] if i.get(field_name)), None)


def _contact_name(contact: Any) -> str:
    return (contact.get("name") or "") if isinstance(contact, dict) else ""


def _parse_date(value: Any) -> date | None:
    if not value:
        return None
    try:
        return date_parser.isoparse(str(value)).date()
    except ValueError:
        return None


def transform_accounts(records: list[dict[str, Any]]) -> list[Row]:
    return [
        {
            "remote_id": a.get("remote_id") or a.get("id"),
            "account_number": a.get("number") or "",
            "name": a.get("name") or "",
            "classification": _capitalize(a.get("classification")),
            "type": a.get("type") or "",
            "status": _capitalize(a.get("status")) or "Active",
            "current_balance": a.get("current_balance") or 0,
            "currency": a.get("currency") or "",
        }
        for a in records
        if not a.get("remote_was_deleted")
    ]


def transform_invoices(records: list[dict[str, Any]], today: date | None = None) -> list[Row]:
    """Invoice rows with paid amount and overdue status derived from balance and due date."""
    today = today or date.today()
    rows: list[Row] = []
    for inv in records:
        if inv.get("remote_was_deleted"):
            continue
        total = inv.get("total_amount") or 0
        balance = inv.get("balance") or 0
        due = _parse_date(inv.get("due_date"))
        overdue = bool(due and due < today and balance > 0)
        contact = inv.get("contact")
        rows.append(
            {
                "remote_id": inv.get("remote_id") or inv.get("id"),
                "invoice_number": inv.get("number") or "",
                "type": inv.get("type") or "",
                "contact_name": _contact_name(contact),
                "contact_email": (
                    _primary(contact.get("email_addresses"), "email_address") or "" if isinstance(contact, dict) else ""
                ),
                "issue_date": inv.get("issue_date") or "",
                "due_date": inv.get("due_date") or "",
                "total_amount": total,
                "balance": balance,
                "paid_amount": total - balance,
                "status": inv.get("status") or "",
                "is_overdue": overdue,
                "days_overdue": (today - due).days if overdue and due else 0,
                "currency": inv.get("currency") or "",
            }
        )
    return rows


def transform_payments(records: list[dict[str, Any]]) -> list[Row]:
    return [
        {
            "remote_id": p.get("remote_id") or p.get("id"),
            "transaction_date": p.get("transaction_date") or "",
            "contact_name": _contact_name(p.get("contact")),
            "total_amount": p.get("total_amount") or 0,
            "currency": p.get("currency") or "",
            "reference": p.get("reference") or "",
            "account": p.get("account") if isinstance(p.get("account"), str) else "",
        }
        for p in records
        if not p.get("remote_was_deleted")
    ]


def replace_by_remote_id(existing: list[Row], incoming: list[Row], limit: int = MAX_ROWS) -> list[Row]:
    """Drop old versions of incoming rows, append the new ones, keep at most `limit` (newest)."""
    incoming_ids = {str(r.get("remote_id")) for r in incoming}
    merged = [r for r in existing if str(r.get("remote_id")) not in incoming_ids] + incoming
    return merged[-limit:] if len(merged) > limit else merged


class AccountingSyncService:
    """
    Runs one sync at a time. Contacts are synced first (matched by remote id, then email), then
    each data source replaces its rows by remote_id in an auto-created database. A failing
    source is recorded and the remaining sources still run.
    """

    def __init__(
        self,
        client_provider: Callable[[], AccountingClient],
        state: AccountingSyncRepository,
        contacts: ContactRepository,
        databases: DatabaseRepository,
    ) -> None:
        self._client_provider = client_provider
        self._state = state
        self._contacts = contacts
        self._databases = databases

    def sources(self) -> list[SourceDefinition]:
        return list(SOURCES.values())

    def status(self) -> AccountingSyncState:
        return self._state.get_state()

    def sync(self, sources: list[str] | None = None, today: date | None = None) -> SyncResult:
        """Run a sync. Raises ConflictError when one is already running."""
        keys = sources or list(SOURCES)
        unknown = [k for k in keys if k not in SOURCES]
        if unknown:
            raise ValueError(f"Unknown accounting sources: {', '.join(unknown)}")
        client = self._client_provider()
        if not self._state.try_start():
            raise ConflictError("A sync is already running", code="SYNC_IN_PROGRESS")

        result = SyncResult()
        _log.info("accounting_sync_started sources=%s", ",".join(keys))
        try:
            for key in keys:
                try:
                    if key == "contacts":
                        result.counts[key] = self._sync_contacts(client)
                    else:
                        result.counts[key] = self._sync_database(client, SOURCES[key], today)
                except (requests.RequestException, ValueError) as e:
                    result.errors.append(f"{key}: {e}")
                    _log.warning("accounting_sync_source_failed source=%s error=%s", key, e)
        except Exception as e:
            self._state.finish(SyncStatus.failed, dict(result.counts), error=str(e))
            _log.exception("accounting_sync_failed")
            raise
        status = SyncStatus.failed if result.errors else SyncStatus.completed
        self._state.finish(status, dict(result.counts), error="; ".join(result.errors) or None)
        _log.info("accounting_sync_finished status=%s counts=%s", status.value, result.counts)
        return result

    def _sync_contacts(self, client: AccountingClient) -> int:
        synced = 0
        for record in client.contacts():
            if record.get("remote_was_deleted"):
                continue
            remote_id = str(record.get("remote_id") or record.get("id"))
            email = _primary(record.get("email_addresses"), "email_address")
            phone = _primary(record.get("phone_numbers"), "number")
            name_parts = (record.get("name") or "Unknown").split(" ")
            first_name = name_parts[0] or "Unknown"
            last_name = " ".join(name_parts[1:]) or None
            if record.get("is_supplier"):
                contact_type = ContactType.vendor
            elif record.get("is_customer"):
                contact_type = ContactType.client
            else:
                contact_type = ContactType.unknown

            existing = self._contacts.find_by_remote_id(remote_id)
            if existing is not None:
                self._contacts.update(
                    existing.id,
                    first_name=first_name,
                    last_name=last_name,
                    email=email or existing.email,
                    phone=phone or existing.phone,
                    company=record.get("company") or existing.company,
                    contact_type=contact_type,
                )
            elif email and (match := self._contacts.find_by_email(email)) is not None:
                self._contacts.update(
                    match.id,
                    remote_id=remote_id,
                    company=record.get("company") or match.company,
                    contact_type=contact_type if contact_type != ContactType.unknown else match.contact_type,
                )
            else:
                self._contacts.create(
                    first_name=first_name,
                    last_name=last_name,
                    email=email,
                    phone=phone,
                    company=record.get("company"),
                    contact_type=contact_type,
                    remote_id=remote_id,
                )
            synced += 1
        return synced

    def _sync_database(self, client: AccountingClient, source: SourceDefinition, today: date | None) -> int:
        # A source whose fetch fails must not create its database.
        if source.key == "accounts":
            incoming = transform_accounts(client.accounts())
        elif source.key == "invoices":
            incoming = transform_invoices(client.invoices(), today)
        else:
            incoming = transform_payments(client.payments())
        db = self._databases.get_by_source(source.database_source)
        if db is None:
            db = self._databases.create(
                name=source.name,
                description=source.description,
                columns=source.columns,
                identifier_keys=["remote_id"],
                source=source.database_source,
            )
        if not incoming:
            return db.row_count
        updated = self._databases.update_rows(
            db.id, lambda entity: replace_by_remote_id(list(entity.rows or []), incoming), imported=True
        )
        return updated.row_count if updated is not None else 0
