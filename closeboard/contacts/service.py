"""Contact operations on top of ContactRepository, including spreadsheet import."""

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from closeboard.core.errors import ConflictError, NotFoundError, ValidationError
from closeboard.core.tabular import TabularFormatError, read_table
from closeboard.models.entities import Contact, ContactGroup, ContactTag, ContactType
from closeboard.repository.contact_repo import ContactRepository

_log = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_GROUP_SPLIT = re.compile(r"[;,]")

# Normalized header -> contact field
HEADER_FIELDS = {
    "email": "email",
    "email_address": "email",
    "first_name": "first_name",
    "firstname": "first_name",
    "last_name": "last_name",
    "lastname": "last_name",
    "phone": "phone",
    "company": "company",
    "type": "contact_type",
    "contact_type": "contact_type",
    "groups": "groups",
}


def normalize_header(header: str) -> str:
    return re.sub(r"[\s\-]+", "_", header.strip().lower())


def is_valid_email(email: str | None) -> bool:
    return bool(email and _EMAIL_RE.match(email.strip()))


def parse_contact_type(value: Any) -> ContactType:
    if value is None:
        return ContactType.unknown
    text = str(value).strip().lower()
    try:
        return ContactType(text)
    except ValueError:
        return ContactType.custom if text else ContactType.unknown


@dataclass
class ContactImportResult:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    groups_created: int = 0
    tags_set: int = 0
    total_rows: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class ContactDetail:
    contact: Contact
    groups: list[ContactGroup]
    tags: list[ContactTag]


class ContactService:
    def __init__(self, repo: ContactRepository) -> None:
        self._repo = repo

    def get(self, contact_id: int) -> Contact:
        contact = self._repo.get(contact_id)
        if contact is None:
            raise NotFoundError("Contact not found")
        return contact

    def detail(self, contact_id: int) -> ContactDetail:
        contact = self.get(contact_id)
        return ContactDetail(
            contact=contact,
            groups=self._repo.groups_for_contacts([contact_id]).get(contact_id, []),
            tags=self._repo.tags_for_contacts([contact_id]).get(contact_id, []),
        )

    def list_details(self, contacts: list[Contact]) -> list[ContactDetail]:
        ids = [c.id for c in contacts if c.id is not None]
        groups = self._repo.groups_for_contacts(ids)
        tags = self._repo.tags_for_contacts(ids)
        return [ContactDetail(c, groups.get(c.id, []), tags.get(c.id, [])) for c in contacts]

    def create(self, first_name: str, email: str | None = None, group_ids: list[int] | None = None, **fields: Any) -> Contact:
        if not first_name or not first_name.strip():
            raise ValidationError("First name is required")
        if email and not is_valid_email(email):
            raise ValidationError(f"Invalid email address: {email}")
        try:
            contact = self._repo.create(first_name=first_name.strip(), email=email, **fields)
        except ValueError as e:
            raise ConflictError(str(e)) from e
        for group_id in group_ids or []:
            self._repo.add_members(group_id, [contact.id])
        return contact

    def update(self, contact_id: int, **fields: Any) -> Contact:
        if "first_name" in fields and not (fields["first_name"] or "").strip():
            raise ValidationError("First name cannot be empty")
        if fields.get("email") and not is_valid_email(fields["email"]):
            raise ValidationError(f"Invalid email address: {fields['email']}")
        try:
            contact = self._repo.update(contact_id, **fields)
        except ValueError as e:
            raise ConflictError(str(e)) from e
        if contact is None:
            raise NotFoundError("Contact not found")
        return contact

    def delete(self, contact_id: int) -> None:
        if not self._repo.delete(contact_id):
            raise NotFoundError("Contact not found")

    def find_or_create_by_email(self, email: str, first_name: str | None = None) -> tuple[Contact, bool]:
        """The contact with this email (case-insensitive), creating one when absent. Returns (contact, created)."""
        email = (email or "").strip()
        if not is_valid_email(email):
            raise ValidationError(f"Invalid email address: {email}")
        existing = self._repo.find_by_email(email)
        if existing is not None:
            return existing, False
        contact = self._repo.create(first_name=(first_name or "").strip() or email.split("@")[0], email=email)
        _log.info("contact_created_by_email contact_id=%s", contact.id)
        return contact, True

    def set_tag(self, contact_id: int, tag_key: str, metadata: dict[str, Any] | None = None) -> ContactTag:
        key = normalize_header(tag_key)
        if not key:
            raise ValidationError("Tag key is required")
        try:
            return self._repo.set_tag(contact_id, key, metadata)
        except ValueError as e:
            raise NotFoundError(str(e)) from e

    def list_contacts(
        self,
        search: str | None = None,
        group_id: int | None = None,
        contact_type: ContactType | None = None,
        tags: list[str] | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[ContactDetail], int]:
        contacts, total = self._repo.list_contacts(
            search=search, group_id=group_id, contact_type=contact_type, tags=tags, limit=limit, offset=offset
        )
        return self.list_details(contacts), total

    def bulk_delete(self, contact_ids: list[int]) -> int:
        if not contact_ids:
            raise ValidationError("No contacts selected")
        return self._repo.bulk_delete(contact_ids)

    def remove_tag(self, contact_id: int, tag_key: str) -> None:
        if not self._repo.remove_tag(contact_id, normalize_header(tag_key)):
            raise NotFoundError("Tag not found")

    def tag_keys(self) -> list[str]:
        return self._repo.list_tag_keys()

    # --- groups ---

    def list_groups(self) -> list[tuple[ContactGroup, int]]:
        return self._repo.list_groups()

    def create_group(self, name: str, color: str | None = None) -> ContactGroup:
        if not name or not name.strip():
            raise ValidationError("Group name is required")
        try:
            return self._repo.create_group(name.strip(), color)
        except ValueError as e:
            raise ConflictError(str(e)) from e

    def update_group(self, group_id: int, name: str | None = None, color: str | None = None) -> ContactGroup:
        if name is not None and not name.strip():
            raise ValidationError("Group name cannot be empty")
        try:
            group = self._repo.update_group(group_id, name=name.strip() if name else None, color=color)
        except ValueError as e:
            raise ConflictError(str(e)) from e
        if group is None:
            raise NotFoundError("Group not found")
        return group

    def delete_group(self, group_id: int) -> None:
        if not self._repo.delete_group(group_id):
            raise NotFoundError("Group not found")

    def add_members(self, group_id: int, contact_ids: list[int]) -> None:
        if self._repo.get_group(group_id) is None:
            raise NotFoundError("Group not found")
        missing = set(contact_ids) - {c.id for c in self._repo.get_many(contact_ids)}
        if missing:
            raise NotFoundError(f"Contacts not found: {', '.join(str(i) for i in sorted(missing))}")
        self._repo.add_members(group_id, contact_ids)

    def remove_member(self, group_id: int, contact_id: int) -> None:
        if not self._repo.remove_member(group_id, contact_id):
            raise NotFoundError("Contact is not in this group")

    def ensure_group(self, name: str) -> tuple[ContactGroup, bool]:
        """Return the group with this name (case-insensitive), creating it if needed."""
        existing = self._repo.find_group_by_name(name)
        if existing is not None:
            return existing, False
        return self._repo.create_group(name.strip()), True

    def import_file(self, data: bytes, filename: str | None, content_type: str | None = None) -> ContactImportResult:
        try:
            headers, rows = read_table(data, filename, content_type)
        except TabularFormatError as e:
            raise ValidationError(str(e)) from e
        return self.import_rows(headers, rows)

    def import_rows(self, headers: list[str], rows: list[dict[str, Any]]) -> ContactImportResult:
        """
        Upsert contacts by email from spreadsheet rows.

        Known headers (email, first name, last name, phone, company, type, groups) map to contact
        fields, matched case-insensitively; any other non-empty cell is stored as a tag keyed by
        the normalized header with {"value": cell} metadata. Rows without a valid email are skipped.
        """
        mapping = {h: HEADER_FIELDS.get(normalize_header(h)) for h in headers if h}
        if "email" not in mapping.values():
            raise ValidationError("File must have an email column")

        result = ContactImportResult(total_rows=len(rows))
        seen: set[str] = set()
        for index, row in enumerate(rows):
            row_num = index + 1
            values: dict[str, Any] = {}
            custom: dict[str, Any] = {}
            for header, value in row.items():
                target = mapping.get(header)
                if target:
                    values[target] = value
                elif header and value not in (None, ""):
                    custom[normalize_header(header)] = value

            email = str(values.get("email") or "").strip().lower()
            if not is_valid_email(email):
                result.skipped += 1
                result.errors.append(f"Row {row_num}: missing or invalid email")
                continue
            if email in seen:
                result.skipped += 1
                result.errors.append(f"Row {row_num}: duplicate email {email}")
                continue
            seen.add(email)

            fields = {
                "first_name": (str(values.get("first_name") or "").strip() or None),
                "last_name": (str(values.get("last_name") or "").strip() or None),
                "phone": (str(values.get("phone") or "").strip() or None),
                "company": (str(values.get("company") or "").strip() or None),
                "contact_type": parse_contact_type(values["contact_type"]) if values.get("contact_type") else None,
            }
            contact, created = self._repo.upsert_by_email(email, **fields)
            if created:
                result.created += 1
            else:
                result.updated += 1

            for group_name in _GROUP_SPLIT.split(str(values.get("groups") or "")):
                if not group_name.strip():
                    continue
                group, group_created = self.ensure_group(group_name)
                result.groups_created += int(group_created)
                self._repo.add_members(group.id, [contact.id])

            for key, value in custom.items():
                self._repo.set_tag(contact.id, key, {"value": value})
                result.tags_set += 1

        _log.info(
            "contacts_imported created=%d updated=%d skipped=%d groups_created=%d",
            result.created,
            result.updated,
            result.skipped,
            result.groups_created,
        )
        return result
