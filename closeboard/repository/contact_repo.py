"""Contact repository: contacts, groups, group membership and tags."""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator

from sqlalchemy import delete, func, or_, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from closeboard.models.entities import Contact, ContactGroup, ContactGroupMember, ContactTag, ContactType

SYSTEM_PREFIX = "__system_"
_CONTACT_FIELDS = ("first_name", "last_name", "email", "phone", "company", "contact_type", "remote_id")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_email(email: str | None) -> str | None:
    if email is None:
        return None
    email = email.strip().lower()
    return email or None


class ContactRepository:
    """
    Database access for contacts ("entities" in the UI), their groups and tags.

    System contacts (first name or email starting with __system_) are never returned by
    list_contacts; they exist for internal bookkeeping only.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session_scope(self, write: bool = False) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            if write:
                session.commit()
        finally:
            session.close()

    # --- contacts ---

    def create(
        self,
        first_name: str,
        last_name: str | None = None,
        email: str | None = None,
        phone: str | None = None,
        company: str | None = None,
        contact_type: ContactType = ContactType.unknown,
        remote_id: str | None = None,
    ) -> Contact:
        """Insert a contact. Raises ValueError when the email is already taken."""
        now = _utcnow()
        entity = Contact(
            first_name=first_name,
            last_name=last_name,
            email=_normalize_email(email),
            phone=phone,
            company=company,
            contact_type=contact_type,
            remote_id=remote_id,
            created_at=now,
            updated_at=now,
        )
        try:
            with self._session_scope(write=True) as session:
                session.add(entity)
                session.flush()
                session.refresh(entity)
        except IntegrityError as e:
            raise ValueError(f"A contact with email '{entity.email}' already exists.") from e
        return entity

    def get(self, contact_id: int) -> Contact | None:
        with self._session_scope() as session:
            return session.get(Contact, contact_id)

    def get_many(self, contact_ids: list[int]) -> list[Contact]:
        if not contact_ids:
            return []
        with self._session_scope() as session:
            return list(
                session.execute(select(Contact).where(Contact.id.in_(contact_ids)).order_by(Contact.id))
                .scalars()
                .all()
            )

    def find_by_email(self, email: str) -> Contact | None:
        normalized = _normalize_email(email)
        if normalized is None:
            return None
        with self._session_scope() as session:
            return session.execute(select(Contact).where(Contact.email == normalized)).scalars().first()

    def find_by_remote_id(self, remote_id: str) -> Contact | None:
        with self._session_scope() as session:
            return session.execute(select(Contact).where(Contact.remote_id == remote_id)).scalars().first()

    def update(self, contact_id: int, **fields: Any) -> Contact | None:
        """Update the given contact fields. Raises ValueError on an email clash."""
        unknown = set(fields) - set(_CONTACT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown contact fields: {', '.join(sorted(unknown))}")
        if "email" in fields:
            fields["email"] = _normalize_email(fields["email"])
        try:
            with self._session_scope(write=True) as session:
                entity = session.get(Contact, contact_id)
                if entity is None:
                    return None
                for name, value in fields.items():
                    setattr(entity, name, value)
                entity.updated_at = _utcnow()
        except IntegrityError as e:
            raise ValueError(f"A contact with email '{fields.get('email')}' already exists.") from e
        return entity

    def upsert_by_email(self, email: str, **fields: Any) -> tuple[Contact, bool]:
        """Update the contact with this email or create it. Returns (contact, created)."""
        existing = self.find_by_email(email)
        if existing is not None:
            updates = {k: v for k, v in fields.items() if v is not None}
            updated = self.update(existing.id, **updates) if updates else existing
            assert updated is not None
            return updated, False
        first_name = fields.pop("first_name", None) or email.split("@")[0]
        extra = {k: v for k, v in fields.items() if v is not None}
        return self.create(first_name=first_name, email=email, **extra), True

    def delete(self, contact_id: int) -> bool:
        with self._session_scope(write=True) as session:
            result = session.execute(delete(Contact).where(Contact.id == contact_id))
            return (result.rowcount or 0) > 0

    def bulk_delete(self, contact_ids: list[int]) -> int:
        if not contact_ids:
            return 0
        with self._session_scope(write=True) as session:
            result = session.execute(delete(Contact).where(Contact.id.in_(contact_ids)))
            return result.rowcount or 0

    def list_contacts(
        self,
        search: str | None = None,
        group_id: int | None = None,
        contact_type: ContactType | None = None,
        tags: list[str] | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[Contact], int]:
        """
        Filtered contacts ordered by first and last name, plus the total before paging.

        search matches first name, last name or email (case-insensitive); tags requires every
        listed tag key to be present on the contact.
        """
        stmt = select(Contact).where(
            ~Contact.first_name.startswith(SYSTEM_PREFIX, autoescape=True),
            or_(Contact.email.is_(None), ~Contact.email.startswith(SYSTEM_PREFIX, autoescape=True)),
        )
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(
                    Contact.first_name.ilike(pattern),
                    Contact.last_name.ilike(pattern),
                    Contact.email.ilike(pattern),
                )
            )
        if group_id is not None:
            stmt = stmt.where(
                Contact.id.in_(select(ContactGroupMember.contact_id).where(ContactGroupMember.group_id == group_id))
            )
        if contact_type is not None:
            stmt = stmt.where(Contact.contact_type == contact_type)
        wanted = sorted({t for t in (tags or []) if t})
        if wanted:
            tagged = (
                select(ContactTag.contact_id)
                .where(ContactTag.tag_key.in_(wanted))
                .group_by(ContactTag.contact_id)
                .having(func.count(func.distinct(ContactTag.tag_key)) == len(wanted))
            )
            stmt = stmt.where(Contact.id.in_(tagged))

        with self._session_scope() as session:
            total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
            rows = session.execute(
                stmt.order_by(Contact.first_name, Contact.last_name, Contact.id).limit(limit).offset(offset)
            ).scalars().all()
        return list(rows), total

    # --- groups ---

    def create_group(self, name: str, color: str | None = None) -> ContactGroup:
        entity = ContactGroup(name=name, color=color, created_at=_utcnow())
        try:
            with self._session_scope(write=True) as session:
                session.add(entity)
                session.flush()
                session.refresh(entity)
        except IntegrityError as e:
            raise ValueError(f"A group named '{name}' already exists.") from e
        return entity

    def get_group(self, group_id: int) -> ContactGroup | None:
        with self._session_scope() as session:
            return session.get(ContactGroup, group_id)

    def find_group_by_name(self, name: str) -> ContactGroup | None:
        with self._session_scope() as session:
            return session.execute(
                select(ContactGroup).where(func.lower(ContactGroup.name) == name.strip().lower())
            ).scalars().first()

    def list_groups(self) -> list[tuple[ContactGroup, int]]:
        """All groups by name with their member counts."""
        with self._session_scope() as session:
            rows = session.execute(
                select(ContactGroup, func.count(ContactGroupMember.contact_id))
                .outerjoin(ContactGroupMember, ContactGroupMember.group_id == ContactGroup.id)
                .group_by(ContactGroup.id)
                .order_by(ContactGroup.name)
            ).all()
        return [(group, count) for group, count in rows]

    def update_group(self, group_id: int, name: str | None = None, color: str | None = None) -> ContactGroup | None:
        try:
            with self._session_scope(write=True) as session:
                entity = session.get(ContactGroup, group_id)
                if entity is None:
                    return None
                if name is not None:
                    entity.name = name
                if color is not None:
                    entity.color = color
        except IntegrityError as e:
            raise ValueError(f"A group named '{name}' already exists.") from e
        return entity

    def delete_group(self, group_id: int) -> bool:
        with self._session_scope(write=True) as session:
            result = session.execute(delete(ContactGroup).where(ContactGroup.id == group_id))
            return (result.rowcount or 0) > 0

    def add_members(self, group_id: int, contact_ids: list[int]) -> None:
        """Add contacts to a group. Idempotent for existing members."""
        if not contact_ids:
            return
        with self._session_scope(write=True) as session:
            for contact_id in contact_ids:
                session.execute(
                    text(
                        "INSERT INTO contact_group_member (group_id, contact_id) "
                        "VALUES (:group_id, :contact_id) ON CONFLICT DO NOTHING"
                    ),
                    {"group_id": group_id, "contact_id": contact_id},
                )

    def remove_member(self, group_id: int, contact_id: int) -> bool:
        with self._session_scope(write=True) as session:
            result = session.execute(
                delete(ContactGroupMember).where(
                    ContactGroupMember.group_id == group_id, ContactGroupMember.contact_id == contact_id
                )
            )
            return (result.rowcount or 0) > 0

    def groups_for_contacts(self, contact_ids: list[int]) -> dict[int, list[ContactGroup]]:
        if not contact_ids:
            return {}
        out: dict[int, list[ContactGroup]] = {cid: [] for cid in contact_ids}
        with self._session_scope() as session:
            rows = session.execute(
                select(ContactGroupMember.contact_id, ContactGroup)
                .join(ContactGroup, ContactGroup.id == ContactGroupMember.group_id)
                .where(ContactGroupMember.contact_id.in_(contact_ids))
                .order_by(ContactGroup.name)
            ).all()
        for contact_id, group in rows:
            out[contact_id].append(group)
        return out

    # --- tags ---

    def set_tag(self, contact_id: int, tag_key: str, metadata: dict[str, Any] | None = None) -> ContactTag:
        """Upsert a tag on a contact, replacing its metadata."""
        with self._session_scope(write=True) as session:
            entity = session.get(ContactTag, (contact_id, tag_key))
            if entity is None:
                if session.get(Contact, contact_id) is None:
                    raise ValueError(f"Contact {contact_id} does not exist.")
                entity = ContactTag(contact_id=contact_id, tag_key=tag_key, tag_metadata=metadata)
                session.add(entity)
            else:
                entity.tag_metadata = metadata
            entity.updated_at = _utcnow()
        return entity

    def remove_tag(self, contact_id: int, tag_key: str) -> bool:
        with self._session_scope(write=True) as session:
            result = session.execute(
                delete(ContactTag).where(ContactTag.contact_id == contact_id, ContactTag.tag_key == tag_key)
            )
            return (result.rowcount or 0) > 0

    def list_tag_keys(self) -> list[str]:
        with self._session_scope() as session:
            return list(
                session.execute(select(ContactTag.tag_key).distinct().order_by(ContactTag.tag_key)).scalars().all()
            )

    def tags_for_contacts(self, contact_ids: list[int]) -> dict[int, list[ContactTag]]:
        if not contact_ids:
            return {}
        out: dict[int, list[ContactTag]] = {cid: [] for cid in contact_ids}
        with self._session_scope() as session:
            rows = session.execute(
                select(ContactTag).where(ContactTag.contact_id.in_(contact_ids)).order_by(ContactTag.tag_key)
            ).scalars().all()
        for tag in rows:
            out[tag.contact_id].append(tag)
        return out
