"""Database repository: user-defined tables with their schema and JSONB rows."""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from closeboard.models.entities import DataDatabase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DatabaseRepository:
    """
    Database access for data_database.

    Rows live in a single JSONB array per database; writers that read-modify-write the rows go
    through update_rows, which holds a row lock for the duration of the change.
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

    def create(
        self,
        name: str,
        columns: list[dict[str, Any]],
        identifier_keys: list[str],
        description: str | None = None,
        rows: list[dict[str, Any]] | None = None,
        source: str | None = None,
    ) -> DataDatabase:
        """Insert a new database. Initial rows (if any) count as an import."""
        now = _utcnow()
        rows = rows or []
        entity = DataDatabase(
            name=name,
            description=description,
            columns=columns,
            identifier_keys=identifier_keys,
            rows=rows,
            row_count=len(rows),
            source=source,
            created_at=now,
            updated_at=now,
            last_imported_at=now if rows else None,
        )
        with self._session_scope(write=True) as session:
            session.add(entity)
            session.flush()
            session.refresh(entity)
        return entity

    def get(self, database_id: int) -> DataDatabase | None:
        with self._session_scope() as session:
            return session.get(DataDatabase, database_id)

    def get_by_source(self, source: str) -> DataDatabase | None:
        """Return the database created for an external source (e.g. 'accounting:invoices')."""
        with self._session_scope() as session:
            return session.execute(
                select(DataDatabase).where(DataDatabase.source == source)
            ).scalars().first()

    def list_databases(self) -> list[DataDatabase]:
        """All databases, most recently updated first."""
        with self._session_scope() as session:
            return list(
                session.execute(
                    select(DataDatabase).order_by(DataDatabase.updated_at.desc(), DataDatabase.id.desc())
                ).scalars().all()
            )

    def count(self) -> int:
        with self._session_scope() as session:
            return session.execute(select(func.count()).select_from(DataDatabase)).scalar_one()

    def update_meta(
        self, database_id: int, name: str | None = None, description: str | None = None
    ) -> DataDatabase | None:
        """Update name and/or description. Returns None when the database does not exist."""
        with self._session_scope(write=True) as session:
            entity = session.get(DataDatabase, database_id)
            if entity is None:
                return None
            if name is not None:
                entity.name = name
            if description is not None:
                entity.description = description
            entity.updated_at = _utcnow()
        return entity

    def update_schema(
        self, database_id: int, columns: list[dict[str, Any]], identifier_keys: list[str], version: int
    ) -> DataDatabase | None:
        with self._session_scope(write=True) as session:
            entity = session.get(DataDatabase, database_id, with_for_update=True)
            if entity is None:
                return None
            entity.columns = columns
            entity.identifier_keys = identifier_keys
            entity.schema_version = version
            entity.updated_at = _utcnow()
        return entity

    def update_rows(
        self,
        database_id: int,
        mutate: Callable[[DataDatabase], list[dict[str, Any]] | None],
        imported: bool = False,
    ) -> DataDatabase | None:
        """
        Lock the database row, call mutate(entity) and store the rows it returns.

        mutate returns None to leave the rows untouched (the transaction still ends cleanly).
        Returns None when the database does not exist.
        """
        with self._session_scope(write=True) as session:
            entity = session.get(DataDatabase, database_id, with_for_update=True)
            if entity is None:
                return None
            new_rows = mutate(entity)
            if new_rows is not None:
                now = _utcnow()
                entity.rows = list(new_rows)
                flag_modified(entity, "rows")
                entity.row_count = len(new_rows)
                entity.updated_at = now
                if imported:
                    entity.last_imported_at = now
        return entity

    def delete(self, database_id: int) -> bool:
        with self._session_scope(write=True) as session:
            entity = session.get(DataDatabase, database_id)
            if entity is None:
                return False
            session.delete(entity)
            return True
