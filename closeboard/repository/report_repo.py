"""Report definition repository."""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from closeboard.models.entities import ReportDefinition

_REPORT_FIELDS = (
    "name",
    "description",
    "cadence",
    "date_column_key",
    "compare_mode",
    "columns",
    "formula_rows",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReportRepository:
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

    def create(self, name: str, database_id: int, date_column_key: str, **fields: Any) -> ReportDefinition:
        unknown = set(fields) - set(_REPORT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown report fields: {', '.join(sorted(unknown))}")
        now = _utcnow()
        entity = ReportDefinition(
            name=name,
            database_id=database_id,
            date_column_key=date_column_key,
            created_at=now,
            updated_at=now,
            **fields,
        )
        with self._session_scope(write=True) as session:
            session.add(entity)
            session.flush()
            session.refresh(entity)
        return entity

    def get(self, report_id: int) -> ReportDefinition | None:
        with self._session_scope() as session:
            return session.get(ReportDefinition, report_id)

    def list_reports(self, database_id: int | None = None) -> list[ReportDefinition]:
        stmt = select(ReportDefinition)
        if database_id is not None:
            stmt = stmt.where(ReportDefinition.database_id == database_id)
        with self._session_scope() as session:
            return list(
                session.execute(stmt.order_by(ReportDefinition.updated_at.desc(), ReportDefinition.id.desc()))
                .scalars()
                .all()
            )

    def update(self, report_id: int, **fields: Any) -> ReportDefinition | None:
        unknown = set(fields) - set(_REPORT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown report fields: {', '.join(sorted(unknown))}")
        with self._session_scope(write=True) as session:
            entity = session.get(ReportDefinition, report_id)
            if entity is None:
                return None
            for name, value in fields.items():
                setattr(entity, name, value)
            entity.updated_at = _utcnow()
        return entity

    def delete(self, report_id: int) -> bool:
        with self._session_scope(write=True) as session:
            result = session.execute(delete(ReportDefinition).where(ReportDefinition.id == report_id))
            return (result.rowcount or 0) > 0
