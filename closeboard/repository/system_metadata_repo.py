"""Read access to system_metadata, where migrations record the schema version."""

from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from closeboard.models.entities import SystemMetadata

SCHEMA_VERSION_KEY = "schema_version"


class SystemMetadataRepository:
    """Workers check the schema version before starting; /api/health reports it."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def get_value(self, key: str) -> str | None:
        session = self._session_factory()
        try:
            return session.execute(select(SystemMetadata.value).where(SystemMetadata.key == key)).scalar_one_or_none()
        finally:
            session.close()

    def get_schema_version(self) -> int | None:
        """
        The migration level recorded by Alembic revisions, or None when the row is missing.
        A value that is not an integer raises ValueError.
        """
        raw = self.get_value(SCHEMA_VERSION_KEY)
        if raw is None or not raw.strip():
            return None
        return int(raw.strip())
