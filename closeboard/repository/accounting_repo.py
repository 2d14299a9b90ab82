"""Accounting sync state: one row per integration, polled by the UI while a sync runs."""

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator

from sqlalchemy import text
from sqlalchemy.orm import Session

from closeboard.models.entities import AccountingSyncState, SyncStatus

DEFAULT_SYNC_KEY = "accounting"
# A sync still marked running after this long is treated as crashed and may be restarted
STALE_SYNC_AFTER = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountingSyncRepository:
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

    def get_state(self, key: str = DEFAULT_SYNC_KEY) -> AccountingSyncState:
        """Current state; an integration that never synced reads as idle."""
        with self._session_scope() as session:
            state = session.get(AccountingSyncState, key)
        return state if state is not None else AccountingSyncState(key=key, status=SyncStatus.idle)

    def try_start(self, key: str = DEFAULT_SYNC_KEY, now: datetime | None = None) -> bool:
        """
        Atomically mark a sync as running. False when another sync holds the flag and is
        not yet stale.
        """
        now = now or _utcnow()
        with self._session_scope(write=True) as session:
            session.execute(
                text("INSERT INTO accounting_sync (key, status) VALUES (:key, 'idle') ON CONFLICT (key) DO NOTHING"),
                {"key": key},
            )
            result = session.execute(
                text(
                    "UPDATE accounting_sync SET status = 'syncing', last_started_at = :now, last_error = NULL "
                    "WHERE key = :key AND (status != 'syncing' OR last_started_at IS NULL "
                    "OR last_started_at < :stale_before)"
                ),
                {"key": key, "now": now, "stale_before": now - STALE_SYNC_AFTER},
            )
            return (result.rowcount or 0) == 1

    def finish(
        self,
        status: SyncStatus,
        counts: dict[str, Any],
        error: str | None = None,
        key: str = DEFAULT_SYNC_KEY,
        now: datetime | None = None,
    ) -> AccountingSyncState:
        with self._session_scope(write=True) as session:
            state = session.get(AccountingSyncState, key)
            if state is None:
                state = AccountingSyncState(key=key)
                session.add(state)
            state.status = status
            state.counts = counts
            state.last_error = error
            state.last_finished_at = now or _utcnow()
        return state
