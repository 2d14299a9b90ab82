"""worker_status access for workers (register, heartbeat, state) and the CLI (list, commands, prune)."""

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session

from closeboard.models.entities import WorkerCommand, WorkerState, WorkerStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkerRepository:
    """
    One row per worker_id. Workers write their own state and heartbeat; operators
    queue a command that the worker reads and clears on its next loop.
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

    def _update(self, worker_id: str, **values: Any) -> int:
        with self._session_scope(write=True) as session:
            result = session.execute(update(WorkerStatus).where(WorkerStatus.worker_id == worker_id).values(**values))
            return result.rowcount or 0

    def register_worker(self, worker_id: str, state: str | WorkerState, hostname: str = "") -> None:
        """
        Insert the worker or take over an existing row with the same id. A command left
        over from a previous run is discarded.
        """
        values = {
            "worker_id": worker_id,
            "hostname": hostname,
            "last_seen_at": _utcnow(),
            "state": WorkerState(state),
            "command": WorkerCommand.none,
        }
        stmt = pg_insert(WorkerStatus).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[WorkerStatus.worker_id],
            set_={k: stmt.excluded[k] for k in ("hostname", "last_seen_at", "state", "command")},
        )
        with self._session_scope(write=True) as session:
            session.execute(stmt)

    def update_heartbeat(self, worker_id: str, stats: dict[str, Any] | None = None) -> None:
        values: dict[str, Any] = {"last_seen_at": _utcnow()}
        if stats is not None:
            values["stats"] = stats
        self._update(worker_id, **values)

    def set_state(self, worker_id: str, state: str | WorkerState) -> None:
        self._update(worker_id, state=WorkerState(state))

    def get_command(self, worker_id: str) -> str:
        """The pending command value; 'none' when nothing is queued or the worker is unknown."""
        with self._session_scope() as session:
            command = session.execute(
                select(WorkerStatus.command).where(WorkerStatus.worker_id == worker_id)
            ).scalar_one_or_none()
        return WorkerCommand(command).value if command is not None else WorkerCommand.none.value

    def send_command(self, worker_id: str, command: str | WorkerCommand) -> bool:
        """Queue a command. False when no worker with that id is registered."""
        return self._update(worker_id, command=WorkerCommand(command)) == 1

    def clear_command(self, worker_id: str) -> None:
        self._update(worker_id, command=WorkerCommand.none)

    def list_workers(self) -> list[WorkerStatus]:
        with self._session_scope() as session:
            return list(session.execute(select(WorkerStatus).order_by(WorkerStatus.worker_id)).scalars().all())

    def prune_stale_workers(self, max_age_hours: int = 24) -> int:
        """Delete workers whose last heartbeat is older than max_age_hours; returns how many."""
        cutoff = _utcnow() - timedelta(hours=max_age_hours)
        with self._session_scope(write=True) as session:
            result = session.execute(delete(WorkerStatus).where(WorkerStatus.last_seen_at < cutoff))
            return result.rowcount or 0
