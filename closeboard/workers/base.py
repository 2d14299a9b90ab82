"""Worker lifecycle shared by background workers: schema preflight, heartbeat, commands and the poll loop."""

import logging
import signal
import socket
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable

from closeboard.core.logging import get_flight_logger
from closeboard.models.entities import WorkerCommand, WorkerState
from closeboard.repository.system_metadata_repo import SystemMetadataRepository
from closeboard.repository.worker_repo import WorkerRepository

_log = logging.getLogger(__name__)

PAUSED_POLL_SECONDS = 1.0
BUSY_PAUSE_SECONDS = 0.1


class BaseWorker(ABC):
    """
    A worker registered in worker_status and driven by process_task().

    Commands queued through WorkerRepository.send_command are read once per loop.
    While paused the loop keeps reading commands but does no work. Every sleep waits
    on the stop event, so shutdown (command, signal or should_exit) ends the loop
    without waiting out the poll interval. The row is left offline however run() exits.
    """

    MIN_SCHEMA_VERSION = 3

    def __init__(
        self,
        worker_id: str,
        repository: WorkerRepository,
        heartbeat_interval_seconds: float = 15.0,
        *,
        system_metadata_repo: SystemMetadataRepository,
        idle_poll_interval_seconds: float = 5.0,
    ) -> None:
        self.worker_id = worker_id
        self._repo = repository
        self._heartbeat_interval = heartbeat_interval_seconds
        self._system_metadata_repo = system_metadata_repo
        self._idle_poll_interval = idle_poll_interval_seconds
        self._state = WorkerState.idle
        self._stop = threading.Event()
        self._commands: dict[str, Callable[[], None]] = {
            WorkerCommand.pause.value: lambda: self._set_state(WorkerState.paused),
            WorkerCommand.resume.value: lambda: self._set_state(WorkerState.idle),
            WorkerCommand.shutdown.value: self._request_stop,
            WorkerCommand.forensic_dump.value: self._forensic_dump,
        }

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def should_exit(self) -> bool:
        return self._stop.is_set()

    @should_exit.setter
    def should_exit(self, value: bool) -> None:
        if value:
            self._stop.set()
        else:
            self._stop.clear()

    @abstractmethod
    def process_task(self) -> bool:
        """One pass of work. True when something was done, False when there was nothing due."""
        ...

    def get_heartbeat_stats(self) -> dict[str, Any] | None:
        return None

    def _preflight(self) -> None:
        version = self._system_metadata_repo.get_schema_version()
        if version is None:
            raise RuntimeError(
                "Pre-flight check failed: system_metadata.schema_version is missing. "
                "Run migrations (alembic upgrade head)."
            )
        if version < self.MIN_SCHEMA_VERSION:
            raise RuntimeError(
                f"Pre-flight check failed: database is at schema_version {version}, "
                f"{type(self).__name__} needs at least {self.MIN_SCHEMA_VERSION}. Run alembic upgrade head."
            )

    def _set_state(self, new_state: WorkerState) -> None:
        if new_state == self._state:
            return
        _log.info("worker_state worker_id=%s %s -> %s", self.worker_id, self._state.value, new_state.value)
        self._state = new_state
        self._repo.set_state(self.worker_id, new_state)

    def _request_stop(self) -> None:
        self._stop.set()

    def _forensic_dump(self) -> None:
        flight_logger = get_flight_logger()
        if flight_logger is None:
            _log.warning("forensic_dump ignored worker_id=%s: logging was not set up", self.worker_id)
            return
        path = flight_logger.dump(self.worker_id)
        _log.info("forensic_dump worker_id=%s path=%s", self.worker_id, path)

    def _apply_pending_command(self) -> None:
        command = self._repo.get_command(self.worker_id)
        if command == WorkerCommand.none.value:
            return
        handler = self._commands.get(command)
        if handler is None:
            _log.warning("unknown worker command worker_id=%s command=%s", self.worker_id, command)
        else:
            handler()
        self._repo.clear_command(self.worker_id)

    def _heartbeat_loop(self) -> None:
        while not self._stop.wait(self._heartbeat_interval):
            try:
                self._repo.update_heartbeat(self.worker_id, stats=self.get_heartbeat_stats())
            except Exception:  # noqa: BLE001
                _log.error("heartbeat failed worker_id=%s", self.worker_id, exc_info=True)

    def _install_signal_handlers(self) -> None:
        # signal.signal only works on the main thread; threaded runs stop via should_exit
        if threading.current_thread() is not threading.main_thread():
            return

        def _handler(signum: int, _frame: Any) -> None:
            _log.info("worker_id=%s received signal %s, stopping", self.worker_id, signum)
            self._stop.set()

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)

    def run(self, once: bool = False) -> None:
        """
        Loop until stopped. With once=True the loop ends the first time process_task()
        finds nothing due.
        """
        self._install_signal_handlers()
        self._preflight()
        self._repo.register_worker(self.worker_id, WorkerState.idle, hostname=socket.gethostname())
        self._state = WorkerState.idle
        heartbeat = threading.Thread(target=self._heartbeat_loop, name=f"{self.worker_id}-heartbeat", daemon=True)
        heartbeat.start()

        try:
            while not self._stop.is_set():
                self._apply_pending_command()
                if self._stop.is_set():
                    break
                if self._state == WorkerState.paused:
                    self._stop.wait(PAUSED_POLL_SECONDS)
                    continue
                if self.process_task():
                    self._set_state(WorkerState.processing)
                    self._stop.wait(BUSY_PAUSE_SECONDS)
                    continue
                self._set_state(WorkerState.idle)
                if once:
                    break
                self._stop.wait(self._idle_poll_interval)
        finally:
            self._stop.set()
            self._state = WorkerState.offline
            self._repo.set_state(self.worker_id, WorkerState.offline)
            heartbeat.join(timeout=2.0)
