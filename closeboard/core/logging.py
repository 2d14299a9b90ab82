"""Logging setup for the CLI, API and workers, plus the in-memory flight recorder used for forensic dumps."""

import logging
import sys
from collections import deque
from datetime import datetime, timezone
from pathlib import Path

from closeboard.core.config import get_config

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
FLIGHT_LOG_CAPACITY = 20_000

_flight_logger: "FlightLogger | None" = None


class FlightLogger(logging.Handler):
    """
    Keeps the most recent `capacity` records of every level in memory.

    A worker writes the buffer to disk when told to (forensic_dump command) or
    when a scheduled request fails, so the lines leading up to the failure survive
    even though the console only shows warnings and above.
    """

    def __init__(self, forensics_dir: str | Path, capacity: int = FLIGHT_LOG_CAPACITY) -> None:
        super().__init__(level=logging.DEBUG)
        self.forensics_dir = Path(forensics_dir)
        self._records: deque[logging.LogRecord] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        self._records.append(record)

    def __len__(self) -> int:
        return len(self._records)

    def dump(self, worker_id: str, quest_id: int | None = None) -> Path:
        """
        Write the buffer to {forensics_dir}/{worker_id}[_quest{id}]_{utc timestamp}.log.
        The first line names the worker, the quest (if any) and how many records follow.
        """
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        suffix = f"_quest{quest_id}" if quest_id is not None else ""
        self.forensics_dir.mkdir(parents=True, exist_ok=True)
        path = self.forensics_dir / f"{worker_id}{suffix}_{stamp}.log"

        formatter = self.formatter or logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
        records = list(self._records)
        header = f"# worker={worker_id} quest={quest_id if quest_id is not None else '-'} records={len(records)}"
        with path.open("w", encoding="utf-8") as f:
            f.write(header + "\n")
            for record in records:
                f.write(formatter.format(record) + "\n")
        return path


def get_flight_logger() -> FlightLogger | None:
    return _flight_logger


def setup_logging(verbose: bool = False) -> FlightLogger:
    """
    Route all records to the root logger at DEBUG.

    The console shows settings.log_level and above; with verbose=True the
    `closeboard` loggers also print INFO to stdout. Every record lands in the
    flight recorder regardless of the console level. Calling again replaces the
    handlers installed by the previous call.
    """
    global _flight_logger
    cfg = get_config()
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console_level = logging.INFO if verbose else logging.getLevelName((cfg.log_level or "WARNING").upper())
    console.setLevel(console_level if isinstance(console_level, int) else logging.WARNING)
    console.setFormatter(formatter)
    if verbose:
        console.addFilter(logging.Filter("closeboard"))
    root.addHandler(console)

    flight = FlightLogger(cfg.forensics_dir)
    flight.setFormatter(formatter)
    root.addHandler(flight)
    _flight_logger = flight
    return flight
