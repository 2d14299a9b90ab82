"""Shared fixtures: a PostgreSQL testcontainer per module, tables, and worker helpers."""

import argparse
import contextlib
import os
import threading
from typing import Iterator

import pytest
from alembic.config import Config
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel
from testcontainers.postgres import PostgresContainer

from closeboard.models.entities import SystemMetadata
from closeboard.workers.base import BaseWorker

POSTGRES_IMAGE = "postgres:16-alpine"


def clear_app_db_caches() -> None:
    """
    Drop the cached config and the API's engines/repositories so the next
    request or CLI command reads DATABASE_URL again.
    """
    from closeboard.api import deps
    from closeboard.core import config as config_module

    config_module._config = None  # type: ignore[attr-defined]
    deps.clear_caches()


def alembic_config(database_url: str) -> Config:
    """Alembic config for the repo's migrations, pointed at database_url through `-x database_url=`."""
    cfg = Config("alembic.ini")
    cfg.set_main_option("script_location", "migrations")
    cfg.cmd_opts = argparse.Namespace(x=[f"database_url={database_url}"])
    return cfg


@contextlib.contextmanager
def database_url_env(url: str) -> Iterator[None]:
    """Point DATABASE_URL (and the app caches) at url for the duration of the block."""
    previous = os.environ.get("DATABASE_URL")
    os.environ["DATABASE_URL"] = url
    clear_app_db_caches()
    try:
        yield
    finally:
        if previous is None:
            os.environ.pop("DATABASE_URL", None)
        else:
            os.environ["DATABASE_URL"] = previous
        clear_app_db_caches()


def create_tables(engine, session_factory) -> None:
    """create_all from the models plus the schema_version row migrations would leave behind."""
    SQLModel.metadata.create_all(engine)
    with session_factory() as session:
        if session.get(SystemMetadata, "schema_version") is None:
            session.add(SystemMetadata(key="schema_version", value=str(BaseWorker.MIN_SCHEMA_VERSION)))
            session.commit()


@pytest.fixture(scope="module")
def postgres_container():
    with PostgresContainer(POSTGRES_IMAGE) as postgres:
        yield postgres


@pytest.fixture(scope="module")
def engine(postgres_container):
    """Engine on the module's container; DATABASE_URL points there so the API and CLI share it."""
    url = postgres_container.get_connection_url()
    with database_url_env(url):
        engine = create_engine(url, pool_pre_ping=True)
        yield engine
        engine.dispose()


@pytest.fixture(scope="module")
def _session_factory(engine):
    factory = sessionmaker(engine, autocommit=False, autoflush=False, expire_on_commit=False)
    create_tables(engine, factory)
    return factory


@pytest.fixture
def run_worker():
    """
    `with run_worker(worker): ...` runs worker.run() in a daemon thread for the
    duration of the block, then sets should_exit and joins.
    """

    @contextlib.contextmanager
    def _run(worker):
        thread = threading.Thread(target=worker.run, daemon=True)
        thread.start()
        try:
            yield worker
        finally:
            worker.should_exit = True
            thread.join(timeout=5.0)

    return _run
