"""Smoke tests for the admin CLI against a Postgres testcontainer (DATABASE_URL set by the engine fixture)."""

import uuid

import pytest
from typer.testing import CliRunner

from closeboard.boards.service import BoardService
from closeboard.cli import app
from closeboard.databases.schema import SchemaColumn
from closeboard.databases.service import DatabaseService
from closeboard.jobs.service import JobService
from closeboard.repository.board_repo import BoardRepository
from closeboard.repository.contact_repo import ContactRepository
from closeboard.repository.database_repo import DatabaseRepository
from closeboard.repository.job_repo import JobRepository
from tests.conftest import clear_app_db_caches

pytestmark = [pytest.mark.slow]

runner = CliRunner()


@pytest.fixture
def cli_db(_session_factory):
    """Tables created; app caches cleared so the CLI connects to the testcontainer."""
    clear_app_db_caches()
    yield _session_factory
    clear_app_db_caches()


def test_board_create_list_and_roll_forward(cli_db):
    result = runner.invoke(app, ["board", "create", "--cadence", "monthly", "--period-start", "2035-03-15", "--automation"])
    assert result.exit_code == 0, result.output
    assert "Created board 'March 2035'" in result.output
    assert "2035-03-01 to 2035-03-31" in result.output

    result = runner.invoke(app, ["board", "list", "--year", "2035"])
    assert result.exit_code == 0, result.output
    assert "March 2035" in result.output

    board = BoardService(BoardRepository(cli_db), JobRepository(cli_db)).list_boards(year=2035)[0][0]
    result = runner.invoke(app, ["board", "roll-forward", str(board.id)])
    assert result.exit_code == 0, result.output
    assert "Created 'April 2035'" in result.output

    result = runner.invoke(app, ["board", "roll-forward", str(board.id)])
    assert "already exists" in result.output


def test_board_create_rejects_bad_date(cli_db):
    result = runner.invoke(app, ["board", "create", "--period-start", "not a date"])
    assert result.exit_code == 1
    assert "Could not read date/time" in result.output


def test_board_complete_unknown_board_fails(cli_db):
    result = runner.invoke(app, ["board", "complete", "999999"])
    assert result.exit_code == 1
    assert "Board not found" in result.output


def test_db_list_export_and_import(cli_db, tmp_path):
    service = DatabaseService(DatabaseRepository(cli_db))
    db = service.create(
        f"Ledger {uuid.uuid4().hex[:6]}",
        [
            SchemaColumn(key="account", label="Account", required=True),
            SchemaColumn(key="balance", label="Balance", data_type="currency", order=1),
        ],
        ["account"],
        rows=[{"account": "1000", "balance": 25}],
    )

    result = runner.invoke(app, ["db", "list"])
    assert result.exit_code == 0, result.output
    assert db.name in result.output

    out = tmp_path / "ledger.csv"
    result = runner.invoke(app, ["db", "export", str(db.id), "--output", str(out)])
    assert result.exit_code == 0, result.output
    assert out.read_text().splitlines() == ["Account,Balance", "1000,25"]

    template = tmp_path / "template.csv"
    result = runner.invoke(app, ["db", "export", str(db.id), "--template", "-o", str(template)])
    assert result.exit_code == 0, result.output
    assert template.read_text().splitlines() == ["Account,Balance"]

    upload = tmp_path / "upload.csv"
    upload.write_text("Account,Balance\n1000,30\n2000,5\n")
    result = runner.invoke(app, ["db", "import", str(db.id), str(upload), "--preview"])
    assert result.exit_code == 0, result.output
    assert "1 new, 1 changed" in result.output
    assert service.get(db.id).row_count == 1

    result = runner.invoke(app, ["db", "import", str(db.id), str(upload), "--update-existing"])
    assert result.exit_code == 0, result.output
    assert "Added 1, updated 1" in result.output
    assert service.get(db.id).rows == [{"account": "1000", "balance": 30}, {"account": "2000", "balance": 5}]

    result = runner.invoke(app, ["db", "export", "999999"])
    assert result.exit_code == 1


def test_request_send_dry_run_then_send(cli_db):
    contacts = ContactRepository(cli_db)
    boards = BoardService(BoardRepository(cli_db), JobRepository(cli_db))
    jobs = JobService(JobRepository(cli_db), boards, contacts)
    person = contacts.create(first_name="Noor", email=f"noor-{uuid.uuid4().hex[:8]}@example.com")
    job = jobs.create("Close binder", stakeholder_ids=[person.id])

    result = runner.invoke(app, ["request", "send", str(job.id), "--dry-run"])
    assert result.exit_code == 0, result.output
    assert "Subject: Request: Close binder" in result.output
    assert "Hi {{First Name}}," in result.output

    result = runner.invoke(app, ["request", "send", str(job.id), "--subject", "Binder items", "--remind-every", "2"])
    assert result.exit_code == 0, result.output
    assert "sent to 1 recipient(s), 0 failed" in result.output


def test_reminders_run_once_and_worker_list(cli_db):
    result = runner.invoke(app, ["reminders", "run-once"])
    assert result.exit_code == 0, result.output
    assert "Scheduled requests:" in result.output
    assert "Reminders:" in result.output

    result = runner.invoke(app, ["worker", "list"])
    assert result.exit_code == 0, result.output

    result = runner.invoke(app, ["worker", "prune", "--max-age-hours", "1000000"])
    assert result.exit_code == 0, result.output
    assert "Removed 0 stale worker(s)." in result.output


def test_accounting_status_and_sync_without_connection(cli_db):
    result = runner.invoke(app, ["accounting", "status"])
    assert result.exit_code == 0, result.output
    assert "Status: idle" in result.output

    result = runner.invoke(app, ["accounting", "sync", "--source", "contacts"])
    assert result.exit_code == 1
    assert "No accounting integration is connected" in result.output

    result = runner.invoke(app, ["accounting", "sync", "--source", "ledger"])
    assert result.exit_code == 1
