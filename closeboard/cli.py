"""Typer Admin CLI: databases, boards, requests, reminders, workers and accounting sync."""

import json
import socket
import uuid
from datetime import date, datetime
from pathlib import Path

import typer
from dateutil import parser as date_parser
from rich.console import Console
from rich.table import Table

from closeboard.api import deps
from closeboard.core.config import get_config
from closeboard.core.errors import ServiceError
from closeboard.core.logging import setup_logging
from closeboard.models.entities import BoardCadence, BoardStatus, QuestMode
from closeboard.quests.reminders import run_due_reminders_once, run_due_scheduled_quests_once
from closeboard.quests.session import RequestSession, SessionState
from closeboard.repository.system_metadata_repo import SystemMetadataRepository
from closeboard.repository.worker_repo import WorkerRepository
from closeboard.workers.reminder_worker import ReminderWorker

app = typer.Typer(no_args_is_help=True)
db_app = typer.Typer(help="List, export and import databases.")
app.add_typer(db_app, name="db")
board_app = typer.Typer(help="Create, list and roll forward boards.")
app.add_typer(board_app, name="board")
request_app = typer.Typer(help="Send requests for jobs.")
app.add_typer(request_app, name="request")
reminders_app = typer.Typer(help="Send due reminders and scheduled requests.")
app.add_typer(reminders_app, name="reminders")
worker_app = typer.Typer(help="Start and list reminder workers.")
app.add_typer(worker_app, name="worker")
accounting_app = typer.Typer(help="Accounting integration sync.")
app.add_typer(accounting_app, name="accounting")


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(1)


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return date_parser.parse(value)
    except (ValueError, OverflowError):
        _fail(f"Could not read date/time: {value}")


@db_app.command("list")
def db_list() -> None:
    """List databases (ID | Name | Columns | Rows | Last Import)."""
    databases = deps.get_database_service().list_databases()
    if not databases:
        typer.echo("No databases.")
        return
    table = Table(title=None)
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Columns", justify="right")
    table.add_column("Rows", justify="right")
    table.add_column("Last Import")
    for db in databases:
        imported = db.last_imported_at.strftime("%Y-%m-%d %H:%M") if db.last_imported_at else ""
        table.add_row(str(db.id), db.name, str(len(db.columns or [])), str(db.row_count), imported)
    Console().print(table)


@db_app.command("export")
def db_export(
    database_id: int = typer.Argument(..., help="Database ID"),
    output: Path | None = typer.Option(None, "--output", "-o", help="File to write. Defaults to the database name."),
    fmt: str = typer.Option("csv", "--format", help="csv or xlsx"),
    template: bool = typer.Option(False, "--template", help="Write headers only (an import template)."),
) -> None:
    """Export a database's rows (or an empty import template) to CSV or XLSX."""
    service = deps.get_database_service()
    try:
        export = service.template(database_id, fmt) if template else service.export(database_id, fmt)
    except ServiceError as e:
        _fail(e.message)
    path = output or Path(export.filename)
    path.write_bytes(export.content)
    typer.echo(f"Wrote {path}")


@db_app.command("import")
def db_import(
    database_id: int = typer.Argument(..., help="Database ID"),
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="CSV or XLSX file"),
    preview: bool = typer.Option(False, "--preview", help="Show what would change without importing."),
    update_existing: bool = typer.Option(False, "--update-existing", help="Replace rows whose values changed."),
) -> None:
    """Import rows from a file. Rows are matched to existing ones by the identifier columns."""
    service = deps.get_database_service()
    try:
        rows = service.parse_upload(database_id, file.read_bytes(), file.name)
        if preview:
            result = service.preview_import(database_id, rows)
            typer.echo(
                f"{result.row_count} row(s): {result.new_row_count} new, "
                f"{len(result.update_candidates)} changed, {result.exact_duplicate_count} duplicate, "
                f"{result.invalid_row_count} invalid. {result.total_after_import} row(s) after import."
            )
            for candidate in result.update_candidates[:10]:
                changes = ", ".join(f"{c.column_label}: {c.old_value!r} -> {c.new_value!r}" for c in candidate.changes)
                typer.echo(f"  {candidate.identifier_values}: {changes}")
            for message in result.errors + result.warnings:
                typer.secho(f"  {message}", fg=typer.colors.YELLOW)
            return
        outcome = service.import_rows(database_id, rows, update_existing=update_existing)
    except ServiceError as e:
        _fail(e.message)
    typer.secho(
        f"Added {outcome.added}, updated {outcome.updated}, skipped {outcome.duplicates} duplicate(s).",
        fg=typer.colors.GREEN,
    )
    for message in outcome.errors:
        typer.secho(f"  {message}", fg=typer.colors.YELLOW)


@board_app.command("create")
def board_create(
    cadence: BoardCadence = typer.Option(BoardCadence.monthly, "--cadence", help="Board cadence."),
    period_start: str | None = typer.Option(None, "--period-start", help="Any date in the period (YYYY-MM-DD)."),
    name: str | None = typer.Option(None, "--name", help="Defaults to a period name, e.g. 'January 2026'."),
    automation: bool = typer.Option(False, "--automation", help="Open the next period's board on completion."),
) -> None:
    """Create a board. Recurring cadences normalize the start date to the period start."""
    start: date | None = None
    if period_start:
        parsed = _parse_datetime(period_start)
        start = parsed.date() if parsed else None
    try:
        board = deps.get_board_service().create(
            name=name, cadence=cadence, period_start=start, automation_enabled=automation
        )
    except ServiceError as e:
        _fail(e.message)
    typer.echo(f"Created board '{board.name}' (id={board.id}, {board.period_start} to {board.period_end}).")


@board_app.command("list")
def board_list(
    status: list[BoardStatus] | None = typer.Option(None, "--status", help="Filter by status (repeatable)."),
    year: int | None = typer.Option(None, "--year", help="Only boards whose period starts in this year."),
) -> None:
    """List boards (ID | Name | Cadence | Period | Status | Jobs)."""
    boards = deps.get_board_service().list_boards(statuses=status or None, year=year)
    if not boards:
        typer.echo("No boards.")
        return
    table = Table(title=None)
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Cadence")
    table.add_column("Period")
    table.add_column("Status")
    table.add_column("Jobs", justify="right")
    for board, job_count in boards:
        period = f"{board.period_start} - {board.period_end}" if board.period_start else ""
        table.add_row(str(board.id), board.name, board.cadence.value, period, board.status.value, str(job_count))
    Console().print(table)


@board_app.command("complete")
def board_complete(board_id: int = typer.Argument(..., help="Board ID")) -> None:
    """Mark a board complete; automated boards open the next period."""
    try:
        board, next_board = deps.get_board_service().complete(board_id)
    except ServiceError as e:
        _fail(e.message)
    typer.echo(f"Board '{board.name}' is complete.")
    if next_board is not None:
        typer.echo(f"Next period: '{next_board.name}' (id={next_board.id}).")


@board_app.command("roll-forward")
def board_roll_forward(board_id: int = typer.Argument(..., help="Board ID")) -> None:
    """Open the next period's board (idempotent)."""
    try:
        board, created = deps.get_board_service().create_next_period_board(board_id)
    except ServiceError as e:
        _fail(e.message)
    if board is None:
        typer.echo("Ad hoc boards have no next period.")
    elif created:
        typer.echo(f"Created '{board.name}' (id={board.id}).")
    else:
        typer.echo(f"'{board.name}' (id={board.id}) already exists.")


@request_app.command("send")
def request_send(
    job_id: int = typer.Argument(..., help="Job ID"),
    mode: QuestMode = typer.Option(QuestMode.standard, "--mode", help="Request mode."),
    contact: list[int] | None = typer.Option(None, "--contact", help="Recipient contact ID (repeatable). Defaults to stakeholders."),
    database_id: int | None = typer.Option(None, "--database", help="Database with recipient rows (data_personalization)."),
    email_column: str | None = typer.Option(None, "--email-column", help="Column key holding the email address."),
    subject: str | None = typer.Option(None, "--subject", help="Override the drafted subject."),
    body: str | None = typer.Option(None, "--body", help="Override the drafted body."),
    instruction: list[str] | None = typer.Option(None, "--refine", help="Refinement instruction (repeatable)."),
    send_at: str | None = typer.Option(None, "--send-at", help="Schedule for this date/time instead of sending now."),
    remind_every: int | None = typer.Option(None, "--remind-every", help="Send reminders every N days."),
    deadline: str | None = typer.Option(None, "--deadline", help="Reminders stop at this date/time."),
    allow_missing: bool = typer.Option(False, "--allow-missing", help="Send even with unresolved {{tags}}."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the draft and stop."),
) -> None:
    """Draft, optionally refine, and send (or schedule) a request for a job."""
    session = RequestSession(deps.get_quest_service(), job_id)
    try:
        session.select_mode(mode)
        session.select_recipients(contact_ids=contact or None, database_id=database_id, email_column_key=email_column)
        session.generate_draft()
        if session.used_fallback:
            typer.secho("Drafting service unavailable; using the template draft.", fg=typer.colors.YELLOW)
        for text in instruction or []:
            session.refine(text)
            if session.refinement_failed:
                typer.secho(f"Could not apply refinement: {text}", fg=typer.colors.YELLOW)
        session.edit(subject=subject, body=body)
    except ServiceError as e:
        _fail(e.message)

    typer.echo(f"Subject: {session.draft.subject}\n\n{session.draft.body}\n")
    if dry_run:
        return

    when = _parse_datetime(send_at)
    if when is not None:
        session.schedule(send_at=when)
    else:
        session.send_immediately()
    if remind_every:
        session.configure_reminders(True, frequency_days=remind_every, deadline=_parse_datetime(deadline))

    if session.send(allow_missing=allow_missing) == SessionState.error:
        _fail(f"{session.error_code}: {session.error_message}")
    execution = session.execution
    if execution.scheduled_for is not None:
        typer.secho(f"Request {execution.quest.id} scheduled for {execution.scheduled_for}.", fg=typer.colors.GREEN)
    else:
        typer.secho(
            f"Request {execution.quest.id} sent to {execution.sent} recipient(s), {execution.failed} failed.",
            fg=typer.colors.GREEN,
        )


@reminders_app.command("run-once")
def reminders_run_once() -> None:
    """Send scheduled requests and reminders that are due now, then exit."""
    cfg = get_config()
    scheduled = run_due_scheduled_quests_once(deps.get_quest_service(), deps.get_quest_repo())
    reminders = run_due_reminders_once(deps.get_quest_repo(), deps.get_mailer_cached, cfg)
    typer.echo(
        f"Scheduled requests: {scheduled.sent} sent, {scheduled.failed} failed of {scheduled.checked}. "
        f"Reminders: {reminders.sent} sent, {reminders.skipped} skipped of {reminders.checked}."
    )
    for error in scheduled.errors + reminders.errors:
        typer.secho(f"  {error}", fg=typer.colors.YELLOW)


@worker_app.command("start")
def worker_start(
    heartbeat: float = typer.Option(15.0, "--heartbeat", help="Heartbeat interval in seconds."),
    worker_name: str | None = typer.Option(None, "--worker-name", help="Force a specific worker ID. Defaults to auto-generated."),
    once: bool = typer.Option(False, "--once", help="Run one pass then exit when nothing is due."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log each pass to the console."),
) -> None:
    """Start the reminder worker: sends scheduled requests and due reminders."""
    cfg = get_config()
    setup_logging(verbose=verbose)
    session_factory = deps.get_session_factory()
    worker_id = worker_name or cfg.worker_id or f"reminders-{socket.gethostname()}-{uuid.uuid4().hex[:6]}"
    typer.secho(f"Starting reminder worker: {worker_id}")

    worker = ReminderWorker(
        worker_id=worker_id,
        repository=WorkerRepository(session_factory),
        heartbeat_interval_seconds=heartbeat,
        system_metadata_repo=SystemMetadataRepository(session_factory),
        quest_repo=deps.get_quest_repo(),
        quest_service=deps.get_quest_service(),
        mailer_provider=deps.get_mailer_cached,
        settings=cfg,
        idle_poll_interval_seconds=cfg.reminder_poll_interval_seconds,
    )
    try:
        worker.run(once=once)
    except KeyboardInterrupt:
        typer.secho(f"Worker {worker_id} shutting down...")
    except RuntimeError as e:
        _fail(str(e))


@worker_app.command("list")
def worker_list() -> None:
    """List registered workers (ID | State | Last Seen | Stats)."""
    workers = WorkerRepository(deps.get_session_factory()).list_workers()
    if not workers:
        typer.echo("No workers registered.")
        return
    table = Table(title=None)
    table.add_column("Worker ID")
    table.add_column("State")
    table.add_column("Last Seen")
    table.add_column("Stats", style="dim")
    for w in workers:
        table.add_row(w.worker_id, w.state.value, w.last_seen_at.strftime("%Y-%m-%d %H:%M:%S"), json.dumps(w.stats or {}))
    Console().print(table)


@worker_app.command("prune")
def worker_prune(
    max_age_hours: int = typer.Option(24, "--max-age-hours", help="Remove workers not seen for this many hours."),
) -> None:
    """Remove worker rows that have not sent a heartbeat recently."""
    removed = WorkerRepository(deps.get_session_factory()).prune_stale_workers(max_age_hours=max_age_hours)
    typer.echo(f"Removed {removed} stale worker(s).")


@accounting_app.command("sync")
def accounting_sync(
    source: list[str] | None = typer.Option(None, "--source", help="contacts, accounts, invoices or payments (repeatable)."),
) -> None:
    """Pull contacts and ledger data from the accounting service."""
    try:
        result = deps.get_accounting_service().sync(source or None)
    except ServiceError as e:
        _fail(e.message)
    except ValueError as e:
        _fail(str(e))
    for key, count in result.counts.items():
        typer.echo(f"{key}: {count}")
    for error in result.errors:
        typer.secho(f"  {error}", fg=typer.colors.YELLOW)
    if result.errors:
        raise typer.Exit(1)


@accounting_app.command("status")
def accounting_status() -> None:
    """Show the state of the last accounting sync."""
    state = deps.get_accounting_service().status()
    typer.echo(f"Status: {state.status.value}")
    if state.last_started_at:
        typer.echo(f"Started: {state.last_started_at}")
    if state.last_finished_at:
        typer.echo(f"Finished: {state.last_finished_at}")
    if state.last_error:
        typer.secho(f"Error: {state.last_error}", fg=typer.colors.RED)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
