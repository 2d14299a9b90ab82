"""Requests end to end against Postgres: create, render, send, schedule, reminders, replies."""

import uuid
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from closeboard.boards.service import BoardService
from closeboard.core.config import Settings
from closeboard.core.errors import ConflictError, UpstreamError, ValidationError
from closeboard.databases.schema import SchemaColumn
from closeboard.databases.service import DatabaseService
from closeboard.drafting.base import TemplateDrafter
from closeboard.jobs.service import JobService
from closeboard.mail.base import BaseMailer, LogMailer, MailDeliveryError
from closeboard.models.entities import BoardCadence, JobStatus, QuestMode, QuestStatus, RecipientStatus, SendTiming
from closeboard.quests.engine import QuestService
from closeboard.quests.reminders import run_due_reminders_once, run_due_scheduled_quests_once
from closeboard.quests.schema import QuestCreate
from closeboard.repository.board_repo import BoardRepository
from closeboard.repository.contact_repo import ContactRepository
from closeboard.repository.database_repo import DatabaseRepository
from closeboard.repository.job_repo import JobRepository
from closeboard.repository.quest_repo import QuestRepository

pytestmark = [pytest.mark.slow]

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


class _FailingMailer(BaseMailer):
    def send(self, message):
        raise MailDeliveryError("550 mailbox unavailable")


class _BrokenMailer(BaseMailer):
    def send(self, message):
        raise RuntimeError("connection pool exhausted")


@pytest.fixture
def env(_session_factory):
    """Services wired to the test database; env.mailer can be swapped per test."""
    contacts = ContactRepository(_session_factory)
    boards = BoardService(BoardRepository(_session_factory), JobRepository(_session_factory))
    jobs = JobService(JobRepository(_session_factory), boards, contacts)
    quests = QuestRepository(_session_factory)
    databases = DatabaseRepository(_session_factory)
    ns = SimpleNamespace(
        contacts=contacts,
        boards=boards,
        jobs=jobs,
        quests=quests,
        databases=DatabaseService(databases),
        mailer=LogMailer(),
        settings=Settings(sender_address="close@example.com"),
    )
    ns.service = QuestService(
        quests=quests,
        jobs=jobs,
        boards=boards,
        contacts=contacts,
        databases=databases,
        drafter=TemplateDrafter(),
        mailer_provider=lambda: ns.mailer,
        settings=ns.settings,
    )
    return ns


def _job_with_stakeholders(env, *first_names: str):
    """Ad hoc board with a job whose stakeholders are fresh contacts; returns (job, contacts)."""
    board = env.boards.create(
        name=f"Close {uuid.uuid4().hex[:6]}",
        cadence=BoardCadence.ad_hoc,
        period_start=date(2026, 2, 1),
        period_end=date(2026, 2, 28),
    )
    people = [
        env.contacts.create(first_name=name, email=f"{name.lower()}-{uuid.uuid4().hex[:8]}@example.com")
        for name in first_names
    ]
    job = env.jobs.create("Collect W-9", board_id=board.id, stakeholder_ids=[p.id for p in people])
    return job, people


def _create(env, job_id: int, **overrides):
    values = {"job_id": job_id, "subject": "W-9 for {{First Name}}", "body": "Hi {{First Name}}, please send it."}
    values.update(overrides)
    return env.service.create_quest(QuestCreate(**values), now=NOW)


def test_execute_sends_to_stakeholders_and_starts_reminders(env):
    job, people = _job_with_stakeholders(env, "Ada", "Grace")
    quest = _create(env, job.id, reminders_enabled=True, reminder_frequency_days=3)
    assert quest.status == QuestStatus.ready
    assert quest.reminder_max_count == 3

    execution = env.service.execute(quest.id, now=NOW)

    assert (execution.sent, execution.failed) == (2, 0)
    assert execution.quest.status == QuestStatus.sent
    subjects = sorted(m.subject for _, m in env.mailer.sent)
    assert subjects == ["W-9 for Ada", "W-9 for Grace"]
    assert all(m.sender == "close@example.com" for _, m in env.mailer.sent)
    assert env.jobs.get(job.id).status == JobStatus.in_progress

    recipients = env.quests.recipients(quest.id)
    assert {r.status for r in recipients} == {RecipientStatus.sent}
    state = env.quests.get_reminder_state(recipients[0].id)
    assert state.max_count == 3
    assert state.frequency_hours == 72
    assert state.next_send_at == NOW + timedelta(hours=72)


def test_execute_twice_conflicts(env):
    job, _ = _job_with_stakeholders(env, "Ada")
    quest = _create(env, job.id)
    env.service.execute(quest.id, now=NOW)
    with pytest.raises(ConflictError) as exc:
        env.service.execute(quest.id, now=NOW)
    assert exc.value.code == "QUEST_NOT_READY"


def test_unresolved_variables_block_until_allowed(env):
    job, people = _job_with_stakeholders(env, "Ada", "Grace")
    env.contacts.set_tag(people[0].id, "amount", {"value": "$120.00"})
    quest = _create(env, job.id, body="Hi {{First Name}}, you owe {{Amount}}.")

    with pytest.raises(ValidationError) as exc:
        env.service.execute(quest.id, now=NOW)
    assert exc.value.code == "UNRESOLVED_VARIABLES"
    assert env.service.get(quest.id).status == QuestStatus.ready
    assert env.mailer.sent == []

    env.service.execute(quest.id, allow_missing=True, now=NOW)
    bodies = {m.to: m.body for _, m in env.mailer.sent}
    assert bodies[people[0].email] == "Hi Ada, you owe $120.00."
    assert bodies[people[1].email] == "Hi Grace, you owe [MISSING: Amount]."


def test_rejected_override_leaves_stored_text_alone(env):
    job, _ = _job_with_stakeholders(env, "Ada")
    quest = _create(env, job.id)

    with pytest.raises(ValidationError) as exc:
        env.service.execute(quest.id, body="Hi {{First Name}}, you owe {{Amount}}.", now=NOW)
    assert exc.value.code == "UNRESOLVED_VARIABLES"
    stored = env.service.get(quest.id)
    assert stored.body == "Hi {{First Name}}, please send it."
    assert stored.status == QuestStatus.ready

    env.service.execute(quest.id, subject="Your W-9, {{First Name}}", now=NOW)
    assert env.service.get(quest.id).subject == "Your W-9, {{First Name}}"
    assert env.mailer.sent[-1][1].subject == "Your W-9, Ada"


def test_unexpected_delivery_error_marks_quest_failed(env):
    job, _ = _job_with_stakeholders(env, "Ada")
    quest = _create(env, job.id)
    env.mailer = _BrokenMailer()

    with pytest.raises(RuntimeError):
        env.service.execute(quest.id, now=NOW)
    failed = env.service.get(quest.id)
    assert failed.status == QuestStatus.failed
    assert "connection pool exhausted" in failed.error_message


def test_no_valid_recipients(env):
    job, _ = _job_with_stakeholders(env)
    with pytest.raises(ValidationError) as exc:
        _create(env, job.id)
    assert exc.value.code == "NO_VALID_RECIPIENTS"


def test_every_send_failing_marks_quest_failed(env):
    job, _ = _job_with_stakeholders(env, "Ada")
    quest = _create(env, job.id)
    env.mailer = _FailingMailer()
    with pytest.raises(UpstreamError) as exc:
        env.service.execute(quest.id, now=NOW)
    assert exc.value.code == "PROVIDER_SEND_FAILED"
    failed = env.service.get(quest.id)
    assert failed.status == QuestStatus.failed
    assert failed.failed_count == 1
    assert env.quests.recipients(quest.id)[0].error_message == "550 mailbox unavailable"


def test_scheduled_quest_is_sent_by_the_scheduled_pass(env):
    job, _ = _job_with_stakeholders(env, "Ada")
    quest = _create(env, job.id, send_timing=SendTiming.scheduled, send_at=NOW + timedelta(hours=1))
    execution = env.service.execute(quest.id, now=NOW)
    assert execution.scheduled_for == NOW + timedelta(hours=1)
    assert env.service.get(quest.id).status == QuestStatus.scheduled
    assert env.mailer.sent == []

    early = run_due_scheduled_quests_once(env.service, env.quests, now=NOW + timedelta(minutes=30))
    assert quest.id not in [q.id for q in env.quests.due_scheduled(NOW + timedelta(minutes=30))]
    assert early.sent == 0

    result = run_due_scheduled_quests_once(env.service, env.quests, now=NOW + timedelta(hours=2))
    assert result.sent >= 1
    assert env.service.get(quest.id).status == QuestStatus.sent
    assert len(env.mailer.sent) == 1


def test_period_aware_schedule_resolves_from_board_period(env):
    job, _ = _job_with_stakeholders(env, "Ada")
    quest = _create(
        env,
        job.id,
        send_timing=SendTiming.period_aware,
        schedule_config={"anchor": "period_end", "offset_days": 2, "send_time": "08:30"},
    )
    execution = env.service.execute(quest.id, now=datetime(2026, 2, 1, tzinfo=timezone.utc))
    # Feb 28 2026 is a Saturday: two business days later is Tuesday Mar 3
    assert execution.scheduled_for == datetime(2026, 3, 3, 8, 30, tzinfo=timezone.utc)


def test_scheduled_send_failure_marks_quest_failed(env):
    job, _ = _job_with_stakeholders(env, "Ada")
    quest = _create(env, job.id, send_timing=SendTiming.scheduled, send_at=NOW + timedelta(hours=1))
    env.service.execute(quest.id, now=NOW)
    env.mailer = _FailingMailer()
    run_due_scheduled_quests_once(env.service, env.quests, now=NOW + timedelta(hours=2))
    assert env.service.get(quest.id).status == QuestStatus.failed
    assert quest.id not in [q.id for q in env.quests.due_scheduled(NOW + timedelta(hours=3))]


def test_reminders_send_once_per_interval_and_stop_on_reply(env):
    job, people = _job_with_stakeholders(env, "Ada", "Grace")
    quest = _create(env, job.id, reminders_enabled=True, reminder_frequency_days=1)
    env.service.execute(quest.id, now=NOW)
    env.mailer.sent.clear()
    ada, grace = sorted(env.quests.recipients(quest.id), key=lambda r: r.email != people[0].email)

    first_due = NOW + timedelta(days=1, minutes=1)
    result = run_due_reminders_once(env.quests, lambda: env.mailer, env.settings, now=first_due)
    mine = [m for _, m in env.mailer.sent if m.to in (ada.email, grace.email)]
    assert len(mine) == 2
    assert all(m.subject.startswith("Reminder: W-9 for") for m in mine)
    assert result.sent >= 2

    again = run_due_reminders_once(env.quests, lambda: env.mailer, env.settings, now=first_due)
    assert [m for _, m in env.mailer.sent if m.to in (ada.email, grace.email)] == mine
    assert env.quests.get_reminder_state(ada.id).sent_count == 1
    assert again.errors == []

    env.service.record_reply(ada.id, now=first_due)
    assert env.quests.get_reminder_state(ada.id).stopped_reason == "replied"

    env.mailer.sent.clear()
    run_due_reminders_once(env.quests, lambda: env.mailer, env.settings, now=NOW + timedelta(days=2, minutes=2))
    assert [m.to for _, m in env.mailer.sent if m.to in (ada.email, grace.email)] == [grace.email]


def test_reminders_stop_at_max_count(env):
    job, _ = _job_with_stakeholders(env, "Ada")
    quest = _create(
        env,
        job.id,
        reminders_enabled=True,
        reminder_frequency_days=1,
        deadline=NOW + timedelta(days=2),
    )
    env.service.execute(quest.id, now=NOW)
    recipient = env.quests.recipients(quest.id)[0]
    assert env.quests.get_reminder_state(recipient.id).max_count == 1

    run_due_reminders_once(env.quests, lambda: env.mailer, env.settings, now=NOW + timedelta(days=1, minutes=1))
    state = env.quests.get_reminder_state(recipient.id)
    assert state.sent_count == 1
    assert state.stopped_reason == "max_reached"
    assert state.next_send_at is None


def test_reminders_stop_once_deadline_passes(env):
    job, _ = _job_with_stakeholders(env, "Ada")
    deadline = NOW + timedelta(days=5)
    quest = _create(env, job.id, reminders_enabled=True, reminder_frequency_days=1, deadline=deadline)
    env.service.execute(quest.id, now=NOW)
    recipient = env.quests.recipients(quest.id)[0]
    env.mailer.sent.clear()

    result = run_due_reminders_once(env.quests, lambda: env.mailer, env.settings, now=deadline + timedelta(minutes=1))

    state = env.quests.get_reminder_state(recipient.id)
    assert state.stopped_reason == "deadline_passed"
    assert state.sent_count == 0
    assert [m for _, m in env.mailer.sent if m.to == recipient.email] == []
    assert result.skipped >= 1


def test_reply_only_stop_condition_ignores_deadline(env):
    job, _ = _job_with_stakeholders(env, "Ada")
    deadline = NOW + timedelta(days=5)
    quest = _create(
        env,
        job.id,
        reminders_enabled=True,
        reminder_frequency_days=1,
        reminder_stop_condition="reply",
        deadline=deadline,
    )
    env.service.execute(quest.id, now=NOW)
    recipient = env.quests.recipients(quest.id)[0]

    run_due_reminders_once(env.quests, lambda: env.mailer, env.settings, now=deadline + timedelta(minutes=1))

    state = env.quests.get_reminder_state(recipient.id)
    assert state.sent_count == 1
    assert state.stopped_reason is None


def test_claim_reminder_is_compare_and_set(env):
    job, _ = _job_with_stakeholders(env, "Ada")
    quest = _create(env, job.id, reminders_enabled=True)
    env.service.execute(quest.id, now=NOW)
    state = env.quests.get_reminder_state(env.quests.recipients(quest.id)[0].id)
    due = NOW + timedelta(days=4)

    assert env.quests.claim_reminder(state.id, expected_sent_count=5, now=due) is False
    assert env.quests.claim_reminder(state.id, expected_sent_count=0, now=due) is True
    assert env.quests.claim_reminder(state.id, expected_sent_count=0, now=due) is False


def test_record_reply_requires_delivery(env):
    job, _ = _job_with_stakeholders(env, "Ada")
    quest = _create(env, job.id)
    recipient = env.quests.recipients(quest.id)[0]
    with pytest.raises(ValidationError):
        env.service.record_reply(recipient.id, now=NOW)


def test_cancel_only_ready_or_scheduled(env):
    job, _ = _job_with_stakeholders(env, "Ada")
    quest = _create(env, job.id)
    assert env.service.cancel(quest.id).status == QuestStatus.cancelled
    with pytest.raises(ConflictError) as exc:
        env.service.cancel(quest.id)
    assert exc.value.code == "QUEST_NOT_CANCELLABLE"


def test_data_personalization_uses_database_rows(env):
    job, _ = _job_with_stakeholders(env)
    db = env.databases.create(
        name=f"Balances {uuid.uuid4().hex[:6]}",
        columns=[
            SchemaColumn(key="email", label="Email", required=True, order=0),
            SchemaColumn(key="first", label="First Name", order=1),
            SchemaColumn(key="amount", label="Amount", data_type="currency", order=2),
        ],
        identifier_keys=["email"],
        rows=[
            {"email": "pat@vendor.test", "first": "Pat", "amount": "12.50"},
            {"email": "PAT@vendor.test", "first": "Pat", "amount": "99"},
            {"email": "lee@vendor.test", "first": "Lee", "amount": "7"},
            {"email": "not-an-email", "first": "X", "amount": "1"},
        ],
    )
    quest = _create(
        env,
        job.id,
        mode=QuestMode.data_personalization,
        database_id=db.id,
        email_column_key="email",
        body="Hi {{First Name}}, your balance is {{Amount}}.",
    )
    recipients = env.quests.recipients(quest.id)
    assert [r.email for r in recipients] == ["pat@vendor.test", "lee@vendor.test"]
    assert recipients[0].name == "Pat"

    env.service.execute(quest.id, now=NOW)
    assert [m.body for _, m in env.mailer.sent] == [
        "Hi Pat, your balance is 12.5.",
        "Hi Lee, your balance is 7.",
    ]


def test_data_personalization_requires_known_email_column(env):
    job, _ = _job_with_stakeholders(env)
    db = env.databases.create(
        name=f"Vendors {uuid.uuid4().hex[:6]}",
        columns=[SchemaColumn(key="email", label="Email", required=True)],
        identifier_keys=["email"],
    )
    with pytest.raises(ValidationError) as exc:
        _create(env, job.id, mode=QuestMode.data_personalization, database_id=db.id, email_column_key="mail")
    assert exc.value.code == "INVALID_REQUEST_PAYLOAD"


def test_form_request_adds_form_link(env):
    job, _ = _job_with_stakeholders(env, "Ada")
    quest = _create(env, job.id, mode=QuestMode.form_request, body="Submit at {{Form Link}}")
    recipient = env.quests.recipients(quest.id)[0]
    assert recipient.personalization["Form Link"] == f"http://localhost:8000/forms/{recipient.token}"


def test_draft_uses_job_context(env):
    job, _ = _job_with_stakeholders(env, "Ada")
    result = env.service.draft(job.id)
    assert not result.used_fallback
    assert result.draft.subject == "Request: Collect W-9"
    with pytest.raises(ValidationError):
        env.service.refine(job.id, result.draft, "   ")
