"""Prompt text sent to a remote drafting model."""

from datetime import date

from closeboard.boards.close_summary import CloseSummary
from closeboard.drafting.schema import Draft, DraftContext

MAX_LISTED_RECIPIENTS = 5


def format_long_date(value: date) -> str:
    """e.g. 'January 5, 2026'."""
    return f"{value.strftime('%B')} {value.day}, {value.year}"


def _context_lines(context: DraftContext) -> list[str]:
    lines = [f"Item: {context.job_name}"]
    if context.description:
        lines.append(f"Description: {context.description}")
    if context.due_date:
        lines.append(f"Due Date: {format_long_date(context.due_date)}")
    if context.labels:
        lines.append(f"Labels: {', '.join(context.labels)}")
    return lines


def build_draft_prompt(context: DraftContext) -> str:
    names = []
    for r in context.recipients[:MAX_LISTED_RECIPIENTS]:
        full = " ".join(p for p in (r.first_name, r.last_name) if p) or r.email
        names.append(f"{full} ({r.email})")
    more = len(context.recipients) - MAX_LISTED_RECIPIENTS
    summary = ", ".join(names) + (f" and {more} more" if more > 0 else "")
    lines = ["Email the following recipients to request what's needed for this item.", ""]
    lines += _context_lines(context)
    lines.append(f"Recipients: {summary}")
    lines.append(f"Number of recipients: {len(context.recipients)}")
    if context.form_link:
        lines.append("Include the {{Form Link}} tag where the recipient should submit their response.")
    return "\n".join(lines)


def build_refine_prompt(context: DraftContext, current: Draft, instruction: str) -> str:
    instruction = instruction.strip()
    parts = [
        f'Revise the following email based on this instruction: "{instruction}"',
        "",
        "Keep the same professional tone and structure. Only make changes that address the instruction.",
        "",
        "CURRENT EMAIL:",
        f"Subject: {current.subject}",
        "",
        "Body:",
        current.body,
        "",
        "ITEM CONTEXT:",
        *_context_lines(context),
        "",
        f"INSTRUCTION: {instruction}",
        "",
        "Generate the revised email with the requested changes.",
    ]
    return "\n".join(parts)


def build_close_prompt(summary: CloseSummary) -> str:
    period = f"{summary.period_start or '?'} to {summary.period_end or '?'}"
    lines = [
        f'Close analysis for "{summary.board_name}"',
        "",
        f"Period: {period}",
        f"Closed on: {summary.closed_on}",
        f"Close speed: {summary.close_speed} ({summary.days_to_close} days after period start, "
        f"{summary.period_days}-day period)",
        f"Jobs: {summary.completed_jobs} of {summary.total_jobs} completed",
        "",
    ]
    if summary.blocker_jobs:
        lines.append("Longest-running jobs:")
        lines += [f'- "{b.name}" ({b.status.value}, {b.days_in_progress} days)' for b in summary.blocker_jobs]
    else:
        lines.append("No blocker jobs identified.")
    lines.append("")
    if summary.missed_target_jobs:
        lines.append("Jobs that missed their target date:")
        lines += [
            f'- "{m.name}": target {m.target_date}, completed {m.completed_on} ({m.days_late} days late)'
            for m in summary.missed_target_jobs
        ]
    else:
        lines.append("All jobs met their target dates.")
    lines.append("")
    if summary.late_jobs:
        lines.append("Jobs completed after period end:")
        lines += [f'- "{j.name}" ({j.completed_days_after_period_end} days after period end)' for j in summary.late_jobs]
    else:
        lines.append("All jobs completed within the period.")
    lines += [
        "",
        "Explain what delayed this close. Give 2-4 insights and 1-3 recommendations.",
    ]
    return "\n".join(lines)
