# briefing.py — Daily morning brief
#
# Runs from the /cron/daily-brief endpoint. Gathers today's tasks, overdue
# tasks, open-task and active-project counts and today's calendar, then has
# the fast model write a short scannable brief. The calendar is optional;
# everything else is required and errors propagate to the endpoint.

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable
from zoneinfo import ZoneInfo

from foreman.db import repository as repo
from foreman.engine import llm
from foreman.engine.config import TIMEZONE

from .schedule import default_events, safe_events

logger = logging.getLogger(__name__)

_pool = ThreadPoolExecutor(max_workers=5, thread_name_prefix="briefing")

BRIEFING_SYSTEM_PROMPT = """You write a construction project manager's daily morning brief.

Current date and time: {now}

You receive today's tasks, overdue tasks, today's calendar events and open-work counts.

Write a concise brief that:
1. Leads with the most urgent items
2. Lists what is due today
3. Lists overdue items that need attention
4. Mentions calendar events
5. Ends with a count summary

Keep it scannable. No fluff. It is read at 6am before the day starts.

Example:
"Morning. 4 tasks due today, 2 overdue from last week.

Due today:
- Send Chen change order (high priority)
- Call inspector for Hubble

Overdue:
- Return $600 item to Home Depot (3 days overdue)

Calendar: 9:00 AM client meeting at Chen site.

Total open tasks: 23 across 8 projects."

Plain text only, no markdown."""


@dataclass
class DailyBrief:
    content: str
    task_ids: list[str] = field(default_factory=list)


def days_overdue(deadline: str | None, now: datetime) -> int:
    """Whole calendar days between the deadline's date and today (local)."""
    due = repo.parse_deadline(deadline)
    if due is None:
        return 0
    today = now.astimezone(ZoneInfo(TIMEZONE)).date()
    return max((today - due.date()).days, 0)


def overdue_label(days: int) -> str:
    return f"{days} day{'' if days == 1 else 's'} overdue"


def format_task_for_brief(task: dict[str, Any]) -> str:
    if task.get("priority") in ("high", "urgent"):
        return f"{task['description']} ({task['priority']} priority)"
    return task["description"]


def format_overdue_task(task: dict[str, Any], now: datetime) -> str:
    if not task.get("deadline"):
        return task["description"]
    return f"{task['description']} ({overdue_label(days_overdue(task['deadline'], now))})"


def build_brief_prompt(
    todays: list[dict[str, Any]],
    overdue: list[dict[str, Any]],
    events: list[dict[str, Any]],
    open_count: int,
    project_count: int,
    now: datetime,
) -> str:
    from foreman.services.calendar import format_events_for_message

    todays_list = "\n".join(f"- {format_task_for_brief(t)}" for t in todays) or "No tasks due today."
    overdue_list = "\n".join(f"- {format_overdue_task(t, now)}" for t in overdue) or "No overdue tasks."
    calendar = format_events_for_message(events) if events else "No calendar events today."
    return (
        f"Today's tasks ({len(todays)}):\n{todays_list}\n\n"
        f"Overdue tasks ({len(overdue)}):\n{overdue_list}\n\n"
        f"Calendar events:\n{calendar}\n\n"
        f"Total open tasks: {open_count}\n"
        f"Active projects: {project_count}\n\n"
        "Generate the morning brief."
    )


def generate_daily_brief(
    now: datetime | None = None,
    fetch_events: Callable[[], list[dict[str, Any]]] | None = None,
) -> DailyBrief:
    now = now or datetime.now(ZoneInfo(TIMEZONE))

    todays_f = _pool.submit(repo.get_todays_tasks, now)
    overdue_f = _pool.submit(repo.get_overdue_tasks, now)
    pending_f = _pool.submit(repo.get_pending_tasks)
    projects_f = _pool.submit(repo.list_active_projects)
    events_f = _pool.submit(safe_events, fetch_events or default_events)

    todays = todays_f.result()
    overdue = overdue_f.result()
    prompt = build_brief_prompt(
        todays,
        overdue,
        events_f.result(),
        open_count=len(pending_f.result()),
        project_count=len(projects_f.result()),
        now=now,
    )
    content = llm.complete(
        [
            {"role": "system", "content": BRIEFING_SYSTEM_PROMPT.format(now=now.strftime("%A, %B %d, %Y %I:%M %p"))},
            {"role": "user", "content": prompt},
        ],
        tier="fast",
    )
    logger.info("Daily brief generated: %d due today, %d overdue", len(todays), len(overdue))
    return DailyBrief(content=content.strip(), task_ids=[t["id"] for t in todays + overdue])
