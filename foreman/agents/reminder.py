# reminder.py — Nudges for overdue tasks
#
# Runs from the /cron/reminders endpoint. A task is due a nudge when it is
# overdue and has not been reminded about in the last 24 hours. Urgent and
# high-priority tasks are always listed; the rest are capped so one
# message stays readable. Every task that made it into the prompt is
# stamped as reminded.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from foreman.db import repository as repo
from foreman.engine import llm
from foreman.engine.config import TIMEZONE

from .briefing import days_overdue, overdue_label

logger = logging.getLogger(__name__)

MAX_ROUTINE = 5

REMINDER_SYSTEM_PROMPT = """You write proactive reminders for a construction project manager \
about overdue tasks.

Make them contextual and useful, not robotic pings. For example:
"The Home Depot return is 3 days overdue. That's $600 sitting in the truck."

Be direct. Create urgency where it is warranted. Offer to help where you can.

Write a single reminder message covering the most important items. Keep it to 3-4 sentences \
unless there are many urgent items. Plain text only."""


@dataclass
class Reminders:
    messages: list[str] = field(default_factory=list)
    task_ids: list[str] = field(default_factory=list)


def format_task_for_reminder(task: dict[str, Any], now: datetime) -> str:
    parts = [f'"{task["description"]}"']
    days = days_overdue(task.get("deadline"), now)
    if days > 0:
        parts.append(f"({overdue_label(days)})")
    if task.get("priority") == "urgent":
        parts.append("[URGENT]")
    elif task.get("priority") == "high":
        parts.append("[high priority]")
    return " ".join(parts)


def build_reminder_list(tasks: list[dict[str, Any]], now: datetime) -> tuple[str, list[dict[str, Any]]]:
    """Prompt lines plus the tasks they mention: urgent, then high, then up to MAX_ROUTINE others."""
    urgent = [t for t in tasks if t.get("priority") == "urgent"]
    high = [t for t in tasks if t.get("priority") == "high"]
    routine = [t for t in tasks if t.get("priority") not in ("urgent", "high")][:MAX_ROUTINE]

    lines = [f"URGENT: {format_task_for_reminder(t, now)}" for t in urgent]
    lines += [f"HIGH: {format_task_for_reminder(t, now)}" for t in high]
    lines += [format_task_for_reminder(t, now) for t in routine]
    return "\n".join(lines), urgent + high + routine


def generate_reminders(now: datetime | None = None) -> Reminders:
    now = now or datetime.now(ZoneInfo(TIMEZONE))
    tasks = repo.get_tasks_needing_reminder(now)
    if not tasks:
        return Reminders()

    task_list, included = build_reminder_list(tasks, now)
    text = llm.complete(
        [
            {"role": "system", "content": REMINDER_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    f"Tasks needing attention ({len(tasks)} total):\n{task_list}\n\n"
                    "Write the reminder message."
                ),
            },
        ],
        tier="fast",
    )

    task_ids = [t["id"] for t in included]
    for task_id in task_ids:
        repo.mark_task_reminded(task_id, now)
    logger.info("Reminder generated for %d task(s)", len(task_ids))
    return Reminders(messages=[text.strip()], task_ids=task_ids)
