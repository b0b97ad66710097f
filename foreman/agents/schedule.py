# schedule.py — Schedule specialist
#
# Today's tasks, overdue tasks and today's calendar events are independent
# reads, so they run side by side and are joined before the result is built.
# A calendar that is unconfigured or down just means no events.

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from foreman.db import repository as repo

from .results import AgentContext, ScheduleResult

logger = logging.getLogger(__name__)

_pool = ThreadPoolExecutor(max_workers=3, thread_name_prefix="schedule")


def default_events() -> list[dict[str, Any]]:
    from foreman.services.calendar import get_todays_events
    return get_todays_events()


def safe_events(fetch: Callable[[], list[dict[str, Any]]]) -> list[dict[str, Any]]:
    try:
        return fetch()
    except Exception:
        logger.warning("Calendar fetch failed, continuing without events", exc_info=True)
        return []


def handle_schedule_intent(
    ctx: AgentContext,
    fetch_events: Callable[[], list[dict[str, Any]]] | None = None,
) -> ScheduleResult:
    today_f = _pool.submit(repo.get_todays_tasks)
    overdue_f = _pool.submit(repo.get_overdue_tasks)
    events_f = _pool.submit(safe_events, fetch_events or default_events)

    today = today_f.result()
    overdue = overdue_f.result()
    events = events_f.result()

    seen = {t["id"] for t in today}
    tasks = today + [t for t in overdue if t["id"] not in seen]
    return ScheduleResult(tasks=tasks, events=events)
