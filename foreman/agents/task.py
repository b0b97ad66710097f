# task.py — Task specialist
#
# The fast model decides what to do ({"action": "create" | "update" |
# "complete" | "query", ...}); this module does it against the DB.
# Target tasks come from, in order: the model's task_id, the first task
# resolved this turn, the task currently in context.
#
# Missing targets are reported in TaskResult.error; model and DB errors
# propagate to the dialogue layer.

from __future__ import annotations

import logging
from typing import Any

from foreman.db import repository as repo
from foreman.engine import llm
from foreman.resolution.resolver import suggests_new_entity

from .results import AgentContext, TaskResult

logger = logging.getLogger(__name__)

PRIORITIES = {"low", "medium", "high", "urgent"}
STATUSES = {"pending", "completed", "on_hold", "cancelled"}

TASK_SYSTEM_PROMPT = """You are the task agent for a construction project manager's assistant. \
You create, update, complete and query tasks.

You receive the classified intent, the entities already resolved to ids, the user's message and \
the active context. Use resolved ids rather than inventing new ones.

Reply with JSON only:
{
  "action": "create" | "update" | "complete" | "query",
  "task_description": "string (create)",
  "task_id": "string (update/complete, only if known)",
  "project_id": "string or null",
  "deadline": "ISO date string or null",
  "priority": "low" | "medium" | "high" | "urgent" | null,
  "updates": {"description": "...", "priority": "...", "deadline": "...", "status": "..."},
  "query_type": "all" | "project" | "overdue" | "today" | "search",
  "search_term": "string (search)"
}"""


def format_agent_context(ctx: AgentContext) -> str:
    parts = [
        f"Intent: {ctx.intent}",
        f'User message: "{ctx.message}"',
    ]
    if ctx.resolved.projects:
        parts.append("Resolved projects: " + ", ".join(f"{p.label} ({p.id})" for p in ctx.resolved.projects))
    if ctx.resolved.tasks:
        parts.append("Resolved tasks: " + ", ".join(f"{t.label} ({t.id})" for t in ctx.resolved.tasks))
    if ctx.context.current_task_id:
        parts.append(f"Current task in context: {ctx.context.current_task_id}")
    if ctx.context.current_project_id:
        parts.append(f"Current project in context: {ctx.context.current_project_id}")
    if ctx.deadline:
        parts.append(f"Deadline mentioned: {ctx.deadline}")
    if ctx.priority:
        parts.append(f"Priority mentioned: {ctx.priority}")
    return "\n".join(parts)


def _priority(value: Any) -> str | None:
    value = str(value or "").strip().lower()
    return value if value in PRIORITIES else None


def _target_task_id(decision: dict[str, Any], ctx: AgentContext) -> str | None:
    return (
        (str(decision.get("task_id") or "").strip() or None)
        or (ctx.resolved.tasks[0].id if ctx.resolved.tasks else None)
        or ctx.context.current_task_id
    )


def handle_task_intent(ctx: AgentContext) -> TaskResult:
    decision = llm.complete_json(
        [
            {"role": "system", "content": TASK_SYSTEM_PROMPT},
            {"role": "user", "content": format_agent_context(ctx)},
        ],
        tier="fast",
    )
    action = str(decision.get("action", "")).strip().lower()

    if action == "create":
        return _create(decision, ctx)
    if action == "update":
        return _update(decision, ctx)
    if action == "complete":
        return _complete(decision, ctx)
    if action == "query":
        return _query(decision, ctx)

    logger.info("Task agent returned unknown action %r", action)
    return TaskResult(action="queried", error="Unknown action requested")


def _create(decision: dict[str, Any], ctx: AgentContext) -> TaskResult:
    description = str(decision.get("task_description") or "").strip()
    if not description:
        return TaskResult(action="created", error="No task description provided")

    project_id = (ctx.resolved.projects[0].id if ctx.resolved.projects else None) or decision.get("project_id")
    task = repo.create_task(
        description=description,
        project_id=project_id or None,
        deadline=decision.get("deadline") or ctx.deadline,
        priority=_priority(decision.get("priority")) or ctx.priority or "medium",
    )
    return TaskResult(action="created", task=task)


def _update(decision: dict[str, Any], ctx: AgentContext) -> TaskResult:
    task_id = _target_task_id(decision, ctx)
    if not task_id:
        if suggests_new_entity(ctx.message) and decision.get("task_description"):
            return _create(decision, ctx)
        return TaskResult(action="updated", error="Could not identify which task to update")
    if not repo.get_task_by_id(task_id):
        return TaskResult(action="updated", error="Task not found")

    raw_updates = decision.get("updates") if isinstance(decision.get("updates"), dict) else {}
    updates: dict[str, Any] = {}
    if raw_updates.get("description"):
        updates["description"] = str(raw_updates["description"]).strip()
    if _priority(raw_updates.get("priority")):
        updates["priority"] = _priority(raw_updates["priority"])
    if raw_updates.get("deadline"):
        updates["deadline"] = str(raw_updates["deadline"])
    if str(raw_updates.get("status") or "").lower() in STATUSES:
        updates["status"] = str(raw_updates["status"]).lower()
    if _priority(decision.get("priority")):
        updates["priority"] = _priority(decision["priority"])
    if decision.get("deadline"):
        updates["deadline"] = str(decision["deadline"])

    task = repo.update_task(task_id, updates)
    if task is None:
        return TaskResult(action="updated", error="Task not found")
    return TaskResult(action="updated", task=task)


def _complete(decision: dict[str, Any], ctx: AgentContext) -> TaskResult:
    task_id = _target_task_id(decision, ctx)
    if not task_id:
        return TaskResult(action="completed", error="Could not identify which task to complete")

    task = repo.complete_task(task_id)
    if task is None:
        return TaskResult(action="completed", error="Task not found")
    return TaskResult(action="completed", task=task)


def _query(decision: dict[str, Any], ctx: AgentContext) -> TaskResult:
    query_type = str(decision.get("query_type") or "all").strip().lower()

    if query_type == "project":
        project_id = (
            (ctx.resolved.projects[0].id if ctx.resolved.projects else None)
            or decision.get("project_id")
            or ctx.context.current_project_id
        )
        tasks = repo.get_tasks_by_project(project_id) if project_id else repo.get_pending_tasks()
    elif query_type == "overdue":
        tasks = repo.get_overdue_tasks()
    elif query_type == "today":
        tasks = repo.get_todays_tasks()
    elif query_type == "search" and decision.get("search_term"):
        tasks = repo.search_tasks(str(decision["search_term"]))
    else:
        tasks = repo.get_pending_tasks()

    return TaskResult(action="queried", tasks=tasks)
