# project.py — Project specialist (create / update job sites)

from __future__ import annotations

import logging
from typing import Any

from foreman.db import repository as repo
from foreman.engine import llm
from foreman.resolution.resolver import extract_project_name, suggests_new_entity

from .results import AgentContext, ProjectResult

logger = logging.getLogger(__name__)

STATUSES = {"future", "active", "on_hold", "completed"}

PROJECT_SYSTEM_PROMPT = """You are the project agent for a construction project manager's assistant. \
You create and update projects (job sites).

Projects have: name (required, usually a client name or address), client_name, address, \
project_type (kitchen, bathroom, deck, full_remodel, ...), status (future, active, on_hold, completed).

For project_create extract the name and any details; default status is future.
For project_update use the resolved project and apply the requested changes.

Reply with JSON only:
{"action": "create" | "update", "name": "...", "project_id": "...", "client_name": null, \
"address": null, "project_type": null, "status": null}"""


def _format(ctx: AgentContext) -> str:
    parts = [f"Intent: {ctx.intent}", f'User message: "{ctx.message}"']
    if ctx.resolved.projects:
        parts.append("Resolved projects: " + ", ".join(f"{p.label} ({p.id})" for p in ctx.resolved.projects))
    if ctx.context.current_project_id:
        parts.append(f"Current project in context: {ctx.context.current_project_id}")
    return "\n".join(parts)


def _status(value: Any) -> str | None:
    value = str(value or "").strip().lower()
    return value if value in STATUSES else None


def handle_project_intent(ctx: AgentContext) -> ProjectResult:
    decision = llm.complete_json(
        [
            {"role": "system", "content": PROJECT_SYSTEM_PROMPT},
            {"role": "user", "content": _format(ctx)},
        ],
        tier="fast",
    )
    action = str(decision.get("action", "")).strip().lower()
    if action == "create" or (not action and ctx.intent == "project_create"):
        return _create(decision, ctx)
    return _update(decision, ctx)


def _create(decision: dict[str, Any], ctx: AgentContext) -> ProjectResult:
    name = str(decision.get("name") or "").strip() or extract_project_name(ctx.message) or ""
    if not name:
        return ProjectResult(action="created", error="No project name provided")

    project = repo.create_project(
        name=name,
        client_name=decision.get("client_name"),
        address=decision.get("address"),
        project_type=decision.get("project_type"),
        status=_status(decision.get("status")) or "future",
    )
    return ProjectResult(action="created", project=project)


def _update(decision: dict[str, Any], ctx: AgentContext) -> ProjectResult:
    project_id = (
        (str(decision.get("project_id") or "").strip() or None)
        or (ctx.resolved.projects[0].id if ctx.resolved.projects else None)
        or ctx.context.current_project_id
    )
    if not project_id:
        # "start the new Garcia job" with nothing to match is a create
        if suggests_new_entity(ctx.message):
            return _create(decision, ctx)
        return ProjectResult(action="updated", error="Could not identify which project to update")
    if not repo.get_project_by_id(project_id):
        return ProjectResult(action="updated", error="Project not found")

    updates: dict[str, Any] = {}
    if decision.get("name"):
        updates["name"] = str(decision["name"]).strip()
    for key in ("client_name", "address", "project_type"):
        if key in decision and decision[key] is not None:
            updates[key] = decision[key]
    if _status(decision.get("status")):
        updates["status"] = _status(decision["status"])

    project = repo.update_project(project_id, updates)
    return ProjectResult(action="updated", project=project)
