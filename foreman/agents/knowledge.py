# knowledge.py — Knowledge specialist
#
# Two paths:
#   project_query    — status card built straight from the project record and
#                      its newest notes. No model call.
#   knowledge_query  — keyword search over project_knowledge, then the smart
#                      model answers from what was found.

from __future__ import annotations

import logging
from typing import Any

from foreman.db import repository as repo
from foreman.engine import llm

from .results import AgentContext, KnowledgeResult

logger = logging.getLogger(__name__)

MAX_NOTES = 5

KNOWLEDGE_SYSTEM_PROMPT = """You answer questions for a construction project manager using only \
the notes provided. Quote specifics (dates, amounts, names) when the notes have them. If the notes \
do not answer the question, say so plainly. Two or three sentences at most."""


def _confidence(count: int) -> str:
    if count >= 3:
        return "high"
    if count >= 1:
        return "medium"
    return "low"


def _target_project_id(ctx: AgentContext) -> str | None:
    if ctx.resolved.projects:
        return ctx.resolved.projects[0].id
    return ctx.context.current_project_id


def handle_knowledge_intent(ctx: AgentContext) -> KnowledgeResult:
    if ctx.intent == "project_query":
        return handle_project_query(ctx)
    return handle_knowledge_query(ctx)


def handle_project_query(ctx: AgentContext) -> KnowledgeResult:
    project_id = _target_project_id(ctx)
    if not project_id:
        projects = repo.list_active_projects()
        if not projects:
            return KnowledgeResult(answer="No active projects on file.", confidence="low")
        lines = [f"- {p['name']} ({p['status']})" for p in projects]
        return KnowledgeResult(answer="Active projects:\n" + "\n".join(lines), confidence="medium")

    project = repo.get_project_by_id(project_id)
    if not project:
        return KnowledgeResult(answer="I couldn't find that project.", confidence="low")

    notes = repo.get_project_knowledge(project_id)[:MAX_NOTES]
    open_tasks = repo.get_tasks_by_project(project_id)

    lines = [f"{project['name']}, status: {project['status']}"]
    if project.get("client_name"):
        lines.append(f"Client: {project['client_name']}")
    if project.get("address"):
        lines.append(f"Address: {project['address']}")
    if project.get("project_type"):
        lines.append(f"Type: {project['project_type']}")
    lines.append(f"Open tasks: {len(open_tasks)}")
    if notes:
        lines.append("Recent notes:")
        lines.extend(f"- {n['content']}" for n in notes)

    return KnowledgeResult(answer="\n".join(lines), sources=notes, confidence=_confidence(len(notes)))


def _format_notes(notes: list[dict[str, Any]]) -> str:
    return "\n".join(f"[{n.get('created_at', '')[:10]}] {n['content']}" for n in notes)


def handle_knowledge_query(ctx: AgentContext) -> KnowledgeResult:
    project_id = _target_project_id(ctx)
    notes = repo.search_knowledge(ctx.message, project_id=project_id, limit=MAX_NOTES)
    if not notes and project_id:
        # Scoped search found nothing; try everything before giving up.
        notes = repo.search_knowledge(ctx.message, limit=MAX_NOTES)

    if not notes:
        return KnowledgeResult(answer="I don't have anything on record about that.", confidence="low")

    answer = llm.complete(
        [
            {"role": "system", "content": KNOWLEDGE_SYSTEM_PROMPT},
            {"role": "user", "content": f"Notes:\n{_format_notes(notes)}\n\nQuestion: {ctx.message}"},
        ],
        tier="smart",
    )
    return KnowledgeResult(answer=answer.strip(), sources=notes, confidence=_confidence(len(notes)))
