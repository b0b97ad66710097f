# router.py — Intent classification and specialist dispatch
#
# The router is an LLM call: message + today's history + a context
# summary in, {intent, entities, requires_lookup, confidence} out. Its
# output is treated as data; we only normalize it. Transport errors are
# not swallowed here, the dialogue layer owns that decision.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from . import llm
from .config import HISTORY_WINDOW

logger = logging.getLogger(__name__)

INTENTS = (
    "task_create",
    "task_update",
    "task_complete",
    "task_query",
    "project_create",
    "project_update",
    "project_query",
    "schedule_query",
    "knowledge_query",
    "record_request",
    "general_chat",
)

PRIORITIES = ("low", "medium", "high", "urgent")
CONFIDENCES = ("high", "medium", "low")

# Intent → specialist. Intents missing here are answered directly.
SPECIALISTS: dict[str, str] = {
    "task_create": "task",
    "task_update": "task",
    "task_complete": "task",
    "task_query": "task",
    "project_create": "project",
    "project_update": "project",
    "project_query": "knowledge",
    "knowledge_query": "knowledge",
    "schedule_query": "schedule",
}

ROUTER_SYSTEM_PROMPT = """You are the routing agent for a construction project manager's assistant. \
Classify the user's intent and extract the entities they mention.

The user is a construction project manager who tracks tasks, runs several job sites (projects) \
and needs to stay organized.

Classify the intent into exactly one of:
- task_create: create a new task or to-do
- task_update: change an existing task (priority, deadline, description)
- task_complete: mark a task as done
- task_query: ask about tasks (list, filter, search)
- project_create: create a new project / job site
- project_update: change a project (status, details)
- project_query: ask about a project's status or details
- schedule_query: ask about the schedule, calendar, or what is on today
- knowledge_query: ask about past decisions, context, or information
- record_request: wants to record a meeting or voice note
- general_chat: greetings, acknowledgements, or unclear intent

Also extract:
- projects: project names as written (partial names and nicknames included)
- tasks: task references as written ("that task", "the change order", ...)
- deadline: any date or deadline mentioned, else null
- priority: low | medium | high | urgent, else null

Reply with JSON only:
{"intent": "...", "entities": {"projects": [], "tasks": [], "deadline": null, "priority": null}, \
"requires_lookup": false, "confidence": "high" | "medium" | "low"}"""


@dataclass(frozen=True)
class RouterEntities:
    projects: tuple[str, ...] = ()
    tasks: tuple[str, ...] = ()
    deadline: str | None = None
    priority: str | None = None


@dataclass(frozen=True)
class RouterResult:
    intent: str = "general_chat"
    entities: RouterEntities = field(default_factory=RouterEntities)
    requires_lookup: bool = False
    confidence: str = "medium"


def _strings(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip())


def normalize_router_output(raw: dict[str, Any]) -> RouterResult:
    """Coerce whatever the model returned into a well-formed RouterResult."""
    intent = str(raw.get("intent", "")).strip().lower()
    if intent not in INTENTS:
        logger.info("Router returned unknown intent %r, treating as general_chat", intent)
        intent = "general_chat"

    entities = raw.get("entities") if isinstance(raw.get("entities"), dict) else {}
    deadline = entities.get("deadline")
    priority = str(entities.get("priority") or "").strip().lower() or None
    confidence = str(raw.get("confidence", "medium")).strip().lower()

    return RouterResult(
        intent=intent,
        entities=RouterEntities(
            projects=_strings(entities.get("projects")),
            tasks=_strings(entities.get("tasks")),
            deadline=str(deadline).strip() if deadline else None,
            priority=priority if priority in PRIORITIES else None,
        ),
        requires_lookup=bool(raw.get("requires_lookup", False)),
        confidence=confidence if confidence in CONFIDENCES else "medium",
    )


def format_history(messages: Sequence[dict[str, Any]], window: int = HISTORY_WINDOW) -> str:
    if not messages:
        return "No previous messages today."
    return "\n".join(f"{m.get('role', 'user')}: {m.get('content', '')}" for m in messages[-window:])


def classify(message: str, history: Sequence[dict[str, Any]], context_summary: str) -> RouterResult:
    """Classify one message. Raises if the model cannot be reached."""
    prompt = (
        f"Active context:\n{context_summary}\n\n"
        f"Today's conversation so far:\n{format_history(history)}\n\n"
        f'New message: "{message}"\n\n'
        "Classify this message and extract entities."
    )
    raw = llm.complete_json(
        [
            {"role": "system", "content": ROUTER_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        tier="fast",
    )
    return normalize_router_output(raw)


def needs_specialist(intent: str) -> bool:
    return intent in SPECIALISTS


def specialist_for(intent: str) -> str | None:
    return SPECIALISTS.get(intent)
