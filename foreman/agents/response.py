# response.py — Turns specialist results into the text the user reads
#
# build_result_summary() is deterministic and does all the real work; the
# smart model only rewrites that summary in the assistant's voice.
# format_disambiguation() never touches the model.

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Sequence

from foreman.engine import llm
from foreman.resolution.context import EntityRef

from .results import KnowledgeResult, ProjectResult, ScheduleResult, SpecialistResult, TaskResult

logger = logging.getLogger(__name__)

RESPONSE_SYSTEM_PROMPT = """You write replies for a construction project manager's assistant, \
using the structured result handed to you.

Rules:
1. Matter-of-fact and blunt. No fluff, no corporate speak, no sycophancy.
2. Keep it short but complete. Lists stay scannable.
3. Never apologize unless something actually went wrong; if the result is an error, say so plainly.
4. Ask a useful follow-up when it helps ("Anything else done?").
5. No "Great!", "Absolutely!", "I'd be happy to", "Of course!".

Reply with the message text only."""

# Acknowledgements that never need a model call.
CANNED_REPLIES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^(thanks|thank you|thx)", re.I), "Yep."),
    (re.compile(r"^(ok|okay|got it|gotcha)", re.I), "Let me know if you need anything."),
    (re.compile(r"^(hi|hello|hey)", re.I), "What do you need?"),
    (re.compile(r"^(bye|later|goodbye)", re.I), "Later."),
)


def format_task(task: dict[str, Any]) -> str:
    parts = [task.get("description", "")]
    deadline = task.get("deadline")
    if deadline:
        try:
            parts.append(f"due {datetime.fromisoformat(deadline).strftime('%b %d').replace(' 0', ' ')}")
        except ValueError:
            parts.append(f"due {deadline}")
    priority = task.get("priority") or "medium"
    if priority != "medium":
        parts.append(f"({priority} priority)")
    return " - ".join(parts)


def _event_time(event: dict[str, Any]) -> str:
    from foreman.services.calendar import format_event_time
    return format_event_time(event.get("start", ""))


def build_result_summary(result: SpecialistResult | None) -> str:
    if result is None:
        return "No result from specialist agent."

    if isinstance(result, TaskResult):
        if result.error:
            return f"Error: {result.error}"
        if result.action == "queried":
            if not result.tasks:
                return "No matching tasks found."
            lines = "\n".join(f"- {format_task(t)}" for t in result.tasks)
            return f"Found {len(result.tasks)} task(s):\n{lines}"
        if result.task is None:
            return "Error: Task not found"
        if result.action == "completed":
            return f"Task completed: {result.task['description']}"
        return f"Task {result.action}: {format_task(result.task)}"

    if isinstance(result, ProjectResult):
        if result.error or result.project is None:
            return f"Error: {result.error or 'Project not found'}"
        project = result.project
        if result.action == "created":
            return f"Project created: {project['name']} ({project['status']})"
        return f"Project updated: {project['name']} is now {project['status']}"

    if isinstance(result, KnowledgeResult):
        return f"{result.answer}\n\nConfidence: {result.confidence}"

    if isinstance(result, ScheduleResult):
        parts: list[str] = []
        if result.tasks:
            parts.append(f"Tasks ({len(result.tasks)}):")
            parts.extend(f"- {format_task(t)}" for t in result.tasks)
        if result.events:
            parts.append("Calendar events:")
            parts.extend(f"- {_event_time(e)}: {e.get('summary', '')}" for e in result.events)
        return "\n".join(parts) or "No tasks or events today."

    return "Result processed."


def generate_response(
    intent: str,
    message: str,
    history: Sequence[dict[str, Any]],
    result: SpecialistResult | None,
) -> str:
    summary = build_result_summary(result)
    prompt = (
        f'The user said: "{message}"\n\n'
        f"Intent classified as: {intent}\n\n"
        f"Result from specialist agent:\n{summary}\n\n"
        "Write the reply."
    )
    text = llm.complete(
        [
            {"role": "system", "content": RESPONSE_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        tier="smart",
    )
    return text.strip() or summary


def canned_reply(message: str) -> str | None:
    lower = message.strip().lower()
    for pattern, reply in CANNED_REPLIES:
        if pattern.match(lower):
            return reply
    return None


def generate_general_chat_response(message: str, history: Sequence[dict[str, Any]]) -> str:
    canned = canned_reply(message)
    if canned:
        return canned

    text = llm.complete(
        [
            {"role": "system", "content": RESPONSE_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    f'The user said: "{message}"\n\n'
                    "This is general chat, not a task, project or query request. "
                    "Reply briefly and naturally."
                ),
            },
        ],
        tier="smart",
    )
    return text.strip()


def format_disambiguation(entity_type: str, refs: Sequence[EntityRef]) -> str:
    """'Which project do you mean?\\n1. A\\n2. B' in the order given."""
    labels = "\n".join(f"{i}. {ref.label}" for i, ref in enumerate(refs, start=1))
    return f"Which {entity_type} do you mean?\n{labels}"
