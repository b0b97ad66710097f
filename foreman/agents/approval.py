# approval.py — Human approval for voice transcript extractions
#
# Extractions are never written straight to the DB. They wait on the
# transcript row (pending_result) until the user answers in chat:
#
#   approve    → commit_transcript() + mark processed
#   reject     → mark processed, nothing written
#   edit       → apply the edits, store the new extraction, ask again
#   unrelated  → not an answer; the message goes through the normal turn
#
# The interpreter fails closed: anything it can't read is "unrelated".

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Sequence

from foreman.db import repository as repo
from foreman.engine import llm

from .transcript import (
    ExtractedTask,
    TranscriptExtraction,
    commit_transcript,
    process_transcript,
    summarize_extraction,
)

logger = logging.getLogger(__name__)

ACTIONS = ("approve", "reject", "edit", "unrelated")
EDIT_TYPES = ("remove_task", "update_task_description", "update_deadline", "change_project", "add_task")

APPROVAL_SYSTEM_PROMPT = """You interpret the user's reply to a pending voice transcript that needs \
approval before it is saved.

- "looks good", "save it", "yes", "yep", "correct", "k" → approve
- "no", "discard", "cancel", "don't save", "scratch that" → reject
- specific corrections ("remove the third task", "that deadline should be Friday", "wrong project") \
→ edit, with an edits list
- a new question or request that has nothing to do with the pending data → unrelated

Be generous: if it sounds like approval, it is approval.

Edits: task_index is 0-based. remove_task needs task_index; update_task_description, \
update_deadline and change_project need task_index and new_value; add_task needs new_value.

Reply with JSON only:
{"action": "approve" | "reject" | "edit" | "unrelated",
 "edits": [{"type": "...", "task_index": 0, "new_value": "..."}],
 "reasoning": "..."}"""


@dataclass(frozen=True)
class TranscriptEdit:
    type: str
    task_index: int | None = None
    new_value: str | None = None


@dataclass(frozen=True)
class ApprovalDecision:
    action: str = "unrelated"
    edits: tuple[TranscriptEdit, ...] = field(default_factory=tuple)
    reasoning: str = ""


def _parse_edits(raw: Any) -> tuple[TranscriptEdit, ...]:
    if not isinstance(raw, list):
        return ()
    edits = []
    for item in raw:
        if not isinstance(item, dict) or item.get("type") not in EDIT_TYPES:
            continue
        index = item.get("task_index")
        edits.append(
            TranscriptEdit(
                type=item["type"],
                task_index=int(index) if isinstance(index, (int, float)) and not isinstance(index, bool) else None,
                new_value=str(item["new_value"]) if item.get("new_value") else None,
            )
        )
    return tuple(edits)


def _pending_summary(extraction: TranscriptExtraction) -> str:
    if extraction.tasks:
        tasks = "\n".join(
            f'{i}. "{t.description}" (project: {t.project_name or "none"}, deadline: {t.deadline or "none"})'
            for i, t in enumerate(extraction.tasks, start=1)
        )
    else:
        tasks = "No tasks extracted"
    return (
        f"Current pending tasks:\n{tasks}\n\n"
        f"Knowledge items: {len(extraction.knowledge)}\n"
        f"New projects: {', '.join(p.name for p in extraction.new_projects) or 'none'}"
    )


def interpret_reply(message: str, extraction: TranscriptExtraction) -> ApprovalDecision:
    try:
        raw = llm.complete_json(
            [
                {"role": "system", "content": APPROVAL_SYSTEM_PROMPT},
                {"role": "user", "content": f'The user said: "{message}"\n\n{_pending_summary(extraction)}'},
            ],
            tier="fast",
        )
    except Exception:
        logger.exception("Approval interpretation failed, treating reply as unrelated")
        return ApprovalDecision(reasoning="Error during interpretation")

    action = str(raw.get("action", "")).strip().lower()
    if action not in ACTIONS:
        return ApprovalDecision(reasoning="Could not interpret response")
    return ApprovalDecision(
        action=action,
        edits=_parse_edits(raw.get("edits")),
        reasoning=str(raw.get("reasoning", "")),
    )


def apply_edits(extraction: TranscriptExtraction, edits: Sequence[TranscriptEdit]) -> TranscriptExtraction:
    """Return a new extraction with edits applied. Highest task index first so removals don't shift."""
    if not edits:
        return extraction

    tasks = list(extraction.tasks)
    ordered = sorted(edits, key=lambda e: e.task_index or 0, reverse=True)

    for edit in ordered:
        index = edit.task_index
        in_range = index is not None and 0 <= index < len(tasks)

        if edit.type == "remove_task" and in_range:
            del tasks[index]
        elif edit.type == "update_task_description" and in_range and edit.new_value:
            tasks[index] = replace(tasks[index], description=edit.new_value)
        elif edit.type == "update_deadline" and in_range:
            tasks[index] = replace(tasks[index], deadline=edit.new_value or None)
        elif edit.type == "change_project" and in_range:
            tasks[index] = replace(tasks[index], project_name=edit.new_value or None)
        elif edit.type == "add_task" and edit.new_value:
            tasks.append(ExtractedTask(description=edit.new_value))

    return TranscriptExtraction(
        tasks=tasks,
        knowledge=list(extraction.knowledge),
        new_projects=list(extraction.new_projects),
    )


def _commit_reply(counts: dict[str, int]) -> str:
    parts = []
    if counts["tasks_created"]:
        parts.append(f"{counts['tasks_created']} task(s)")
    if counts["knowledge_added"]:
        parts.append(f"{counts['knowledge_added']} note(s)")
    if counts["projects_created"]:
        parts.append(f"{counts['projects_created']} new project(s)")
    if not parts:
        return "Nothing to save from that recording."
    return "Saved " + ", ".join(parts) + "."


def handle_pending_reply(message: str) -> str | None:
    """Answer the pending approval if this message is about it; None means carry on as usual."""
    pending = repo.get_pending_approval()
    if not pending:
        return None

    extraction = TranscriptExtraction.from_dict(pending["pending_result"])
    decision = interpret_reply(message, extraction)
    logger.info("Pending transcript %s: %s (%s)", pending["id"], decision.action, decision.reasoning)

    if decision.action == "approve":
        counts = commit_transcript(extraction, pending["id"])
        reply = _commit_reply(counts)
        repo.mark_transcript_processed(pending["id"], reply)
        return reply

    if decision.action == "reject":
        repo.mark_transcript_processed(pending["id"], "Discarded by user")
        return "Discarded. Nothing saved from that recording."

    if decision.action == "edit":
        edited = apply_edits(extraction, decision.edits)
        repo.save_pending_approval(pending["id"], edited.to_dict())
        return f"Updated. Here's what I have now:\n\n{summarize_extraction(edited)}\n\nGood to save?"

    return None


def ingest_recording(audio: bytes, filename: str = "recording.webm", duration_seconds: int | None = None,
                     source: str = "webapp") -> dict[str, Any]:
    """Transcribe a recording, park the extraction for approval and tell the allowed users."""
    from foreman.messaging import telegram, transcription

    text = transcription.transcribe_audio(audio, filename=filename, content_type="audio/webm")
    duration = duration_seconds if duration_seconds is not None else transcription.estimate_duration(text)
    transcript = repo.save_voice_transcript(text, source=source, duration_seconds=duration)

    extraction = process_transcript(text)
    repo.save_pending_approval(transcript["id"], extraction.to_dict())

    telegram.broadcast(
        "Hey, just processed that recording. Here's what I got:\n\n"
        f"{summarize_extraction(extraction)}\n\nDoes this look right?"
    )
    return {
        "transcript_id": transcript["id"],
        "tasks_found": len(extraction.tasks),
        "knowledge_found": len(extraction.knowledge),
        "projects_found": len(extraction.new_projects),
    }
