# transcript.py — Voice transcript extraction and commit
#
# A recording (Telegram voice note or web recorder upload) is transcribed
# elsewhere; this module pulls tasks, knowledge and new projects out of the
# text, summarizes them for approval, and writes them once approved.
#
# Nothing here commits on its own. The approval flow in approval.py decides
# when commit_transcript() runs.

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from foreman.db import repository as repo
from foreman.engine import llm

logger = logging.getLogger(__name__)

MAX_SUMMARY_TASKS = 5

TRANSCRIPT_SYSTEM_PROMPT = """You process meeting transcripts and voice notes for a construction \
project manager. Extract:

1. tasks: action items. Include any deadline and the project it relates to, if mentioned.
2. knowledge: decisions, information and updates. One fact per item, grouped by project.
3. new_projects: job sites or projects mentioned that are not in the existing list.

Do not invent anything that is not in the transcript.

Reply with JSON only:
{"tasks": [{"description": "...", "project_name": null, "deadline": null, "priority": null}],
 "knowledge": [{"content": "...", "project_name": null}],
 "new_projects": [{"name": "...", "client_name": null, "project_type": null}]}"""


@dataclass
class ExtractedTask:
    description: str
    project_name: str | None = None
    deadline: str | None = None
    priority: str | None = None


@dataclass
class ExtractedKnowledge:
    content: str
    project_name: str | None = None


@dataclass
class ExtractedProject:
    name: str
    client_name: str | None = None
    project_type: str | None = None


@dataclass
class TranscriptExtraction:
    tasks: list[ExtractedTask] = field(default_factory=list)
    knowledge: list[ExtractedKnowledge] = field(default_factory=list)
    new_projects: list[ExtractedProject] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.tasks or self.knowledge or self.new_projects)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "TranscriptExtraction":
        data = data or {}

        def _opt(item: dict[str, Any], key: str) -> str | None:
            value = item.get(key)
            return str(value).strip() or None if value else None

        def _items(key: str) -> list[dict[str, Any]]:
            value = data.get(key)
            return [i for i in value if isinstance(i, dict)] if isinstance(value, list) else []

        return cls(
            tasks=[
                ExtractedTask(
                    description=str(t.get("description", "")).strip(),
                    project_name=_opt(t, "project_name"),
                    deadline=_opt(t, "deadline"),
                    priority=_opt(t, "priority"),
                )
                for t in _items("tasks")
                if str(t.get("description", "")).strip()
            ],
            knowledge=[
                ExtractedKnowledge(content=str(k.get("content", "")).strip(), project_name=_opt(k, "project_name"))
                for k in _items("knowledge")
                if str(k.get("content", "")).strip()
            ],
            new_projects=[
                ExtractedProject(
                    name=str(p.get("name", "")).strip(),
                    client_name=_opt(p, "client_name"),
                    project_type=_opt(p, "project_type"),
                )
                for p in _items("new_projects")
                if str(p.get("name", "")).strip()
            ],
        )


def process_transcript(text: str) -> TranscriptExtraction:
    """Extract structure from a transcript. An unreachable model yields an empty extraction."""
    existing = ", ".join(p["name"] for p in repo.list_all_projects()) or "None"
    try:
        raw = llm.complete_json(
            [
                {"role": "system", "content": TRANSCRIPT_SYSTEM_PROMPT},
                {"role": "user", "content": f"Existing projects: {existing}\n\nTranscript:\n{text}"},
            ],
            tier="fast",
        )
    except Exception:
        logger.exception("Transcript extraction failed")
        return TranscriptExtraction()
    return TranscriptExtraction.from_dict(raw)


def summarize_extraction(extraction: TranscriptExtraction) -> str:
    parts: list[str] = []

    if extraction.new_projects:
        parts.append("New projects to create: " + ", ".join(p.name for p in extraction.new_projects))

    if extraction.tasks:
        parts.append(f"Tasks to create ({len(extraction.tasks)}):")
        for t in extraction.tasks[:MAX_SUMMARY_TASKS]:
            project = f" [{t.project_name}]" if t.project_name else ""
            parts.append(f"  - {t.description}{project}")
        if len(extraction.tasks) > MAX_SUMMARY_TASKS:
            parts.append(f"  ... and {len(extraction.tasks) - MAX_SUMMARY_TASKS} more")

    if extraction.knowledge:
        parts.append(f"Knowledge chunks to store: {len(extraction.knowledge)}")

    if not parts:
        return "Nothing to extract from this transcript."
    return "\n".join(parts)


def _project_id_for(name: str | None, created: dict[str, str]) -> str | None:
    if not name:
        return None
    existing = repo.get_project_by_name(name)
    if existing:
        return existing["id"]
    return created.get(name.lower())


def commit_transcript(extraction: TranscriptExtraction, source_id: str) -> dict[str, int]:
    """Write an approved extraction. Projects go first so tasks and notes can link to them."""
    counts = {"projects_created": 0, "tasks_created": 0, "knowledge_added": 0}
    created: dict[str, str] = {}

    for p in extraction.new_projects:
        existing = repo.get_project_by_name(p.name)
        if existing:
            created[p.name.lower()] = existing["id"]
            continue
        project = repo.create_project(
            name=p.name,
            client_name=p.client_name,
            project_type=p.project_type,
            status="future",
        )
        created[p.name.lower()] = project["id"]
        counts["projects_created"] += 1

    for t in extraction.tasks:
        repo.create_task(
            description=t.description,
            project_id=_project_id_for(t.project_name, created),
            deadline=t.deadline,
            priority=t.priority if t.priority in {"low", "medium", "high", "urgent"} else "medium",
        )
        counts["tasks_created"] += 1

    for k in extraction.knowledge:
        repo.add_project_knowledge(
            content=k.content,
            project_id=_project_id_for(k.project_name, created),
            source_type="meeting",
            source_id=source_id,
        )
        counts["knowledge_added"] += 1

    logger.info("Committed transcript %s: %s", source_id, counts)
    return counts
