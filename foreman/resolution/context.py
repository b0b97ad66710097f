# context.py — Conversational memory carried between turns
#
# ActiveContext is what lets "mark that task done" work: it remembers the
# task/project currently in focus plus short most-recent-first lists of
# what was mentioned lately. It is an immutable value. Every helper here
# returns a new instance; the dialogue layer persists the result with the
# assistant's message and reloads it on the next turn.

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from foreman.engine.config import MAX_RECENT_ENTITIES


@dataclass(frozen=True)
class EntityRef:
    """A resolved project or task: its id plus the label it matched on."""

    id: str
    label: str


@dataclass(frozen=True)
class ResolvedEntities:
    projects: tuple[EntityRef, ...] = ()
    tasks: tuple[EntityRef, ...] = ()

    def is_empty(self) -> bool:
        return not self.projects and not self.tasks


@dataclass(frozen=True)
class ActiveContext:
    current_task_id: str | None = None
    current_project_id: str | None = None
    recently_mentioned_tasks: tuple[str, ...] = field(default_factory=tuple)
    recently_mentioned_projects: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_task_id": self.current_task_id,
            "current_project_id": self.current_project_id,
            "recently_mentioned_tasks": list(self.recently_mentioned_tasks),
            "recently_mentioned_projects": list(self.recently_mentioned_projects),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ActiveContext":
        """Build from a stored JSON dict. Missing or malformed keys fall back to empty."""
        if not isinstance(data, dict):
            return cls()

        def _ids(value: Any) -> tuple[str, ...]:
            if not isinstance(value, list):
                return ()
            seen: list[str] = []
            for item in value:
                if isinstance(item, str) and item and item not in seen:
                    seen.append(item)
            return tuple(seen[:MAX_RECENT_ENTITIES])

        def _id(value: Any) -> str | None:
            return value if isinstance(value, str) and value else None

        return cls(
            current_task_id=_id(data.get("current_task_id")),
            current_project_id=_id(data.get("current_project_id")),
            recently_mentioned_tasks=_ids(data.get("recently_mentioned_tasks")),
            recently_mentioned_projects=_ids(data.get("recently_mentioned_projects")),
        )


def create_empty_context() -> ActiveContext:
    return ActiveContext()


def merge_context(existing: ActiveContext, resolved: ResolvedEntities) -> ActiveContext:
    """Fold a turn's resolved entities into the context.

    Each entity not already in its recency list is prepended, so the last
    one processed ends up first. current_* is set on every iteration, so
    the last resolved entity of each kind becomes current.
    """
    projects = list(existing.recently_mentioned_projects)
    current_project = existing.current_project_id
    for ref in resolved.projects:
        if ref.id not in projects:
            projects.insert(0, ref.id)
        current_project = ref.id

    tasks = list(existing.recently_mentioned_tasks)
    current_task = existing.current_task_id
    for ref in resolved.tasks:
        if ref.id not in tasks:
            tasks.insert(0, ref.id)
        current_task = ref.id

    return replace(
        existing,
        current_project_id=current_project,
        current_task_id=current_task,
        recently_mentioned_projects=tuple(projects[:MAX_RECENT_ENTITIES]),
        recently_mentioned_tasks=tuple(tasks[:MAX_RECENT_ENTITIES]),
    )


def _move_to_front(ids: tuple[str, ...], new_id: str) -> tuple[str, ...]:
    return tuple([new_id, *(i for i in ids if i != new_id)][:MAX_RECENT_ENTITIES])


def update_context_with_new_task(existing: ActiveContext, task_id: str) -> ActiveContext:
    """Focus a task created this turn."""
    return replace(
        existing,
        current_task_id=task_id,
        recently_mentioned_tasks=_move_to_front(existing.recently_mentioned_tasks, task_id),
    )


def update_context_with_new_project(existing: ActiveContext, project_id: str) -> ActiveContext:
    """Focus a project created this turn."""
    return replace(
        existing,
        current_project_id=project_id,
        recently_mentioned_projects=_move_to_front(existing.recently_mentioned_projects, project_id),
    )


def build_context_summary(context: ActiveContext) -> str:
    """Plain-text view of the context for LLM prompts."""
    parts: list[str] = []
    if context.current_project_id:
        parts.append(f"Current project: {context.current_project_id}")
    if context.current_task_id:
        parts.append(f"Current task: {context.current_task_id}")
    if context.recently_mentioned_projects:
        parts.append(f"Recently mentioned projects: {', '.join(context.recently_mentioned_projects)}")
    if context.recently_mentioned_tasks:
        parts.append(f"Recently mentioned tasks: {', '.join(context.recently_mentioned_tasks)}")
    return "\n".join(parts) if parts else "No active context."
