# resolver.py — Turn free-text references into stored projects and tasks
#
# The router hands us strings like "the Chen project", "that task" or
# "call inspector". For each one we decide between three outcomes:
#
#   []            nothing matched (caller may create or ask)
#   [item]        confident single match
#   [a, b, c]     genuinely ambiguous, caller asks the user to pick
#
# Contextual pronouns skip fuzzy matching entirely and read the
# ActiveContext instead. Everything else is ranked by similarity with a
# flat boost for things mentioned recently.

from __future__ import annotations

import re
from typing import Any, Callable, Protocol, Sequence

from foreman.engine.config import (
    CLEAR_WINNER_GAP,
    CONFIDENT_SCORE,
    MATCH_THRESHOLD,
    MAX_DISAMBIGUATION,
    RECENCY_BOOST,
)

from .context import ActiveContext, EntityRef, ResolvedEntities
from .similarity import MatchCandidate, rank_candidates

PROJECT_PRONOUNS = ("that project", "this project", "the project", "it")
TASK_PRONOUNS = ("that task", "this task", "the task", "it", "that", "this one")

_NEW_ENTITY_WORDS = ("new", "create", "add", "start", "starting")

_PROJECT_NAME_PATTERNS = [
    re.compile(r"(?:the|a)\s+([A-Z][a-z]+(?:\s+[a-z]+)?)\s+(?:project|job|deck|remodel|kitchen|bathroom)", re.IGNORECASE),
    re.compile(r"([A-Z][a-z]+)\s+(?:project|job|site)", re.IGNORECASE),
    re.compile(r"(?:at|for)\s+([A-Z][a-z]+(?:'s)?)", re.IGNORECASE),
]


class DomainLookup(Protocol):
    """What the resolver needs from storage. foreman.db.repository satisfies it."""

    def list_all_projects(self) -> list[dict[str, Any]]: ...
    def list_all_tasks(self) -> list[dict[str, Any]]: ...
    def get_project_by_id(self, project_id: str) -> dict[str, Any] | None: ...
    def get_task_by_id(self, task_id: str) -> dict[str, Any] | None: ...


def _default_lookup() -> DomainLookup:
    from foreman.db import repository
    return repository  # type: ignore[return-value]


def _is_contextual(reference: str, phrases: Sequence[str]) -> bool:
    lowered = reference.lower()
    return any(phrase in lowered for phrase in phrases)


def _from_context(
    current_id: str | None,
    recent_ids: Sequence[str],
    get_by_id: Callable[[str], dict[str, Any] | None],
) -> list[dict[str, Any]]:
    """Current id if it still exists, else the first live recency entry."""
    if current_id:
        item = get_by_id(current_id)
        if item:
            return [item]
    for entity_id in recent_ids:
        item = get_by_id(entity_id)
        if item:
            return [item]
    return []


def _select(
    matches: list[MatchCandidate],
    recent_ids: Sequence[str],
    label: Callable[[dict[str, Any]], str],
) -> list[dict[str, Any]]:
    """Apply the recency boost, re-sort, then pick one or several."""
    recent = set(recent_ids)
    for match in matches:
        if match.item["id"] in recent:
            match.score += RECENCY_BOOST
    matches.sort(key=lambda m: m.score, reverse=True)

    if not matches:
        return []
    top = matches[0].score
    # Two items with the same name are indistinguishable; only the user can pick.
    duplicate = (
        len(matches) > 1
        and matches[1].score == top
        and label(matches[1].item).strip().lower() == label(matches[0].item).strip().lower()
    )
    if top >= CONFIDENT_SCORE and not duplicate:
        return [matches[0].item]
    if len(matches) == 1 or top - matches[1].score > CLEAR_WINNER_GAP:
        return [matches[0].item]
    return [m.item for m in matches[:MAX_DISAMBIGUATION]]


def resolve_project_reference(
    reference: str,
    context: ActiveContext,
    lookup: DomainLookup | None = None,
) -> list[dict[str, Any]]:
    """Resolve a project reference ("the Chen job", "that project") to project dicts."""
    lookup = lookup or _default_lookup()

    if _is_contextual(reference, PROJECT_PRONOUNS):
        return _from_context(
            context.current_project_id,
            context.recently_mentioned_projects,
            lookup.get_project_by_id,
        )

    matches = rank_candidates(
        reference,
        lookup.list_all_projects(),
        lambda p: p["name"],
        threshold=MATCH_THRESHOLD,
    )
    return _select(matches, context.recently_mentioned_projects, lambda p: p["name"])


def resolve_task_reference(
    reference: str,
    context: ActiveContext,
    project_id: str | None = None,
    lookup: DomainLookup | None = None,
) -> list[dict[str, Any]]:
    """Resolve a task reference, optionally only among one project's tasks."""
    lookup = lookup or _default_lookup()

    if _is_contextual(reference, TASK_PRONOUNS):
        return _from_context(
            context.current_task_id,
            context.recently_mentioned_tasks,
            lookup.get_task_by_id,
        )

    tasks = lookup.list_all_tasks()
    if project_id:
        tasks = [t for t in tasks if t.get("project_id") == project_id]

    matches = rank_candidates(
        reference,
        tasks,
        lambda t: t["description"],
        threshold=MATCH_THRESHOLD,
    )
    return _select(matches, context.recently_mentioned_tasks, lambda t: t["description"])


def resolve_entities(
    project_refs: Sequence[str],
    task_refs: Sequence[str],
    context: ActiveContext,
    lookup: DomainLookup | None = None,
) -> ResolvedEntities:
    """Resolve every reference from one message.

    Projects go first; task matching is then narrowed to the first
    resolved project, if any. Results are de-duplicated by id in the
    order they were first seen.
    """
    lookup = lookup or _default_lookup()

    projects: list[EntityRef] = []
    for ref in project_refs:
        for project in resolve_project_reference(ref, context, lookup=lookup):
            if not any(p.id == project["id"] for p in projects):
                projects.append(EntityRef(id=project["id"], label=project["name"]))

    project_filter = projects[0].id if projects else None
    tasks: list[EntityRef] = []
    for ref in task_refs:
        for task in resolve_task_reference(ref, context, project_id=project_filter, lookup=lookup):
            if not any(t.id == task["id"] for t in tasks):
                tasks.append(EntityRef(id=task["id"], label=task["description"]))

    return ResolvedEntities(projects=tuple(projects), tasks=tuple(tasks))


def suggests_new_entity(reference: str) -> bool:
    """True when the wording hints at creating something ("new deck job", "add a task")."""
    lowered = reference.lower()
    return any(word in lowered for word in _NEW_ENTITY_WORDS)


def extract_project_name(text: str) -> str | None:
    """Pull a likely project name out of a sentence, e.g. "the Johnson deck" → "Johnson"."""
    for pattern in _PROJECT_NAME_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None
