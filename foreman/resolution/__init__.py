"""Entity resolution and conversational context for Foreman."""

from .context import (
    ActiveContext,
    EntityRef,
    ResolvedEntities,
    build_context_summary,
    create_empty_context,
    merge_context,
    update_context_with_new_project,
    update_context_with_new_task,
)
from .resolver import (
    resolve_entities,
    resolve_project_reference,
    resolve_task_reference,
)
from .similarity import MatchCandidate, rank_candidates, similarity

__all__ = [
    "ActiveContext",
    "EntityRef",
    "MatchCandidate",
    "ResolvedEntities",
    "build_context_summary",
    "create_empty_context",
    "merge_context",
    "rank_candidates",
    "resolve_entities",
    "resolve_project_reference",
    "resolve_task_reference",
    "similarity",
    "update_context_with_new_project",
    "update_context_with_new_task",
]
