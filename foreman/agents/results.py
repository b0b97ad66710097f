# results.py — What specialists hand back to the dialogue layer
#
# One dataclass per specialist, each tagged with a `kind` so the response
# generator and the context fold can switch on it instead of guessing
# from which fields happen to be filled in.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Sequence, Union

from foreman.resolution.context import ActiveContext, ResolvedEntities


@dataclass(frozen=True)
class AgentContext:
    """Everything a specialist may look at for one turn."""

    intent: str
    message: str
    history: Sequence[dict[str, Any]]
    context: ActiveContext
    resolved: ResolvedEntities
    deadline: str | None = None
    priority: str | None = None


@dataclass(frozen=True)
class TaskResult:
    action: Literal["created", "updated", "completed", "queried"]
    task: dict[str, Any] | None = None
    tasks: list[dict[str, Any]] | None = None
    error: str | None = None
    kind: Literal["task"] = "task"


@dataclass(frozen=True)
class ProjectResult:
    action: Literal["created", "updated"]
    project: dict[str, Any] | None = None
    error: str | None = None
    kind: Literal["project"] = "project"


@dataclass(frozen=True)
class KnowledgeResult:
    answer: str
    sources: list[dict[str, Any]] = field(default_factory=list)
    confidence: Literal["high", "medium", "low"] = "low"
    kind: Literal["knowledge"] = "knowledge"


@dataclass(frozen=True)
class ScheduleResult:
    tasks: list[dict[str, Any]] = field(default_factory=list)
    events: list[dict[str, Any]] = field(default_factory=list)
    kind: Literal["schedule"] = "schedule"


SpecialistResult = Union[TaskResult, ProjectResult, KnowledgeResult, ScheduleResult]
