# dialogue.py — One conversational turn, start to finish
#
# awaiting_route → resolving_entities → {disambiguating | dispatching} → responded
#
# A turn re-derives everything from the persisted ActiveContext and ends
# when the reply is saved. Nothing is held in memory between turns; a
# disambiguation question just ends the turn and the next message starts
# over from the saved snapshot.
#
# Every collaborator is injectable so tests can run the whole flow against
# fakes. The defaults are the real modules.

from __future__ import annotations

import enum
import logging
import traceback
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from types import ModuleType
from typing import Any, Callable, Sequence

from foreman.agents import response as responder
from foreman.agents.results import (
    AgentContext,
    ProjectResult,
    SpecialistResult,
    TaskResult,
)
from foreman.engine import router
from foreman.engine.config import APOLOGY_MESSAGE, RECORDER_URL
from foreman.resolution import (
    ActiveContext,
    EntityRef,
    ResolvedEntities,
    build_context_summary,
    merge_context,
    resolve_entities,
    update_context_with_new_project,
    update_context_with_new_task,
)

logger = logging.getLogger(__name__)

RECORD_REPLY = f"Open the recorder and hit record: {RECORDER_URL}\nI'll send you what I pick up once it's processed."

_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="dialogue")


class TurnState(str, enum.Enum):
    AWAITING_ROUTE = "awaiting_route"
    RESOLVING_ENTITIES = "resolving_entities"
    DISAMBIGUATING = "disambiguating"
    DISPATCHING = "dispatching"
    RESPONDED = "responded"
    FAILED = "failed"


@dataclass
class TurnOutcome:
    reply: str
    state: TurnState
    context: ActiveContext
    intent: str | None = None
    specialist: str | None = None
    result: SpecialistResult | None = None
    candidates: tuple[EntityRef, ...] = field(default_factory=tuple)


def _default_specialists() -> dict[str, Callable[[AgentContext], SpecialistResult]]:
    from foreman.agents.knowledge import handle_knowledge_intent
    from foreman.agents.project import handle_project_intent
    from foreman.agents.schedule import handle_schedule_intent
    from foreman.agents.task import handle_task_intent

    return {
        "task": handle_task_intent,
        "project": handle_project_intent,
        "knowledge": handle_knowledge_intent,
        "schedule": handle_schedule_intent,
    }


def _default_store() -> ModuleType:
    from foreman.db import repository
    return repository


def _default_approvals() -> Callable[[str], str | None]:
    from foreman.agents.approval import handle_pending_reply
    return handle_pending_reply


def _default_notify() -> Callable[[dict[str, Any]], Any]:
    from foreman.messaging.telegram import notify_operator
    return notify_operator


def fold_result(context: ActiveContext, result: SpecialistResult | None) -> ActiveContext:
    """Make a created or updated entity the current one."""
    if isinstance(result, TaskResult) and result.task and result.action in ("created", "updated"):
        return update_context_with_new_task(context, result.task["id"])
    if isinstance(result, ProjectResult) and result.project and result.action in ("created", "updated"):
        return update_context_with_new_project(context, result.project["id"])
    return context


def ambiguity(
    project_refs: Sequence[str],
    task_refs: Sequence[str],
    resolved: ResolvedEntities,
) -> tuple[str, tuple[EntityRef, ...]] | None:
    """One reference that matched several entities. Projects are checked first."""
    if len(project_refs) == 1 and len(resolved.projects) > 1:
        return "project", resolved.projects
    if len(task_refs) == 1 and len(resolved.tasks) > 1:
        return "task", resolved.tasks
    return None


class Dialogue:
    """Runs turns. Holds collaborators only, never conversation state."""

    def __init__(
        self,
        store: Any = None,
        classify: Callable[[str, Sequence[dict[str, Any]], str], router.RouterResult] | None = None,
        resolve: Callable[..., ResolvedEntities] | None = None,
        specialists: dict[str, Callable[[AgentContext], SpecialistResult]] | None = None,
        respond: Callable[[str, str, Sequence[dict[str, Any]], SpecialistResult | None], str] | None = None,
        chat: Callable[[str, Sequence[dict[str, Any]]], str] | None = None,
        approvals: Callable[[str], str | None] | None = None,
        notify: Callable[[dict[str, Any]], Any] | None = None,
    ):
        self.store = store or _default_store()
        self.classify = classify or router.classify
        self.resolve = resolve or resolve_entities
        self.specialists = specialists if specialists is not None else _default_specialists()
        self.respond = respond or responder.generate_response
        self.chat = chat or responder.generate_general_chat_response
        self.approvals = approvals if approvals is not None else _default_approvals()
        self.notify = notify or _default_notify()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def handle(self, conversation_id: str, message: str) -> TurnOutcome:
        context = ActiveContext()
        state = TurnState.AWAITING_ROUTE
        intent: str | None = None
        try:
            context, history = self._load(conversation_id)
            self.store.save_message(conversation_id, "user", message, context.to_dict())

            pending_reply = self.approvals(message) if self.approvals else None
            if pending_reply:
                self.store.save_message(conversation_id, "assistant", pending_reply, context.to_dict())
                return TurnOutcome(reply=pending_reply, state=TurnState.RESPONDED, context=context,
                                   specialist="approval")

            routed = self.classify(message, history, build_context_summary(context))
            intent = routed.intent

            state = TurnState.RESOLVING_ENTITIES
            resolved = self.resolve(routed.entities.projects, routed.entities.tasks, context)

            ambiguous = ambiguity(routed.entities.projects, routed.entities.tasks, resolved)
            if ambiguous:
                entity_type, candidates = ambiguous
                reply = responder.format_disambiguation(entity_type, candidates)
                # Nothing was chosen, so the loaded context is saved untouched.
                self.store.save_message(conversation_id, "assistant", reply, context.to_dict())
                return TurnOutcome(reply=reply, state=TurnState.DISAMBIGUATING, context=context,
                                   intent=intent, candidates=candidates)

            state = TurnState.DISPATCHING
            agent_ctx = AgentContext(
                intent=intent,
                message=message,
                history=history,
                context=context,
                resolved=resolved,
                deadline=routed.entities.deadline,
                priority=routed.entities.priority,
            )
            reply, specialist, result = self._dispatch(agent_ctx)

            new_context = merge_context(fold_result(context, result), resolved)
            self.store.save_message(conversation_id, "assistant", reply, new_context.to_dict())
            return TurnOutcome(reply=reply, state=TurnState.RESPONDED, context=new_context,
                               intent=intent, specialist=specialist, result=result)

        except Exception as exc:
            logger.exception("Turn failed in state %s for conversation %s", state.value, conversation_id)
            self._report(conversation_id, message, state, intent, exc)
            return TurnOutcome(reply=APOLOGY_MESSAGE, state=TurnState.FAILED, context=context, intent=intent)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _load(self, conversation_id: str) -> tuple[ActiveContext, list[dict[str, Any]]]:
        context_f = _pool.submit(self.store.load_active_context, conversation_id)
        history_f = _pool.submit(self.store.get_todays_messages, conversation_id)
        return ActiveContext.from_dict(context_f.result()), history_f.result()

    def _dispatch(self, ctx: AgentContext) -> tuple[str, str | None, SpecialistResult | None]:
        if ctx.intent == "record_request":
            return RECORD_REPLY, None, None

        specialist = router.specialist_for(ctx.intent)
        handler = self.specialists.get(specialist) if specialist else None
        if handler is None:
            return self.chat(ctx.message, ctx.history), None, None

        result = handler(ctx)
        reply = self.respond(ctx.intent, ctx.message, ctx.history, result)
        return reply, specialist, result

    def _report(
        self,
        conversation_id: str,
        message: str,
        state: TurnState,
        intent: str | None,
        exc: Exception,
    ) -> None:
        try:
            self.notify({
                "conversation": conversation_id,
                "state": state.value,
                "intent": intent or "-",
                "message": message[:200],
                "error": f"{type(exc).__name__}: {exc}",
                "where": traceback.format_exc(limit=3).strip().splitlines()[-1],
            })
        except Exception:
            logger.exception("Operator notification failed")


_default: Dialogue | None = None


def get_dialogue() -> Dialogue:
    global _default
    if _default is None:
        _default = Dialogue()
    return _default


def handle_message(conversation_id: str, message: str) -> TurnOutcome:
    return get_dialogue().handle(conversation_id, message)
