# test_dialogue.py — Whole turns through Dialogue.handle
#
# Real repository on in-memory SQLite, real resolver and context helpers.
# The router is replaced by a canned classifier and the model calls by mocks,
# so every turn is deterministic.

from __future__ import annotations

import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from foreman.db import session as db_session

db_session.configure("sqlite://")

from foreman.agents.response import build_result_summary
from foreman.agents.results import TaskResult
from foreman.db import repository as repo
from foreman.engine.config import APOLOGY_MESSAGE
from foreman.engine.router import RouterEntities, RouterResult
from foreman.messaging.dialogue import RECORD_REPLY, Dialogue, TurnState
from foreman.resolution import ActiveContext


def routed(intent, projects=(), tasks=(), deadline=None, priority=None):
    return RouterResult(
        intent=intent,
        entities=RouterEntities(projects=tuple(projects), tasks=tuple(tasks), deadline=deadline, priority=priority),
    )


def summary_responder(intent, message, history, result):
    return build_result_summary(result)


class DialogueTestCase(unittest.TestCase):
    def setUp(self) -> None:
        db_session.reset_db()
        self.conversation_id = repo.get_or_create_conversation("2026-03-02")
        self.notify = MagicMock()
        self.classify = MagicMock()

    def make_dialogue(self, **overrides) -> Dialogue:
        kwargs = {
            "classify": self.classify,
            "respond": summary_responder,
            "approvals": lambda message: None,
            "notify": self.notify,
        }
        kwargs.update(overrides)
        return Dialogue(**kwargs)

    def saved_context(self) -> ActiveContext:
        return ActiveContext.from_dict(repo.load_active_context(self.conversation_id))


class TaskTurnTests(DialogueTestCase):
    def test_chen_change_order_is_completed_without_disambiguation(self) -> None:
        change_order = repo.create_task("Send Chen change order")
        repo.create_task("Send Chen invoice")
        self.classify.return_value = routed("task_complete", tasks=["Chen change order"])

        with patch("foreman.agents.task.llm.complete_json", return_value={"action": "complete"}):
            outcome = self.make_dialogue().handle(self.conversation_id, "mark the Chen change order done")

        self.assertEqual(outcome.state, TurnState.RESPONDED)
        self.assertEqual(outcome.specialist, "task")
        self.assertIsInstance(outcome.result, TaskResult)
        self.assertEqual(outcome.result.action, "completed")
        self.assertEqual(outcome.reply, "Task completed: Send Chen change order")
        self.assertEqual(repo.get_task_by_id(change_order["id"])["status"], "completed")

        ctx = self.saved_context()
        self.assertEqual(ctx.current_task_id, change_order["id"])
        self.assertEqual(ctx.recently_mentioned_tasks, (change_order["id"],))

    def test_identical_tasks_trigger_disambiguation_and_no_specialist(self) -> None:
        chen = repo.create_project("Chen")
        johnson = repo.create_project("Johnson")
        repo.create_task("Call inspector", project_id=chen["id"])
        repo.create_task("Call inspector", project_id=johnson["id"])
        self.classify.return_value = routed("task_complete", tasks=["call inspector"])
        task_handler = MagicMock()

        outcome = self.make_dialogue(specialists={"task": task_handler}).handle(
            self.conversation_id, "call inspector"
        )

        self.assertEqual(outcome.state, TurnState.DISAMBIGUATING)
        self.assertEqual(outcome.reply, "Which task do you mean?\n1. Call inspector\n2. Call inspector")
        self.assertEqual(len(outcome.candidates), 2)
        task_handler.assert_not_called()

        messages = repo.get_todays_messages(self.conversation_id)
        self.assertEqual([m["role"] for m in messages], ["user", "assistant"])
        self.assertEqual(self.saved_context(), ActiveContext())

    def test_created_task_becomes_current(self) -> None:
        self.classify.return_value = routed("task_create", deadline="2026-03-06", priority="high")
        decision = {"action": "create", "task_description": "Order drywall for Miller"}

        with patch("foreman.agents.task.llm.complete_json", return_value=decision):
            outcome = self.make_dialogue().handle(self.conversation_id, "need to order drywall for Miller by friday")

        task = outcome.result.task
        self.assertEqual(task["description"], "Order drywall for Miller")
        self.assertEqual(task["deadline"], "2026-03-06")
        self.assertEqual(task["priority"], "high")
        self.assertEqual(self.saved_context().current_task_id, task["id"])

    def test_follow_up_pronoun_uses_saved_context(self) -> None:
        task = repo.create_task("Send Chen change order")
        dialogue = self.make_dialogue()

        self.classify.return_value = routed("task_query", tasks=["Chen change order"])
        with patch("foreman.agents.task.llm.complete_json", return_value={"action": "query", "query_type": "all"}):
            dialogue.handle(self.conversation_id, "what's up with the Chen change order")

        self.classify.return_value = routed("task_update", tasks=["that task"])
        decision = {"action": "update", "updates": {"priority": "urgent"}}
        with patch("foreman.agents.task.llm.complete_json", return_value=decision):
            outcome = dialogue.handle(self.conversation_id, "make that task urgent")

        self.assertEqual(outcome.result.task["id"], task["id"])
        self.assertEqual(repo.get_task_by_id(task["id"])["priority"], "urgent")

    def test_missing_target_is_reported_not_raised(self) -> None:
        self.classify.return_value = routed("task_complete")

        with patch("foreman.agents.task.llm.complete_json", return_value={"action": "complete"}):
            outcome = self.make_dialogue().handle(self.conversation_id, "done with it")

        self.assertEqual(outcome.state, TurnState.RESPONDED)
        self.assertEqual(outcome.reply, "Error: Could not identify which task to complete")


class ProjectTurnTests(DialogueTestCase):
    def test_project_disambiguation_takes_precedence(self) -> None:
        repo.create_project("Chan")
        repo.create_project("Chin")
        repo.create_task("Call the inspector")
        repo.create_task("Call the inspector")
        self.classify.return_value = routed("task_query", projects=["chen"], tasks=["call inspector"])

        outcome = self.make_dialogue().handle(self.conversation_id, "chen call inspector?")

        self.assertEqual(outcome.state, TurnState.DISAMBIGUATING)
        self.assertTrue(outcome.reply.startswith("Which project do you mean?\n1. Ch"))
        self.assertEqual({c.label for c in outcome.candidates}, {"Chan", "Chin"})

    def test_created_project_becomes_current(self) -> None:
        self.classify.return_value = routed("project_create")
        decision = {"action": "create", "name": "Garcia Bathroom", "project_type": "bathroom"}

        with patch("foreman.agents.project.llm.complete_json", return_value=decision):
            outcome = self.make_dialogue().handle(self.conversation_id, "new job, Garcia bathroom")

        self.assertEqual(outcome.reply, "Project created: Garcia Bathroom (future)")
        self.assertEqual(self.saved_context().current_project_id, outcome.result.project["id"])


class DirectReplyTests(DialogueTestCase):
    def test_record_request_gets_fixed_reply(self) -> None:
        self.classify.return_value = routed("record_request")

        outcome = self.make_dialogue().handle(self.conversation_id, "I want to record the site meeting")

        self.assertEqual(outcome.reply, RECORD_REPLY)
        self.assertIsNone(outcome.specialist)

    def test_general_chat_acknowledgement_skips_model(self) -> None:
        self.classify.return_value = routed("general_chat")

        with patch("foreman.agents.response.llm.complete") as complete:
            outcome = self.make_dialogue().handle(self.conversation_id, "thanks")

        self.assertEqual(outcome.reply, "Yep.")
        complete.assert_not_called()

    def test_pending_approval_answer_ends_turn_before_routing(self) -> None:
        dialogue = self.make_dialogue(approvals=lambda message: "Saved 2 task(s).")

        outcome = dialogue.handle(self.conversation_id, "looks good")

        self.assertEqual(outcome.reply, "Saved 2 task(s).")
        self.assertEqual(outcome.specialist, "approval")
        self.classify.assert_not_called()


class FailureTests(DialogueTestCase):
    def test_router_failure_apologizes_and_notifies_once(self) -> None:
        self.classify.side_effect = RuntimeError("provider down")

        outcome = self.make_dialogue().handle(self.conversation_id, "what's on today")

        self.assertEqual(outcome.reply, APOLOGY_MESSAGE)
        self.assertEqual(outcome.state, TurnState.FAILED)
        self.notify.assert_called_once()
        report = self.notify.call_args[0][0]
        self.assertIn("provider down", report["error"])
        self.assertEqual(report["state"], "awaiting_route")

        # Only the user's message was written
        messages = repo.get_todays_messages(self.conversation_id)
        self.assertEqual([m["role"] for m in messages], ["user"])

    def test_specialist_failure_leaves_context_untouched(self) -> None:
        task = repo.create_task("Send Chen change order")
        self.classify.return_value = routed("task_complete", tasks=["Chen change order"])
        broken = MagicMock(side_effect=ValueError("bad JSON"))

        outcome = self.make_dialogue(specialists={"task": broken}).handle(self.conversation_id, "chen co done")

        self.assertEqual(outcome.reply, APOLOGY_MESSAGE)
        self.assertEqual(self.notify.call_args[0][0]["state"], "dispatching")
        self.assertEqual(repo.get_task_by_id(task["id"])["status"], "pending")
        self.assertEqual(self.saved_context(), ActiveContext())

    def test_notifier_failure_does_not_escape(self) -> None:
        self.classify.side_effect = RuntimeError("boom")
        self.notify.side_effect = RuntimeError("telegram down")

        outcome = self.make_dialogue().handle(self.conversation_id, "hello?")

        self.assertEqual(outcome.reply, APOLOGY_MESSAGE)


if __name__ == "__main__":
    unittest.main()
