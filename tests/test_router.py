# test_router.py — Router output normalization and dispatch table

from __future__ import annotations

import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from openai import OpenAIError

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from foreman.engine import llm, router


class NormalizeTests(unittest.TestCase):
    def test_well_formed_output(self) -> None:
        result = router.normalize_router_output({
            "intent": "task_create",
            "entities": {"projects": ["Chen"], "tasks": [], "deadline": "friday", "priority": "HIGH"},
            "requires_lookup": True,
            "confidence": "high",
        })

        self.assertEqual(result.intent, "task_create")
        self.assertEqual(result.entities.projects, ("Chen",))
        self.assertEqual(result.entities.deadline, "friday")
        self.assertEqual(result.entities.priority, "high")
        self.assertTrue(result.requires_lookup)

    def test_garbage_falls_back_to_general_chat(self) -> None:
        result = router.normalize_router_output({
            "intent": "order_pizza",
            "entities": {"projects": "Chen", "tasks": [None, "", "  call  "], "priority": "asap"},
            "confidence": "very",
        })

        self.assertEqual(result.intent, "general_chat")
        self.assertEqual(result.entities.projects, ())
        self.assertEqual(result.entities.tasks, ("call",))
        self.assertIsNone(result.entities.priority)
        self.assertEqual(result.confidence, "medium")

    def test_missing_entities(self) -> None:
        result = router.normalize_router_output({"intent": "schedule_query"})
        self.assertEqual(result.entities, router.RouterEntities())


class DispatchTableTests(unittest.TestCase):
    def test_mapping(self) -> None:
        expected = {
            "task_create": "task",
            "task_update": "task",
            "task_complete": "task",
            "task_query": "task",
            "project_create": "project",
            "project_update": "project",
            "project_query": "knowledge",
            "knowledge_query": "knowledge",
            "schedule_query": "schedule",
            "record_request": None,
            "general_chat": None,
        }
        self.assertEqual(set(expected), set(router.INTENTS))
        for intent, specialist in expected.items():
            self.assertEqual(router.specialist_for(intent), specialist, intent)
            self.assertEqual(router.needs_specialist(intent), specialist is not None)


class ClassifyTests(unittest.TestCase):
    def test_prompt_carries_history_and_context(self) -> None:
        history = [{"role": "user", "content": f"msg {i}"} for i in range(12)]
        with patch.object(llm, "complete_json", return_value={"intent": "task_query"}) as complete:
            result = router.classify("what's open?", history, "Current task: t1")

        self.assertEqual(result.intent, "task_query")
        prompt = complete.call_args[0][0][1]["content"]
        self.assertIn("Current task: t1", prompt)
        self.assertIn("msg 11", prompt)
        self.assertNotIn("msg 1\n", prompt)
        self.assertEqual(complete.call_args[1]["tier"], "fast")

    def test_model_errors_propagate(self) -> None:
        with patch.object(llm, "complete_json", side_effect=RuntimeError("down")):
            with self.assertRaises(RuntimeError):
                router.classify("hi", [], "No active context.")

    def test_empty_history(self) -> None:
        self.assertEqual(router.format_history([]), "No previous messages today.")


class ExtractJsonTests(unittest.TestCase):
    def test_fenced_and_chatty_replies(self) -> None:
        self.assertEqual(llm.extract_json('```json\n{"a": 1}\n```'), {"a": 1})
        self.assertEqual(llm.extract_json('Sure! {"a": {"b": 2}} hope that helps'), {"a": {"b": 2}})

    def test_non_object_raises(self) -> None:
        with self.assertRaises(ValueError):
            llm.extract_json("[1, 2]")
        with self.assertRaises(ValueError):
            llm.extract_json("no json here")


class EmbeddingTests(unittest.TestCase):
    def test_embed_calls_embeddings_endpoint(self) -> None:
        client = MagicMock()
        client.embeddings.create.return_value = MagicMock(data=[MagicMock(embedding=[0.25, -1])])
        with patch.object(llm, "_get_client", return_value=client):
            vector = llm.embed("counters are quartz")

        self.assertEqual(vector, [0.25, -1.0])
        kwargs = client.embeddings.create.call_args[1]
        self.assertEqual(kwargs["model"], llm.EMBEDDING_MODEL)
        self.assertEqual(kwargs["input"], "counters are quartz")

    def test_try_embed_is_none_when_disabled_or_failing(self) -> None:
        with patch.object(llm, "embeddings_available", return_value=False):
            self.assertIsNone(llm.try_embed("anything"))

        client = MagicMock()
        client.embeddings.create.side_effect = OpenAIError("no route")
        with patch.object(llm, "embeddings_available", return_value=True), \
                patch.object(llm, "_get_client", return_value=client):
            self.assertIsNone(llm.try_embed("anything"))


if __name__ == "__main__":
    unittest.main()
