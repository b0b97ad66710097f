# test_approval.py — Transcript extraction, approval replies and commit

from __future__ import annotations

import sys
import unittest
from pathlib import Path
from unittest.mock import patch

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from foreman.db import session as db_session

db_session.configure("sqlite://")

from foreman.agents import approval, transcript
from foreman.agents.approval import TranscriptEdit, apply_edits, handle_pending_reply, interpret_reply
from foreman.agents.transcript import (
    ExtractedKnowledge,
    ExtractedProject,
    ExtractedTask,
    TranscriptExtraction,
    commit_transcript,
    summarize_extraction,
)
from foreman.db import repository as repo
from foreman.engine import llm


def sample_extraction() -> TranscriptExtraction:
    return TranscriptExtraction(
        tasks=[
            ExtractedTask("Order cabinets", project_name="Garcia Kitchen", deadline="2026-03-10"),
            ExtractedTask("Schedule plumber", project_name="Chen"),
            ExtractedTask("Pick up permit"),
        ],
        knowledge=[ExtractedKnowledge("Client chose white oak floors", project_name="Garcia Kitchen")],
        new_projects=[ExtractedProject("Garcia Kitchen", client_name="Garcia", project_type="kitchen")],
    )


class ExtractionTests(unittest.TestCase):
    def setUp(self) -> None:
        db_session.reset_db()

    def test_process_transcript_parses_model_output(self) -> None:
        raw = {
            "tasks": [{"description": "Order cabinets", "project_name": "Garcia"}, {"description": ""}],
            "knowledge": [{"content": "Budget is 40k"}],
            "new_projects": "nope",
        }
        with patch.object(llm, "complete_json", return_value=raw):
            extraction = transcript.process_transcript("we need to order cabinets, budget is 40k")

        self.assertEqual([t.description for t in extraction.tasks], ["Order cabinets"])
        self.assertEqual(extraction.tasks[0].project_name, "Garcia")
        self.assertEqual(len(extraction.knowledge), 1)
        self.assertEqual(extraction.new_projects, [])

    def test_model_failure_gives_empty_extraction(self) -> None:
        with patch.object(llm, "complete_json", side_effect=RuntimeError("down")):
            extraction = transcript.process_transcript("anything")
        self.assertTrue(extraction.is_empty())

    def test_summary_lists_at_most_five_tasks(self) -> None:
        extraction = TranscriptExtraction(tasks=[ExtractedTask(f"Task {i}") for i in range(7)])
        summary = summarize_extraction(extraction)

        self.assertIn("Tasks to create (7):", summary)
        self.assertIn("  - Task 4", summary)
        self.assertNotIn("Task 5", summary)
        self.assertIn("... and 2 more", summary)

    def test_empty_summary(self) -> None:
        self.assertEqual(summarize_extraction(TranscriptExtraction()), "Nothing to extract from this transcript.")

    def test_dict_round_trip(self) -> None:
        extraction = sample_extraction()
        self.assertEqual(TranscriptExtraction.from_dict(extraction.to_dict()), extraction)


class CommitTests(unittest.TestCase):
    def setUp(self) -> None:
        db_session.reset_db()

    def test_projects_first_then_linked_tasks_and_notes(self) -> None:
        chen = repo.create_project("Chen")

        counts = commit_transcript(sample_extraction(), "vt1")

        self.assertEqual(counts, {"projects_created": 1, "tasks_created": 3, "knowledge_added": 1})
        garcia = repo.get_project_by_name("garcia kitchen")
        self.assertIsNotNone(garcia)
        self.assertEqual([t["description"] for t in repo.get_tasks_by_project(garcia["id"])], ["Order cabinets"])
        self.assertEqual([t["description"] for t in repo.get_tasks_by_project(chen["id"])], ["Schedule plumber"])
        notes = repo.get_project_knowledge(garcia["id"])
        self.assertEqual(notes[0]["source_type"], "meeting")
        self.assertEqual(notes[0]["source_id"], "vt1")

    def test_existing_project_is_not_duplicated(self) -> None:
        repo.create_project("GARCIA KITCHEN")
        counts = commit_transcript(sample_extraction(), "vt1")

        self.assertEqual(counts["projects_created"], 0)
        self.assertEqual(len(repo.list_all_projects()), 1)


class ApplyEditsTests(unittest.TestCase):
    def test_removals_apply_highest_index_first(self) -> None:
        edited = apply_edits(sample_extraction(), [
            TranscriptEdit("remove_task", task_index=0),
            TranscriptEdit("remove_task", task_index=2),
        ])
        self.assertEqual([t.description for t in edited.tasks], ["Schedule plumber"])

    def test_field_edits_and_add(self) -> None:
        edited = apply_edits(sample_extraction(), [
            TranscriptEdit("update_task_description", task_index=1, new_value="Schedule rough-in plumber"),
            TranscriptEdit("update_deadline", task_index=0, new_value="2026-03-12"),
            TranscriptEdit("change_project", task_index=2, new_value="Chen"),
            TranscriptEdit("add_task", new_value="Call tile supplier"),
        ])

        self.assertEqual(edited.tasks[0].deadline, "2026-03-12")
        self.assertEqual(edited.tasks[1].description, "Schedule rough-in plumber")
        self.assertEqual(edited.tasks[2].project_name, "Chen")
        self.assertEqual(edited.tasks[3].description, "Call tile supplier")

    def test_out_of_range_edits_are_ignored_and_input_untouched(self) -> None:
        original = sample_extraction()
        edited = apply_edits(original, [TranscriptEdit("remove_task", task_index=9)])

        self.assertEqual(edited, original)
        self.assertEqual(len(original.tasks), 3)


class InterpretReplyTests(unittest.TestCase):
    def test_parses_decision(self) -> None:
        raw = {"action": "edit", "edits": [{"type": "remove_task", "task_index": 2}, {"type": "bogus"}],
               "reasoning": "wants third task gone"}
        with patch.object(llm, "complete_json", return_value=raw):
            decision = interpret_reply("drop the third one", sample_extraction())

        self.assertEqual(decision.action, "edit")
        self.assertEqual(decision.edits, (TranscriptEdit("remove_task", task_index=2),))

    def test_failure_is_unrelated(self) -> None:
        with patch.object(llm, "complete_json", side_effect=ValueError("no JSON")):
            decision = interpret_reply("yep", sample_extraction())
        self.assertEqual(decision.action, "unrelated")

    def test_unknown_action_is_unrelated(self) -> None:
        with patch.object(llm, "complete_json", return_value={"action": "maybe"}):
            self.assertEqual(interpret_reply("hmm", sample_extraction()).action, "unrelated")


class PendingReplyTests(unittest.TestCase):
    def setUp(self) -> None:
        db_session.reset_db()
        self.transcript = repo.save_voice_transcript("raw text", source="webapp")
        repo.save_pending_approval(self.transcript["id"], sample_extraction().to_dict())

    def _decide(self, action: str, edits=()):
        return patch.object(approval, "interpret_reply", return_value=approval.ApprovalDecision(action, tuple(edits)))

    def test_nothing_pending_returns_none(self) -> None:
        repo.mark_transcript_processed(self.transcript["id"], "done")
        with patch.object(approval, "interpret_reply") as interpret:
            self.assertIsNone(handle_pending_reply("yep"))
        interpret.assert_not_called()

    def test_approve_commits_and_closes(self) -> None:
        with self._decide("approve"):
            reply = handle_pending_reply("looks good")

        self.assertEqual(reply, "Saved 3 task(s), 1 note(s), 1 new project(s).")
        self.assertIsNone(repo.get_pending_approval())
        self.assertTrue(repo.get_voice_transcript(self.transcript["id"])["processed"])
        self.assertEqual(len(repo.list_all_tasks()), 3)

    def test_reject_discards(self) -> None:
        with self._decide("reject"):
            reply = handle_pending_reply("scratch that")

        self.assertTrue(reply.startswith("Discarded"))
        self.assertEqual(repo.list_all_tasks(), [])
        self.assertIsNone(repo.get_pending_approval())

    def test_edit_updates_pending_and_asks_again(self) -> None:
        with self._decide("edit", [TranscriptEdit("remove_task", task_index=0)]):
            reply = handle_pending_reply("drop the cabinets")

        self.assertIn("Tasks to create (2):", reply)
        pending = repo.get_pending_approval()
        self.assertEqual(len(pending["pending_result"]["tasks"]), 2)
        self.assertEqual(repo.list_all_tasks(), [])

    def test_unrelated_passes_through(self) -> None:
        with self._decide("unrelated"):
            self.assertIsNone(handle_pending_reply("what's on today"))
        self.assertIsNotNone(repo.get_pending_approval())


class IngestRecordingTests(unittest.TestCase):
    def setUp(self) -> None:
        db_session.reset_db()

    def test_transcribes_stores_and_broadcasts(self) -> None:
        raw = {"tasks": [{"description": "Order cabinets"}], "knowledge": [], "new_projects": []}
        with patch("foreman.messaging.transcription.transcribe_audio", return_value="order the cabinets today") as stt, \
                patch("foreman.messaging.telegram.broadcast") as broadcast, \
                patch.object(llm, "complete_json", return_value=raw):
            result = approval.ingest_recording(b"audio-bytes", "meeting.webm")

        stt.assert_called_once()
        self.assertEqual(result["tasks_found"], 1)
        stored = repo.get_voice_transcript(result["transcript_id"])
        self.assertEqual(stored["duration_seconds"], 2)
        self.assertEqual(stored["pending_result"]["tasks"][0]["description"], "Order cabinets")
        self.assertIn("Does this look right?", broadcast.call_args[0][0])


if __name__ == "__main__":
    unittest.main()
