# repository.py — CRUD operations for Foreman's database
#
# The agents and the resolver call these functions instead of touching
# sessions directly. Each function is a clean unit of work with its own
# session scope and returns plain dicts.
#
# The module doubles as the resolver's lookup collaborator: it exposes
# list_all_projects / list_all_tasks / get_project_by_id / get_task_by_id.
#
# Organized by domain:
#   - Projects
#   - Tasks
#   - Conversations (messages + active context)
#   - Project knowledge
#   - Voice transcripts
#   - Daily briefs

from __future__ import annotations

import json
import logging
import math
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy import func, or_

from foreman.engine import llm
from foreman.engine.config import EMBEDDING_MATCH_THRESHOLD, TIMEZONE

from .models import (
    Conversation,
    DailyBrief,
    Message,
    Project,
    ProjectKnowledge,
    Task,
    VoiceTranscript,
)
from .session import get_session

logger = logging.getLogger(__name__)

_PRIORITY_RANK = {"urgent": 0, "high": 1, "medium": 2, "low": 3}
_TASK_FIELDS = {"description", "priority", "deadline", "status", "project_id"}
_PROJECT_FIELDS = {"name", "client_name", "address", "project_type", "status"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _local_now() -> datetime:
    return datetime.now(ZoneInfo(TIMEZONE))


def _iso(dt: datetime | None) -> str:
    if dt is None:
        return ""
    return dt.isoformat()


def parse_deadline(value: str | None) -> datetime | None:
    """Parse a stored deadline into an aware local datetime.

    Date-only deadlines count as due at the end of that day.
    """
    if not value:
        return None
    tz = ZoneInfo(TIMEZONE)
    raw = value.strip()
    try:
        if len(raw) == 10:
            return datetime.combine(date.fromisoformat(raw), time(23, 59, 59), tzinfo=tz)
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)


def _project_dict(p: Project) -> dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "client_name": p.client_name,
        "address": p.address,
        "project_type": p.project_type,
        "status": p.status,
        "created_at": _iso(p.created_at),
        "updated_at": _iso(p.updated_at),
    }


def _task_dict(t: Task) -> dict[str, Any]:
    return {
        "id": t.id,
        "project_id": t.project_id,
        "description": t.description,
        "status": t.status,
        "priority": t.priority,
        "deadline": t.deadline,
        "created_at": _iso(t.created_at),
        "updated_at": _iso(t.updated_at),
        "completed_at": _iso(t.completed_at) or None,
        "last_reminded_at": _iso(t.last_reminded_at) or None,
    }


def _knowledge_dict(k: ProjectKnowledge) -> dict[str, Any]:
    return {
        "id": k.id,
        "project_id": k.project_id,
        "content": k.content,
        "source_type": k.source_type,
        "source_id": k.source_id,
        "created_at": _iso(k.created_at),
    }


def _transcript_dict(v: VoiceTranscript) -> dict[str, Any]:
    return {
        "id": v.id,
        "raw_content": v.raw_content,
        "duration_seconds": v.duration_seconds,
        "source": v.source,
        "recorded_at": _iso(v.recorded_at),
        "pending_result": json.loads(v.pending_result) if v.pending_result else None,
        "processed": bool(v.processed),
        "processed_at": _iso(v.processed_at) or None,
        "processing_summary": v.processing_summary,
    }


# ===================================================================
# Projects
# ===================================================================

def create_project(
    name: str,
    client_name: str | None = None,
    address: str | None = None,
    project_type: str | None = None,
    status: str = "future",
) -> dict[str, Any]:
    with get_session() as s:
        project = Project(
            id=uuid.uuid4().hex[:12],
            name=name.strip(),
            client_name=client_name,
            address=address,
            project_type=project_type,
            status=status or "future",
        )
        s.add(project)
        s.flush()
        return _project_dict(project)


def update_project(project_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
    with get_session() as s:
        project = s.get(Project, project_id)
        if not project:
            return None
        for key, value in updates.items():
            if key in _PROJECT_FIELDS:
                setattr(project, key, value)
        project.updated_at = _utcnow()
        s.flush()
        return _project_dict(project)


def get_project_by_id(project_id: str) -> dict[str, Any] | None:
    with get_session() as s:
        p = s.get(Project, project_id)
        return _project_dict(p) if p else None


def get_project_by_name(name: str) -> dict[str, Any] | None:
    """Case-insensitive exact name lookup."""
    with get_session() as s:
        p = (
            s.query(Project)
            .filter(func.lower(Project.name) == name.strip().lower())
            .order_by(Project.created_at)
            .first()
        )
        return _project_dict(p) if p else None


def list_all_projects() -> list[dict[str, Any]]:
    with get_session() as s:
        rows = s.query(Project).order_by(Project.created_at).all()
        return [_project_dict(p) for p in rows]


def list_active_projects() -> list[dict[str, Any]]:
    with get_session() as s:
        rows = s.query(Project).filter(Project.status == "active").order_by(Project.name).all()
        return [_project_dict(p) for p in rows]


# ===================================================================
# Tasks
# ===================================================================

def create_task(
    description: str,
    project_id: str | None = None,
    deadline: str | None = None,
    priority: str | None = "medium",
) -> dict[str, Any]:
    with get_session() as s:
        task = Task(
            id=uuid.uuid4().hex[:12],
            description=description.strip(),
            project_id=project_id or None,
            deadline=deadline or None,
            priority=priority or "medium",
            status="pending",
        )
        s.add(task)
        s.flush()
        return _task_dict(task)


def update_task(task_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
    with get_session() as s:
        task = s.get(Task, task_id)
        if not task:
            return None
        for key, value in updates.items():
            if key in _TASK_FIELDS:
                setattr(task, key, value)
        task.updated_at = _utcnow()
        s.flush()
        return _task_dict(task)


def complete_task(task_id: str) -> dict[str, Any] | None:
    with get_session() as s:
        task = s.get(Task, task_id)
        if not task:
            return None
        now = _utcnow()
        task.status = "completed"
        task.completed_at = now
        task.updated_at = now
        s.flush()
        return _task_dict(task)


def get_task_by_id(task_id: str) -> dict[str, Any] | None:
    with get_session() as s:
        t = s.get(Task, task_id)
        return _task_dict(t) if t else None


def list_all_tasks() -> list[dict[str, Any]]:
    """Every task that is not completed, newest first."""
    with get_session() as s:
        rows = (
            s.query(Task)
            .filter(Task.status != "completed")
            .order_by(Task.created_at.desc())
            .all()
        )
        return [_task_dict(t) for t in rows]


def get_tasks_by_project(project_id: str) -> list[dict[str, Any]]:
    with get_session() as s:
        rows = (
            s.query(Task)
            .filter(Task.project_id == project_id, Task.status != "completed")
            .order_by(Task.created_at.desc())
            .all()
        )
        return [_task_dict(t) for t in rows]


def get_pending_tasks() -> list[dict[str, Any]]:
    """Pending tasks, most urgent first, then earliest deadline."""
    with get_session() as s:
        rows = s.query(Task).filter(Task.status == "pending").all()
        tasks = [_task_dict(t) for t in rows]
    return sorted(
        tasks,
        key=lambda t: (_PRIORITY_RANK.get(t["priority"], 2), t["deadline"] is None, t["deadline"] or ""),
    )


def get_overdue_tasks(now: datetime | None = None) -> list[dict[str, Any]]:
    now = now or _local_now()
    overdue = []
    for task in get_pending_tasks():
        due = parse_deadline(task["deadline"])
        if due is not None and due < now:
            overdue.append((due, task))
    overdue.sort(key=lambda pair: pair[0])
    return [task for _, task in overdue]


def get_todays_tasks(now: datetime | None = None) -> list[dict[str, Any]]:
    now = now or _local_now()
    today = now.astimezone(ZoneInfo(TIMEZONE)).date()
    todays = []
    for task in get_pending_tasks():
        due = parse_deadline(task["deadline"])
        if due is not None and due.date() == today and due >= now:
            todays.append(task)
    return todays


def search_tasks(query: str, limit: int = 10) -> list[dict[str, Any]]:
    with get_session() as s:
        rows = (
            s.query(Task)
            .filter(Task.description.ilike(f"%{query.strip()}%"), Task.status != "completed")
            .order_by(Task.created_at.desc())
            .limit(limit)
            .all()
        )
        return [_task_dict(t) for t in rows]


def _aware(dt: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; they were stored as UTC
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def get_tasks_needing_reminder(now: datetime | None = None) -> list[dict[str, Any]]:
    """Overdue pending tasks not reminded about in the last 24 hours, oldest deadline first."""
    now = now or _local_now()
    cutoff = now - timedelta(hours=24)
    with get_session() as s:
        reminded = {t.id: _aware(t.last_reminded_at) for t in s.query(Task).filter(Task.status == "pending")}
    return [
        task for task in get_overdue_tasks(now)
        if reminded.get(task["id"]) is None or reminded[task["id"]] < cutoff
    ]


def mark_task_reminded(task_id: str, now: datetime | None = None) -> bool:
    with get_session() as s:
        task = s.get(Task, task_id)
        if not task:
            return False
        task.last_reminded_at = (now or _utcnow()).astimezone(timezone.utc)
        return True


# ===================================================================
# Conversations
# ===================================================================

def get_or_create_conversation(today: str | None = None) -> str:
    """Return today's conversation id, creating it (and closing older ones) if needed."""
    today = today or _local_now().date().isoformat()
    with get_session() as s:
        conv = (
            s.query(Conversation)
            .filter(Conversation.conversation_date == today, Conversation.is_active.is_(True))
            .first()
        )
        if conv:
            return conv.id

        s.query(Conversation).filter(
            Conversation.is_active.is_(True),
            Conversation.conversation_date != today,
        ).update({"is_active": False}, synchronize_session=False)

        conv = Conversation(id=uuid.uuid4().hex[:12], conversation_date=today)
        s.add(conv)
        s.flush()
        return conv.id


def close_old_conversations(today: str | None = None) -> int:
    """Deactivate conversations from earlier days; returns how many were closed."""
    today = today or _local_now().date().isoformat()
    with get_session() as s:
        return s.query(Conversation).filter(
            Conversation.is_active.is_(True),
            Conversation.conversation_date != today,
        ).update({"is_active": False}, synchronize_session=False)


def save_message(
    conversation_id: str,
    role: str,
    content: str,
    active_context: dict[str, Any] | None = None,
) -> dict[str, Any]:
    with get_session() as s:
        msg = Message(
            conversation_id=conversation_id,
            role=role,
            content=content,
            active_context=json.dumps(active_context or {}, separators=(",", ":")),
        )
        s.add(msg)
        conv = s.get(Conversation, conversation_id)
        if conv:
            conv.last_activity = _utcnow()
        s.flush()
        return {
            "id": msg.id,
            "conversation_id": msg.conversation_id,
            "role": msg.role,
            "content": msg.content,
            "created_at": _iso(msg.created_at),
        }


def get_todays_messages(conversation_id: str) -> list[dict[str, Any]]:
    with get_session() as s:
        rows = (
            s.query(Message)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.id)
            .all()
        )
        return [
            {
                "id": m.id,
                "role": m.role,
                "content": m.content,
                "created_at": _iso(m.created_at),
            }
            for m in rows
        ]


def load_active_context(conversation_id: str) -> dict[str, Any] | None:
    """The active_context stored on the newest message, or None."""
    with get_session() as s:
        row = (
            s.query(Message.active_context)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.id.desc())
            .first()
        )
    if not row or not row[0]:
        return None
    try:
        parsed = json.loads(row[0])
    except (TypeError, json.JSONDecodeError):
        logger.warning("Unreadable active_context on conversation %s", conversation_id)
        return None
    return parsed if isinstance(parsed, dict) else None


# ===================================================================
# Project knowledge
# ===================================================================

def add_project_knowledge(
    content: str,
    project_id: str | None = None,
    source_type: str = "chat",
    source_id: str | None = None,
) -> dict[str, Any]:
    """Store a note, with its embedding when the provider is reachable."""
    content = content.strip()
    vector = llm.try_embed(content)
    with get_session() as s:
        k = ProjectKnowledge(
            project_id=project_id,
            content=content,
            source_type=source_type,
            source_id=source_id,
            embedding=json.dumps(vector) if vector else None,
        )
        s.add(k)
        s.flush()
        return _knowledge_dict(k)


def get_project_knowledge(project_id: str) -> list[dict[str, Any]]:
    with get_session() as s:
        rows = (
            s.query(ProjectKnowledge)
            .filter(ProjectKnowledge.project_id == project_id)
            .order_by(ProjectKnowledge.id.desc())
            .all()
        )
        return [_knowledge_dict(k) for k in rows]


def _cosine(a: list[float], b: list[float]) -> float:
    if not a or len(a) != len(b):
        return 0.0
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if not norm:
        return 0.0
    return sum(x * y for x, y in zip(a, b)) / norm


def _search_by_embedding(vector: list[float], project_id: str | None, limit: int) -> list[dict[str, Any]]:
    with get_session() as s:
        q = s.query(ProjectKnowledge).filter(ProjectKnowledge.embedding.isnot(None))
        if project_id:
            q = q.filter(ProjectKnowledge.project_id == project_id)
        scored = []
        for k in q.all():
            try:
                score = _cosine(vector, json.loads(k.embedding))
            except (TypeError, json.JSONDecodeError):
                continue
            if score >= EMBEDDING_MATCH_THRESHOLD:
                scored.append((score, k))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [_knowledge_dict(k) for _, k in scored[:limit]]


def _search_by_keywords(query: str, project_id: str | None, limit: int) -> list[dict[str, Any]]:
    words = {w.strip("?.,!'\"").lower() for w in query.split()}
    words = {w for w in words if len(w) >= 4}
    if not words:
        return []
    with get_session() as s:
        q = s.query(ProjectKnowledge).filter(
            or_(*[ProjectKnowledge.content.ilike(f"%{w}%") for w in sorted(words)])
        )
        if project_id:
            q = q.filter(ProjectKnowledge.project_id == project_id)
        rows = q.order_by(ProjectKnowledge.id.desc()).all()
        scored = []
        for k in rows:
            text = k.content.lower()
            hits = sum(1 for w in words if w in text)
            scored.append((hits, k))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [_knowledge_dict(k) for _, k in scored[:limit]]


def search_knowledge(query: str, project_id: str | None = None, limit: int = 5) -> list[dict[str, Any]]:
    """Notes closest to the query by cosine similarity of embeddings.

    Falls back to keyword search (notes containing any word of 4+ letters
    from the query) when the query cannot be embedded or no embedded note
    clears EMBEDDING_MATCH_THRESHOLD.
    """
    vector = llm.try_embed(query)
    if vector:
        hits = _search_by_embedding(vector, project_id, limit)
        if hits:
            return hits
    return _search_by_keywords(query, project_id, limit)


# ===================================================================
# Voice transcripts
# ===================================================================

def save_voice_transcript(
    raw_content: str,
    source: str = "webapp",
    duration_seconds: int | None = None,
) -> dict[str, Any]:
    with get_session() as s:
        v = VoiceTranscript(
            id=uuid.uuid4().hex[:12],
            raw_content=raw_content,
            source=source,
            duration_seconds=duration_seconds,
        )
        s.add(v)
        s.flush()
        return _transcript_dict(v)


def get_voice_transcript(transcript_id: str) -> dict[str, Any] | None:
    with get_session() as s:
        v = s.get(VoiceTranscript, transcript_id)
        return _transcript_dict(v) if v else None


def save_pending_approval(transcript_id: str, result: dict[str, Any]) -> bool:
    with get_session() as s:
        v = s.get(VoiceTranscript, transcript_id)
        if not v:
            return False
        v.pending_result = json.dumps(result, ensure_ascii=True)
        return True


def get_pending_approval() -> dict[str, Any] | None:
    """Newest unprocessed transcript that has an extraction waiting for approval."""
    with get_session() as s:
        v = (
            s.query(VoiceTranscript)
            .filter(VoiceTranscript.processed.is_(False), VoiceTranscript.pending_result.isnot(None))
            .order_by(VoiceTranscript.recorded_at.desc())
            .first()
        )
        return _transcript_dict(v) if v else None


def mark_transcript_processed(transcript_id: str, summary: str) -> bool:
    with get_session() as s:
        v = s.get(VoiceTranscript, transcript_id)
        if not v:
            return False
        v.processed = True
        v.processed_at = _utcnow()
        v.processing_summary = summary
        v.pending_result = None
        return True


# ===================================================================
# Daily briefs
# ===================================================================

def _brief_dict(b: DailyBrief) -> dict[str, Any]:
    return {
        "id": b.id,
        "brief_date": b.brief_date,
        "content": b.content,
        "tasks_included": json.loads(b.tasks_included or "[]"),
        "created_at": _iso(b.created_at),
    }


def save_daily_brief(brief_date: str, content: str, task_ids: list[str]) -> dict[str, Any]:
    """Store the brief for a day; a second run on the same day replaces it."""
    with get_session() as s:
        brief = s.query(DailyBrief).filter(DailyBrief.brief_date == brief_date).first()
        if brief is None:
            brief = DailyBrief(brief_date=brief_date)
            s.add(brief)
        brief.content = content
        brief.tasks_included = json.dumps(list(task_ids))
        s.flush()
        return _brief_dict(brief)


def get_daily_brief(brief_date: str) -> dict[str, Any] | None:
    with get_session() as s:
        b = s.query(DailyBrief).filter(DailyBrief.brief_date == brief_date).first()
        return _brief_dict(b) if b else None
