# routes.py — REST API for Foreman
#
# Read-only views of projects, tasks and the conversation context, plus the
# web recorder's upload endpoint. Task and project changes happen through
# chat.
#
# Mount: app.include_router(api_router, prefix="/api")
#
# Endpoints:
#   GET  /api/projects                — All projects (optional ?status=)
#   GET  /api/projects/:id            — One project + its open tasks and notes
#   GET  /api/tasks                   — Open tasks (optional ?project_id=)
#   GET  /api/conversation/context    — Today's conversation id + active context
#   POST /api/voice/transcribe        — Multipart upload: audio (+ duration)

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile

from foreman.db import repository as repo
from foreman.resolution import ActiveContext

logger = logging.getLogger(__name__)

api_router = APIRouter()


# ===================================================================
# Projects
# ===================================================================

@api_router.get("/projects")
async def list_projects(status: str | None = Query(None, description="Filter by status")):
    projects = repo.list_all_projects()
    if status:
        projects = [p for p in projects if p["status"] == status]
    return {"projects": projects, "count": len(projects)}


@api_router.get("/projects/{project_id}")
async def get_project(project_id: str):
    project = repo.get_project_by_id(project_id)
    if not project:
        raise HTTPException(status_code=404, detail=f"Project '{project_id}' not found")
    return {
        **project,
        "tasks": repo.get_tasks_by_project(project_id),
        "knowledge": repo.get_project_knowledge(project_id)[:20],
    }


# ===================================================================
# Tasks
# ===================================================================

@api_router.get("/tasks")
async def list_tasks(project_id: str | None = Query(None, description="Only this project's tasks")):
    if project_id:
        if not repo.get_project_by_id(project_id):
            raise HTTPException(status_code=404, detail=f"Project '{project_id}' not found")
        tasks = repo.get_tasks_by_project(project_id)
    else:
        tasks = repo.get_pending_tasks()
    return {"tasks": tasks, "count": len(tasks)}


# ===================================================================
# Conversation
# ===================================================================

@api_router.get("/conversation/context")
async def get_conversation_context():
    conversation_id = repo.get_or_create_conversation()
    context = ActiveContext.from_dict(repo.load_active_context(conversation_id))
    messages = repo.get_todays_messages(conversation_id)
    return {
        "conversation_id": conversation_id,
        "context": context.to_dict(),
        "message_count": len(messages),
    }


# ===================================================================
# Voice
# ===================================================================

@api_router.post("/voice/transcribe")
async def transcribe_recording(
    audio: UploadFile = File(...),
    duration: int | None = Form(None),
) -> dict[str, Any]:
    from foreman.agents.approval import ingest_recording

    data = await audio.read()
    if not data:
        raise HTTPException(status_code=400, detail="No audio file provided")

    logger.info("Recording received: %s (%d bytes)", audio.filename, len(data))
    loop = asyncio.get_running_loop()
    try:
        result = await loop.run_in_executor(
            None, lambda: ingest_recording(data, audio.filename or "recording.webm", duration)
        )
    except Exception as exc:
        logger.exception("Recording ingest failed")
        raise HTTPException(status_code=500, detail=f"Transcription failed: {exc}") from exc

    return {
        "success": True,
        **result,
        "message": "Recording saved. Check Telegram for the approval request.",
    }
