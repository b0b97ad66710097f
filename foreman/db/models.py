# models.py — SQLAlchemy models for Foreman
#
# Projects and tasks are what the manager talks about. Conversations are
# one per local day; every message row carries the ActiveContext that was
# current after it, so the next turn can pick up where the last one left off.
# Voice transcripts wait here for approval before anything is committed.

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Project — a job site (e.g. "Chen Kitchen Remodel")
# ---------------------------------------------------------------------------

class Project(Base):
    __tablename__ = "projects"

    id = Column(String(12), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False, index=True)
    client_name = Column(String(255), nullable=True)
    address = Column(Text, nullable=True)
    project_type = Column(String(100), nullable=True)  # kitchen, bathroom, deck, full_remodel...
    status = Column(String(20), default="future")  # future | active | on_hold | completed
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # Relationships
    tasks = relationship("Task", back_populates="project")
    knowledge = relationship("ProjectKnowledge", back_populates="project")


# ---------------------------------------------------------------------------
# Task — a to-do, optionally tied to a project
# ---------------------------------------------------------------------------

class Task(Base):
    __tablename__ = "tasks"

    id = Column(String(12), primary_key=True, default=_new_id)
    project_id = Column(String(12), ForeignKey("projects.id"), nullable=True, index=True)
    description = Column(Text, nullable=False)
    status = Column(String(20), default="pending")  # pending | completed | on_hold | cancelled
    priority = Column(String(10), default="medium")  # low | medium | high | urgent
    deadline = Column(String(30), nullable=True)  # ISO date/datetime string
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    last_reminded_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    project = relationship("Project", back_populates="tasks")


# ---------------------------------------------------------------------------
# Conversation — one per local calendar day
# ---------------------------------------------------------------------------

class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(String(12), primary_key=True, default=_new_id)
    conversation_date = Column(String(10), nullable=False, index=True)  # YYYY-MM-DD, local
    started_at = Column(DateTime(timezone=True), default=_utcnow)
    last_activity = Column(DateTime(timezone=True), default=_utcnow)
    is_active = Column(Boolean, default=True)

    # Relationships
    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan")


# ---------------------------------------------------------------------------
# Message — one chat message plus the context snapshot after it
# ---------------------------------------------------------------------------

class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(String(12), ForeignKey("conversations.id"), nullable=False, index=True)
    role = Column(String(20), nullable=False)  # user | assistant
    content = Column(Text, nullable=False)
    active_context = Column(Text, default="{}")  # JSON object stored as text
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")


# ---------------------------------------------------------------------------
# ProjectKnowledge — a decision or fact worth remembering
# ---------------------------------------------------------------------------

class ProjectKnowledge(Base):
    __tablename__ = "project_knowledge"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(12), ForeignKey("projects.id"), nullable=True, index=True)
    content = Column(Text, nullable=False)
    source_type = Column(String(20), default="chat")  # meeting | chat | manual
    source_id = Column(String(36), nullable=True)
    embedding = Column(Text, nullable=True)  # JSON list of floats, None when not embedded
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    project = relationship("Project", back_populates="knowledge")


# ---------------------------------------------------------------------------
# VoiceTranscript — recorded meeting / voice note awaiting approval
# ---------------------------------------------------------------------------

class VoiceTranscript(Base):
    __tablename__ = "voice_transcripts"

    id = Column(String(12), primary_key=True, default=_new_id)
    raw_content = Column(Text, nullable=False)
    duration_seconds = Column(Integer, nullable=True)
    source = Column(String(20), default="webapp")  # telegram | webapp
    recorded_at = Column(DateTime(timezone=True), default=_utcnow)
    pending_result = Column(Text, nullable=True)  # JSON extraction awaiting approval
    processed = Column(Boolean, default=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    processing_summary = Column(Text, nullable=True)


# ---------------------------------------------------------------------------
# DailyBrief — the morning summary sent for one local day
# ---------------------------------------------------------------------------

class DailyBrief(Base):
    __tablename__ = "daily_briefs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    brief_date = Column(String(10), nullable=False, unique=True)  # YYYY-MM-DD, local
    content = Column(Text, nullable=False)
    tasks_included = Column(Text, default="[]")  # JSON list of task ids
    created_at = Column(DateTime(timezone=True), default=_utcnow)
