# config.py — Foreman runtime configuration
#
# Everything environment-specific is read from .env (python-dotenv).
# Matching thresholds and context limits live here too so the resolver,
# context helpers and tests all agree on the same numbers.

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
_env_path = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_env_path)


def _csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


# ---------------------------------------------------------------------------
# Models (OpenRouter, OpenAI-compatible API)
# ---------------------------------------------------------------------------

OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "")
OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
APP_URL = os.getenv("APP_URL", "http://localhost:8000")

MODELS = {
    "fast": os.getenv("FAST_MODEL", "x-ai/grok-4.1-fast"),      # router, task, project, transcript
    "smart": os.getenv("SMART_MODEL", "google/gemini-3-flash-preview"),  # knowledge, response
}

EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "openai/text-embedding-3-small")
EMBEDDING_MATCH_THRESHOLD = 0.7  # Minimum cosine similarity for a knowledge hit

LLM_TEMPERATURE = 0.7

# ---------------------------------------------------------------------------
# Telegram
# ---------------------------------------------------------------------------

TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_WEBHOOK_SECRET = os.getenv("TELEGRAM_WEBHOOK_SECRET", "")
ALLOWED_TELEGRAM_IDS = _csv(os.getenv("ALLOWED_TELEGRAM_IDS", ""))
OPERATOR_TELEGRAM_ID = os.getenv("OPERATOR_TELEGRAM_ID", "")

# Bearer token the scheduler sends to /cron/*; empty means unauthenticated
CRON_SECRET = os.getenv("CRON_SECRET", "")

# ---------------------------------------------------------------------------
# Voice + calendar
# ---------------------------------------------------------------------------

ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY", "")
TRANSCRIPTION_MODEL = os.getenv("TRANSCRIPTION_MODEL", "scribe_v1")
RECORDER_URL = os.getenv("RECORDER_URL", f"{APP_URL}/record")

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_REFRESH_TOKEN = os.getenv("GOOGLE_REFRESH_TOKEN", "")

TIMEZONE = os.getenv("FOREMAN_TIMEZONE", "America/Los_Angeles")

# ---------------------------------------------------------------------------
# Conversation + resolution
# ---------------------------------------------------------------------------

MAX_RECENT_ENTITIES = 5       # Length of each recency list in ActiveContext
MATCH_THRESHOLD = 0.4         # Minimum similarity for a resolver candidate
RECENCY_BOOST = 0.2           # Added to candidates mentioned recently (not clamped)
CONFIDENT_SCORE = 0.9         # Top score at or above this wins outright
CLEAR_WINNER_GAP = 0.2        # Gap to runner-up that still counts as a single match
MAX_DISAMBIGUATION = 3        # Options offered when a reference is ambiguous
HISTORY_WINDOW = 10           # Messages shown to the router

APOLOGY_MESSAGE = "Something broke on my end handling that. I've flagged it, try again in a minute."
