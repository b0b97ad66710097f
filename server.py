# server.py — Foreman's entry point
#
# Receives Telegram updates on a webhook, runs each message through the
# dialogue layer in the background and sends the reply back. Also serves
# the small REST API under /api and the /cron/* jobs (morning brief,
# overdue reminders) that an external scheduler triggers.
#
# Usage:
#   python server.py                          # serve on 0.0.0.0:8000
#   python server.py --set-webhook https://…  # register the webhook, then serve

from __future__ import annotations

import argparse
import asyncio
import hmac
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable
from zoneinfo import ZoneInfo

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from foreman.agents import briefing, reminder
from foreman.api.routes import api_router
from foreman.db import repository as repo
from foreman.db.session import init_db
from foreman.engine.config import CRON_SECRET, TIMEZONE
from foreman.messaging import telegram
from foreman.messaging.dialogue import handle_message
from foreman.messaging.transcription import transcribe_audio

logger = logging.getLogger("foreman.server")

STRANGER_REPLY = "This assistant is private. Ask the owner for access."
VOICE_FAILED_REPLY = "Couldn't make out that voice note. Try again or type it."

# Background turns, kept referenced until they finish.
_tasks: set[asyncio.Task] = set()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield
    if _tasks:
        await asyncio.gather(*_tasks, return_exceptions=True)


app = FastAPI(title="Foreman", lifespan=lifespan)
app.include_router(api_router, prefix="/api")


# ---------------------------------------------------------------------------
# Telegram
# ---------------------------------------------------------------------------

def _heard(text: str) -> str:
    preview = text[:100] + ("..." if len(text) > 100 else "")
    return f'Heard: "{preview}"'


def _voice_to_text(chat_id: Any, file_id: str) -> str:
    telegram.send_typing_action(chat_id)
    audio = telegram.download_voice_note(file_id)
    text = transcribe_audio(audio, filename="voice.ogg")
    telegram.send_message(chat_id, _heard(text))
    return text


def process_message(message: dict[str, Any]) -> None:
    """One inbound Telegram message, start to finish (blocking)."""
    chat_id = message.get("chat", {}).get("id")
    user_id = message.get("from", {}).get("id")
    if chat_id is None:
        return

    if not telegram.is_allowed_user(user_id):
        logger.info("Ignoring message from unknown user %s", user_id)
        telegram.send_message(chat_id, STRANGER_REPLY)
        return

    text = message.get("text") or ""
    voice = message.get("voice")
    if voice:
        try:
            text = _voice_to_text(chat_id, voice["file_id"])
        except Exception as exc:
            logger.exception("Voice note processing failed")
            telegram.send_message(chat_id, VOICE_FAILED_REPLY)
            telegram.notify_operator({"stage": "voice note", "user": user_id, "error": str(exc)})
            return

    if not text.strip():
        return

    telegram.send_typing_action(chat_id)
    conversation_id = repo.get_or_create_conversation()
    outcome = handle_message(conversation_id, text.strip())
    telegram.send_message(chat_id, outcome.reply)
    logger.info("Turn %s (%s) → %s", outcome.state.value, outcome.intent, outcome.reply[:80])


async def _run_in_background(message: dict[str, Any]) -> None:
    try:
        await asyncio.get_running_loop().run_in_executor(None, process_message, message)
    except Exception:
        logger.exception("Background message processing failed")


@app.post("/telegram/webhook")
async def telegram_webhook(request: Request):
    secret = request.headers.get("x-telegram-bot-api-secret-token")
    if not telegram.verify_webhook_secret(secret):
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    update = await request.json()
    message = update.get("message")
    if message:
        task = asyncio.create_task(_run_in_background(message))
        _tasks.add(task)
        task.add_done_callback(_tasks.discard)

    # Telegram wants a fast 200
    return {"ok": True}


@app.get("/telegram/webhook")
async def telegram_webhook_status():
    return {"status": "Webhook active"}


# ---------------------------------------------------------------------------
# Scheduled jobs (hit by an external cron with "Authorization: Bearer …")
# ---------------------------------------------------------------------------

def verify_cron_secret(authorization: str | None, expected: str | None = None) -> bool:
    expected = CRON_SECRET if expected is None else expected
    if not expected:
        return True
    return hmac.compare_digest(authorization or "", f"Bearer {expected}")


def run_daily_brief() -> dict[str, Any]:
    repo.close_old_conversations()
    brief = briefing.generate_daily_brief()
    today = datetime.now(ZoneInfo(TIMEZONE)).date().isoformat()
    repo.save_daily_brief(today, brief.content, brief.task_ids)
    sent = telegram.broadcast(brief.content)
    return {"success": True, "date": today, "tasksIncluded": len(brief.task_ids), "sent": sent}


def run_reminders() -> dict[str, Any]:
    result = reminder.generate_reminders()
    if not result.messages:
        return {"success": True, "remindersSent": 0, "message": "No reminders needed"}
    for text in result.messages:
        telegram.broadcast(text)
    return {"success": True, "remindersSent": len(result.messages), "tasksReminded": len(result.task_ids)}


async def _run_job(name: str, job: Callable[[], dict[str, Any]], request: Request) -> JSONResponse:
    if not verify_cron_secret(request.headers.get("authorization")):
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    try:
        result = await asyncio.get_running_loop().run_in_executor(None, job)
    except Exception as exc:
        logger.exception("%s failed", name)
        telegram.notify_operator({"stage": name, "error": str(exc)})
        return JSONResponse({"error": f"{name} failed", "details": str(exc)}, status_code=500)
    return JSONResponse(result)


@app.api_route("/cron/daily-brief", methods=["GET", "POST"])
async def cron_daily_brief(request: Request):
    return await _run_job("Daily brief", run_daily_brief, request)


@app.api_route("/cron/reminders", methods=["GET", "POST"])
async def cron_reminders(request: Request):
    return await _run_job("Reminders", run_reminders, request)


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "time": datetime.now().isoformat(),
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    parser = argparse.ArgumentParser(description="Run the Foreman server")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--set-webhook", metavar="URL", help="Register the Telegram webhook first")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    init_db()
    if args.set_webhook:
        telegram.set_webhook(args.set_webhook)

    print(f"\nForeman is live.")
    print(f"  Webhook:  http://{args.host}:{args.port}/telegram/webhook")
    print(f"  API:      http://{args.host}:{args.port}/api/projects")
    print(f"  Cron:     http://{args.host}:{args.port}/cron/daily-brief, /cron/reminders")
    print(f"\n  Press Ctrl+C to stop.\n")

    uvicorn.run(app, host=args.host, port=args.port, log_level="warning")


if __name__ == "__main__":
    main()
