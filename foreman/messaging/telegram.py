# telegram.py — Telegram Bot API wrapper
#
# Send messages, show "typing...", fetch voice notes, manage the webhook.
# Docs: https://core.telegram.org/bots/api

from __future__ import annotations

import hmac
import logging
import re
from typing import Any

import requests

from foreman.engine.config import (
    ALLOWED_TELEGRAM_IDS,
    OPERATOR_TELEGRAM_ID,
    TELEGRAM_BOT_TOKEN,
    TELEGRAM_WEBHOOK_SECRET,
)
from foreman.engine.retry import RetryPolicy

logger = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"
SEND_POLICY = RetryPolicy(max_attempts=5, base_delay=1.0, jitter=0.5)
MAX_MESSAGE_LENGTH = 4096


class TelegramError(RuntimeError):
    """The Bot API answered ok=false or could not be reached."""


def _api_url(method: str) -> str:
    return f"{API_BASE}/bot{TELEGRAM_BOT_TOKEN}/{method}"


def _post(method: str, payload: dict[str, Any], timeout: int = 30) -> dict[str, Any]:
    resp = requests.post(_api_url(method), json=payload, timeout=timeout)
    resp.raise_for_status()
    data = resp.json()
    if not data.get("ok"):
        raise TelegramError(f"{method} failed: {data.get('description', 'unknown error')}")
    return data.get("result") or {}


def format_for_telegram(text: str) -> str:
    """Plain text only: strip markdown the model likes to emit."""
    text = re.sub(r"^#{1,6}\s+", "", text, flags=re.MULTILINE)
    text = re.sub(r"\*\*(.+?)\*\*", r"\1", text)
    text = re.sub(r"```\w*\n?", "", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()[:MAX_MESSAGE_LENGTH]


def send_message(chat_id: str | int, text: str, policy: RetryPolicy = SEND_POLICY) -> dict[str, Any]:
    """Send a text message, retrying with backoff.

    Args:
        chat_id: Telegram chat id (same as the user id for private chats)
        text: Message text

    Returns:
        The sent Message object from the Bot API
    """
    payload = {"chat_id": str(chat_id), "text": format_for_telegram(text)}
    return policy.call(lambda: _post("sendMessage", payload), label="telegram.sendMessage")


def send_typing_action(chat_id: str | int) -> bool:
    """Show the typing indicator. Non-critical, failures are logged and ignored."""
    try:
        _post("sendChatAction", {"chat_id": str(chat_id), "action": "typing"}, timeout=10)
        return True
    except (requests.RequestException, TelegramError) as exc:
        logger.debug("Typing indicator failed: %s", exc)
        return False


def get_file(file_id: str) -> dict[str, Any]:
    return _post("getFile", {"file_id": file_id})


def download_voice_note(file_id: str) -> bytes:
    """Resolve a voice note's file_path and download the audio bytes."""
    info = get_file(file_id)
    file_path = info.get("file_path")
    if not file_path:
        raise TelegramError(f"No file_path for file {file_id}")
    resp = requests.get(f"{API_BASE}/file/bot{TELEGRAM_BOT_TOKEN}/{file_path}", timeout=60)
    resp.raise_for_status()
    return resp.content


def set_webhook(url: str) -> bool:
    payload: dict[str, Any] = {"url": url, "allowed_updates": ["message"]}
    if TELEGRAM_WEBHOOK_SECRET:
        payload["secret_token"] = TELEGRAM_WEBHOOK_SECRET
    _post("setWebhook", payload)
    logger.info("Telegram webhook set to %s", url)
    return True


def verify_webhook_secret(received: str | None, expected: str | None = None) -> bool:
    """Constant-time check of X-Telegram-Bot-Api-Secret-Token. No secret configured → accept."""
    expected = TELEGRAM_WEBHOOK_SECRET if expected is None else expected
    if not expected:
        return True
    if not received:
        return False
    return hmac.compare_digest(received.encode(), expected.encode())


def is_allowed_user(user_id: str | int, allowed: list[str] | None = None) -> bool:
    allowed = ALLOWED_TELEGRAM_IDS if allowed is None else allowed
    return str(user_id) in allowed


def broadcast(text: str) -> int:
    """Send text to every allowed user; returns how many sends succeeded."""
    sent = 0
    for chat_id in ALLOWED_TELEGRAM_IDS:
        try:
            send_message(chat_id, text)
            sent += 1
        except (requests.RequestException, TelegramError):
            logger.exception("Broadcast to %s failed", chat_id)
    return sent


def notify_operator(context: dict[str, Any]) -> bool:
    """Out-of-band failure report to the operator chat. Never raises."""
    if not OPERATOR_TELEGRAM_ID:
        logger.warning("No operator chat configured, failure not forwarded: %s", context.get("error"))
        return False
    lines = ["Foreman turn failed"]
    lines.extend(f"{key}: {value}" for key, value in context.items())
    try:
        _post("sendMessage", {"chat_id": OPERATOR_TELEGRAM_ID, "text": "\n".join(lines)[:MAX_MESSAGE_LENGTH]})
        return True
    except (requests.RequestException, TelegramError):
        logger.exception("Could not notify operator")
        return False
