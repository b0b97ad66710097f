# llm.py — Chat-completions client (OpenRouter via the OpenAI SDK)
#
# OpenRouter speaks the OpenAI API, so the official client works with a
# different base_url. Helpers:
#   complete(messages, tier)       → text
#   complete_json(messages, tier)  → dict parsed from the reply
#   embed(text)                    → embedding vector (EMBEDDING_MODEL)
#
# tier is "fast" or "smart" (see config.MODELS). Chat calls are retried with
# backoff; anything still failing is raised to the caller.

from __future__ import annotations

import json
import logging
import re
from typing import Any

from openai import OpenAI, OpenAIError

from .config import (
    APP_URL,
    EMBEDDING_MODEL,
    LLM_TEMPERATURE,
    MODELS,
    OPENROUTER_API_KEY,
    OPENROUTER_BASE_URL,
)
from .retry import NO_RETRY, RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_POLICY = RetryPolicy(max_attempts=3, base_delay=1.0, jitter=0.25)

_client: OpenAI | None = None


def create_client() -> OpenAI:
    """Create an OpenAI-compatible client pointed at OpenRouter."""
    return OpenAI(
        api_key=OPENROUTER_API_KEY,
        base_url=OPENROUTER_BASE_URL,
        default_headers={"HTTP-Referer": APP_URL, "X-Title": "Foreman"},
    )


def _get_client() -> OpenAI:
    global _client
    if _client is None:
        _client = create_client()
    return _client


def extract_json(text: str) -> dict[str, Any]:
    """Parse the first JSON object in a model reply (tolerates ```json fences)."""
    cleaned = re.sub(r"```(?:json)?", "", text).strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start == -1 or end <= start:
            raise ValueError(f"No JSON object in model reply: {text[:200]!r}")
        parsed = json.loads(cleaned[start:end + 1])
    if not isinstance(parsed, dict):
        raise ValueError("Model reply JSON is not an object")
    return parsed


def complete(
    messages: list[dict[str, str]],
    tier: str = "smart",
    json_mode: bool = False,
    policy: RetryPolicy = DEFAULT_POLICY,
) -> str:
    model = MODELS[tier]
    kwargs: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "temperature": LLM_TEMPERATURE,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    def _call() -> str:
        response = _get_client().chat.completions.create(**kwargs)
        return (response.choices[0].message.content or "").strip()

    return policy.call(_call, label=f"LLM {model}")


def complete_json(
    messages: list[dict[str, str]],
    tier: str = "fast",
    policy: RetryPolicy = DEFAULT_POLICY,
) -> dict[str, Any]:
    return extract_json(complete(messages, tier=tier, json_mode=True, policy=policy))


def embeddings_available() -> bool:
    return bool(OPENROUTER_API_KEY and EMBEDDING_MODEL)


def embed(text: str, policy: RetryPolicy = NO_RETRY) -> list[float]:
    def _call() -> list[float]:
        response = _get_client().embeddings.create(model=EMBEDDING_MODEL, input=text, timeout=15)
        return [float(x) for x in response.data[0].embedding]

    return policy.call(_call, label=f"Embedding {EMBEDDING_MODEL}")


def try_embed(text: str) -> list[float] | None:
    """embed(), or None when embeddings are off or the provider fails.

    Callers fall back to keyword search on None.
    """
    if not embeddings_available() or not text.strip():
        return None
    try:
        return embed(text)
    except (OpenAIError, IndexError) as exc:
        logger.warning("Embedding failed, falling back to keywords: %s", exc)
        return None
