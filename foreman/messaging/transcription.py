# transcription.py — Speech-to-text via ElevenLabs
#
# Docs: https://elevenlabs.io/docs/api-reference/speech-to-text

from __future__ import annotations

import logging

import requests

from foreman.engine.config import ELEVENLABS_API_KEY, TRANSCRIPTION_MODEL

logger = logging.getLogger(__name__)

API_URL = "https://api.elevenlabs.io/v1/speech-to-text"
WORDS_PER_MINUTE = 150


class TranscriptionError(RuntimeError):
    pass


def transcribe_audio(audio: bytes, filename: str = "voice.ogg", content_type: str = "audio/ogg") -> str:
    """Send audio to ElevenLabs and return the transcript text."""
    if not ELEVENLABS_API_KEY:
        raise TranscriptionError("ELEVENLABS_API_KEY is not set")

    logger.info("Transcribing %s (%d bytes)", filename, len(audio))
    resp = requests.post(
        API_URL,
        headers={"xi-api-key": ELEVENLABS_API_KEY},
        data={"model_id": TRANSCRIPTION_MODEL},
        files={"file": (filename, audio, content_type)},
        timeout=120,
    )
    resp.raise_for_status()
    data = resp.json()

    if "text" in data:
        text = data["text"]
    elif data.get("transcripts"):
        # Multichannel response
        text = " ".join(t.get("text", "") for t in data["transcripts"])
    else:
        raise TranscriptionError("Unexpected response format from ElevenLabs")
    return text.strip()


def estimate_duration(text: str) -> int:
    """Seconds of speech for a transcript, assuming ~150 words per minute."""
    words = len(text.split())
    return round(words / WORDS_PER_MINUTE * 60)
