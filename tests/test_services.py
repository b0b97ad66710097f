# test_services.py — Retry policy, calendar tokens, Telegram helpers, transcription
#
# No network: every HTTP call is mocked.

from __future__ import annotations

import sys
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from foreman.engine.retry import NO_RETRY, RetryPolicy
from foreman.messaging import telegram, transcription
from foreman.services.calendar import (
    CalendarClient,
    CalendarError,
    TokenProvider,
    format_event_time,
    format_events_for_message,
)


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class RetryPolicyTests(unittest.TestCase):
    def test_retries_then_succeeds(self) -> None:
        sleeps: list[float] = []
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, sleep=sleeps.append)
        fn = MagicMock(side_effect=[ConnectionError("x"), ConnectionError("y"), "ok"])

        self.assertEqual(policy.call(fn), "ok")
        self.assertEqual(sleeps, [1.0, 2.0])

    def test_reraises_last_error(self) -> None:
        policy = RetryPolicy(max_attempts=2, base_delay=0.5, sleep=lambda s: None)
        fn = MagicMock(side_effect=[TimeoutError("first"), TimeoutError("second")])

        with self.assertRaisesRegex(TimeoutError, "second"):
            policy.call(fn)
        self.assertEqual(fn.call_count, 2)

    def test_jitter_bounds(self) -> None:
        policy = RetryPolicy(base_delay=1.0, jitter=0.5)
        for _ in range(20):
            delay = policy.delay_for(2)
            self.assertGreaterEqual(delay, 4.0)
            self.assertLessEqual(delay, 4.5)


class FakeCredentials:
    """Stands in for google.oauth2 Credentials; each refresh issues the next token."""

    def __init__(self, clock: FakeClock, tokens: list[str], lifetime: float = 3600):
        self.clock = clock
        self.tokens = list(tokens)
        self.lifetime = lifetime
        self.token = None
        self.expiry = None
        self.requests: list[object] = []

    def refresh(self, request: object) -> None:
        self.requests.append(request)
        self.token = self.tokens.pop(0)
        self.expiry = datetime.fromtimestamp(self.clock.now + self.lifetime, timezone.utc).replace(tzinfo=None)


class TokenProviderTests(unittest.TestCase):
    def make(self, clock: FakeClock) -> tuple[TokenProvider, FakeCredentials]:
        creds = FakeCredentials(clock, ["tok-1", "tok-2"])
        provider = TokenProvider("id", "secret", "refresh", clock=clock, credentials=creds,
                                 request_factory=lambda: "transport")
        return provider, creds

    def test_token_is_cached_until_near_expiry(self) -> None:
        clock = FakeClock()
        provider, creds = self.make(clock)

        self.assertEqual(provider.get_valid_token(), "tok-1")
        clock.now += 3600 - 61
        self.assertEqual(provider.get_valid_token(), "tok-1")
        self.assertEqual(creds.requests, ["transport"])

    def test_refreshes_inside_margin(self) -> None:
        clock = FakeClock()
        provider, creds = self.make(clock)

        provider.get_valid_token()
        clock.now += 3600 - 60
        self.assertEqual(provider.get_valid_token(), "tok-2")
        self.assertEqual(len(creds.requests), 2)

    def test_refresh_failure_raises_calendar_error(self) -> None:
        creds = MagicMock(token=None, expiry=None)
        creds.refresh.side_effect = RefreshError("invalid_grant")
        provider = TokenProvider("id", "secret", "refresh", clock=FakeClock(), credentials=creds)

        with self.assertRaisesRegex(CalendarError, "invalid_grant"):
            provider.get_valid_token()

    def test_refresh_without_token_raises(self) -> None:
        creds = MagicMock(token=None, expiry=None)
        provider = TokenProvider("id", "secret", "refresh", clock=FakeClock(), credentials=creds)
        with self.assertRaises(CalendarError):
            provider.get_valid_token()

    def test_default_credentials_carry_the_refresh_token(self) -> None:
        provider = TokenProvider("id", "secret", "refresh")

        self.assertEqual(provider.credentials.refresh_token, "refresh")
        self.assertEqual(provider.credentials.client_id, "id")
        self.assertEqual(provider.credentials.token_uri, "https://oauth2.googleapis.com/token")

    def test_configured(self) -> None:
        self.assertFalse(TokenProvider("", "", "").configured)
        self.assertTrue(TokenProvider("a", "b", "c").configured)


class CalendarClientTests(unittest.TestCase):
    def test_events_are_normalized(self) -> None:
        tokens = MagicMock(get_valid_token=MagicMock(return_value="tok"))
        service = MagicMock()
        service.events.return_value.list.return_value.execute.return_value = {"items": [
            {"id": "e1", "summary": "Site walk", "start": {"dateTime": "2026-03-02T09:00:00-08:00"},
             "end": {"dateTime": "2026-03-02T10:00:00-08:00"}, "location": "Chen house"},
            {"id": "e2", "start": {"date": "2026-03-02"}, "end": {"date": "2026-03-03"}},
        ]}

        events = CalendarClient(tokens=tokens, service=service).get_todays_events()

        tokens.get_valid_token.assert_called_once()
        kwargs = service.events.return_value.list.call_args[1]
        self.assertEqual(kwargs["calendarId"], "primary")
        self.assertTrue(kwargs["singleEvents"])
        self.assertEqual(events[0]["location"], "Chen house")
        self.assertEqual(events[1], {"id": "e2", "summary": "No title", "start": "2026-03-02",
                                     "end": "2026-03-03", "location": None})

    def test_api_error_becomes_calendar_error(self) -> None:
        service = MagicMock()
        service.events.return_value.list.return_value.execute.side_effect = HttpError(
            MagicMock(status=500, reason="backend"), b"backend error"
        )
        client = CalendarClient(tokens=MagicMock(), service=service)

        with self.assertRaises(CalendarError):
            client.get_upcoming_events(days=3)
        self.assertEqual(service.events.return_value.list.call_args[1]["maxResults"], 50)

    def test_formatting(self) -> None:
        self.assertEqual(format_event_time("2026-03-02"), "All day")
        self.assertEqual(format_event_time("2026-03-02T14:05:00-08:00", tz="America/Los_Angeles"), "2:05 PM")
        self.assertEqual(format_events_for_message([]), "No events scheduled.")
        self.assertEqual(
            format_events_for_message([{"summary": "Walk", "start": "2026-03-02", "location": "Site"}]),
            "All day: Walk @ Site",
        )


class TelegramTests(unittest.TestCase):
    def test_secret_check(self) -> None:
        self.assertTrue(telegram.verify_webhook_secret("s3cret", "s3cret"))
        self.assertFalse(telegram.verify_webhook_secret("wrong", "s3cret"))
        self.assertFalse(telegram.verify_webhook_secret(None, "s3cret"))
        self.assertTrue(telegram.verify_webhook_secret(None, ""))

    def test_allowed_users(self) -> None:
        self.assertTrue(telegram.is_allowed_user(42, ["42", "7"]))
        self.assertFalse(telegram.is_allowed_user(8, ["42", "7"]))

    def test_send_message_retries(self) -> None:
        ok = MagicMock()
        ok.json.return_value = {"ok": True, "result": {"message_id": 1}}
        policy = RetryPolicy(max_attempts=3, sleep=lambda s: None)
        with patch("foreman.messaging.telegram.requests.post",
                   side_effect=[telegram.requests.ConnectionError("reset"), ok]) as post:
            result = telegram.send_message(42, "**Done.**", policy=policy)

        self.assertEqual(result, {"message_id": 1})
        self.assertEqual(post.call_count, 2)
        self.assertEqual(post.call_args[1]["json"]["text"], "Done.")

    def test_api_error_raises(self) -> None:
        bad = MagicMock()
        bad.json.return_value = {"ok": False, "description": "chat not found"}
        with patch("foreman.messaging.telegram.requests.post", return_value=bad):
            with self.assertRaisesRegex(telegram.TelegramError, "chat not found"):
                telegram.send_message(42, "hi", policy=NO_RETRY)

    def test_notify_operator_never_raises(self) -> None:
        with patch.object(telegram, "OPERATOR_TELEGRAM_ID", "99"), \
                patch("foreman.messaging.telegram.requests.post", side_effect=telegram.requests.ConnectionError()):
            self.assertFalse(telegram.notify_operator({"error": "boom"}))


class TranscriptionTests(unittest.TestCase):
    def test_estimate_duration(self) -> None:
        self.assertEqual(transcription.estimate_duration(" ".join(["word"] * 150)), 60)
        self.assertEqual(transcription.estimate_duration(""), 0)

    def test_multichannel_response(self) -> None:
        resp = MagicMock()
        resp.json.return_value = {"transcripts": [{"text": "order"}, {"text": "lumber"}]}
        with patch.object(transcription, "ELEVENLABS_API_KEY", "key"), \
                patch("foreman.messaging.transcription.requests.post", return_value=resp) as post:
            text = transcription.transcribe_audio(b"ogg")

        self.assertEqual(text, "order lumber")
        self.assertEqual(post.call_args[1]["data"], {"model_id": "scribe_v1"})

    def test_missing_key(self) -> None:
        with patch.object(transcription, "ELEVENLABS_API_KEY", ""):
            with self.assertRaises(transcription.TranscriptionError):
                transcription.transcribe_audio(b"ogg")


if __name__ == "__main__":
    unittest.main()
