# tests/unit/core/test_utils.py
from datetime import datetime, timedelta, timezone

from marketlink.core.utils import REDACTED, redact_secrets, utc_now


def test_utc_now_is_naive_utc():
    now = utc_now()

    assert now.tzinfo is None
    assert abs(datetime.now(timezone.utc).replace(tzinfo=None) - now) < timedelta(seconds=5)


def test_redacts_json_token_fields():
    text = '{"access_token": "v^1.1#abc", "refresh_token": "r-123", "error": "invalid_grant"}'

    cleaned = redact_secrets(text)

    assert "v^1.1#abc" not in cleaned
    assert "r-123" not in cleaned
    assert "invalid_grant" in cleaned
    assert cleaned.count(REDACTED) == 2


def test_redacts_form_and_authorization_values():
    cleaned = redact_secrets("grant_type=refresh_token&refresh_token=r-123 Authorization: Basic Y2lkOnNlY3JldA==")

    assert "r-123" not in cleaned
    assert "Y2lkOnNlY3JldA==" not in cleaned
    assert "grant_type=refresh_token" in cleaned


def test_redacts_known_secrets_anywhere():
    cleaned = redact_secrets("client misconfigured: s3cr3t rejected", secrets=["s3cr3t", None, ""])

    assert cleaned == f"client misconfigured: {REDACTED} rejected"


def test_truncates_and_collapses_whitespace():
    cleaned = redact_secrets("line one\n\n   line two " + "x" * 1000, limit=50)

    assert cleaned.startswith("line one line two")
    assert len(cleaned) == 53
    assert cleaned.endswith("...")


def test_empty_input():
    assert redact_secrets(None) == ""
    assert redact_secrets("") == ""
