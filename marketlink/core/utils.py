"""
Utility functions for the application.
"""
import re
from datetime import datetime, timezone
from typing import Iterable, Optional


MAX_PROVIDER_ERROR_LENGTH = 500
REDACTED = "[REDACTED]"

# JSON ("access_token": "...") and form (access_token=...) style secrets
_SECRET_FIELDS = r"access_token|refresh_token|id_token|client_secret|code|fb_exchange_token"
_JSON_SECRET = re.compile(r'("(?:%s)"\s*:\s*")[^"]*(")' % _SECRET_FIELDS)
_FORM_SECRET = re.compile(r'\b((?:%s)=)[^&\s"]+' % _SECRET_FIELDS)
_BEARER = re.compile(r'(Bearer\s+|Basic\s+)[A-Za-z0-9\-._~+/=]+')


def utc_now() -> datetime:
    """Naive UTC timestamp, matching the TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def redact_secrets(text: Optional[str], secrets: Iterable[Optional[str]] = (), limit: int = MAX_PROVIDER_ERROR_LENGTH) -> str:
    """
    Strip token-like values out of provider output and cap its length.

    Args:
        text: Raw text, typically a provider response body
        secrets: Known secret values to blank out wherever they appear
        limit: Maximum length of the returned string

    Returns:
        Redacted text, truncated with a trailing ellipsis when too long
    """
    if not text:
        return ""

    cleaned = text
    for secret in secrets:
        if secret:
            cleaned = cleaned.replace(secret, REDACTED)

    cleaned = _JSON_SECRET.sub(r"\1%s\2" % REDACTED, cleaned)
    cleaned = _FORM_SECRET.sub(r"\1%s" % REDACTED, cleaned)
    cleaned = _BEARER.sub(r"\1%s" % REDACTED, cleaned)
    cleaned = " ".join(cleaned.split())

    if len(cleaned) > limit:
        cleaned = cleaned[:limit] + "..."
    return cleaned
