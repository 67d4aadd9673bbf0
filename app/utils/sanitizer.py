"""
Frinder Ledger — User-supplied text sanitisation.

Pure functions; nothing here touches the database.  Every free-text field
(bio, messages, display names, interests) passes through
:func:`sanitize_input` with a field-specific length budget before it is
stored.
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import urlparse

# ──────────────────────────────────────────────────────────────────────────────
# Limits
# ──────────────────────────────────────────────────────────────────────────────

MAX_INPUT_LENGTH = 5000
MAX_DISPLAY_NAME_LENGTH = 50
MAX_BIO_LENGTH = 500
MAX_MESSAGE_LENGTH = 2000
MAX_INTEREST_LENGTH = 30
MAX_INTERESTS = 20
MAX_LOCATION_LENGTH = 100
MIN_AGE = 18
MAX_AGE = 120

ALLOWED_PHOTO_DOMAINS: tuple[str, ...] = (
    "firebasestorage.googleapis.com",
    "storage.googleapis.com",
    "lh3.googleusercontent.com",
)

_HTML_ENTITIES: dict[str, str] = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "/": "&#x2F;",
    "`": "&#x60;",
    "=": "&#x3D;",
}

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style\b[^<]*(?:(?!</style>)<[^<]*)*</style>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")
_JS_PROTOCOL_RE = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"on\w+\s*=", re.IGNORECASE)
_DATA_PROTOCOL_RE = re.compile(r"data:", re.IGNORECASE)
_CONTROL_KEEP_NEWLINES_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_CONTROL_ALL_RE = re.compile(r"[\x00-\x1F\x7F]")
_DISPLAY_NAME_DISALLOWED_RE = re.compile(r"[^\w\s\-.]")
_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def escape_html(value: str) -> str:
    if not isinstance(value, str) or not value:
        return ""
    return "".join(_HTML_ENTITIES.get(ch, ch) for ch in value)


def strip_html_tags(value: str) -> str:
    """Remove tags, script/style blocks and inline script vectors."""
    if not isinstance(value, str) or not value:
        return ""
    value = _SCRIPT_RE.sub("", value)
    value = _STYLE_RE.sub("", value)
    value = _TAG_RE.sub("", value)
    value = _JS_PROTOCOL_RE.sub("", value)
    value = _EVENT_HANDLER_RE.sub("", value)
    return _DATA_PROTOCOL_RE.sub("data-blocked:", value)


def sanitize_input(
    value: Any,
    max_length: int = MAX_INPUT_LENGTH,
    allow_newlines: bool = True,
    trim: bool = True,
) -> str:
    """Strip markup and control characters, then clamp to ``max_length``.

    Non-string input yields ``""``.
    """
    if not isinstance(value, str) or not value:
        return ""

    cleaned = strip_html_tags(value).replace("\0", "")

    if allow_newlines:
        cleaned = _CONTROL_KEEP_NEWLINES_RE.sub("", cleaned)
    else:
        cleaned = _CONTROL_ALL_RE.sub(" ", cleaned)

    if trim:
        cleaned = cleaned.strip()

    if max_length and len(cleaned) > max_length:
        cleaned = cleaned[:max_length]

    return cleaned


def sanitize_display_name(name: Any) -> str:
    """Letters, digits, spaces, hyphens, underscores and dots only."""
    cleaned = sanitize_input(
        name, max_length=MAX_DISPLAY_NAME_LENGTH, allow_newlines=False
    )
    return _DISPLAY_NAME_DISALLOWED_RE.sub("", cleaned)


def sanitize_bio(bio: Any) -> str:
    return sanitize_input(bio, max_length=MAX_BIO_LENGTH, allow_newlines=True)


def sanitize_message(message: Any) -> str:
    return sanitize_input(message, max_length=MAX_MESSAGE_LENGTH, allow_newlines=True)


def sanitize_url(url: Any) -> str:
    """Return the URL if it is absolute http(s), else ``""``."""
    if not isinstance(url, str) or not url:
        return ""
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return ""
    return parsed.geturl()


def sanitize_email(email: Any) -> str:
    if not isinstance(email, str) or not email:
        return ""
    cleaned = email.strip().lower()
    return cleaned if _EMAIL_RE.match(cleaned) else ""


def sanitize_interests(interests: Any) -> list[str]:
    if not isinstance(interests, list):
        return []
    cleaned = [
        sanitize_input(item, max_length=MAX_INTEREST_LENGTH, allow_newlines=False)
        for item in interests
        if isinstance(item, str) and item.strip()
    ]
    return [item for item in cleaned if item][:MAX_INTERESTS]


def validate_age(age: Any) -> bool:
    return isinstance(age, int) and not isinstance(age, bool) and MIN_AGE <= age <= MAX_AGE


def validate_photo_url(url: Any) -> bool:
    """Only photos hosted on the storage domains are accepted."""
    safe = sanitize_url(url)
    if not safe:
        return False
    host = urlparse(safe).hostname or ""
    return any(host.endswith(domain) for domain in ALLOWED_PHOTO_DOMAINS)


def sanitize_profile_data(data: dict[str, Any]) -> dict[str, Any]:
    """Sanitise a partial profile update field by field.

    Unknown keys are passed through unchanged; the API schema is responsible
    for rejecting fields that are not part of the profile.  Keys whose value
    is ``None`` are dropped, so an explicit null leaves the stored field as is.
    """
    sanitized: dict[str, Any] = {}

    for key, value in data.items():
        if value is None:
            continue
        if key == "display_name":
            sanitized[key] = sanitize_display_name(value)
        elif key == "bio":
            sanitized[key] = sanitize_bio(value)
        elif key == "email":
            sanitized[key] = sanitize_email(value)
        elif key == "interests":
            sanitized[key] = sanitize_interests(value)
        elif key in ("city", "country", "university"):
            sanitized[key] = sanitize_input(
                value, max_length=MAX_LOCATION_LENGTH, allow_newlines=False
            )
        elif key == "age":
            try:
                age = int(value)
            except (TypeError, ValueError):
                age = MIN_AGE
            sanitized[key] = age if validate_age(age) else MIN_AGE
        elif key == "photos":
            if isinstance(value, list):
                sanitized[key] = [url for url in value if validate_photo_url(url)]
        else:
            sanitized[key] = value

    return sanitized
