"""
Input Sanitization Module for the DalandanCare guidance service

Strips markup and control characters from user text before it is stored or
placed into a prompt.
"""

import re
from typing import Optional

from .models import MAX_CHAT_MESSAGE_LENGTH, MAX_USER_CONTEXT_LENGTH

SCRIPT_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
STYLE_RE = re.compile(r"<style\b[^>]*>.*?</style\s*>", re.IGNORECASE | re.DOTALL)
TAG_RE = re.compile(r"<[^>]+>")
CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_text(text: str, max_length: Optional[int] = None) -> str:
    """Sanitize text input.

    Args:
        text: Input text to sanitize
        max_length: Maximum allowed length (truncates if exceeded)

    Returns:
        Text without HTML tags or control characters, trimmed. Entities are
        left alone: the result is prompt text, not markup.
    """
    if not text:
        return ""

    text = _strip_html_tags(text)
    text = _remove_control_chars(text)
    text = text.strip()

    if max_length and len(text) > max_length:
        text = text[:max_length]

    return text


def sanitize_message(text: str) -> str:
    """Sanitize a chat message."""
    return sanitize_text(text, max_length=MAX_CHAT_MESSAGE_LENGTH)


def sanitize_context(text: Optional[str]) -> Optional[str]:
    """Sanitize free-text recommendation context; empty results become None."""
    if text is None:
        return None
    return sanitize_text(text, max_length=MAX_USER_CONTEXT_LENGTH) or None


def _strip_html_tags(text: str) -> str:
    """Remove HTML tags from text."""
    text = SCRIPT_RE.sub("", text)
    text = STYLE_RE.sub("", text)
    return TAG_RE.sub("", text)


def _remove_control_chars(text: str) -> str:
    """Remove control characters, keeping tab, newline and carriage return."""
    return CONTROL_CHARS_RE.sub("", text)
