"""
Safety screening for outbound user content.

Requests that solicit secrets or hazardous chemical instructions are caught
here, before anything is sent to the external model, and answered with a
canned refusal instead.
"""
import re
from typing import Optional

DISCLAIMER = (
    "Guidance only — confirm with a local agriculture technician/DA office "
    "for accurate diagnosis and treatment."
)

REFUSAL_MESSAGE = (
    "I cannot provide that information as it may be unsafe. I don't share or "
    "request API keys, passwords, or secrets. For chemical-specific questions "
    "(exact dosages, mixing ratios), please consult a licensed agriculture "
    "professional or your local DA office.\n\n" + DISCLAIMER
)

# Order matters only for logging: the first match wins.
UNSAFE_PATTERNS = [
    # Credential / secret solicitation
    re.compile(r"api.?key", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"token", re.IGNORECASE),
    re.compile(r"credential", re.IGNORECASE),
    # Hazardous agronomic instructions
    re.compile(r"mixing.*chemical", re.IGNORECASE),
    re.compile(r"chemical.*mix", re.IGNORECASE),
    re.compile(r"exact.*dosage", re.IGNORECASE),
    re.compile(r"pesticide.*combination", re.IGNORECASE),
    re.compile(r"combine.*pesticide", re.IGNORECASE),
]


def matched_pattern(text: str) -> Optional[str]:
    """Return the source of the first unsafe pattern found in text, if any."""
    if not text:
        return None
    for pattern in UNSAFE_PATTERNS:
        if pattern.search(text):
            return pattern.pattern
    return None


def is_unsafe(text: str) -> bool:
    """True if text asks for secrets or hazardous chemical instructions."""
    return matched_pattern(text) is not None


def disclaimer_suffix(text: str) -> str:
    """What must be appended to text so that it carries the disclaimer."""
    if DISCLAIMER in text:
        return ""
    return f"\n\n{DISCLAIMER}" if text.strip() else DISCLAIMER


def ensure_disclaimer(text: str) -> str:
    """Append the disclaimer unless it is already present verbatim."""
    if DISCLAIMER in text:
        return text
    return text.rstrip() + disclaimer_suffix(text)


def last_user_message(messages: list[dict]) -> Optional[str]:
    """Content of the most recent user message in an ordered message list."""
    for message in reversed(messages):
        if message.get("role") == "user":
            return message.get("content") or ""
    return None
