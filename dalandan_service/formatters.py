"""
Prompt assembly helpers.

Turn conversation windows and guidance requests into the ordered
``[{"role", "content"}]`` message lists sent to the chat-completion API.
"""
from typing import Optional

from .models import ChatTurn, GuidanceRequest
from .prompts import CHAT_SYSTEM_PROMPT, RECOMMENDATION_PROMPT, RECOMMENDATION_SYSTEM_PROMPT

DISEASE_DISPLAY_NAMES = {
    "healthy": "Healthy Citrus",
    "black-spot": "Citrus Black Spot",
    "canker": "Citrus Canker",
    "greening": "Citrus Greening (HLB)",
}


def disease_display_name(disease_key: str) -> str:
    return DISEASE_DISPLAY_NAMES.get(disease_key, disease_key)


def format_confidence(confidence: float) -> str:
    if float(confidence).is_integer():
        return f"{int(confidence)}%"
    return f"{confidence:.1f}%"


def format_guidance_context(request: Optional[GuidanceRequest]) -> str:
    """Format the optional request context into prompt lines."""
    if request is None:
        return ""
    lines = []
    if request.severity:
        lines.append(f"Detected severity: {request.severity}")
    if request.confidence is not None:
        lines.append(f"Model confidence: {format_confidence(request.confidence)}")
    if request.user_context:
        lines.append(f"Additional context: {request.user_context}")
    if request.existing_summary:
        lines.append(f"Existing curated summary: {request.existing_summary}")
    if request.existing_severity:
        lines.append(f"Existing curated severity: {request.existing_severity}")
    return "\n".join(lines)


def build_chat_messages(window: list[ChatTurn], user_message: str) -> list[dict]:
    """System persona, then the prior turns oldest-first, then the new message."""
    messages = [{"role": "system", "content": CHAT_SYSTEM_PROMPT}]
    messages.extend(turn.as_message() for turn in window)
    messages.append({"role": "user", "content": user_message})
    return messages


def build_recommendation_messages(
    disease_key: str,
    request: Optional[GuidanceRequest] = None,
) -> list[dict]:
    """JSON-only system prompt plus the filled-in recommendation template."""
    context_block = format_guidance_context(request)
    prompt = RECOMMENDATION_PROMPT.format(
        disease_name=disease_display_name(disease_key),
        context_block=f"{context_block}\n" if context_block else "",
    )
    return [
        {"role": "system", "content": RECOMMENDATION_SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]
