"""
JSON extraction utilities for chat-completion output.

Handles: markdown code fences, prose around the object, literal newlines
inside strings and trailing commas. Truncated objects are rejected rather
than repaired, so a partial decode never passes for a complete one.
"""
import json
import re
import logging
from typing import Optional

from .errors import MalformedModelOutput

logger = logging.getLogger(__name__)

CODE_FENCE_RE = re.compile(r"```(?:json|JSON)?[ \t]*")
TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def strip_code_fences(text: str) -> str:
    """Remove ```json / ``` markers, keeping whatever they wrapped."""
    return CODE_FENCE_RE.sub("", text).strip()


def find_balanced_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` span in text, or None.

    Braces inside JSON strings are ignored, so a '}' in a value does not end
    the object early.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    i = start
    while i < len(text):
        c = text[i]
        if in_string:
            if c == "\\":
                i += 2  # skip escaped char
                continue
            if c == '"':
                in_string = False
        elif c == '"':
            in_string = True
        elif c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
        i += 1

    return None


def _fix_newlines_in_json_strings(text: str) -> str:
    """Replace literal newlines inside JSON string values with spaces.

    Walks the text character-by-character, tracking whether we're inside
    a quoted string. Any \\n found inside a string is replaced with a space.
    """
    result = []
    in_string = False
    i = 0
    while i < len(text):
        c = text[i]
        if c == '\\' and in_string and i + 1 < len(text):
            # Escaped character inside a string: keep both chars
            result.append(c)
            result.append(text[i + 1])
            i += 2
            continue
        if c == '"':
            in_string = not in_string
        if c == '\n' and in_string:
            result.append(' ')
        else:
            result.append(c)
        i += 1
    return ''.join(result)


def _decode(span: str):
    """json.loads, with pathological nesting reported as malformed output."""
    try:
        return json.loads(span)
    except RecursionError as e:
        logger.error("JSON nesting too deep to decode")
        raise MalformedModelOutput("Model response JSON is nested too deeply") from e


def extract_json_object(text: str) -> dict:
    """Decode the first JSON object embedded in model output.

    Raises:
        MalformedModelOutput: no complete object, or it does not decode.
    """
    if not text:
        raise MalformedModelOutput("Model response was empty")

    cleaned = strip_code_fences(text)
    span = find_balanced_object(cleaned)
    if span is None:
        logger.error(f"No complete JSON object found in response: {cleaned[:200]}...")
        raise MalformedModelOutput("Model response contained no complete JSON object")

    span = _fix_newlines_in_json_strings(span)

    # Attempt 1: direct parse
    try:
        return _decode(span)
    except json.JSONDecodeError as e:
        logger.warning(f"JSON parse error (attempt 1 - direct): {e}")

    # Attempt 2: drop trailing commas before closing brackets
    try:
        return _decode(TRAILING_COMMA_RE.sub(r"\1", span))
    except json.JSONDecodeError as e:
        logger.warning(f"JSON parse error (attempt 2 - trailing comma fix): {e}")

    logger.error(f"All JSON parse attempts failed.\nRaw text: {span[:500]}...")
    raise MalformedModelOutput("Failed to parse model response as JSON")
