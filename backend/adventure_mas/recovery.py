"""Structured-output recovery for free-form reasoning-service text.

Generated text is expected to hold one JSON object, but it may arrive
wrapped in prose or markdown fences, carry raw control characters inside
strings, or be cut off mid-record. ``recover_json`` runs a staged repair
pipeline and stops at the first stage that yields an object. The repair is
purely syntactic: no field is ever invented.
"""

import json
import logging
import re
from typing import Any

from .errors import RecoveryError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)
_RAW_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}
_CLOSERS = {"{": "}", "[": "]"}


def recover_json(text: str) -> dict[str, Any]:
    """Return the JSON object contained in ``text`` or raise ``RecoveryError``."""

    extracted = _extract_candidate(text)
    record = _try_parse(extracted)
    if record is not None:
        return record
    logger.warning("Direct JSON parse failed, attempting string repair (length=%s)", len(text))

    closed = _close_strings(extracted)
    record = _try_parse(closed)
    if record is not None:
        return record

    truncated = _truncate_to_balanced(closed)
    if truncated is not None:
        record = _try_parse(truncated)
        if record is not None:
            logger.warning("Recovered JSON by truncating at last balanced offset %s", len(truncated))
            return record

    completed = _complete_brackets(closed)
    record = _try_parse(completed)
    if record is not None:
        logger.warning("Recovered JSON by completing unclosed brackets")
        return record

    logger.error("All JSON recovery stages failed (length=%s)", len(text))
    raise RecoveryError(len(text), text[:100])


def _try_parse(candidate: str) -> dict[str, Any] | None:
    try:
        value = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def _strip_code_fence(text: str) -> str:
    fenced = _FENCE_RE.match(text.strip())
    if fenced:
        return fenced.group(1).strip()
    return text.strip()


def _extract_candidate(text: str) -> str:
    stripped = _strip_code_fence(text)
    start = stripped.find("{")
    if start < 0:
        return stripped
    end = stripped.rfind("}")
    if end > start:
        return stripped[start : end + 1]
    return stripped[start:]


def _close_strings(text: str) -> str:
    """Escape raw control characters inside strings and close a dangling one."""

    out: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            elif ch in _RAW_ESCAPES:
                out.append(_RAW_ESCAPES[ch])
                continue
        elif ch == '"':
            in_string = True
        out.append(ch)
    if escaped:
        # A lone trailing backslash would swallow the closing quote.
        out.pop()
    if in_string:
        out.append('"')
    return "".join(out)


def _truncate_to_balanced(text: str) -> str | None:
    """Cut ``text`` after the last closer that brought nesting depth to zero."""

    depth = 0
    in_string = False
    escaped = False
    last_good = -1
    for idx, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                last_good = idx
    if last_good <= 0:
        return None
    return text[: last_good + 1]


def _complete_brackets(text: str) -> str:
    """Append closers, innermost first, for every unclosed ``{`` or ``[``."""

    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in "}]" and stack:
            stack.pop()
    body = text.rstrip(", \n\r\t")
    return body + "".join(reversed(stack))
