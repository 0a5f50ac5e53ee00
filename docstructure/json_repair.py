"""
JSON Recovery
=============
Turns raw LLM text into a JSON object.

Recovery ladder:
    1. Strip Markdown code fences and prose around the outermost {...}
    2. Strict json.loads
    3. One structural repair pass (close strings, drop dangling keys and
       trailing commas, balance brackets), then json.loads again
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from .errors import ResponseParsingError

logger = logging.getLogger(__name__)

FENCED_BLOCK = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\n?(.*?)```", re.DOTALL)
OPEN_FENCE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\n?")

# A string that can only be an object key: preceded by "{" or "," and
# not followed by a value
DANGLING_KEY = re.compile(r'([{,])\s*"(?:[^"\\]|\\.)*"\s*:?\s*$')

CLOSERS = {"{": "}", "[": "]"}


def strip_wrapping(text: str) -> str:
    """Remove code fences and any prose outside the outermost object."""
    text = text.strip()

    fenced = FENCED_BLOCK.search(text)
    if fenced:
        text = fenced.group(1).strip()
    else:
        # Unterminated fence from a truncated reply
        text = OPEN_FENCE.sub("", text).strip()

    start = text.find("{")
    if start < 0:
        return text

    end = _matching_brace(text, start)
    if end < 0:
        # Truncated: keep everything from the first brace for repair
        return text[start:]
    return text[start:end + 1]


def repair_json(text: str) -> str:
    """
    Single structural repair pass over truncated or sloppy JSON.

    Closes an unterminated string, removes a dangling key or comma,
    drops trailing commas and closes open brackets in reverse order.
    """
    out: list[str] = []
    stack: list[str] = []
    in_string = False
    escape_next = False

    for ch in text:
        if in_string:
            out.append(ch)
            if escape_next:
                escape_next = False
            elif ch == "\\":
                escape_next = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
            out.append(ch)
        elif ch in CLOSERS:
            stack.append(ch)
            out.append(ch)
        elif ch in ("}", "]"):
            if ch not in (CLOSERS[opener] for opener in stack):
                continue  # stray closer
            _drop_trailing_comma(out)
            # Close anything left open inside this container
            while stack and CLOSERS[stack[-1]] != ch:
                out.append(CLOSERS[stack.pop()])
            stack.pop()
            out.append(ch)
        else:
            out.append(ch)

    if in_string:
        if escape_next:
            out.pop()
        out.append('"')

    repaired = "".join(out).rstrip()

    if stack and stack[-1] == "{":
        repaired = DANGLING_KEY.sub(r"\1", repaired).rstrip()
    if repaired.endswith(":"):
        repaired = repaired[:-1].rstrip()

    tail = list(repaired)
    _drop_trailing_comma(tail)
    repaired = "".join(tail)

    for opener in reversed(stack):
        repaired += CLOSERS[opener]

    return repaired


def decode_object(raw: str) -> tuple[dict[str, Any], bool]:
    """
    Decode the JSON object in an LLM reply.

    Returns:
        (data, repaired) where repaired tells whether the repair pass ran.

    Raises:
        ResponseParsingError: If no JSON object can be recovered.
    """
    candidate = strip_wrapping(raw)
    if not candidate:
        raise ResponseParsingError("Invalid JSON: response is empty")

    repaired = False
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as first_error:
        fixed = repair_json(candidate)
        try:
            data = json.loads(fixed)
        except json.JSONDecodeError:
            raise ResponseParsingError(
                f"Invalid JSON: {first_error.msg} at line {first_error.lineno} "
                f"column {first_error.colno}"
            ) from first_error
        repaired = True
        logger.info("JSON repaired before parsing")

    if not isinstance(data, dict):
        raise ResponseParsingError(
            f"Invalid JSON: root must be an object, got {type(data).__name__}"
        )
    return data, repaired


def _matching_brace(text: str, start: int) -> int:
    """Index of the brace closing text[start], or -1 if unbalanced."""
    depth = 0
    in_string = False
    escape_next = False

    for i in range(start, len(text)):
        ch = text[i]
        if escape_next:
            escape_next = False
            continue
        if ch == "\\":
            escape_next = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return -1


def _drop_trailing_comma(chars: list[str]):
    """Remove a comma (and whitespace after it) at the end of chars."""
    i = len(chars)
    while i > 0 and chars[i - 1].isspace():
        i -= 1
    if i > 0 and chars[i - 1] == ",":
        del chars[i - 1:]
