"""
Parsing of raw model output into learning paths.

Models wrap JSON in markdown fences, prepend chatter, or name the step list
differently from one provider to the next. Everything here turns that text
into validated LearningStep dicts or raises LearningPathParseError.
"""

import json
import logging
import re
from typing import Any, Optional

from pydantic import ValidationError

from schemas import LEARNING_PATH_STEPS, LearningStep

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*\n?|\n?```\s*$")
_STEP_LIST_KEYS = ("path", "steps", "learningPath", "learning_path")


class LearningPathParseError(ValueError):
    """Raised when model output cannot be turned into a learning path."""


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip()).strip()


def _balanced_block(text: str, start_idx: int) -> Optional[str]:
    """Return the balanced {...} or [...] block opening at start_idx, if any."""
    opener = text[start_idx]
    closer = "}" if opener == "{" else "]"
    depth = 0
    in_string = False
    escaped = False
    for i in range(start_idx, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return text[start_idx:i + 1]
    return None


def extract_json(text: str) -> Any:
    """Decode the JSON payload of a model response.

    Falls back to scanning for embedded {...} or [...] blocks, so chatter
    such as "[Note] Here it is: {...}" still yields the object.
    """
    if not text or not text.strip():
        raise LearningPathParseError("Empty response")

    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    starts = [i for i, char in enumerate(cleaned) if char in "{["]
    if not starts:
        raise LearningPathParseError("No JSON in response")

    last_error = "Unterminated JSON in response"
    for start_idx in starts:
        block = _balanced_block(cleaned, start_idx)
        if block is None:
            continue
        try:
            return json.loads(block)
        except json.JSONDecodeError as e:
            last_error = f"Invalid JSON in response: {e}"
    raise LearningPathParseError(last_error)


def _as_text_list(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]

    items = []
    for item in value:
        if isinstance(item, dict):
            title = str(item.get("title") or item.get("name") or "").strip()
            url = str(item.get("url") or "").strip()
            text = f"{title} - {url}" if title and url else (title or url)
        else:
            text = str(item).strip()
        if text:
            items.append(text)
    return items


def _step_list(data: Any) -> list:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in _STEP_LIST_KEYS:
            if isinstance(data.get(key), list):
                return data[key]
    raise LearningPathParseError("Response has no list of steps")


def parse_learning_path(text: str) -> list[dict]:
    """Parse model output into exactly LEARNING_PATH_STEPS step dicts."""
    items = _step_list(extract_json(text))

    if len(items) < LEARNING_PATH_STEPS:
        raise LearningPathParseError(
            f"Expected {LEARNING_PATH_STEPS} steps, got {len(items)}"
        )
    if len(items) > LEARNING_PATH_STEPS:
        logger.info(f"[Parsing] Truncating {len(items)} steps to {LEARNING_PATH_STEPS}")

    steps = []
    for number, item in enumerate(items[:LEARNING_PATH_STEPS], start=1):
        if not isinstance(item, dict):
            raise LearningPathParseError(f"Step {number} is not an object")
        try:
            step = LearningStep(
                step_number=number,
                title=str(item.get("title") or item.get("name") or "").strip(),
                description=str(item.get("description") or "").strip(),
                duration=str(item.get("duration") or item.get("timeframe") or "").strip(),
                resources=_as_text_list(item.get("resources")),
                skills=_as_text_list(item.get("skills")),
            )
        except (ValidationError, TypeError, ValueError) as e:
            raise LearningPathParseError(f"Step {number} is invalid: {e}") from e
        steps.append(step.model_dump())
    return steps
