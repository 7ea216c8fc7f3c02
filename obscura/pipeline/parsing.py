"""Tolerant JSON extraction from generator output."""

import json
import logging
from typing import Any

from obscura.errors import UpstreamGenerationError

logger = logging.getLogger(__name__)


def _strip_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines)
    return cleaned.strip()


def parse_json_output(text: str, stage: str) -> Any:
    """Parse the JSON object or array in generator output.

    Markdown fences are stripped, and when the model wraps the JSON in prose
    the outermost {...} or [...] span is tried. Raises UpstreamGenerationError
    when nothing parses; the caller's failure policy decides what that means.
    """
    cleaned = _strip_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    starts = [i for i in (cleaned.find("{"), cleaned.find("[")) if i != -1]
    if starts:
        start = min(starts)
        closer = "}" if cleaned[start] == "{" else "]"
        end = cleaned.rfind(closer)
        if end > start:
            try:
                return json.loads(cleaned[start:end + 1])
            except json.JSONDecodeError as e:
                logger.warning("Output of %s is not valid JSON: %s", stage, e)
    raise UpstreamGenerationError(f"Generator returned no usable JSON for {stage}")


def expect_list(data: Any, stage: str) -> list:
    if isinstance(data, dict):
        # models often wrap arrays: {"suspects": [...]}
        lists = [v for v in data.values() if isinstance(v, list)]
        if len(lists) == 1:
            return lists[0]
    if not isinstance(data, list):
        raise UpstreamGenerationError(
            f"{stage} must be a JSON array, got {type(data).__name__}"
        )
    return data


def expect_object(data: Any, stage: str) -> dict:
    if not isinstance(data, dict):
        raise UpstreamGenerationError(
            f"{stage} must be a JSON object, got {type(data).__name__}"
        )
    return data
