"""
Sanitization of free-form model output into trusted structures.

Public API
----------
sanitize_and_parse(raw_text, shape)       -> List[Dict]   (never raises)
dedupe_by(entries, field)                 -> List[Dict]
select_best_solution(candidates, markers) -> str

The model is asked for JSON but routinely wraps it in ```json fences, breaks
strings across lines, or adds prose around it.  Parsing tries a few cheap
repairs and then gives up to a fixed fallback for the expected shape, so the
caller never sees a parse error.
"""
from __future__ import annotations

import copy
import dataclasses
import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Expected shapes
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class ExpectedShape:
    """A top-level key that must hold a list, plus the fallback for it."""

    key: str
    id_field: str
    fallback_entries: Tuple[Dict[str, str], ...]

    @property
    def fallback(self) -> List[Dict[str, str]]:
        """Fresh copy of the fallback list (callers may mutate it)."""
        return copy.deepcopy(list(self.fallback_entries))


NICHES = ExpectedShape(
    key="niches",
    id_field="name",
    fallback_entries=(
        {
            "name": "Digital Productivity Tools",
            "category": "Technology",
            "description": "Templates, planners and small utilities that help "
                           "individuals and teams organise their work.",
            "potential": "Medium",
            "competition": "Medium",
        },
    ),
)

PROBLEMS = ExpectedShape(
    key="problems",
    id_field="title",
    fallback_entries=(
        {
            "title": "Finding Reliable Information",
            "description": "People in this niche struggle to find trustworthy, "
                           "up-to-date guidance in one place.",
            "audience": "Beginners and intermediate practitioners",
            "severity": "Medium",
            "complexity": "Low",
            "example": "A newcomer spends hours comparing contradictory blog posts.",
        },
    ),
)

# Section headings a complete solution guide must contain
REQUIRED_SOLUTION_MARKERS: Tuple[str, ...] = ("Solution Overview", "Implementation Plan")


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def sanitize_and_parse(raw_text: Optional[str], shape: ExpectedShape) -> List[Dict[str, Any]]:
    """
    Parse *raw_text* into the list held under ``shape.key``.

    Steps: strip code fences, collapse newlines, ``json.loads``; then repair
    trailing commas / Python literals; then pull the first ``{...}`` block out
    of surrounding prose.  The parsed value must be an object whose
    ``shape.key`` holds a list; non-object entries are dropped.  Anything
    else, including an empty list, yields ``shape.fallback``.
    """
    try:
        parsed = _parse_json_robust(raw_text or "")
    except Exception as exc:  # parsing must never escape to the caller
        logger.error("sanitize_and_parse: unexpected parser error: %s", exc)
        parsed = None

    entries = _validate_shape(parsed, shape)
    if entries is None:
        logger.warning(
            "sanitize_and_parse: falling back for %r. Preview: %s",
            shape.key,
            (raw_text or "")[:200],
        )
        return shape.fallback
    return entries


def _validate_shape(parsed: Any, shape: ExpectedShape) -> Optional[List[Dict[str, Any]]]:
    if not isinstance(parsed, dict):
        return None
    value = parsed.get(shape.key)
    if not isinstance(value, list):
        return None
    entries = [item for item in value if isinstance(item, dict)]
    return entries or None


def _parse_json_robust(response: str) -> Any:
    # Newlines (even inside string values) are the most common formatting noise
    text = re.sub(r"\s*\n\s*", " ", strip_code_fences(response)).strip()
    if not text:
        return None

    ok, val = _try_json(text)
    if ok:
        return val

    fixed = _fix_json_issues(text)
    ok, val = _try_json(fixed)
    if ok:
        return val

    fragment = _extract_json_structure(text, "{", "}")
    if fragment:
        ok, val = _try_json(fragment)
        if ok:
            return val
        ok, val = _try_json(_fix_json_issues(fragment))
        if ok:
            return val
    return None


def _try_json(text: str) -> Tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return False, None


def strip_code_fences(text: str) -> str:
    """Remove ``` delimiters (and any language tag such as ```json) wherever the model put them."""
    text = re.sub(r"```[ \t]*\w*", "", text, flags=re.IGNORECASE)
    return text.strip()


# A complete JSON string literal, escapes included
_JSON_STRING = re.compile(r'("(?:\\.|[^"\\])*")')


def _fix_json_issues(text: str) -> str:
    # Repairs only touch the text between string literals
    parts = _JSON_STRING.split(text)
    for i in range(0, len(parts), 2):
        chunk = parts[i]
        # Trailing commas before ] or }
        chunk = re.sub(r",(\s*[}\]])", r"\1", chunk)
        # Python → JSON literals
        chunk = re.sub(r"\bTrue\b", "true", chunk)
        chunk = re.sub(r"\bFalse\b", "false", chunk)
        chunk = re.sub(r"\bNone\b", "null", chunk)
        parts[i] = chunk
    return "".join(parts).strip()


def _extract_json_structure(text: str, open_b: str, close_b: str) -> str:
    """
    Find the first complete balanced open_b … close_b structure in *text*.
    Returns the matched fragment, or empty string if not found.
    """
    start = text.find(open_b)
    if start == -1:
        return ""

    depth = 0
    in_string = False
    escape_next = False

    for i, ch in enumerate(text[start:], start=start):
        if escape_next:
            escape_next = False
            continue
        if ch == "\\" and in_string:
            escape_next = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == open_b:
            depth += 1
        elif ch == close_b:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return ""


# ---------------------------------------------------------------------------
# Aggregation helpers
# ---------------------------------------------------------------------------

def dedupe_by(entries: Iterable[Dict[str, Any]], field: str) -> List[Dict[str, Any]]:
    """
    Keep the first entry for each value of *field*, in first-seen order.

    Entries with no value for *field* have nothing to match on and are all kept.
    """
    seen: set = set()
    unique: List[Dict[str, Any]] = []
    for entry in entries:
        key = entry.get(field)
        if key is None or key == "":
            unique.append(entry)
            continue
        if isinstance(key, (list, dict)):
            key = json.dumps(key, sort_keys=True)
        if key in seen:
            continue
        seen.add(key)
        unique.append(entry)
    return unique


def select_best_solution(
    candidates: Sequence[str],
    markers: Sequence[str] = REQUIRED_SOLUTION_MARKERS,
) -> str:
    """
    Best-of-N: the longest candidate containing every marker.

    Falls back to the first candidate when none carries all markers, and to
    an empty string when there are no candidates at all.
    """
    if not candidates:
        return ""
    complete = [c for c in candidates if all(m in c for m in markers)]
    if not complete:
        logger.info(
            "select_best_solution: no candidate had all of %s; using the first", markers
        )
        return candidates[0]
    return max(complete, key=len)
