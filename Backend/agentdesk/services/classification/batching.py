"""
Chunking and batch-reply parsing for multi-note classification calls.
"""
from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Sequence

from .errors import BatchParseError
from .labels import match_label

logger = logging.getLogger(__name__)

# ─── Chunking Constants ──────────────────────────────────────────────────────
MAX_ITEMS_PER_CHUNK: int    = 15
MAX_TOKENS_PER_CHUNK: int   = 2000
MIN_ITEMS_PER_CHUNK: int    = 5
PROMPT_OVERHEAD_TOKENS: int = 200    # instructions + category rules
ITEM_OVERHEAD_TOKENS: int   = 10     # numbering and quotes per item
MIN_COVERAGE: float         = 0.8    # below this share of answers we log a mismatch

_CODE_FENCE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")
_ORDINAL_KEYS = ("item", "taskNumber", "task_number", "number", "index")


@dataclass(frozen=True)
class PendingItem:
    """A note awaiting classification, remembered by its position in the input."""
    index: int
    text: str


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per 0.75 words, rounded up."""
    if not isinstance(text, str) or not text.strip():
        return 0
    return math.ceil(len(text.split()) / 0.75)


def partition_into_chunks(
    items: Sequence[PendingItem],
    max_items: int = MAX_ITEMS_PER_CHUNK,
    max_tokens: int = MAX_TOKENS_PER_CHUNK,
    min_items: int = MIN_ITEMS_PER_CHUNK,
) -> list[list[PendingItem]]:
    """
    Greedily group items into chunks bounded by item count and token budget.

    A chunk is only closed once it holds ``min_items``; until then items
    are added even past the limits, which avoids runs of tiny chunks.
    """
    chunks: list[list[PendingItem]] = []
    current: list[PendingItem] = []
    current_tokens = 0

    for item in items:
        item_tokens = estimate_tokens(item.text) + ITEM_OVERHEAD_TOKENS
        too_many = len(current) >= max_items
        too_large = current_tokens + item_tokens + PROMPT_OVERHEAD_TOKENS > max_tokens

        if (too_many or too_large) and len(current) >= min_items:
            chunks.append(current)
            current, current_tokens = [], 0

        current.append(item)
        current_tokens += item_tokens

    if current:
        chunks.append(current)
    return chunks


def _ordinal_of(entry: dict[str, Any]) -> int | None:
    for key in _ORDINAL_KEYS:
        value = entry.get(key)
        # bool is an int subclass; "true" is not an ordinal
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
    return None


def parse_batch_response(reply: str, expected: int) -> dict[int, str]:
    """
    Parse a structured batch reply into ``{ordinal: category}``.

    Tolerates code fences and chatter around the JSON array, and replies
    covering only part of the chunk. Raises BatchParseError when nothing
    usable is found.
    """
    if not isinstance(reply, str) or not reply.strip():
        raise BatchParseError("Empty batch response")

    text = _CODE_FENCE.sub("", reply.strip())
    match = _JSON_ARRAY.search(text)
    if not match:
        raise BatchParseError("No JSON array found in batch response")

    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise BatchParseError(f"Failed to parse batch response: {e}") from e

    if not isinstance(parsed, list):
        raise BatchParseError(f"Batch response is not an array: {type(parsed).__name__}")

    results: dict[int, str] = {}
    for entry in parsed:
        if not isinstance(entry, dict):
            continue
        ordinal = _ordinal_of(entry)
        label = entry.get("category")
        if ordinal is None or not isinstance(label, str):
            continue
        if 1 <= ordinal <= expected:
            results.setdefault(ordinal, match_label(label))

    if not results:
        raise BatchParseError("Batch response held no valid entries")

    if len(results) < expected * MIN_COVERAGE:
        logger.warning(f"Batch response count mismatch: expected {expected}, got {len(results)}")
    return results
