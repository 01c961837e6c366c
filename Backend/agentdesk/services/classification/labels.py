"""Fixed category vocabulary and the result type every classifier returns."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

CATEGORIES: tuple[str, ...] = ("Support", "Sales", "Technical", "Billing", "Urgent", "General")
DEFAULT_CATEGORY: str = "General"


class CategorySource(str, Enum):
    AI = "ai"
    MANUAL = "manual"
    DEFAULT = "default"


@dataclass(frozen=True)
class CategoryResult:
    category: str
    source: CategorySource
    confidence: Optional[float] = None

    @property
    def is_ai(self) -> bool:
        return self.source == CategorySource.AI

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "source": self.source.value,
            "confidence": self.confidence,
        }


def default_result() -> CategoryResult:
    return CategoryResult(DEFAULT_CATEGORY, CategorySource.DEFAULT, None)


def ai_result(category: str) -> CategoryResult:
    # The upstream model gives no usable confidence score
    return CategoryResult(category, CategorySource.AI, None)


def normalize_label(text: Optional[str]) -> str:
    """Map a free-text reply onto the vocabulary: first label contained in it wins."""
    lowered = (text or "").lower().strip()
    for category in CATEGORIES:
        if category.lower() in lowered:
            return category
    return DEFAULT_CATEGORY


def match_label(label: Any) -> str:
    """Stricter mapping for structured replies: exact match, then containment either way."""
    if not isinstance(label, str) or not label.strip():
        return DEFAULT_CATEGORY
    lowered = label.strip().lower()
    for category in CATEGORIES:
        if lowered == category.lower():
            return category
    for category in CATEGORIES:
        if category.lower() in lowered or lowered in category.lower():
            return category
    return DEFAULT_CATEGORY


def is_valid_category(label: Optional[str]) -> bool:
    return label in CATEGORIES
