from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol

from ..device.capture import ImageHandle
from ..errors import InvalidCategory

WASTE_CATEGORIES: tuple[str, ...] = ("Paper", "Plastic", "Organic")

SOURCE_REMOTE = "remote"
SOURCE_FALLBACK = "fallback"
SOURCE_MANUAL = "manual"


class Classifier(Protocol):
    def classify(self, image: ImageHandle) -> "ClassificationResult": ...


@dataclass(frozen=True)
class ClassificationResult:
    category: str
    confidence: float
    source: str
    details: str | None = None


def normalize_category(
    value: object, categories: Iterable[str] = WASTE_CATEGORIES
) -> str:
    """Return the canonical spelling of ``value`` or raise ``InvalidCategory``."""
    allowed = tuple(categories)
    if isinstance(value, str):
        label = value.strip().lower()
        for category in allowed:
            if category.lower() == label:
                return category
    raise InvalidCategory(value, allowed)


__all__ = [
    "Classifier",
    "ClassificationResult",
    "WASTE_CATEGORIES",
    "SOURCE_REMOTE",
    "SOURCE_FALLBACK",
    "SOURCE_MANUAL",
    "normalize_category",
]
