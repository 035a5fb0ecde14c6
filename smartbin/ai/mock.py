from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from typing import Callable

from ..device.capture import ImageHandle
from .types import SOURCE_FALLBACK, WASTE_CATEGORIES, ClassificationResult, Classifier


@dataclass
class MockWasteClassifier(Classifier):
    """Stand-in classifier that picks a random category after a short pause."""

    rng: random.Random = field(default_factory=random.Random)
    delay_seconds: float = 1.5
    sleep: Callable[[float], None] = time.sleep
    categories: tuple[str, ...] = WASTE_CATEGORIES
    min_confidence: float = 0.70
    max_confidence: float = 1.00

    def classify(self, image: ImageHandle) -> ClassificationResult:
        if self.delay_seconds > 0:
            self.sleep(self.delay_seconds)
        category = self.rng.choice(self.categories)
        confidence = round(self.rng.uniform(self.min_confidence, self.max_confidence), 2)
        return ClassificationResult(
            category=category,
            confidence=confidence,
            source=SOURCE_FALLBACK,
            details="Mock classification result",
        )


__all__ = ["MockWasteClassifier"]
