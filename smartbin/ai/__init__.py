from __future__ import annotations

from .types import ClassificationResult, Classifier, WASTE_CATEGORIES

__all__ = [
    "ClassificationResult",
    "Classifier",
    "WASTE_CATEGORIES",
    "RemoteWasteClassifier",
    "MockWasteClassifier",
    "ClassificationService",
]


def __getattr__(name: str):
    if name == "RemoteWasteClassifier":
        from .remote import RemoteWasteClassifier

        return RemoteWasteClassifier
    if name == "MockWasteClassifier":
        from .mock import MockWasteClassifier

        return MockWasteClassifier
    if name == "ClassificationService":
        from .service import ClassificationService

        return ClassificationService
    raise AttributeError(f"module 'smartbin.ai' has no attribute {name!r}")
