from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import requests

from ..device.capture import ImageHandle
from ..errors import InvalidCategory
from .types import SOURCE_REMOTE, WASTE_CATEGORIES, ClassificationResult, Classifier, normalize_category

DEFAULT_CATEGORY = "Plastic"
DEFAULT_CONFIDENCE = 0.85


@dataclass
class RemoteWasteClassifier(Classifier):
    """Classify waste photos by uploading them to the classification API."""

    base_url: str
    timeout: float = 10.0
    categories: tuple[str, ...] = WASTE_CATEGORIES

    def classify(self, image: ImageHandle) -> ClassificationResult:
        url = f"{self.base_url.rstrip('/')}/classify"
        data = self._send_request(url, image)
        return self._parse_payload(data)

    def _send_request(self, url: str, image: ImageHandle) -> Any:
        try:
            with image.path.open("rb") as handle:
                response = requests.post(
                    url,
                    files={"image": (image.filename, handle, image.mime_type)},
                    headers={"Accept": "application/json"},
                    timeout=self.timeout,
                )
                response.raise_for_status()
                return response.json()
        except Exception as exc:  # pragma: no cover - surfaced to caller
            raise RuntimeError(f"Failed to reach classification API: {exc}") from exc

    def _parse_payload(self, data: Any) -> ClassificationResult:
        if not isinstance(data, dict):
            raise RuntimeError("Classification API response was not a JSON object")

        raw_type = data.get("type")
        if raw_type is None or (isinstance(raw_type, str) and not raw_type.strip()):
            category = DEFAULT_CATEGORY
        else:
            try:
                category = normalize_category(raw_type, self.categories)
            except InvalidCategory as exc:
                raise RuntimeError(f"Classification API returned {exc}") from exc

        raw_confidence = data.get("confidence")
        if raw_confidence is None:
            confidence = DEFAULT_CONFIDENCE
        else:
            try:
                confidence = float(raw_confidence)
            except (TypeError, ValueError) as exc:
                raise RuntimeError(
                    f"Classification API returned invalid confidence {raw_confidence!r}"
                ) from exc
            if not math.isfinite(confidence):
                raise RuntimeError(
                    f"Classification API returned invalid confidence {raw_confidence!r}"
                )
            confidence = max(0.0, min(1.0, confidence))

        details = data.get("details")
        if not isinstance(details, str):
            details = None

        return ClassificationResult(
            category=category,
            confidence=confidence,
            source=SOURCE_REMOTE,
            details=details,
        )


__all__ = ["RemoteWasteClassifier", "DEFAULT_CATEGORY", "DEFAULT_CONFIDENCE"]
