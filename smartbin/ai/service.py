from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field

from ..device.capture import ImageHandle
from ..errors import ClassificationUnavailable
from .mock import MockWasteClassifier
from .types import ClassificationResult, Classifier


logger = logging.getLogger(__name__)

_REMOTE_EXECUTOR = ThreadPoolExecutor(max_workers=4, thread_name_prefix="remote-classify")


@dataclass
class ClassificationService:
    """Classify with the remote API and degrade to the mock on any failure.

    The remote call runs on a worker thread and is abandoned after
    ``remote_timeout`` seconds so ``classify`` always settles, even when the
    HTTP client's own timeout does not fire (DNS stalls, slow bodies).
    """

    remote: Classifier | None = None
    fallback: Classifier = field(default_factory=MockWasteClassifier)
    remote_timeout: float = 15.0

    def classify(self, image: ImageHandle) -> ClassificationResult:
        if self.remote is not None:
            try:
                result = self._classify_remote(self.remote, image)
            except Exception as exc:
                logger.warning(
                    "Remote classification failed image=%s error=%s; using fallback",
                    image.filename,
                    exc,
                )
            else:
                logger.info(
                    "Remote classification image=%s category=%s confidence=%.2f",
                    image.filename,
                    result.category,
                    result.confidence,
                )
                return result
        else:
            logger.debug("No remote classifier configured; using fallback")

        try:
            result = self.fallback.classify(image)
        except Exception as exc:
            logger.exception("Fallback classification failed image=%s", image.filename)
            raise ClassificationUnavailable(
                f"Unable to classify {image.filename}: {exc}"
            ) from exc
        logger.info(
            "Fallback classification image=%s category=%s confidence=%.2f",
            image.filename,
            result.category,
            result.confidence,
        )
        return result

    def _classify_remote(
        self, remote: Classifier, image: ImageHandle
    ) -> ClassificationResult:
        future = _REMOTE_EXECUTOR.submit(remote.classify, image)
        try:
            return future.result(timeout=self.remote_timeout)
        except FutureTimeout as exc:
            future.cancel()
            raise RuntimeError(
                f"Timed out after {self.remote_timeout:.1f}s waiting for classification"
            ) from exc


__all__ = ["ClassificationService"]
