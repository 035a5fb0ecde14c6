from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..ai.types import SOURCE_MANUAL, ClassificationResult, Classifier
from ..errors import (
    AcquisitionFailed,
    Cancelled,
    ClassificationUnavailable,
    InvalidCategory,
    InvalidSource,
    PermissionDenied,
    SmartBinError,
    StorageError,
    WorkflowBusy,
)
from ..history.store import ResultStore, ScanRecord
from .capture import ImageHandle, ImageSource


logger = logging.getLogger(__name__)


class ScanState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    ANALYZING = "analyzing"
    CLASSIFIED = "classified"
    FAILED = "failed"


STATUS_RECORDED = "recorded"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"
STATUS_DENIED = "denied"
STATUS_REJECTED = "rejected"

_BUSY_STATES = frozenset({ScanState.CAPTURING, ScanState.ANALYZING})
_MANUAL_STATES = frozenset({ScanState.IDLE, ScanState.CLASSIFIED})


@dataclass(frozen=True)
class ScanOutcome:
    status: str
    result: ClassificationResult | None = None
    record: ScanRecord | None = None
    error: SmartBinError | None = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_RECORDED

    @property
    def step(self) -> str | None:
        return self.error.step if self.error is not None else None


class ScanWorkflow:
    """Drive one scan at a time: acquire -> classify -> record.

    Runs on a single asyncio event loop. The busy check and the state change
    happen before the first ``await`` so an overlapping ``start`` is rejected
    rather than queued. Blocking work is pushed to worker threads.
    """

    def __init__(
        self,
        classifier: Classifier,
        store: ResultStore,
        on_transition: Optional[Callable[[ScanState, ScanState], None]] = None,
    ) -> None:
        self._classifier = classifier
        self._store = store
        self._on_transition = on_transition
        self._state = ScanState.IDLE
        self._image: ImageHandle | None = None
        self._last_outcome: ScanOutcome | None = None

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def image(self) -> ImageHandle | None:
        return self._image

    @property
    def last_outcome(self) -> ScanOutcome | None:
        return self._last_outcome

    @property
    def busy(self) -> bool:
        return self._state in _BUSY_STATES

    async def start(self, source: ImageSource) -> ScanOutcome:
        if self.busy:
            logger.info("Rejecting scan start while workflow is %s", self._state.value)
            return ScanOutcome(
                status=STATUS_REJECTED,
                error=WorkflowBusy(f"A scan is already {self._state.value}"),
            )
        self._image = None
        self._transition(ScanState.CAPTURING)
        try:
            return await self._run(source)
        except asyncio.CancelledError:
            logger.warning("Scan abandoned while workflow was %s", self._state.value)
            self._image = None
            self._transition(ScanState.IDLE)
            raise

    async def _run(self, source: ImageSource) -> ScanOutcome:
        try:
            image = await asyncio.to_thread(source.acquire)
        except PermissionDenied as exc:
            logger.info("Image acquisition denied: %s", exc)
            self._transition(ScanState.IDLE)
            return self._settle(ScanOutcome(status=STATUS_DENIED, error=exc))
        except Cancelled as exc:
            logger.info("Image acquisition cancelled: %s", exc)
            self._transition(ScanState.IDLE)
            return self._settle(ScanOutcome(status=STATUS_CANCELLED, error=exc))
        except Exception as exc:
            logger.exception("Image acquisition failed")
            return self._fail(AcquisitionFailed(f"Unable to acquire image: {exc}"))

        self._image = image
        self._transition(ScanState.ANALYZING)
        try:
            result = await asyncio.to_thread(self._classifier.classify, image)
        except ClassificationUnavailable as exc:
            return self._fail(exc)
        except Exception as exc:
            logger.exception("Classifier raised unexpectedly image=%s", image.filename)
            return self._fail(ClassificationUnavailable(f"Unable to classify image: {exc}"))

        logger.info(
            "Scan classified image=%s category=%s confidence=%.2f source=%s",
            image.filename,
            result.category,
            result.confidence,
            result.source,
        )
        try:
            record = await asyncio.to_thread(self._store.append, result.category, result.source)
        except (StorageError, InvalidCategory, InvalidSource) as exc:
            return self._fail(exc, result=result)

        self._transition(ScanState.CLASSIFIED)
        return self._settle(ScanOutcome(status=STATUS_RECORDED, result=result, record=record))

    async def record_manual(self, category: str) -> ScanOutcome:
        """Record a user-chosen category without running classification."""
        if self._state not in _MANUAL_STATES:
            logger.info("Rejecting manual record while workflow is %s", self._state.value)
            return ScanOutcome(
                status=STATUS_REJECTED,
                error=WorkflowBusy(f"Cannot record while workflow is {self._state.value}"),
            )
        try:
            record = await asyncio.to_thread(self._store.append, category, SOURCE_MANUAL)
        except (StorageError, InvalidCategory) as exc:
            logger.warning("Manual record failed category=%r error=%s", category, exc)
            return self._settle(ScanOutcome(status=STATUS_FAILED, error=exc))
        return self._settle(ScanOutcome(status=STATUS_RECORDED, record=record))

    def acknowledge(self) -> None:
        if self._state in (ScanState.CLASSIFIED, ScanState.FAILED):
            self._image = None
            self._transition(ScanState.IDLE)

    def _fail(
        self, error: SmartBinError, result: ClassificationResult | None = None
    ) -> ScanOutcome:
        logger.warning("Scan failed step=%s error=%s", error.step, error)
        self._transition(ScanState.FAILED)
        return self._settle(ScanOutcome(status=STATUS_FAILED, result=result, error=error))

    def _settle(self, outcome: ScanOutcome) -> ScanOutcome:
        self._last_outcome = outcome
        return outcome

    def _transition(self, new_state: ScanState) -> None:
        old_state = self._state
        self._state = new_state
        logger.debug("Scan workflow %s -> %s", old_state.value, new_state.value)
        if self._on_transition is not None and old_state is not new_state:
            try:
                self._on_transition(old_state, new_state)
            except Exception:
                logger.exception("Scan transition callback failed")


__all__ = [
    "ScanWorkflow",
    "ScanState",
    "ScanOutcome",
    "STATUS_RECORDED",
    "STATUS_FAILED",
    "STATUS_CANCELLED",
    "STATUS_DENIED",
    "STATUS_REJECTED",
]
