from __future__ import annotations

import asyncio
import random
import threading
from pathlib import Path

from smartbin.ai.mock import MockWasteClassifier
from smartbin.ai.service import ClassificationService
from smartbin.ai.types import ClassificationResult, Classifier
from smartbin.device.capture import FileImageSource, ImageHandle, LibraryImageSource
from smartbin.device.workflow import (
    STATUS_CANCELLED,
    STATUS_DENIED,
    STATUS_FAILED,
    STATUS_RECORDED,
    STATUS_REJECTED,
    ScanState,
    ScanWorkflow,
)
from smartbin.errors import (
    AcquisitionFailed,
    ClassificationUnavailable,
    InvalidCategory,
    InvalidSource,
    StorageWriteFailed,
    WorkflowBusy,
)
from smartbin.history.store import ResultStore, ScanRecord


class _StubClassifier(Classifier):
    def __init__(self, category: str = "Paper", source: str = "remote") -> None:
        self.result = ClassificationResult(category=category, confidence=0.9, source=source)
        self.calls = 0

    def classify(self, image: ImageHandle) -> ClassificationResult:
        self.calls += 1
        return self.result


class _GatedClassifier(_StubClassifier):
    def __init__(self) -> None:
        super().__init__()
        self.gate = threading.Event()

    def classify(self, image: ImageHandle) -> ClassificationResult:
        self.gate.wait(5.0)
        return super().classify(image)


class _FailingFallback(Classifier):
    def classify(self, image: ImageHandle) -> ClassificationResult:
        raise RuntimeError("no randomness today")


class _BrokenStore(ResultStore):
    def append(self, category: str, source: str | None = None) -> ScanRecord:
        raise StorageWriteFailed("disk full")


def _store() -> ResultStore:
    store = ResultStore()
    store.initialize()
    return store


def _image(tmp_path: Path) -> FileImageSource:
    path = tmp_path / "scan.jpg"
    path.write_bytes(b"image")
    return FileImageSource(path)


def test_completed_scan_is_recorded_once(tmp_path) -> None:
    store = _store()
    transitions: list[tuple[ScanState, ScanState]] = []
    workflow = ScanWorkflow(
        _StubClassifier("Organic"),
        store,
        on_transition=lambda old, new: transitions.append((old, new)),
    )

    outcome = asyncio.run(workflow.start(_image(tmp_path)))

    assert outcome.status == STATUS_RECORDED
    assert outcome.ok
    assert outcome.result.category == "Organic"
    assert outcome.record.category == "Organic"
    assert outcome.record.source == "remote"
    assert workflow.state is ScanState.CLASSIFIED
    assert workflow.image is not None and workflow.image.filename == "scan.jpg"
    assert [r.id for r in store.list()] == [outcome.record.id]
    assert transitions == [
        (ScanState.IDLE, ScanState.CAPTURING),
        (ScanState.CAPTURING, ScanState.ANALYZING),
        (ScanState.ANALYZING, ScanState.CLASSIFIED),
    ]

    workflow.acknowledge()
    assert workflow.state is ScanState.IDLE
    assert workflow.image is None


def test_fallback_scan_is_recorded_with_provenance(tmp_path) -> None:
    store = _store()
    service = ClassificationService(
        remote=None, fallback=MockWasteClassifier(rng=random.Random(2), delay_seconds=0)
    )
    workflow = ScanWorkflow(service, store)

    outcome = asyncio.run(workflow.start(_image(tmp_path)))

    assert outcome.ok
    assert outcome.result.source == "fallback"
    assert store.list()[0].source == "fallback"


def test_second_start_while_analyzing_is_rejected(tmp_path) -> None:
    store = _store()
    classifier = _GatedClassifier()
    workflow = ScanWorkflow(classifier, store)
    source = _image(tmp_path)

    async def scenario():
        first = asyncio.create_task(workflow.start(source))
        while workflow.state is not ScanState.ANALYZING:
            await asyncio.sleep(0.01)
        second = await workflow.start(source)
        manual = await workflow.record_manual("Paper")
        classifier.gate.set()
        first_outcome = await first
        third = await workflow.start(source)
        return first_outcome, second, manual, third

    try:
        first, second, manual, third = asyncio.run(scenario())
    finally:
        classifier.gate.set()

    assert second.status == STATUS_REJECTED
    assert isinstance(second.error, WorkflowBusy)
    assert manual.status == STATUS_REJECTED
    assert first.status == STATUS_RECORDED
    assert third.status == STATUS_RECORDED
    assert classifier.calls == 2
    assert len(store.list()) == 2


def test_permission_denied_returns_to_idle(tmp_path) -> None:
    store = _store()
    classifier = _StubClassifier()
    workflow = ScanWorkflow(classifier, store)
    source = LibraryImageSource(picker=lambda: tmp_path / "never.jpg", permission=lambda: False)

    outcome = asyncio.run(workflow.start(source))

    assert outcome.status == STATUS_DENIED
    assert outcome.step == "acquisition"
    assert workflow.state is ScanState.IDLE
    assert classifier.calls == 0
    assert store.list() == []


def test_cancelled_pick_returns_to_idle() -> None:
    store = _store()
    workflow = ScanWorkflow(_StubClassifier(), store)

    outcome = asyncio.run(workflow.start(LibraryImageSource(picker=lambda: None)))

    assert outcome.status == STATUS_CANCELLED
    assert workflow.state is ScanState.IDLE
    assert store.list() == []


def test_acquisition_failure_is_reported(tmp_path) -> None:
    store = _store()
    workflow = ScanWorkflow(_StubClassifier(), store)

    outcome = asyncio.run(workflow.start(FileImageSource(tmp_path / "missing.jpg")))

    assert outcome.status == STATUS_FAILED
    assert isinstance(outcome.error, AcquisitionFailed)
    assert outcome.step == "acquisition"
    assert workflow.state is ScanState.FAILED
    workflow.acknowledge()
    assert workflow.state is ScanState.IDLE


def test_classification_unavailable_writes_nothing(tmp_path) -> None:
    store = _store()
    service = ClassificationService(remote=None, fallback=_FailingFallback())
    workflow = ScanWorkflow(service, store)

    outcome = asyncio.run(workflow.start(_image(tmp_path)))

    assert outcome.status == STATUS_FAILED
    assert isinstance(outcome.error, ClassificationUnavailable)
    assert outcome.step == "classification"
    assert store.list() == []


def test_storage_failure_after_classification_is_not_success(tmp_path) -> None:
    store = _BrokenStore()
    store.initialize()
    classifier = _StubClassifier("Plastic")
    workflow = ScanWorkflow(classifier, store)

    outcome = asyncio.run(workflow.start(_image(tmp_path)))

    assert outcome.status == STATUS_FAILED
    assert not outcome.ok
    assert isinstance(outcome.error, StorageWriteFailed)
    assert outcome.step == "recording"
    assert outcome.result is not None and outcome.result.category == "Plastic"
    assert outcome.record is None
    assert workflow.state is ScanState.FAILED
    assert store.list() == []

    retry = asyncio.run(workflow.start(_image(tmp_path)))
    assert retry.status == STATUS_FAILED
    assert classifier.calls == 2


def test_manual_record_bypasses_classification() -> None:
    store = _store()
    classifier = _StubClassifier()
    workflow = ScanWorkflow(classifier, store)

    outcome = asyncio.run(workflow.record_manual("organic"))

    assert outcome.status == STATUS_RECORDED
    assert outcome.record.category == "Organic"
    assert outcome.record.source == "manual"
    assert outcome.result is None
    assert classifier.calls == 0
    assert workflow.state is ScanState.IDLE


def test_manual_record_validates_category() -> None:
    store = _store()
    workflow = ScanWorkflow(_StubClassifier(), store)

    outcome = asyncio.run(workflow.record_manual("Glass"))

    assert outcome.status == STATUS_FAILED
    assert isinstance(outcome.error, InvalidCategory)
    assert store.list() == []


def test_manual_record_after_classified_scan(tmp_path) -> None:
    store = _store()
    workflow = ScanWorkflow(_StubClassifier("Paper"), store)
    asyncio.run(workflow.start(_image(tmp_path)))

    outcome = asyncio.run(workflow.record_manual("Plastic"))

    assert outcome.ok
    assert [r.category for r in store.list()] == ["Plastic", "Paper"]


def test_abandoned_scan_releases_the_workflow(tmp_path) -> None:
    store = _store()
    classifier = _GatedClassifier()
    workflow = ScanWorkflow(classifier, store)
    source = _image(tmp_path)

    async def scenario():
        first = asyncio.create_task(workflow.start(source))
        while workflow.state is not ScanState.ANALYZING:
            await asyncio.sleep(0.01)
        first.cancel()
        try:
            await first
        except asyncio.CancelledError:
            pass
        state_after_cancel = workflow.state
        classifier.gate.set()
        second = await workflow.start(source)
        return first.cancelled(), state_after_cancel, second

    try:
        cancelled, state_after_cancel, second = asyncio.run(scenario())
    finally:
        classifier.gate.set()

    assert cancelled
    assert state_after_cancel is ScanState.IDLE
    assert second.status == STATUS_RECORDED
    assert workflow.state is ScanState.CLASSIFIED
    assert [r.id for r in store.list()] == [second.record.id]


def test_unknown_result_source_fails_recording(tmp_path) -> None:
    store = _store()
    workflow = ScanWorkflow(_StubClassifier("Paper", source="cache"), store)

    outcome = asyncio.run(workflow.start(_image(tmp_path)))

    assert outcome.status == STATUS_FAILED
    assert isinstance(outcome.error, InvalidSource)
    assert outcome.step == "recording"
    assert store.list() == []
