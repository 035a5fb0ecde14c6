import random
import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

import requests

from smartbin.ai.mock import MockWasteClassifier
from smartbin.ai.remote import RemoteWasteClassifier
from smartbin.ai.service import ClassificationService
from smartbin.ai.types import WASTE_CATEGORIES, ClassificationResult, Classifier
from smartbin.device.capture import ImageHandle
from smartbin.errors import ClassificationUnavailable


class _StaticClassifier(Classifier):
    def __init__(self, result: ClassificationResult) -> None:
        self._result = result
        self.calls = 0

    def classify(self, image: ImageHandle) -> ClassificationResult:
        self.calls += 1
        return self._result


class _FailingClassifier(Classifier):
    def classify(self, image: ImageHandle) -> ClassificationResult:
        raise RuntimeError("boom")


class _HangingClassifier(Classifier):
    def __init__(self) -> None:
        self.release = threading.Event()

    def classify(self, image: ImageHandle) -> ClassificationResult:
        self.release.wait(5.0)
        return ClassificationResult(category="Paper", confidence=0.99, source="remote")


def _instant_mock(seed: int = 7) -> MockWasteClassifier:
    return MockWasteClassifier(rng=random.Random(seed), delay_seconds=0)


class ClassificationServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        path = Path(self.tmp.name) / "scan.jpg"
        path.write_bytes(b"image")
        self.image = ImageHandle.from_path(path)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def test_remote_result_is_returned(self) -> None:
        remote = _StaticClassifier(
            ClassificationResult(category="Organic", confidence=0.8, source="remote")
        )
        service = ClassificationService(remote=remote, fallback=_FailingClassifier())

        result = service.classify(self.image)

        self.assertEqual(result.category, "Organic")
        self.assertEqual(result.source, "remote")
        self.assertEqual(remote.calls, 1)

    def test_http_500_falls_back_to_mock(self) -> None:
        mock_response = Mock()
        mock_response.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
        fake_requests = Mock()
        fake_requests.post.return_value = mock_response

        service = ClassificationService(
            remote=RemoteWasteClassifier(base_url="https://api.example.com"),
            fallback=_instant_mock(),
            remote_timeout=2.0,
        )
        with patch("smartbin.ai.remote.requests", fake_requests):
            result = service.classify(self.image)

        expected = _instant_mock().classify(self.image)
        self.assertEqual(result, expected)
        self.assertEqual(result.source, "fallback")
        self.assertIn(result.category, WASTE_CATEGORIES)
        self.assertGreaterEqual(result.confidence, 0.70)
        self.assertLessEqual(result.confidence, 1.00)

    def test_remote_payload_without_confidence_uses_default(self) -> None:
        mock_response = Mock()
        mock_response.raise_for_status.return_value = None
        mock_response.json.return_value = {"type": "Paper"}
        fake_requests = Mock()
        fake_requests.post.return_value = mock_response

        service = ClassificationService(
            remote=RemoteWasteClassifier(base_url="https://api.example.com"),
            fallback=_FailingClassifier(),
        )
        with patch("smartbin.ai.remote.requests", fake_requests):
            result = service.classify(self.image)

        self.assertEqual(
            result,
            ClassificationResult(category="Paper", confidence=0.85, source="remote"),
        )

    def test_hanging_remote_settles_within_timeout(self) -> None:
        remote = _HangingClassifier()
        self.addCleanup(remote.release.set)
        service = ClassificationService(
            remote=remote, fallback=_instant_mock(), remote_timeout=0.1
        )

        started = time.monotonic()
        result = service.classify(self.image)

        self.assertLess(time.monotonic() - started, 2.0)
        self.assertEqual(result.source, "fallback")

    def test_without_remote_uses_fallback(self) -> None:
        service = ClassificationService(remote=None, fallback=_instant_mock(3))
        result = service.classify(self.image)
        self.assertEqual(result, _instant_mock(3).classify(self.image))

    def test_fallback_failure_is_classification_unavailable(self) -> None:
        service = ClassificationService(remote=_FailingClassifier(), fallback=_FailingClassifier())
        with self.assertRaises(ClassificationUnavailable):
            service.classify(self.image)


class MockWasteClassifierTests(unittest.TestCase):
    def test_same_seed_gives_same_result(self) -> None:
        image = ImageHandle(path=Path("unused.jpg"))
        first = [_instant_mock(11).classify(image) for _ in range(3)]
        second = [_instant_mock(11).classify(image) for _ in range(3)]
        self.assertEqual(first, second)

    def test_output_shape(self) -> None:
        image = ImageHandle(path=Path("unused.jpg"))
        classifier = _instant_mock(5)
        for _ in range(50):
            result = classifier.classify(image)
            self.assertIn(result.category, WASTE_CATEGORIES)
            self.assertTrue(0.70 <= result.confidence <= 1.00)
            self.assertEqual(result.confidence, round(result.confidence, 2))
            self.assertEqual(result.source, "fallback")
            self.assertEqual(result.details, "Mock classification result")

    def test_waits_before_answering(self) -> None:
        sleeps: list[float] = []
        classifier = MockWasteClassifier(rng=random.Random(1), sleep=sleeps.append)
        classifier.classify(ImageHandle(path=Path("unused.jpg")))
        self.assertEqual(sleeps, [1.5])


if __name__ == "__main__":
    unittest.main()
