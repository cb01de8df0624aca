"""
Tests for detector backends (simulated and YOLO with a stub model).
"""

import time

import numpy as np
import pytest

from livedetect.errors import DetectorFailureError, ModelLoadError
from livedetect.inference.detection import Detection
from livedetect.inference.detector import SIMULATED_LABELS, SimulatedDetector, YoloDetector


class StubBoxes(list):
    pass


class StubBox:
    def __init__(self, xyxy, cls, conf):
        self.xyxy = np.array([xyxy], dtype=np.float32)
        self.cls = np.array([cls], dtype=np.float32)
        self.conf = np.array([conf], dtype=np.float32)


class StubResult:
    names = {0: "person", 2: "car", 16: "dog"}

    def __init__(self, boxes):
        self.boxes = StubBoxes(boxes)


class StubModel:
    """Callable with the ultralytics predict signature."""

    def __init__(self, boxes=None, delay=0.0):
        self.boxes = boxes or []
        self.delay = delay
        self.inputs = []

    def __call__(self, source, conf=0.25, verbose=True):
        self.inputs.append(source)
        if self.delay:
            time.sleep(self.delay)
        return [StubResult(self.boxes)]


@pytest.fixture
def stub_model():
    return StubModel(
        boxes=[
            StubBox([10, 20, 60, 50], 2, 0.91),
            StubBox([100, 40, 140, 80], 16, 0.75),
        ]
    )


class TestSimulatedDetector:
    """Tests for SimulatedDetector."""

    @pytest.mark.asyncio
    async def test_detect_before_load(self, sample_frame):
        detector = SimulatedDetector(latency=0)
        with pytest.raises(DetectorFailureError):
            await detector.detect(sample_frame)

    @pytest.mark.asyncio
    async def test_detections_inside_frame(self, sample_frame):
        detector = SimulatedDetector(latency=0, seed=42)
        await detector.load()

        detections = []
        for _ in range(50):
            detections.extend(await detector.detect(sample_frame))

        assert detections
        for det in detections:
            assert isinstance(det, Detection)
            assert det.label in SIMULATED_LABELS
            assert 0.5 <= det.confidence <= 0.99
            assert 0 <= det.bbox.x and det.bbox.right <= 320
            assert 0 <= det.bbox.y and det.bbox.bottom <= 240

    @pytest.mark.asyncio
    async def test_status(self, sample_frame):
        detector = SimulatedDetector(latency=0)
        await detector.load()
        await detector.detect(sample_frame)
        status = detector.get_status()
        assert status["loaded"] is True
        assert status["passes"] == 1
        assert status["backend"] == "SimulatedDetector"


class TestYoloDetector:
    """Tests for YoloDetector with the model loader stubbed out."""

    @pytest.mark.asyncio
    async def test_parse_results(self, monkeypatch, stub_model, sample_frame):
        detector = YoloDetector(model_path="stub.pt", confidence_threshold=0.4)
        monkeypatch.setattr(detector, "_load_model", lambda: stub_model)
        await detector.load()

        detections = await detector.detect(sample_frame)

        assert [d.label for d in detections] == ["car", "dog"]
        assert detections[0].bbox.x == pytest.approx(10)
        assert detections[0].bbox.width == pytest.approx(50)
        assert detections[0].bbox.height == pytest.approx(30)
        assert detections[1].confidence == pytest.approx(0.75, abs=1e-6)
        detector.close()

    @pytest.mark.asyncio
    async def test_frame_passed_as_bgr(self, monkeypatch, stub_model):
        detector = YoloDetector()
        monkeypatch.setattr(detector, "_load_model", lambda: stub_model)
        await detector.load()

        frame = np.zeros((4, 4, 3), dtype=np.uint8)
        frame[..., 0] = 255  # red in RGB
        await detector.detect(frame)

        bgr = stub_model.inputs[0]
        assert bgr[0, 0].tolist() == [0, 0, 255]
        detector.close()

    @pytest.mark.asyncio
    async def test_detect_before_load(self, sample_frame):
        detector = YoloDetector()
        with pytest.raises(DetectorFailureError):
            await detector.detect(sample_frame)
        detector.close()

    @pytest.mark.asyncio
    async def test_load_failure(self, monkeypatch):
        detector = YoloDetector(model_path="missing.pt", load_attempts=1)

        def fail():
            raise FileNotFoundError("missing.pt")

        monkeypatch.setattr(detector, "_load_model", fail)
        with pytest.raises(ModelLoadError) as exc_info:
            await detector.load()
        assert "missing.pt" in exc_info.value.message
        assert not detector.is_loaded
        detector.close()

    @pytest.mark.asyncio
    async def test_load_non_retryable_error(self, monkeypatch):
        detector = YoloDetector(load_attempts=3)
        calls = []

        def fail():
            calls.append(1)
            raise ValueError("corrupt weights")

        monkeypatch.setattr(detector, "_load_model", fail)
        with pytest.raises(ModelLoadError):
            await detector.load()
        assert len(calls) == 1
        detector.close()

    @pytest.mark.asyncio
    async def test_inference_timeout(self, monkeypatch, sample_frame):
        detector = YoloDetector(inference_timeout=0.05)
        monkeypatch.setattr(detector, "_load_model", lambda: StubModel(delay=0.3))
        await detector.load()

        with pytest.raises(DetectorFailureError) as exc_info:
            await detector.detect(sample_frame)
        assert "timeout" in exc_info.value.message
        assert detector.get_status()["timeouts"] == 1
        detector.close()

    @pytest.mark.asyncio
    async def test_inference_error_wrapped(self, monkeypatch, sample_frame):
        detector = YoloDetector()

        def broken(source, conf=0.25, verbose=True):
            raise RuntimeError("CUDA error")

        monkeypatch.setattr(detector, "_load_model", lambda: broken)
        await detector.load()

        with pytest.raises(DetectorFailureError):
            await detector.detect(sample_frame)
        detector.close()
