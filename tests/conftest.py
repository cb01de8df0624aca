"""
Pytest configuration and shared fixtures for LiveDetect tests.
"""

import asyncio
import sys
from pathlib import Path

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from livedetect.camera.capture_session import CaptureSession
from livedetect.camera.media import SimulatedMediaDevices
from livedetect.errors import DetectorFailureError, ModelLoadError
from livedetect.inference.detection import BoundingBox, Detection
from livedetect.inference.detector import Detector
from livedetect.main import LifecycleController


class ScriptedDetector(Detector):
    """Detector returning fixed results, with optional latency and failures."""

    def __init__(self, results=None, delay=0.0, fail_times=0, fail_load=False):
        super().__init__()
        self.results = list(results or [])
        self.delay = delay
        self.fail_times = fail_times
        self.fail_load = fail_load
        self.calls = 0
        self.completed = 0
        self.closed = False

    async def load(self):
        if self.fail_load:
            raise ModelLoadError("scripted load failure")
        self._loaded = True

    async def detect(self, frame):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise DetectorFailureError("scripted detection failure")
        self.completed += 1
        return list(self.results)

    def close(self):
        self.closed = True


@pytest.fixture
def car_detection():
    """A car detection (not an animal)."""
    return Detection(
        label="car",
        confidence=0.91,
        bbox=BoundingBox(x=10, y=10, width=50, height=30),
    )


@pytest.fixture
def dog_detection():
    """A dog detection (animal)."""
    return Detection(
        label="dog",
        confidence=0.80,
        bbox=BoundingBox(x=60, y=5, width=40, height=20),
    )


@pytest.fixture
def person_detection():
    """A person detection."""
    return Detection(
        label="person",
        confidence=0.66,
        bbox=BoundingBox(x=100, y=80, width=60, height=120),
    )


@pytest.fixture
def mixed_detections(car_detection, dog_detection):
    """Car then dog, in detector output order."""
    return [car_detection, dog_detection]


@pytest.fixture
def small_animal_classes():
    """Reduced animal class set."""
    return frozenset({"dog", "cat", "bird"})


@pytest.fixture
def sample_frame():
    """A 320x240 RGB frame filled with mid grey."""
    return np.full((240, 320, 3), 128, dtype=np.uint8)


@pytest.fixture
def media():
    """Simulated camera with both facing modes and torch support."""
    return SimulatedMediaDevices(resolution=(320, 240))


@pytest.fixture
def session(media):
    """Capture session on the simulated camera from a loopback origin."""
    return CaptureSession(media, origin="http://localhost", ready_timeout=1.0)


@pytest.fixture
def detector(mixed_detections):
    """Scripted detector returning car + dog."""
    return ScriptedDetector(results=mixed_detections)


@pytest.fixture
def controller(session, detector, small_animal_classes):
    """Lifecycle controller with a fast loop."""
    return LifecycleController(
        session=session,
        detector=detector,
        animal_classes=small_animal_classes,
        loop_interval=0.01,
        loop_stop_timeout=1.0,
    )
