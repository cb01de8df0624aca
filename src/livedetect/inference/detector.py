"""
Object Detector Backends

The core treats the detector as an opaque collaborator:
given an RGB frame, asynchronously return a list of Detections in
frame pixel coordinates.

Backends:
- YoloDetector: ultralytics YOLO weights, inference in a single-worker
  thread pool with timeout protection
- SimulatedDetector: random COCO detections for development without a model
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor

import numpy as np
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from livedetect.errors import DetectorFailureError, ModelLoadError

from .detection import BoundingBox, Detection

logger = logging.getLogger(__name__)

# Labels the simulated detector draws from (subset of COCO)
SIMULATED_LABELS = (
    "person",
    "car",
    "bicycle",
    "dog",
    "cat",
    "bird",
    "horse",
    "cow",
    "bottle",
    "chair",
)


class Detector(ABC):
    """Asynchronous object detector."""

    def __init__(self):
        self._loaded = False
        self._pass_count = 0
        self._total_inference_time = 0.0

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def average_inference_time(self) -> float:
        """Average inference time in ms."""
        if self._pass_count == 0:
            return 0.0
        return self._total_inference_time / self._pass_count

    @abstractmethod
    async def load(self) -> None:
        """Load the model. Raises ModelLoadError."""

    @abstractmethod
    async def detect(self, frame: np.ndarray) -> list[Detection]:
        """Run one detection pass. Raises DetectorFailureError."""

    def _record_pass(self, started: float) -> None:
        self._pass_count += 1
        self._total_inference_time += (time.perf_counter() - started) * 1000

    def close(self) -> None:
        """Release model resources."""

    def get_status(self) -> dict:
        return {
            "backend": type(self).__name__,
            "loaded": self._loaded,
            "passes": self._pass_count,
            "avg_inference_ms": round(self.average_inference_time, 1),
        }


class YoloDetector(Detector):
    """
    Ultralytics YOLO detector.

    The model is not thread-safe, so a single worker thread serializes all
    calls; the event loop only awaits the future.
    """

    def __init__(
        self,
        model_path: str = "yolov8n.pt",
        confidence_threshold: float = 0.5,
        load_attempts: int = 3,
        inference_timeout: float = 5.0,
    ):
        super().__init__()
        self.model_path = model_path
        self.confidence_threshold = confidence_threshold
        self.load_attempts = load_attempts
        self.inference_timeout = inference_timeout
        self._model = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="yolo")
        self._timeout_count = 0

        logger.info(
            f"YoloDetector initialized: model={model_path}, threshold={confidence_threshold}"
        )

    def _load_model(self):
        from ultralytics import YOLO

        return YOLO(self.model_path)

    async def load(self) -> None:
        if self._loaded:
            return

        loop = asyncio.get_running_loop()
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.load_attempts),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                retry=retry_if_exception_type((OSError, RuntimeError)),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=False,
            ):
                with attempt:
                    self._model = await loop.run_in_executor(self._executor, self._load_model)
        except RetryError as e:
            cause = e.last_attempt.exception()
            raise ModelLoadError(f"Failed to load {self.model_path}: {cause}") from cause
        except Exception as e:
            raise ModelLoadError(f"Failed to load {self.model_path}: {e}") from e

        self._loaded = True
        logger.info(f"Model loaded successfully: {self.model_path}")

    def _infer(self, frame: np.ndarray) -> list[Detection]:
        # ultralytics treats numpy input as BGR
        bgr = np.ascontiguousarray(frame[..., ::-1])
        results = self._model(bgr, conf=self.confidence_threshold, verbose=False)

        detections = []
        for result in results:
            names = result.names
            for box in result.boxes:
                x1, y1, x2, y2 = (float(v) for v in box.xyxy[0].tolist())
                detections.append(
                    Detection(
                        label=names[int(box.cls[0])],
                        confidence=min(1.0, max(0.0, float(box.conf[0]))),
                        bbox=BoundingBox.from_corners(x1, y1, x2, y2),
                    )
                )
        return detections

    async def detect(self, frame: np.ndarray) -> list[Detection]:
        if not self._loaded:
            raise DetectorFailureError("Model not loaded")

        started = time.perf_counter()
        loop = asyncio.get_running_loop()
        try:
            detections = await asyncio.wait_for(
                loop.run_in_executor(self._executor, self._infer, frame),
                timeout=self.inference_timeout,
            )
        except asyncio.TimeoutError as e:
            self._timeout_count += 1
            raise DetectorFailureError(
                f"Inference timeout after {self.inference_timeout}s "
                f"(total timeouts: {self._timeout_count})"
            ) from e
        except Exception as e:
            raise DetectorFailureError(f"Inference error: {e}") from e

        self._record_pass(started)
        return detections

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._model = None
        self._loaded = False
        logger.info("YOLO resources released")

    def get_status(self) -> dict:
        status = super().get_status()
        status.update(
            {
                "model_path": self.model_path,
                "confidence_threshold": self.confidence_threshold,
                "timeouts": self._timeout_count,
            }
        )
        return status


class SimulatedDetector(Detector):
    """Random detections for development without a model."""

    def __init__(
        self,
        latency: float = 0.02,
        max_detections: int = 3,
        seed: int | None = None,
    ):
        super().__init__()
        self.latency = latency
        self.max_detections = max_detections
        self._rng = np.random.default_rng(seed)
        logger.info(f"[SIM] Detector initialized: latency={latency}s")

    async def load(self) -> None:
        self._loaded = True
        logger.info("[SIM] Model loaded")

    async def detect(self, frame: np.ndarray) -> list[Detection]:
        if not self._loaded:
            raise DetectorFailureError("Model not loaded")

        started = time.perf_counter()
        await asyncio.sleep(self.latency)

        height, width = frame.shape[:2]
        detections = []
        for _ in range(int(self._rng.integers(0, self.max_detections + 1))):
            w = float(self._rng.uniform(0.1, 0.4)) * width
            h = float(self._rng.uniform(0.1, 0.4)) * height
            detections.append(
                Detection(
                    label=str(self._rng.choice(SIMULATED_LABELS)),
                    confidence=float(self._rng.uniform(0.5, 0.99)),
                    bbox=BoundingBox(
                        x=float(self._rng.uniform(0, width - w)),
                        y=float(self._rng.uniform(0, height - h)),
                        width=w,
                        height=h,
                    ),
                )
            )

        self._record_pass(started)
        return detections


def create_detector(inference_config=None) -> Detector:
    """Create the detector backend selected in configuration."""
    if inference_config is None:
        from livedetect.config import inference_config

    if inference_config.backend == "simulated":
        return SimulatedDetector()
    return YoloDetector(
        model_path=inference_config.model_path,
        confidence_threshold=inference_config.confidence_threshold,
        load_attempts=inference_config.load_attempts,
        inference_timeout=inference_config.inference_timeout_seconds,
    )
