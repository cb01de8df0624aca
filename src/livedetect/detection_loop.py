"""
Detection Loop

Repeating detect -> filter -> render cycle bound to an active capture
session. One cycle at a time: the next detection is never dispatched
before the previous render finished.

A result that resolves after stop() (or after capture left ON) is
discarded, never rendered. The overlay always shows the frame the
detection was dispatched on.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from datetime import datetime

from livedetect.camera.capture_session import CaptureSession, CaptureState
from livedetect.camera.overlay import FrameSurface, OverlayRenderer
from livedetect.inference.detection import (
    DEFAULT_ANIMAL_CLASSES,
    DetectionPass,
    DisplayMode,
)
from livedetect.inference.detector import Detector
from livedetect.inference.mode_filter import filter_detections

logger = logging.getLogger(__name__)


class DetectionLoop:
    """Cancellable detection task for one capture session."""

    def __init__(
        self,
        session: CaptureSession,
        detector: Detector,
        renderer: OverlayRenderer,
        surface: FrameSurface,
        surface_lock: asyncio.Lock,
        mode_provider: Callable[[], DisplayMode],
        animal_classes: Iterable[str] = DEFAULT_ANIMAL_CLASSES,
        interval: float = 0.1,
        stop_timeout: float = 5.0,
    ):
        """
        Args:
            session: Capture session frames are borrowed from
            detector: Detection backend
            renderer: Overlay renderer
            surface: Shared raster surface
            surface_lock: Guards surface against concurrent snapshots
            mode_provider: Returns the current display mode
            animal_classes: Labels visible in ANIMALS_ONLY mode
            interval: Minimum cycle period in seconds
            stop_timeout: Wait for an in-flight cycle before cancelling
        """
        self.session = session
        self.detector = detector
        self.renderer = renderer
        self.surface = surface
        self.surface_lock = surface_lock
        self.mode_provider = mode_provider
        self.animal_classes = frozenset(animal_classes)
        self.interval = interval
        self.stop_timeout = stop_timeout

        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

        # Statistics
        self._cycle_count = 0
        self._render_count = 0
        self._discarded_count = 0
        self._failure_count = 0
        self._render_failure_count = 0
        self._last_pass: DetectionPass | None = None

        self._on_render_callbacks: list[Callable[[DetectionPass], None]] = []

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def last_pass(self) -> DetectionPass | None:
        return self._last_pass

    def start(self) -> None:
        """Begin scheduling cycles. No-op if already running."""
        if self.is_running:
            logger.debug("Detection loop already running")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="detection_loop")
        logger.info(f"Detection loop started (interval={self.interval * 1000:.0f}ms)")

    async def stop(self) -> None:
        """Cancel further cycles; an in-flight result is discarded."""
        task = self._task
        if task is None:
            return

        self._stop_event.set()
        if not task.done():
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=self.stop_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Detection cycle still in flight after {self.stop_timeout}s, cancelling"
                )
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            except Exception as e:
                logger.error(f"Detection loop ended with error: {e}")
        self._task = None
        logger.info("Detection loop stopped")

    def _should_run(self) -> bool:
        return not self._stop_event.is_set() and self.session.state is CaptureState.ON

    async def _run(self) -> None:
        try:
            while self._should_run():
                started = time.perf_counter()
                await self._cycle()

                delay = max(0.0, self.interval - (time.perf_counter() - started))
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.debug("Detection loop cancelled")
            raise
        except Exception as e:
            logger.error(f"Detection loop error: {e}", exc_info=True)
        finally:
            logger.debug(
                f"Detection loop exited after {self._cycle_count} cycles "
                f"({self._render_count} rendered, {self._discarded_count} discarded)"
            )

    async def _cycle(self) -> None:
        """One detect -> filter -> render pass."""
        frame = await self.session.read_frame()
        if frame is None or not self._should_run():
            return

        self._cycle_count += 1
        dispatched_at = datetime.now()
        started = time.perf_counter()
        try:
            detections = await self.detector.detect(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._failure_count += 1
            logger.warning(f"Detection failed (will retry next tick): {e}")
            logger.debug("Detector failure details", exc_info=True)
            return

        detection_pass = DetectionPass(
            dispatched_at=dispatched_at,
            detections=detections,
            pass_number=self._cycle_count,
            inference_time_ms=(time.perf_counter() - started) * 1000,
        )

        async with self.surface_lock:
            # Capture may have stopped while the detector was busy
            if not self._should_run():
                self._discarded_count += 1
                logger.debug(f"Discarding pass #{detection_pass.pass_number} after stop")
                return

            try:
                visible = filter_detections(
                    detections, self.mode_provider(), self.animal_classes
                )
                self.renderer.draw(self.surface, frame, visible)
            except Exception as e:
                self._render_failure_count += 1
                logger.warning(f"Render of pass #{detection_pass.pass_number} failed: {e}")
                logger.debug("Render failure details", exc_info=True)
                return
            self._render_count += 1
            self._last_pass = detection_pass

        for callback in self._on_render_callbacks:
            try:
                callback(detection_pass)
            except Exception as e:
                logger.error(f"Render callback error: {e}")

        if self._cycle_count % 100 == 0:
            logger.debug(
                f"Detection loop: {self._cycle_count} cycles, "
                f"avg_inference={self.detector.average_inference_time:.1f}ms"
            )

    def on_render(self, callback: Callable[[DetectionPass], None]) -> None:
        """Register callback invoked after each rendered pass."""
        self._on_render_callbacks.append(callback)

    def get_status(self) -> dict:
        return {
            "running": self.is_running,
            "interval_ms": round(self.interval * 1000),
            "cycles": self._cycle_count,
            "rendered": self._render_count,
            "discarded": self._discarded_count,
            "detector_failures": self._failure_count,
            "render_failures": self._render_failure_count,
            "last_pass": self._last_pass.to_dict() if self._last_pass else None,
        }
