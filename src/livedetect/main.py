"""
LiveDetect Main Controller

The central orchestrator combining:
- Capture state (OFF -> STARTING -> ON -> STOPPING -> OFF)
- Flash state (UNSUPPORTED / OFF / ON), probed per capture session
- Display mode (all objects / animals only)

Coordinates:
- Camera capture session
- Object detector (loaded once at startup)
- Detection loop and overlay rendering
- Snapshot capture
- REST API server
"""

import asyncio
import logging
import signal
import sys
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from livedetect.camera.capture_session import CaptureSession, CaptureState, FlashState
from livedetect.camera.overlay import FrameSurface, OverlayRenderer, encode_image
from livedetect.camera.snapshot import SnapshotCapture
from livedetect.detection_loop import DetectionLoop
from livedetect.errors import (
    CameraNotActiveError,
    ErrorKind,
    LiveDetectError,
    ModelLoadError,
    TorchUnsupportedError,
)
from livedetect.inference.detection import DEFAULT_ANIMAL_CLASSES, DisplayMode
from livedetect.inference.detector import Detector

logger = logging.getLogger(__name__)


class ModelState(Enum):
    """Detector model load state."""

    NOT_LOADED = "not_loaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass
class CommandResult:
    """Outcome of a controller command, for the UI to present."""

    success: bool
    message: str
    error: ErrorKind | None = None
    data: Any = None

    @classmethod
    def failed(cls, error: LiveDetectError) -> "CommandResult":
        return cls(success=False, message=error.message, error=error.kind)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "error": self.error.value if self.error else None,
        }


class LifecycleController:
    """
    Camera/detection/render lifecycle state machine.

    Single owner of display mode, flash state and the sequencing of capture
    transitions. Every command returns a CommandResult rather than raising
    for reachable states.
    """

    def __init__(
        self,
        session: CaptureSession,
        detector: Detector,
        animal_classes: Iterable[str] = DEFAULT_ANIMAL_CLASSES,
        preferred_facing: str | None = "environment",
        loop_interval: float = 0.1,
        loop_stop_timeout: float = 5.0,
        snapshot_prefix: str = "snapshot",
        snapshot_dir: str | None = None,
    ):
        self.session = session
        self.detector = detector
        self.animal_classes = frozenset(c.lower() for c in animal_classes)
        self.preferred_facing = preferred_facing

        self._display_mode = DisplayMode.ALL
        self._flash_state = FlashState.UNSUPPORTED
        self._flash_enabled = False
        self._model_state = ModelState.NOT_LOADED
        self._status_message = "Loading model..."
        self._last_error: ErrorKind | None = None
        self._last_state_change = datetime.now()

        # Serializes camera/flash commands in issue order
        self._command_lock = asyncio.Lock()

        # Shared raster and its guard
        self.surface = FrameSurface()
        self.surface_lock = asyncio.Lock()
        self.renderer = OverlayRenderer(animal_classes=self.animal_classes)

        self.loop = DetectionLoop(
            session=session,
            detector=detector,
            renderer=self.renderer,
            surface=self.surface,
            surface_lock=self.surface_lock,
            mode_provider=lambda: self._display_mode,
            animal_classes=self.animal_classes,
            interval=loop_interval,
            stop_timeout=loop_stop_timeout,
        )
        self.snapshots = SnapshotCapture(
            session=session,
            detector=detector,
            renderer=self.renderer,
            surface=self.surface,
            surface_lock=self.surface_lock,
            mode_provider=lambda: self._display_mode,
            animal_classes=self.animal_classes,
            prefix=snapshot_prefix,
            output_dir=snapshot_dir,
        )

        self._on_state_change_callbacks: list[Callable[[dict], None]] = []

        logger.info("LifecycleController initialized")

    # ==================== Projections ====================

    @property
    def capture_state(self) -> CaptureState:
        return self.session.state

    @property
    def flash_state(self) -> FlashState:
        return self._flash_state

    @property
    def flash_enabled(self) -> bool:
        return self._flash_enabled

    @property
    def display_mode(self) -> DisplayMode:
        return self._display_mode

    @property
    def model_state(self) -> ModelState:
        return self._model_state

    @property
    def status_message(self) -> str:
        return self._status_message

    @property
    def camera_toggle_enabled(self) -> bool:
        return self._model_state is ModelState.READY

    def _set_status(self, message: str, error: ErrorKind | None = None) -> None:
        self._status_message = message
        self._last_error = error
        self._last_state_change = datetime.now()
        if error:
            logger.warning(f"Status: {message} ({error.value})")
        else:
            logger.info(f"Status: {message}")

        snapshot = self.get_status()
        for callback in self._on_state_change_callbacks:
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"State change callback error: {e}")

    # ==================== Model ====================

    async def load_model(self) -> CommandResult:
        """Load the detector. Camera activation stays disabled until this succeeds."""
        if self._model_state is ModelState.READY:
            return CommandResult(True, "Model already loaded")

        self._model_state = ModelState.LOADING
        self._set_status("Loading model...")
        try:
            await self.detector.load()
        except ModelLoadError as e:
            self._model_state = ModelState.FAILED
            logger.error(f"Failed to load model: {e}")
            self._set_status("Failed to load model. Please restart.", e.kind)
            return CommandResult.failed(e)

        self._model_state = ModelState.READY
        self._set_status("Model loaded. Camera is off.")
        return CommandResult(True, "Model loaded successfully")

    # ==================== Camera ====================

    async def toggle_camera(self) -> CommandResult:
        """Turn the camera on when OFF, off when ON."""
        async with self._command_lock:
            if self.session.state is CaptureState.ON:
                return await self._stop_camera()
            if self.session.state is CaptureState.OFF:
                return await self._start_camera()
            return CommandResult(False, f"Camera is {self.session.state.value}")

    async def _start_camera(self) -> CommandResult:
        if self._model_state is not ModelState.READY:
            self._set_status("Model is not loaded yet.", ErrorKind.MODEL_NOT_LOADED)
            return CommandResult(
                False, "Model is not loaded yet.", error=ErrorKind.MODEL_NOT_LOADED
            )

        self._set_status("Starting camera...")
        try:
            await self.session.start(self.preferred_facing)
        except LiveDetectError as e:
            self._reset_flash()
            self._set_status(e.message, e.kind)
            return CommandResult.failed(e)

        width, height = self.session.frame_size
        async with self.surface_lock:
            self.surface.resize(width, height)
        self.loop.start()

        if self.session.probe_torch_capability():
            self._flash_state = FlashState.OFF
            self._flash_enabled = True
        else:
            self._reset_flash()

        self._set_status("Camera on. Detecting objects...")
        return CommandResult(True, "Camera started")

    async def _stop_camera(self) -> CommandResult:
        self._set_status("Stopping camera...")
        await self.loop.stop()
        await self.session.stop()
        self._reset_flash()

        async with self.surface_lock:
            self.surface.clear()

        self._set_status("Camera off.")
        return CommandResult(True, "Camera stopped")

    def _reset_flash(self) -> None:
        self._flash_state = FlashState.UNSUPPORTED
        self._flash_enabled = False

    # ==================== Flash ====================

    async def toggle_flash(self) -> CommandResult:
        """Toggle the torch. Unsupported devices report TORCH_UNSUPPORTED."""
        async with self._command_lock:
            if self.session.state is not CaptureState.ON or not self._flash_enabled:
                return CommandResult.failed(TorchUnsupportedError())

            target = self._flash_state is not FlashState.ON
            try:
                await self.session.set_torch(target)
            except LiveDetectError as e:
                # Leave flash off and disable the control
                self._flash_state = FlashState.OFF
                self._flash_enabled = False
                self._set_status(e.message, e.kind)
                return CommandResult.failed(e)

            self._flash_state = FlashState.ON if target else FlashState.OFF
            self._set_status(f"Flash {self._flash_state.value}.")
            return CommandResult(True, f"Flash {self._flash_state.value}")

    # ==================== Mode ====================

    def set_mode(self, mode: DisplayMode) -> CommandResult:
        """Change which detections are drawn."""
        if mode is self._display_mode:
            return CommandResult(True, f"Mode already {mode.label}")

        old_mode = self._display_mode
        self._display_mode = mode
        logger.info(f"Display mode: {old_mode.value} -> {mode.value}")
        self._set_status(f"Showing {mode.label.lower()}.")
        return CommandResult(True, f"Mode set to {mode.label}")

    def toggle_mode(self) -> CommandResult:
        return self.set_mode(self._display_mode.toggled())

    # ==================== Snapshot ====================

    async def snapshot(self) -> CommandResult:
        """Capture an annotated PNG; result.data holds the Snapshot."""
        try:
            snap = await self.snapshots.capture()
        except CameraNotActiveError as e:
            return CommandResult.failed(e)
        except LiveDetectError as e:
            logger.error(f"Snapshot failed: {e}")
            return CommandResult.failed(e)

        return CommandResult(True, f"Snapshot saved as {snap.filename}", data=snap)

    async def render_frame_jpeg(self, quality: int = 80) -> bytes | None:
        """JPEG of the live overlay surface, or None when the camera is off."""
        if self.session.state is not CaptureState.ON:
            return None
        async with self.surface_lock:
            image = self.surface.copy_image()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, encode_image, image, "JPEG", quality)

    # ==================== Lifecycle ====================

    async def shutdown(self) -> None:
        """Stop capture and release the detector."""
        logger.info("Initiating shutdown...")
        async with self._command_lock:
            if self.session.state is CaptureState.ON:
                await self._stop_camera()
            else:
                await self.loop.stop()
        self.detector.close()
        logger.info("Shutdown complete")

    def on_state_change(self, callback: Callable[[dict], None]) -> None:
        """Register callback receiving the status projection after each change."""
        self._on_state_change_callbacks.append(callback)

    def get_status(self) -> dict:
        """UI projection of the controller state."""
        return {
            "capture_state": self.session.state.value,
            "camera_toggle_enabled": self.camera_toggle_enabled,
            "flash": {
                "state": self._flash_state.value,
                "enabled": self._flash_enabled,
                "on": self._flash_state is FlashState.ON,
            },
            "mode": {
                "value": self._display_mode.value,
                "label": self._display_mode.label,
                "next_label": self._display_mode.toggled().label,
            },
            "model_state": self._model_state.value,
            "status_message": self._status_message,
            "last_error": self._last_error.value if self._last_error else None,
            "last_state_change": self._last_state_change.isoformat(),
            "camera": self.session.get_status(),
            "loop": self.loop.get_status(),
            "snapshot": self.snapshots.get_status(),
            "detector": self.detector.get_status(),
        }


# ==================== Entry Point ====================


def create_controller() -> LifecycleController:
    """Build a controller from configuration."""
    from livedetect.camera.media import create_media_devices
    from livedetect.config import (
        camera_config,
        inference_config,
        loop_config,
        snapshot_config,
    )
    from livedetect.inference.detector import create_detector

    session = CaptureSession(
        media_devices=create_media_devices(camera_config),
        origin=camera_config.origin,
        ready_timeout=camera_config.ready_timeout_seconds,
    )
    return LifecycleController(
        session=session,
        detector=create_detector(inference_config),
        animal_classes=inference_config.animal_classes,
        preferred_facing=camera_config.facing_mode,
        loop_interval=loop_config.interval_seconds,
        loop_stop_timeout=loop_config.stop_timeout_seconds,
        snapshot_prefix=snapshot_config.prefix,
        snapshot_dir=snapshot_config.output_dir,
    )


async def run_headless(controller: LifecycleController) -> None:
    """Run the camera without the API until SIGINT/SIGTERM."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler(signum, frame):
        logger.info(f"Signal {signum} received, initiating shutdown...")
        loop.call_soon_threadsafe(stop_event.set)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    def log_pass(detection_pass) -> None:
        if detection_pass.detections:
            logger.info(
                f"Pass #{detection_pass.pass_number}: "
                + ", ".join(d.display_text for d in detection_pass.detections)
            )

    controller.loop.on_render(log_pass)

    result = await controller.toggle_camera()
    if not result.success:
        logger.error(f"Camera failed to start: {result.message}")
        return

    await stop_event.wait()


async def app() -> None:
    """Main application entry point."""
    from livedetect.config import api_config, ensure_runtime_dirs, setup_logging

    setup_logging()
    ensure_runtime_dirs()

    controller = create_controller()
    logger.info("=== Starting LiveDetect ===")

    try:
        result = await controller.load_model()
        if not result.success:
            logger.error(f"Model load failed: {result.message}")

        if api_config.enabled:
            from livedetect.api.server import start_server

            await start_server(host=api_config.host, port=api_config.port, controller=controller)
        elif result.success:
            await run_headless(controller)
    finally:
        await controller.shutdown()


def main() -> None:
    """CLI entry point."""
    print("=== LiveDetect ===")
    print("Live object detection overlay")
    print()

    try:
        asyncio.run(app())
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
