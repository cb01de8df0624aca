"""
Snapshot Capture

Composes the current raw frame with a freshly computed detection overlay
and encodes it as PNG. The overlay always comes from a new detection pass
on the exported frame, never from an earlier loop result.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from livedetect.errors import CameraNotActiveError, DetectorFailureError
from livedetect.inference.detection import DEFAULT_ANIMAL_CLASSES, Detection, DisplayMode
from livedetect.inference.detector import Detector
from livedetect.inference.mode_filter import filter_detections

from .capture_session import CaptureSession, CaptureState
from .overlay import FrameSurface, OverlayRenderer, encode_image

logger = logging.getLogger(__name__)


@dataclass
class Snapshot:
    """An exported annotated frame."""

    filename: str
    data: bytes
    media_type: str = "image/png"
    captured_at: datetime = field(default_factory=datetime.now)
    detections: list[Detection] = field(default_factory=list)
    path: Path | None = None

    def to_dict(self) -> dict:
        """Metadata without the image bytes."""
        return {
            "filename": self.filename,
            "media_type": self.media_type,
            "size_bytes": len(self.data),
            "captured_at": self.captured_at.isoformat(),
            "detections": [d.to_dict() for d in self.detections],
            "path": str(self.path) if self.path else None,
        }


def snapshot_filename(prefix: str, timestamp: datetime, extension: str = "png") -> str:
    """Build '<prefix>-<timestamp>.<ext>' with a filesystem-safe timestamp."""
    return f"{prefix}-{timestamp.strftime('%Y-%m-%dT%H-%M-%S-%f')}.{extension}"


class SnapshotCapture:
    """At most one snapshot in flight; surface access shared with the loop."""

    def __init__(
        self,
        session: CaptureSession,
        detector: Detector,
        renderer: OverlayRenderer,
        surface: FrameSurface,
        surface_lock: asyncio.Lock,
        mode_provider: Callable[[], DisplayMode],
        animal_classes: Iterable[str] = DEFAULT_ANIMAL_CLASSES,
        prefix: str = "snapshot",
        output_dir: str | Path | None = None,
    ):
        self.session = session
        self.detector = detector
        self.renderer = renderer
        self.surface = surface
        self.surface_lock = surface_lock
        self.mode_provider = mode_provider
        self.animal_classes = frozenset(animal_classes)
        self.prefix = prefix
        self.output_dir = Path(output_dir) if output_dir else None

        self._in_flight = asyncio.Lock()
        self._snapshot_count = 0

    @property
    def busy(self) -> bool:
        return self._in_flight.locked()

    async def capture(self) -> Snapshot:
        """
        Capture an annotated snapshot.

        Returns:
            Snapshot with PNG bytes

        Raises:
            CameraNotActiveError: Capture is not ON (surface untouched)
            DetectorFailureError: The fresh detection pass failed
        """
        if self.session.state is not CaptureState.ON:
            raise CameraNotActiveError()

        async with self._in_flight:
            async with self.surface_lock:
                if self.session.state is not CaptureState.ON:
                    raise CameraNotActiveError()

                frame = await self.session.read_frame()
                if frame is None:
                    raise CameraNotActiveError("No frame available from the camera.")

                captured_at = datetime.now()
                try:
                    detections = await self.detector.detect(frame)
                except DetectorFailureError:
                    raise
                except Exception as e:
                    raise DetectorFailureError(f"Snapshot detection failed: {e}") from e

                # Surface is only touched once the overlay is known
                visible = filter_detections(detections, self.mode_provider(), self.animal_classes)
                self.renderer.draw(self.surface, frame, visible)
                image = self.surface.copy_image()

            loop = asyncio.get_running_loop()
            data = await loop.run_in_executor(None, encode_image, image, "PNG")

            snapshot = Snapshot(
                filename=snapshot_filename(self.prefix, captured_at),
                data=data,
                captured_at=captured_at,
                detections=visible,
            )
            if self.output_dir is not None:
                snapshot.path = await loop.run_in_executor(None, self._save, snapshot)

            self._snapshot_count += 1
            logger.info(
                f"Snapshot captured: {snapshot.filename} "
                f"({len(visible)} detections, {len(data) / 1024:.0f}KB)"
            )
            return snapshot

    def _save(self, snapshot: Snapshot) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        filepath = self.output_dir / snapshot.filename
        filepath.write_bytes(snapshot.data)
        logger.info(f"Snapshot saved: {filepath}")
        return filepath

    def get_status(self) -> dict:
        return {
            "busy": self.busy,
            "count": self._snapshot_count,
            "output_dir": str(self.output_dir) if self.output_dir else None,
        }
