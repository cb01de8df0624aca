"""
Media Devices - Camera Stream Acquisition

Thin model of a platform media API: request a video stream with a
facing-mode preference, inspect and apply track capabilities (torch),
read frames and stop tracks.

Backends:
- OpenCVMediaDevices: local webcams via cv2.VideoCapture, facing modes
  mapped to device indices
- SimulatedMediaDevices: synthetic frames for development and tests, with
  switches for permission, device and torch failures

Backends raise MediaError subclasses; CaptureSession translates them into
the user-facing CaptureError kinds.
"""

import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class MediaError(Exception):
    """Base class for errors raised by a media backend."""


class NotAllowedError(MediaError):
    """Access to the device was refused."""


class NotFoundError(MediaError):
    """No device matched the request."""


class OverconstrainedError(MediaError):
    """A device exists but cannot satisfy the requested constraints."""


class ConstraintError(MediaError):
    """A track rejected a constraint application."""


@dataclass(frozen=True)
class MediaConstraints:
    """Video stream request. facing_mode None means any camera."""

    facing_mode: str | None = None
    width: int | None = None
    height: int | None = None


class VideoTrack(ABC):
    """A live video track owned by a MediaStream."""

    kind = "video"

    def __init__(self, label: str):
        self.label = label
        self._ended = False

    @property
    def ready_state(self) -> str:
        return "ended" if self._ended else "live"

    @abstractmethod
    def read_frame(self) -> np.ndarray | None:
        """Read the current frame as an RGB array (blocking)."""

    @abstractmethod
    def get_capabilities(self) -> dict[str, Any] | None:
        """Capability set, or None if the platform reports none."""

    @abstractmethod
    def apply_constraints(self, constraints: dict[str, Any]) -> None:
        """Apply track constraints (blocking). Raises ConstraintError."""

    def stop(self) -> None:
        """Release the underlying device."""
        self._ended = True


class MediaStream:
    """A granted stream holding one or more tracks."""

    def __init__(self, tracks: list[VideoTrack], facing_mode: str | None = None):
        self._tracks = list(tracks)
        self.facing_mode = facing_mode

    def get_tracks(self) -> list[VideoTrack]:
        return list(self._tracks)

    def get_video_tracks(self) -> list[VideoTrack]:
        return [t for t in self._tracks if t.kind == "video"]


class MediaDevices(ABC):
    """Camera access entry point."""

    @abstractmethod
    def get_user_media(self, constraints: MediaConstraints) -> MediaStream:
        """
        Open a video stream (blocking; call from an executor).

        Raises:
            NotAllowedError: Permission refused
            NotFoundError: No camera at all
            OverconstrainedError: No camera matching the facing mode
        """


# ==================== OpenCV ====================


class OpenCVVideoTrack(VideoTrack):
    """Video track backed by cv2.VideoCapture."""

    def __init__(self, capture: "cv2.VideoCapture", device_index: int):
        super().__init__(label=f"cv2:{device_index}")
        self._capture = capture
        self._lock = threading.Lock()
        self.device_index = device_index

    def read_frame(self) -> np.ndarray | None:
        with self._lock:
            if self._ended:
                return None
            ok, frame = self._capture.read()
        if not ok or frame is None:
            return None
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def get_capabilities(self) -> dict[str, Any] | None:
        # OpenCV exposes no torch/fill-light control
        return None

    def apply_constraints(self, constraints: dict[str, Any]) -> None:
        raise ConstraintError(f"Constraints not supported by OpenCV track: {constraints}")

    def stop(self) -> None:
        with self._lock:
            if not self._ended:
                self._capture.release()
            super().stop()
        logger.debug(f"Track {self.label} stopped")


class OpenCVMediaDevices(MediaDevices):
    """Local webcams via OpenCV. Facing modes map to device indices."""

    def __init__(
        self,
        environment_device: int | None = 0,
        user_device: int | None = None,
        resolution: tuple[int, int] | None = None,
    ):
        self.facing_devices = {
            "environment": environment_device,
            "user": user_device,
        }
        self.resolution = resolution

    def _candidate_indices(self, facing_mode: str | None) -> list[int]:
        if facing_mode is not None:
            index = self.facing_devices.get(facing_mode)
            if index is None:
                raise OverconstrainedError(f"No camera configured for facing mode '{facing_mode}'")
            return [index]
        indices = [i for i in self.facing_devices.values() if i is not None]
        return list(dict.fromkeys(indices)) or [0]

    def get_user_media(self, constraints: MediaConstraints) -> MediaStream:
        indices = self._candidate_indices(constraints.facing_mode)

        for index in indices:
            device_path = f"/dev/video{index}"
            if os.path.exists(device_path) and not os.access(device_path, os.R_OK):
                raise NotAllowedError(f"No read permission for {device_path}")

            capture = cv2.VideoCapture(index)
            if not capture.isOpened():
                capture.release()
                logger.debug(f"Camera index {index} could not be opened")
                continue

            width = constraints.width or (self.resolution[0] if self.resolution else None)
            height = constraints.height or (self.resolution[1] if self.resolution else None)
            if width and height:
                capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
                capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

            logger.info(f"Opened camera index {index} (facing={constraints.facing_mode})")
            return MediaStream([OpenCVVideoTrack(capture, index)], constraints.facing_mode)

        if constraints.facing_mode is not None:
            raise OverconstrainedError(
                f"Camera for facing mode '{constraints.facing_mode}' could not be opened"
            )
        raise NotFoundError(f"No camera could be opened (tried {indices})")


# ==================== Simulation ====================


class SimulatedVideoTrack(VideoTrack):
    """Synthetic track producing a moving gradient."""

    def __init__(
        self,
        facing_mode: str | None,
        resolution: tuple[int, int],
        torch_supported: bool,
        capabilities_available: bool,
        fail_torch: bool,
    ):
        super().__init__(label=f"simulated:{facing_mode or 'any'}")
        self.resolution = resolution
        self.torch_supported = torch_supported
        self.capabilities_available = capabilities_available
        self.fail_torch = fail_torch
        self.torch = False
        self.constraint_log: list[dict[str, Any]] = []
        self._frame_count = 0

    def read_frame(self) -> np.ndarray | None:
        if self._ended:
            return None
        width, height = self.resolution
        self._frame_count += 1
        offset = (self._frame_count * 4) % 256
        row = (np.arange(width, dtype=np.uint16) + offset) % 256
        frame = np.empty((height, width, 3), dtype=np.uint8)
        frame[..., 0] = row.astype(np.uint8)
        frame[..., 1] = 96
        frame[..., 2] = 255 - row.astype(np.uint8)
        return frame

    def get_capabilities(self) -> dict[str, Any] | None:
        if not self.capabilities_available:
            return None
        caps: dict[str, Any] = {
            "width": {"max": self.resolution[0]},
            "height": {"max": self.resolution[1]},
        }
        if self.torch_supported:
            caps["torch"] = True
        return caps

    def apply_constraints(self, constraints: dict[str, Any]) -> None:
        self.constraint_log.append(dict(constraints))
        if "torch" in constraints:
            if not self.torch_supported or self.fail_torch:
                raise ConstraintError("torch constraint rejected")
            self.torch = bool(constraints["torch"])


class SimulatedMediaDevices(MediaDevices):
    """Synthetic camera for development without hardware."""

    def __init__(
        self,
        facing_modes: tuple[str, ...] = ("environment", "user"),
        resolution: tuple[int, int] = (640, 480),
        permission_granted: bool = True,
        torch_supported: bool = True,
        capabilities_available: bool = True,
        fail_torch: bool = False,
    ):
        self.facing_modes = facing_modes
        self.resolution = resolution
        self.permission_granted = permission_granted
        self.torch_supported = torch_supported
        self.capabilities_available = capabilities_available
        self.fail_torch = fail_torch
        self.requests: list[MediaConstraints] = []
        self.tracks: list[SimulatedVideoTrack] = []
        logger.info(f"[SIM] Media devices ready: facing={facing_modes}, resolution={resolution}")

    def get_user_media(self, constraints: MediaConstraints) -> MediaStream:
        self.requests.append(constraints)

        if not self.permission_granted:
            raise NotAllowedError("Permission denied")
        if not self.facing_modes:
            raise NotFoundError("Requested device not found")
        if constraints.facing_mode is not None and constraints.facing_mode not in self.facing_modes:
            raise OverconstrainedError(f"No camera with facing mode '{constraints.facing_mode}'")

        track = SimulatedVideoTrack(
            facing_mode=constraints.facing_mode or self.facing_modes[0],
            resolution=self.resolution,
            torch_supported=self.torch_supported,
            capabilities_available=self.capabilities_available,
            fail_torch=self.fail_torch,
        )
        self.tracks.append(track)
        logger.info(f"[SIM] Stream granted: {track.label}")
        return MediaStream([track], constraints.facing_mode)


def create_media_devices(camera_config=None) -> MediaDevices:
    """Create the media backend selected in configuration."""
    if camera_config is None:
        from livedetect.config import camera_config

    if camera_config.backend == "simulated":
        return SimulatedMediaDevices(resolution=camera_config.resolution)
    return OpenCVMediaDevices(
        environment_device=camera_config.environment_device,
        user_device=camera_config.user_device,
        resolution=camera_config.resolution,
    )
