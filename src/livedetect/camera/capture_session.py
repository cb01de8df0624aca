"""
Capture Session - Camera Stream Lifecycle

Owns the camera stream for one capture session:
OFF -> STARTING -> ON -> STOPPING -> OFF

- Secure-origin precondition checked before any device request
- Outward-facing camera preferred, one relaxed retry with any camera
- First frame awaited before reporting ON (native resolution known)
- Torch capability probed per session; torch switched off before release
"""

import asyncio
import ipaddress
import logging
from enum import Enum
from urllib.parse import urlsplit

import numpy as np

from livedetect.errors import (
    CaptureError,
    DeviceUnavailableError,
    NotSecureContextError,
    PermissionDeniedError,
    TorchControlFailedError,
    TorchUnsupportedError,
)

from .media import (
    ConstraintError,
    MediaConstraints,
    MediaDevices,
    MediaError,
    MediaStream,
    NotAllowedError,
    NotFoundError,
    OverconstrainedError,
    VideoTrack,
)

logger = logging.getLogger(__name__)

SECURE_SCHEMES = ("https", "wss")

# Poll interval while waiting for the first frame
READY_POLL_SECONDS = 0.05


class CaptureState(Enum):
    """Camera lifecycle states."""

    OFF = "off"
    STARTING = "starting"
    ON = "on"
    STOPPING = "stopping"


class FlashState(Enum):
    """Torch state as reflected to the UI."""

    UNSUPPORTED = "unsupported"
    OFF = "off"
    ON = "on"


def is_secure_origin(origin: str) -> bool:
    """
    Check whether camera capture is allowed from an origin.

    Secure transports (https, wss) are always allowed; plain http only for
    loopback hosts (localhost, *.localhost, 127.0.0.0/8, ::1).
    """
    parts = urlsplit(origin)
    if parts.scheme.lower() in SECURE_SCHEMES:
        return True

    host = (parts.hostname or "").lower()
    if not host:
        return False
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


class CaptureSession:
    """
    Camera capture session.

    All device calls run in the default executor so the event loop never
    blocks on camera I/O.
    """

    def __init__(
        self,
        media_devices: MediaDevices,
        origin: str = "http://localhost",
        ready_timeout: float = 5.0,
    ):
        self.media_devices = media_devices
        self.origin = origin
        self.ready_timeout = ready_timeout

        self._state = CaptureState.OFF
        self._stream: MediaStream | None = None
        self._frame_size: tuple[int, int] | None = None
        self._torch_supported: bool | None = None
        self._torch_on = False
        self._frames_read = 0

        logger.info(f"CaptureSession initialized: origin={origin}")

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is CaptureState.ON

    @property
    def stream(self) -> MediaStream | None:
        return self._stream

    @property
    def frame_size(self) -> tuple[int, int] | None:
        """(width, height) of the most recent frame."""
        return self._frame_size

    @property
    def facing_mode(self) -> str | None:
        return self._stream.facing_mode if self._stream else None

    @property
    def torch_on(self) -> bool:
        return self._torch_on

    def _set_state(self, new_state: CaptureState) -> None:
        old_state = self._state
        self._state = new_state
        logger.info(f"Capture: {old_state.name} -> {new_state.name}")

    def _video_track(self) -> VideoTrack | None:
        if self._stream is None:
            return None
        tracks = self._stream.get_video_tracks()
        return tracks[0] if tracks else None

    # ==================== Start ====================

    async def start(self, preferred_facing: str | None = "environment") -> CaptureState:
        """
        Acquire a video stream.

        Args:
            preferred_facing: Facing mode to try first (None for any camera)

        Returns:
            Resulting capture state (unchanged if not OFF on entry)

        Raises:
            NotSecureContextError: Origin is neither secure nor loopback
            PermissionDeniedError: Camera access refused
            DeviceUnavailableError: No usable camera
        """
        if self._state is not CaptureState.OFF:
            logger.warning(f"Start ignored, capture is {self._state.name}")
            return self._state

        if not is_secure_origin(self.origin):
            raise NotSecureContextError(
                f"Camera access requires HTTPS or localhost (origin: {self.origin})"
            )

        self._set_state(CaptureState.STARTING)
        try:
            stream = await self._request_stream(preferred_facing)
            try:
                first_frame = await self._wait_ready(stream)
            except CaptureError:
                await self._release(stream)
                raise
        except CaptureError as e:
            logger.error(f"Camera start failed: {e}")
            self._set_state(CaptureState.OFF)
            raise
        except Exception as e:
            logger.error(f"Unexpected camera start error: {e}", exc_info=True)
            self._set_state(CaptureState.OFF)
            raise DeviceUnavailableError(f"Camera error: {e}") from e

        self._stream = stream
        self._frame_size = (first_frame.shape[1], first_frame.shape[0])
        self._torch_supported = None
        self._torch_on = False
        self._set_state(CaptureState.ON)
        logger.info(
            f"Camera ready: facing={stream.facing_mode or 'any'}, "
            f"resolution={self._frame_size[0]}x{self._frame_size[1]}"
        )
        return self._state

    async def _request_stream(self, preferred_facing: str | None) -> MediaStream:
        """Open a stream, retrying once without a facing constraint."""
        try:
            return await self._get_user_media(MediaConstraints(facing_mode=preferred_facing))
        except (NotFoundError, OverconstrainedError) as e:
            if preferred_facing is None:
                raise DeviceUnavailableError(f"No camera available: {e}") from e
            logger.warning(
                f"No '{preferred_facing}' camera ({e}), retrying with any camera"
            )

        try:
            return await self._get_user_media(MediaConstraints())
        except (NotFoundError, OverconstrainedError) as e:
            raise DeviceUnavailableError(f"No camera available: {e}") from e

    async def _get_user_media(self, constraints: MediaConstraints) -> MediaStream:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None, self.media_devices.get_user_media, constraints
            )
        except NotAllowedError as e:
            raise PermissionDeniedError() from e
        except (NotFoundError, OverconstrainedError):
            raise
        except MediaError as e:
            raise DeviceUnavailableError(f"Camera error: {e}") from e

    async def _wait_ready(self, stream: MediaStream) -> np.ndarray:
        """Wait for the first frame so the native resolution is known."""
        tracks = stream.get_video_tracks()
        if not tracks:
            raise DeviceUnavailableError("Stream has no video track")
        track = tracks[0]
        loop = asyncio.get_running_loop()

        async def first_frame() -> np.ndarray:
            while True:
                frame = await loop.run_in_executor(None, track.read_frame)
                if frame is not None:
                    return frame
                await asyncio.sleep(READY_POLL_SECONDS)

        try:
            return await asyncio.wait_for(first_frame(), timeout=self.ready_timeout)
        except asyncio.TimeoutError as e:
            raise DeviceUnavailableError(
                f"Camera delivered no frames within {self.ready_timeout}s"
            ) from e

    # ==================== Stop ====================

    async def stop(self) -> None:
        """Release the stream. Safe to call repeatedly."""
        if self._state is not CaptureState.ON:
            if self._state is not CaptureState.OFF:
                logger.warning(f"Stop ignored, capture is {self._state.name}")
            return

        self._set_state(CaptureState.STOPPING)

        if self._torch_on:
            try:
                await self._apply_torch(False)
            except CaptureError as e:
                logger.warning(f"Could not turn torch off before release: {e}")
            self._torch_on = False

        if self._stream is not None:
            await self._release(self._stream)
        self._stream = None
        self._torch_supported = None
        self._set_state(CaptureState.OFF)

    async def _release(self, stream: MediaStream) -> None:
        # Track stop may wait on a frame read still running in the executor
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._stop_tracks, stream)
        logger.info("Camera tracks released")

    def _stop_tracks(self, stream: MediaStream) -> None:
        for track in stream.get_tracks():
            try:
                track.stop()
            except Exception as e:
                logger.error(f"Error stopping track {track.label}: {e}")

    # ==================== Torch ====================

    def probe_torch_capability(self) -> bool:
        """Query the active track for torch support (False if unknown)."""
        track = self._video_track()
        if track is None:
            return False

        try:
            capabilities = track.get_capabilities()
        except Exception as e:
            logger.warning(f"Capability query failed: {e}")
            capabilities = None

        self._torch_supported = bool(capabilities and capabilities.get("torch"))
        logger.info(f"Torch capability: {self._torch_supported}")
        return self._torch_supported

    async def set_torch(self, on: bool) -> None:
        """
        Switch the torch.

        Raises:
            TorchUnsupportedError: Probe reported no torch (or never ran)
            TorchControlFailedError: Device rejected the constraint
        """
        if self._state is not CaptureState.ON or not self._torch_supported:
            raise TorchUnsupportedError()
        await self._apply_torch(on)

    async def _apply_torch(self, on: bool) -> None:
        track = self._video_track()
        if track is None:
            raise TorchUnsupportedError()

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, track.apply_constraints, {"torch": on})
        except ConstraintError as e:
            raise TorchControlFailedError(f"Torch constraint rejected: {e}") from e
        self._torch_on = on
        logger.info(f"Torch {'ON' if on else 'OFF'}")

    # ==================== Frames ====================

    async def read_frame(self) -> np.ndarray | None:
        """Read the current RGB frame, or None if not ON or the read failed."""
        track = self._video_track()
        if self._state is not CaptureState.ON or track is None:
            return None

        loop = asyncio.get_running_loop()
        try:
            frame = await loop.run_in_executor(None, track.read_frame)
        except Exception as e:
            logger.error(f"Frame read error: {e}")
            return None

        if frame is not None:
            self._frames_read += 1
            size = (frame.shape[1], frame.shape[0])
            if size != self._frame_size:
                logger.info(f"Frame size changed: {self._frame_size} -> {size}")
                self._frame_size = size
        return frame

    def get_status(self) -> dict:
        """Get capture session status."""
        return {
            "state": self._state.value,
            "facing_mode": self.facing_mode,
            "frame_size": list(self._frame_size) if self._frame_size else None,
            "frames_read": self._frames_read,
            "torch_supported": self._torch_supported,
            "torch_on": self._torch_on,
        }
