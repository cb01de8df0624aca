"""
Exception hierarchy for LiveDetect.

Every error raised by the core carries an ErrorKind so the controller can
report it to the UI without inspecting exception types:

- CaptureError: camera acquisition and torch control
- SnapshotError: snapshot composition
- DetectorError: model loading and per-frame detection
"""

from enum import Enum


class ErrorKind(Enum):
    """Error kinds surfaced to the UI collaborator."""

    NOT_SECURE_CONTEXT = "not_secure_context"
    PERMISSION_DENIED = "permission_denied"
    DEVICE_UNAVAILABLE = "device_unavailable"
    TORCH_UNSUPPORTED = "torch_unsupported"
    TORCH_CONTROL_FAILED = "torch_control_failed"
    CAMERA_NOT_ACTIVE = "camera_not_active"
    DETECTOR_FAILURE = "detector_failure"
    MODEL_NOT_LOADED = "model_not_loaded"


class LiveDetectError(Exception):
    """Base exception for all LiveDetect errors."""

    kind: ErrorKind = ErrorKind.DETECTOR_FAILURE
    default_message = "LiveDetect error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# =============================================================================
# Capture Errors
# =============================================================================


class CaptureError(LiveDetectError):
    """Base exception for camera acquisition and control errors."""

    default_message = "Camera error"


class NotSecureContextError(CaptureError):
    """Raised when capture is requested from a non-secure origin."""

    kind = ErrorKind.NOT_SECURE_CONTEXT
    default_message = "Camera access requires HTTPS or a localhost origin."


class PermissionDeniedError(CaptureError):
    """Raised when camera permission is refused."""

    kind = ErrorKind.PERMISSION_DENIED
    default_message = "Could not access your camera. Please ensure permissions are granted."


class DeviceUnavailableError(CaptureError):
    """Raised when no usable camera device could be opened."""

    kind = ErrorKind.DEVICE_UNAVAILABLE
    default_message = "No usable camera was found."


class TorchUnsupportedError(CaptureError):
    """Raised when the active track has no torch capability."""

    kind = ErrorKind.TORCH_UNSUPPORTED
    default_message = "Flash is not supported on this camera."


class TorchControlFailedError(CaptureError):
    """Raised when the device rejects a torch constraint."""

    kind = ErrorKind.TORCH_CONTROL_FAILED
    default_message = "Failed to change the flash state."


# =============================================================================
# Snapshot Errors
# =============================================================================


class SnapshotError(LiveDetectError):
    """Base exception for snapshot errors."""

    default_message = "Snapshot failed"


class CameraNotActiveError(SnapshotError):
    """Raised when a snapshot is requested while the camera is off."""

    kind = ErrorKind.CAMERA_NOT_ACTIVE
    default_message = "Please turn on the camera first."


# =============================================================================
# Detector Errors
# =============================================================================


class DetectorError(LiveDetectError):
    """Base exception for detector errors."""

    kind = ErrorKind.DETECTOR_FAILURE
    default_message = "Detector error"


class DetectorFailureError(DetectorError):
    """Raised when a single detection pass fails."""

    default_message = "Detection failed"


class ModelLoadError(DetectorError):
    """Raised when the detection model cannot be loaded."""

    kind = ErrorKind.MODEL_NOT_LOADED
    default_message = "Failed to load model. Please restart."
