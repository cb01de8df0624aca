"""
Camera module for LiveDetect.

Provides:
- MediaDevices: OpenCV and simulated camera backends
- CaptureSession: Stream lifecycle, torch probing and control
- FrameSurface / OverlayRenderer: Detection overlay drawing
- SnapshotCapture: Annotated PNG export
"""

from .capture_session import CaptureSession, CaptureState, FlashState, is_secure_origin
from .media import (
    MediaConstraints,
    MediaDevices,
    OpenCVMediaDevices,
    SimulatedMediaDevices,
    create_media_devices,
)
from .overlay import FrameSurface, OverlayRenderer
from .snapshot import Snapshot, SnapshotCapture

__all__ = [
    "CaptureSession",
    "CaptureState",
    "FlashState",
    "is_secure_origin",
    "MediaConstraints",
    "MediaDevices",
    "OpenCVMediaDevices",
    "SimulatedMediaDevices",
    "create_media_devices",
    "FrameSurface",
    "OverlayRenderer",
    "Snapshot",
    "SnapshotCapture",
]
