"""
Inference module for LiveDetect.

Provides:
- Detection / BoundingBox / DisplayMode: Detection data structures
- Detector: YOLO and simulated detector backends
- filter_detections: Display mode filtering
"""

from .detection import DEFAULT_ANIMAL_CLASSES, BoundingBox, Detection, DetectionPass, DisplayMode
from .detector import Detector, SimulatedDetector, YoloDetector, create_detector
from .mode_filter import filter_detections

__all__ = [
    "DEFAULT_ANIMAL_CLASSES",
    "BoundingBox",
    "Detection",
    "DetectionPass",
    "DisplayMode",
    "Detector",
    "SimulatedDetector",
    "YoloDetector",
    "create_detector",
    "filter_detections",
]
