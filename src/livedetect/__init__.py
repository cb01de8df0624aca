"""
LiveDetect - Live Object Detection Overlay

Acquires a camera stream, runs an object detector over the current frame
in a paced loop and draws filtered detections as boxes and labels, with
camera, flash, display-mode and snapshot controls.
"""

__version__ = "1.0.0"
__author__ = "LiveDetect Team"
