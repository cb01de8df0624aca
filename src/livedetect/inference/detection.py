"""
Detection data structures for object detection results.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

# Default animal category (COCO labels). "person" is intentionally absent;
# deployments that want it add it via inference.animal_classes.
DEFAULT_ANIMAL_CLASSES = frozenset(
    {
        "bird",
        "cat",
        "dog",
        "horse",
        "sheep",
        "cow",
        "elephant",
        "bear",
        "zebra",
        "giraffe",
    }
)


class DisplayMode(Enum):
    """Which detections are visible on the overlay."""

    ALL = "all"
    ANIMALS_ONLY = "animals"

    @property
    def label(self) -> str:
        """Human-readable name for UI text."""
        return "All Objects" if self is DisplayMode.ALL else "Animals"

    def toggled(self) -> "DisplayMode":
        """Return the other mode."""
        return DisplayMode.ANIMALS_ONLY if self is DisplayMode.ALL else DisplayMode.ALL


@dataclass(frozen=True)
class BoundingBox:
    """Bounding box in frame pixel coordinates."""

    x: float  # Left edge
    y: float  # Top edge
    width: float
    height: float

    @property
    def center_x(self) -> float:
        """Get center X coordinate."""
        return self.x + self.width / 2

    @property
    def center_y(self) -> float:
        """Get center Y coordinate."""
        return self.y + self.height / 2

    @property
    def area(self) -> float:
        """Get bounding box area."""
        return self.width * self.height

    @property
    def right(self) -> float:
        """Get right edge X coordinate."""
        return self.x + self.width

    @property
    def bottom(self) -> float:
        """Get bottom edge Y coordinate."""
        return self.y + self.height

    @classmethod
    def from_corners(cls, x1: float, y1: float, x2: float, y2: float) -> "BoundingBox":
        """Build a box from (x1, y1, x2, y2) corner coordinates."""
        return cls(x=x1, y=y1, width=x2 - x1, height=y2 - y1)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
        }


@dataclass(frozen=True)
class Detection:
    """Single object detection result."""

    label: str
    confidence: float
    bbox: BoundingBox

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be 0.0-1.0, got {self.confidence}")

    @property
    def percent(self) -> int:
        """Confidence as a whole percentage, rounded half up."""
        return math.floor(self.confidence * 100 + 0.5)

    @property
    def display_text(self) -> str:
        """Overlay label text, e.g. 'dog (80%)'."""
        return f"{self.label} ({self.percent}%)"

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "label": self.label,
            "confidence": self.confidence,
            "bbox": self.bbox.to_dict(),
        }

    def __str__(self) -> str:
        return (
            f"{self.label} ({self.confidence:.2f}) "
            f"at ({self.bbox.center_x:.0f}, {self.bbox.center_y:.0f})"
        )


@dataclass
class DetectionPass:
    """Summary of one detection pass. Never holds the frame itself."""

    dispatched_at: datetime
    detections: list[Detection] = field(default_factory=list)
    pass_number: int = 0
    inference_time_ms: float = 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "dispatched_at": self.dispatched_at.isoformat(),
            "pass_number": self.pass_number,
            "inference_time_ms": self.inference_time_ms,
            "detections": [d.to_dict() for d in self.detections],
        }
